from typing import Optional

from fastapi import Header, HTTPException, Depends, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.core.database import async_session
from app.models import AuthSession, User
from app.utils.common import utcnow
from app.utils.dodo_client import DodoClient
from app.utils.providers import ProviderRegistry, get_provider_registry as build_provider_registry
from app.utils.redis_cache import CheckoutMappingStore
from app.utils.service_balance import CreditsService


JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "authenticated"


# Dependency для отримання сесії
async def get_session() -> AsyncSession:
    async with async_session() as session:
        yield session


# Dependency: перевірка адмін токену
def access_admin(x_admin_token: str = Header(...)):
    if x_admin_token != config.ADMIN_TOKEN:
        raise HTTPException(status_code=403, detail="Invalid admin token")


security = HTTPBearer(auto_error=False)


def _looks_like_jwt(token: str) -> bool:
    return token.count(".") == 2


async def _user_from_jwt(session: AsyncSession, token: str) -> User:
    try:
        claims = jwt.decode(
            token,
            config.SUPABASE_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
        )
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    user = await session.get(User, user_id)
    if user is None:
        # перший запит з managed-auth токеном: дзеркалимо користувача локально
        metadata = claims.get("user_metadata") or {}
        user = User(
            id=user_id,
            email=claims.get("email") or f"{user_id}@users.noreply",
            name=metadata.get("name") or metadata.get("full_name"),
            created_at=utcnow(),
        )
        session.add(user)
        await session.commit()
    return user


async def _user_from_session_token(session: AsyncSession, token: str) -> User:
    result = await session.execute(
        select(AuthSession).where(
            AuthSession.token == token,
            AuthSession.expires_at > utcnow(),
        )
    )
    auth_session = result.scalar_one_or_none()
    if auth_session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")

    user = await session.get(User, auth_session.user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return user


# Dependency: користувач з Bearer токена або cookie сесії
async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session: AsyncSession = Depends(get_session),
) -> User:
    token = credentials.credentials if credentials else None
    if not token:
        token = request.cookies.get(config.SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if config.SUPABASE_JWT_SECRET and _looks_like_jwt(token):
        return await _user_from_jwt(session, token)
    return await _user_from_session_token(session, token)


# Dependency: сервіс кредитів
def get_credits_service(session: AsyncSession = Depends(get_session)) -> CreditsService:
    return CreditsService(session)


def get_dodo_client() -> DodoClient:
    return DodoClient(
        api_key=config.DODO_PAYMENTS_API_KEY,
        base_url=config.DODO_BASE_URL,
        timeout=config.DODO_TIMEOUT_SECONDS,
    )


def get_checkout_store() -> CheckoutMappingStore:
    return CheckoutMappingStore()


def get_provider_registry() -> ProviderRegistry:
    return build_provider_registry()
