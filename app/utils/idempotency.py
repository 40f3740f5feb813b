from typing import Optional, Tuple
from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import CreditGrant


async def check_idempotency(
    db: AsyncSession,
    transaction_id: str,
    expected_user_id: Optional[str] = None,
) -> Tuple[bool, Optional[CreditGrant]]:
    """
    Перевіряє, чи вже існує нарахування з таким transaction_id
    Повертає:
        (is_duplicate: bool, existing_grant: CreditGrant | None)
    Якщо is_duplicate == True - кредити за цей ключ вже нараховані
    Якщо expected_user_id передано і користувач не збігається - кидає 409
    """
    result = await db.execute(
        select(CreditGrant).where(CreditGrant.transaction_id == transaction_id)
    )
    grant: CreditGrant | None = result.scalar_one_or_none()

    if not grant:
        return False, None

    if expected_user_id is not None and grant.user_id != expected_user_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=(
                f"Transaction ID '{transaction_id}' already used "
                f"for a different user"
            )
        )

    return True, grant
