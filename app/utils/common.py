from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlparse

from fastapi import HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.models import User
from app.utils.pricing import BILLING_PERIOD_EXPIRY_DAYS


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
	# SQLite віддає naive datetime, Postgres - aware
	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
	"""ISO-рядок / datetime від вендора -> aware datetime, або None."""
	if not value:
		return None
	if isinstance(value, datetime):
		return as_utc(value)
	try:
		return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
	except ValueError:
		return None


def compute_period_end(billing_period: str, from_date: Optional[datetime] = None) -> datetime:
	start = from_date or utcnow()
	days = BILLING_PERIOD_EXPIRY_DAYS.get(billing_period, 30)
	return start + timedelta(days=days)


def subscription_period_key(subscription_id: str, period_end: datetime) -> str:
	return f"sub_period_{subscription_id}_{period_end.date().isoformat()}"


def get_request_origin(request: Request) -> str:
	origin = request.headers.get("origin")
	if not origin:
		origin = str(request.base_url)
	return origin.rstrip("/")


def resolve_base_url(request: Request) -> str:
	"""
	Return/cancel URL будуються від origin запиту (тунелі/проксі міняють host).
	APP_URL з конфігу - лише коли запит прийшов з localhost.
	"""
	origin = get_request_origin(request)
	host = urlparse(origin).hostname or ""
	if host in ("localhost", "127.0.0.1"):
		return (config.APP_URL or origin).rstrip("/")
	return origin


async def user_existing_check(session: AsyncSession, user_id: str) -> User:
	"""
	Перевіряє, чи користувач існує в базі даних.
	Якщо ні, генерує виняток.
	"""
	user = await session.get(User, user_id)
	if not user:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail=f"User '{user_id}' not found.",
		)
	return user
