import json
import logging
from typing import Optional

import redis.asyncio as redis

from app.core.config import config

logger = logging.getLogger("[PAYMENTS]")


# створюємо клієнт
redis_client = redis.from_url(
	f"redis://{config.REDIS_HOST}:{config.REDIS_PORT}/{config.REDIS_DB}",
	encoding="utf-8",
	decode_responses=True,
)


def checkout_key(session_id: str) -> str:
	return f"checkout:{session_id}"


class CheckoutMappingStore:
	"""
	session_id -> {userId, plan, billingPeriod, userEmail}.
	Best-effort: збій Redis логуються і ніколи не ламає запит.
	"""

	def __init__(self, client=None, ttl: Optional[int] = None):
		self.client = client or redis_client
		self.ttl = ttl or config.CHECKOUT_MAPPING_TTL_SECONDS

	async def store(self, session_id: str, mapping: dict) -> bool:
		try:
			await self.client.set(checkout_key(session_id), json.dumps(mapping), ex=self.ttl)
		except redis.RedisError:
			logger.warning("Failed to store checkout mapping for %s", session_id, exc_info=True)
			return False
		return True

	async def get(self, session_id: str) -> Optional[dict]:
		try:
			value = await self.client.get(checkout_key(session_id))
		except redis.RedisError:
			logger.warning("Failed to read checkout mapping for %s", session_id, exc_info=True)
			return None
		if value is None:
			return None
		try:
			return json.loads(value)
		except ValueError:
			return None

	async def mark_completed(self, session_id: str) -> bool:
		mapping = await self.get(session_id)
		if mapping is None:
			return False
		mapping["completed"] = True
		return await self.store(session_id, mapping)
