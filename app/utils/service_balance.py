import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
	CreditGrant, CreditGrantType, CreditTransaction, CreditTransactionType
)
from app.schemas.credits import (
	CreditBalance, CreditHistoryItem, AllocationResult, DeductionResult
)
from app.utils.common import utcnow, as_utc, compute_period_end
from app.utils.idempotency import check_idempotency
from app.utils.logging import get_extra_data_log
from app.utils.pricing import get_plan

logger = logging.getLogger("[CREDITS]")


class CreditsService:
	"""
	Кредитний леджер. Баланс не зберігається: кожне читання
	перераховує його з credits (нарахування) та credit_transactions (списання).
	"""

	def __init__(self, session: AsyncSession):
		self.session = session

	async def get_user_credits(self, user_id: str) -> CreditBalance:
		now = utcnow()
		try:
			result = await self.session.execute(
				select(
					func.coalesce(func.sum(CreditGrant.amount), 0),
					func.min(CreditGrant.expires_at),
				).where(
					CreditGrant.user_id == user_id,
					CreditGrant.is_active.is_(True),
					CreditGrant.amount > 0,
					or_(CreditGrant.expires_at.is_(None), CreditGrant.expires_at > now),
				)
			)
			total, earliest_expiry = result.one()

			result = await self.session.execute(
				select(func.coalesce(func.sum(CreditTransaction.amount), 0)).where(
					CreditTransaction.user_id == user_id,
					CreditTransaction.type == CreditTransactionType.DEBIT,
				)
			)
			used = abs(result.scalar_one() or 0)
		except SQLAlchemyError:
			# не валимо запит: баланс трактуємо як нульовий
			logger.exception("Failed to compute credit balance for user %s", user_id)
			return CreditBalance()

		total = int(total or 0)
		return CreditBalance(
			total=total,
			used=used,
			remaining=max(0, total - used),
			expires_at=as_utc(earliest_expiry),
		)

	async def has_enough_credits(self, user_id: str, amount: int) -> bool:
		balance = await self.get_user_credits(user_id)
		return balance.remaining >= amount

	async def get_credit_history(self, user_id: str, limit: int = 50) -> List[CreditHistoryItem]:
		limit = max(1, min(limit, 100))
		try:
			result = await self.session.execute(
				select(CreditTransaction)
				.where(CreditTransaction.user_id == user_id)
				.order_by(CreditTransaction.created_at.desc())
				.limit(limit)
			)
			rows = result.scalars().all()
		except SQLAlchemyError:
			logger.exception("Failed to fetch credit history for user %s", user_id)
			return []

		return [
			CreditHistoryItem(
				id=tx.id,
				amount=tx.amount,
				type=tx.type.value,
				reason=tx.reason,
				description=tx.description,
				balance_before=tx.balance_before,
				balance_after=tx.balance_after,
				created_at=as_utc(tx.created_at),
			)
			for tx in rows
		]

	async def allocate_subscription_credits(
		self,
		user_id: str,
		plan: str,
		billing_period: str,
		subscription_id: Optional[str],
		transaction_id: str,
		credits: Optional[int] = None,
		expires_at: Optional[datetime] = None,
		description: Optional[str] = None,
		info: Optional[dict] = None,
	) -> AllocationResult:
		plan_config = get_plan(plan)
		if plan_config is None:
			raise ValueError(f"Plan configuration not found: {plan}")

		amount = plan_config.credits if credits is None else credits
		return await self._grant(
			user_id=user_id,
			amount=amount,
			grant_type=CreditGrantType.SUBSCRIPTION,
			source="payment",
			transaction_id=transaction_id,
			expires_at=expires_at or compute_period_end(billing_period),
			subscription_id=subscription_id,
			reason="subscription_renewal",
			description=description or f"Credits allocated for {plan_config.name} plan ({billing_period})",
			info={
				"plan": plan_config.key,
				"billing_period": billing_period,
				"dodo_subscription_id": subscription_id,
				**(info or {}),
			},
		)

	async def allocate_purchase_credits(
		self, user_id: str, credits: int, payment_id: str, package_type: str
	) -> AllocationResult:
		return await self._grant(
			user_id=user_id,
			amount=credits,
			grant_type=CreditGrantType.PURCHASE,
			source="payment",
			transaction_id=f"purchase_{payment_id}",
			expires_at=None,
			subscription_id=None,
			reason="credit_purchase",
			description=f"Credit top-up ({package_type})",
			info={"payment_id": payment_id, "package_type": package_type},
		)

	async def grant_bonus_credits(
		self,
		user_id: str,
		amount: int,
		reason: str,
		expires_at: Optional[datetime] = None,
	) -> AllocationResult:
		return await self._grant(
			user_id=user_id,
			amount=amount,
			grant_type=CreditGrantType.BONUS,
			source="admin",
			transaction_id=f"bonus_{uuid.uuid4().hex}",
			expires_at=expires_at,
			subscription_id=None,
			reason="admin_grant",
			description=reason,
			info={},
		)

	async def active_subscription_credits(self, user_id: str, subscription_id: str) -> int:
		"""Скільки кредитів уже нараховано за цю підписку і ще діють."""
		result = await self.session.execute(
			select(func.coalesce(func.sum(CreditGrant.amount), 0)).where(
				CreditGrant.user_id == user_id,
				CreditGrant.type == CreditGrantType.SUBSCRIPTION,
				CreditGrant.dodo_subscription_id == subscription_id,
				CreditGrant.is_active.is_(True),
				or_(CreditGrant.expires_at.is_(None), CreditGrant.expires_at > utcnow()),
			)
		)
		return int(result.scalar_one() or 0)

	async def deduct_credits(
		self, user_id: str, amount: int, task_id: Optional[str], description: str
	) -> DeductionResult:
		if task_id:
			result = await self.session.execute(
				select(CreditTransaction).where(
					CreditTransaction.user_id == user_id,
					CreditTransaction.enhancement_task_id == task_id,
					CreditTransaction.type == CreditTransactionType.DEBIT,
				)
			)
			existing = result.scalars().first()
			if existing is not None:
				logger.warning(
					"Duplicate deduction for task %s ignored", task_id,
					extra=get_extra_data_log(existing)
				)
				return DeductionResult(
					success=True,
					deducted=abs(existing.amount),
					balance_after=existing.balance_after,
					duplicate=True,
				)

		balance = await self.get_user_credits(user_id)
		if balance.remaining < amount:
			logger.info(
				"Insufficient credits for user %s: %s < %s",
				user_id, balance.remaining, amount
			)
			return DeductionResult(
				success=False,
				balance_after=balance.remaining,
				error="Insufficient credits",
			)

		new_tx = CreditTransaction(
			id=str(uuid.uuid4()),
			user_id=user_id,
			amount=-amount,
			type=CreditTransactionType.DEBIT,
			reason="image_enhancement",
			description=description,
			enhancement_task_id=task_id,
			balance_before=balance.remaining,
			balance_after=balance.remaining - amount,
			info={"task_id": task_id, "credits_deducted": amount},
			created_at=utcnow(),
		)
		self.session.add(new_tx)
		await self.session.commit()

		logger.info("Deducted credits. Transaction:", extra=get_extra_data_log(new_tx))

		return DeductionResult(
			success=True, deducted=amount, balance_after=new_tx.balance_after
		)

	async def expire_old_credits(self) -> int:
		result = await self.session.execute(
			update(CreditGrant)
			.where(
				CreditGrant.is_active.is_(True),
				CreditGrant.expires_at.is_not(None),
				CreditGrant.expires_at < utcnow(),
			)
			.values(is_active=False)
		)
		await self.session.commit()
		expired = result.rowcount or 0
		logger.info("Expired %s credit grants", expired)
		return expired

	async def _grant(
		self,
		user_id: str,
		amount: int,
		grant_type: CreditGrantType,
		source: str,
		transaction_id: str,
		expires_at: Optional[datetime],
		subscription_id: Optional[str],
		reason: str,
		description: str,
		info: dict,
	) -> AllocationResult:
		# Перевіряємо ідемпотентність
		is_duplicate, existing = await check_idempotency(
			self.session, transaction_id, expected_user_id=user_id
		)
		if is_duplicate and existing is not None:
			logger.warning(
				"Found duplicate credit allocation: %s", transaction_id,
				extra=get_extra_data_log(existing)
			)
			return AllocationResult(
				allocated=False,
				duplicate=True,
				credits=existing.amount,
				transaction_id=transaction_id,
				grant_id=existing.id,
			)

		balance = await self.get_user_credits(user_id)
		now = utcnow()

		grant = CreditGrant(
			id=str(uuid.uuid4()),
			user_id=user_id,
			amount=amount,
			type=grant_type,
			source=source,
			transaction_id=transaction_id,
			dodo_subscription_id=subscription_id,
			expires_at=expires_at,
			is_active=True,
			info={**info, "allocated_at": now.isoformat()},
			created_at=now,
		)
		new_tx = CreditTransaction(
			id=str(uuid.uuid4()),
			user_id=user_id,
			credit_id=grant.id,
			amount=amount,
			type=CreditTransactionType.CREDIT,
			reason=reason,
			description=description,
			balance_before=balance.remaining,
			balance_after=balance.remaining + amount,
			info={"transaction_id": transaction_id, **info},
			created_at=now,
		)
		self.session.add(grant)
		self.session.add(new_tx)

		try:
			await self.session.commit()
		except IntegrityError:
			# паралельний запит встиг записати той самий transaction_id
			await self.session.rollback()
			logger.warning("Concurrent allocation for %s treated as duplicate", transaction_id)
			return AllocationResult(
				allocated=False,
				duplicate=True,
				credits=amount,
				transaction_id=transaction_id,
			)

		logger.info("Allocated credits. Transaction:", extra=get_extra_data_log(new_tx))

		return AllocationResult(
			allocated=True,
			credits=amount,
			transaction_id=transaction_id,
			grant_id=grant.id,
		)
