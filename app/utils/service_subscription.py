import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import CreditPurchase, Payment, Subscription, User, ACTIVE_LIKE_STATUSES
from app.schemas.credits import AllocationResult
from app.schemas.payments import (
	CompletePaymentResponse, PendingPaymentResponse, SubscriptionSummary
)
from app.utils.common import (
	utcnow, as_utc, parse_datetime, compute_period_end, subscription_period_key
)
from app.utils.dodo_client import DodoAPIError, DodoClient
from app.utils.logging import get_extra_data_log
from app.utils.pricing import get_plan, normalize_plan, normalize_billing_period
from app.utils.redis_cache import CheckoutMappingStore
from app.utils.service_balance import CreditsService

logger = logging.getLogger("[PAYMENTS]")

DEFAULT_PLAN = "creator"
DEFAULT_BILLING_PERIOD = "monthly"
PAYMENT_SYNC_LIMIT = 10
# pending не рахується: його кінець періоду ще не підтверджений
CONFIRMED_STATUSES = ("active", "trialing", "pending_cancellation")


def vendor_owner(subscription: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
	"""(user_id, email) власника підписки за даними вендора."""
	metadata = subscription.get("metadata") or {}
	customer = subscription.get("customer") or {}
	customer_meta = customer.get("metadata") or {}

	user_id = (
		metadata.get("userId") or metadata.get("user_id")
		or customer_meta.get("userId") or customer_meta.get("user_id")
	)
	email = customer.get("email") or metadata.get("user_email") or customer_meta.get("user_email")
	return user_id, email


def verify_ownership(subscription: Dict[str, Any], user: User) -> None:
	vendor_user_id, vendor_email = vendor_owner(subscription)

	if vendor_user_id and vendor_user_id != user.id:
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

	if (
		not vendor_user_id and vendor_email and user.email
		and vendor_email.lower() != user.email.lower()
	):
		raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

	if not vendor_user_id and not vendor_email:
		raise HTTPException(
			status_code=status.HTTP_403_FORBIDDEN,
			detail="Unable to verify subscription ownership",
		)


def vendor_period_date(subscription: Dict[str, Any]) -> Optional[datetime]:
	return parse_datetime(
		subscription.get("next_billing_date") or subscription.get("current_period_end")
	)


def stored_period_end(
	row: Optional[Subscription], subscription_id: Optional[str]
) -> Optional[datetime]:
	"""Збережений кінець періоду, якщо ця ж підписка вже підтверджена локально."""
	if (
		row is None or row.status not in CONFIRMED_STATUSES
		or row.dodo_subscription_id != subscription_id
	):
		return None
	next_billing = as_utc(row.next_billing_date)
	if next_billing and next_billing > utcnow():
		return next_billing
	return None


def resolve_period_end(
	billing_period: str,
	subscription: Dict[str, Any],
	existing: Optional[Subscription] = None,
	subscription_id: Optional[str] = None,
) -> datetime:
	"""
	Кінець поточного періоду. Для daily дата вендора не використовується:
	для day pass вона не збігається з 24 год доступу.
	Порядок: дата вендора у майбутньому (крім daily), збережений кінець
	періоду цієї ж підписки, локальний розрахунок від поточного часу.
	"""
	now = utcnow()
	if billing_period != "daily":
		vendor_date = vendor_period_date(subscription)
		if vendor_date and vendor_date > now:
			return vendor_date

	stored = stored_period_end(existing, subscription_id or subscription.get("subscription_id"))
	if stored is not None:
		return stored
	return compute_period_end(billing_period, now)


def period_transaction_id(
	subscription_id: str, subscription: Dict[str, Any], period_end: datetime
) -> str:
	"""
	Ключ нарахування за період. Прив'язаний до дати вендора, а без неї -
	до кінця періоду, який повторні виклики беруть зі збереженого рядка.
	"""
	return subscription_period_key(subscription_id, vendor_period_date(subscription) or period_end)


async def get_user_subscription(session: AsyncSession, user_id: str) -> Optional[Subscription]:
	result = await session.execute(
		select(Subscription).where(Subscription.user_id == user_id)
	)
	return result.scalar_one_or_none()


def is_subscription_active(row: Optional[Subscription]) -> bool:
	"""Статус active-like і період ще не закінчився."""
	if row is None or row.status not in ACTIVE_LIKE_STATUSES:
		return False
	next_billing = as_utc(row.next_billing_date)
	return next_billing is None or next_billing > utcnow()


def payment_subscription_id(payment: Optional[Dict[str, Any]]) -> Optional[str]:
	if not payment:
		return None
	return payment.get("subscription_id") or (payment.get("subscription") or {}).get("subscription_id")


class SubscriptionService:
	"""
	Узгоджує стан підписки користувача з Dodo Payments і нараховує
	кредити за період. Використовується і complete-флоу, і webhook.
	"""

	def __init__(
		self,
		session: AsyncSession,
		dodo: DodoClient,
		checkout_store: Optional[CheckoutMappingStore] = None,
	):
		self.session = session
		self.dodo = dodo
		self.checkout_store = checkout_store
		self.credits = CreditsService(session)

	async def get_user_subscription(self, user_id: str) -> Optional[Subscription]:
		return await get_user_subscription(self.session, user_id)

	# **************    Resolution chain
	async def _fetch_optional(self, fetch, object_id: str) -> Optional[Dict[str, Any]]:
		try:
			return await fetch(object_id)
		except DodoAPIError as e:
			if e.status_code == 404:
				logger.info("Vendor object %s not found while resolving subscription", object_id)
				return None
			raise HTTPException(
				status_code=status.HTTP_502_BAD_GATEWAY,
				detail={"error": "Failed to resolve subscription", "details": e.message},
			)

	async def resolve_subscription_id(
		self,
		subscription_id: Optional[str],
		payment_id: Optional[str],
		session_id: Optional[str],
	) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
		"""subscription id -> payment -> checkout session."""
		payment = None
		if payment_id:
			payment = await self._fetch_optional(self.dodo.get_payment, payment_id)

		if subscription_id:
			return subscription_id, payment

		subscription_id = payment_subscription_id(payment)
		if subscription_id:
			return subscription_id, payment

		if session_id:
			checkout = await self._fetch_optional(self.dodo.get_checkout_session, session_id)
			if checkout:
				subscription_id = checkout.get("subscription_id")
				if not subscription_id and checkout.get("payment_id"):
					payment = await self._fetch_optional(self.dodo.get_payment, checkout["payment_id"])
					subscription_id = payment_subscription_id(payment)

		return subscription_id, payment

	async def fetch_vendor_subscription(self, subscription_id: str) -> Dict[str, Any]:
		try:
			return await self.dodo.get_subscription(subscription_id)
		except DodoAPIError as e:
			if e.status_code == 404:
				raise HTTPException(
					status_code=status.HTTP_404_NOT_FOUND,
					detail="Subscription not found",
				)
			raise HTTPException(
				status_code=status.HTTP_502_BAD_GATEWAY,
				detail={"error": "Failed to fetch subscription", "details": e.message},
			)

	async def _plan_and_period(
		self, subscription: Dict[str, Any], session_id: Optional[str]
	) -> Tuple[str, str]:
		metadata = subscription.get("metadata") or {}
		plan = metadata.get("plan")
		billing_period = metadata.get("billingPeriod") or metadata.get("billing_period")

		if (not plan or not billing_period) and session_id and self.checkout_store:
			mapping = await self.checkout_store.get(session_id) or {}
			plan = plan or mapping.get("plan")
			billing_period = billing_period or mapping.get("billingPeriod")

		return (
			normalize_plan(plan or DEFAULT_PLAN),
			normalize_billing_period(billing_period or DEFAULT_BILLING_PERIOD),
		)

	# **************    Writes
	async def upsert_subscription(
		self,
		user_id: str,
		plan: str,
		billing_period: str,
		sub_status: str,
		vendor: Dict[str, Any],
		period_end: Optional[datetime],
	) -> Subscription:
		now = utcnow()
		customer = vendor.get("customer") or {}
		metadata = vendor.get("metadata") or {}

		row = await self.get_user_subscription(user_id)
		if row is None:
			row = Subscription(user_id=user_id, start_date=now, created_at=now)
			self.session.add(row)

		row.plan = plan
		row.billing_period = billing_period
		row.status = sub_status
		row.dodo_subscription_id = vendor.get("subscription_id") or row.dodo_subscription_id
		row.dodo_customer_id = customer.get("customer_id") or vendor.get("customer_id") or row.dodo_customer_id
		row.next_billing_date = period_end
		row.billing_name = customer.get("name") or metadata.get("user_name") or row.billing_name
		row.billing_email = customer.get("email") or metadata.get("user_email") or row.billing_email
		row.currency = vendor.get("currency") or row.currency or "USD"
		row.amount = vendor.get("recurring_pre_tax_amount") or vendor.get("amount") or row.amount or 0
		row.updated_at = now

		await self.session.commit()
		logger.info(
			"Subscription for user %s set to %s (%s %s)",
			user_id, sub_status, plan, billing_period
		)
		return row

	async def record_payment(
		self,
		user_id: str,
		payment: Dict[str, Any],
		plan: Optional[str] = None,
		billing_period: Optional[str] = None,
	) -> bool:
		"""Записує платіж вендора, якщо його ще немає. True - вставлено."""
		payment_id = payment.get("payment_id") or payment.get("id")
		if not payment_id:
			return False

		result = await self.session.execute(
			select(Payment.id).where(Payment.dodo_payment_id == payment_id)
		)
		if result.scalar_one_or_none() is not None:
			return False

		customer = payment.get("customer") or {}
		paid_at = parse_datetime(payment.get("paid_at") or payment.get("created_at")) or utcnow()
		new_payment = Payment(
			id=str(uuid.uuid4()),
			user_id=user_id,
			dodo_payment_id=payment_id,
			dodo_customer_id=customer.get("customer_id") or payment.get("customer_id"),
			amount=payment.get("total_amount") or payment.get("amount") or 0,
			currency=payment.get("currency") or "USD",
			status=payment.get("status") or "succeeded",
			payment_method=payment.get("payment_method") or payment.get("payment_method_type"),
			plan=plan,
			billing_period=billing_period,
			paid_at=paid_at,
			info=payment,
			created_at=utcnow(),
			updated_at=utcnow(),
		)
		self.session.add(new_payment)
		try:
			await self.session.commit()
		except IntegrityError:
			await self.session.rollback()
			return False

		logger.info("Recorded payment:", extra=get_extra_data_log(new_payment))
		return True

	async def sync_subscription_payments(
		self, user_id: str, subscription_id: str, plan: str, billing_period: str
	) -> int:
		inserted = 0
		try:
			payments = await self.dodo.list_payments(subscription_id, page_size=PAYMENT_SYNC_LIMIT)
			for payment in payments[:PAYMENT_SYNC_LIMIT]:
				if await self.record_payment(user_id, payment, plan, billing_period):
					inserted += 1
		except (DodoAPIError, SQLAlchemyError):
			logger.warning("Payment sync failed for subscription %s", subscription_id, exc_info=True)
		return inserted

	async def allocate_period_credits(
		self,
		user_id: str,
		plan: str,
		billing_period: str,
		subscription_id: str,
		period_end: datetime,
		vendor: Optional[Dict[str, Any]] = None,
	) -> AllocationResult:
		return await self.credits.allocate_subscription_credits(
			user_id=user_id,
			plan=plan,
			billing_period=billing_period,
			subscription_id=subscription_id,
			transaction_id=period_transaction_id(subscription_id, vendor or {}, period_end),
			expires_at=period_end,
		)

	async def mark_cancelled(self, subscription_id: str) -> Optional[Subscription]:
		result = await self.session.execute(
			select(Subscription).where(Subscription.dodo_subscription_id == subscription_id)
		)
		row = result.scalar_one_or_none()
		if row is None:
			return None
		row.status = "cancelled"
		row.updated_at = utcnow()
		await self.session.commit()
		logger.info("Subscription %s cancelled for user %s", subscription_id, row.user_id)
		return row

	# **************    Flows
	async def complete(
		self,
		user: User,
		subscription_id: Optional[str],
		payment_id: Optional[str],
		session_id: Optional[str],
	) -> Union[CompletePaymentResponse, PendingPaymentResponse]:
		if not (subscription_id or payment_id or session_id):
			raise HTTPException(
				status_code=status.HTTP_400_BAD_REQUEST,
				detail="subscriptionId, paymentId or sessionId is required",
			)

		subscription_id, payment = await self.resolve_subscription_id(
			subscription_id, payment_id, session_id
		)
		if not subscription_id:
			raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

		vendor = await self.fetch_vendor_subscription(subscription_id)
		verify_ownership(vendor, user)

		plan, billing_period = await self._plan_and_period(vendor, session_id)
		if get_plan(plan) is None:
			raise HTTPException(
				status_code=status.HTTP_400_BAD_REQUEST,
				detail=f"Plan configuration not found: {plan}",
			)

		existing = await self.get_user_subscription(user.id)
		locally_active = (
			existing is not None
			and existing.status == "active"
			and existing.dodo_subscription_id == subscription_id
		)
		payment_succeeded = bool(payment) and payment.get("status") == "succeeded"
		vendor_active = vendor.get("status") == "active"
		confirmed = locally_active or payment_succeeded or vendor_active

		period_end = resolve_period_end(billing_period, vendor, existing, subscription_id)
		vendor = {"subscription_id": subscription_id, **vendor}

		if not confirmed:
			vendor_status = vendor.get("status") or "pending"
			if existing is None or existing.status not in ACTIVE_LIKE_STATUSES:
				await self.upsert_subscription(
					user.id, plan, billing_period, "pending", vendor, period_end
				)
			logger.info(
				"Subscription %s for user %s not confirmed yet (%s)",
				subscription_id, user.id, vendor_status
			)
			return PendingPaymentResponse(
				status=vendor_status,
				message="Payment is still processing. Please check again shortly.",
			)

		cancel_at_next_billing = bool(vendor.get("cancel_at_next_billing_date"))
		sub_status = "pending_cancellation" if cancel_at_next_billing else "active"
		await self.upsert_subscription(user.id, plan, billing_period, sub_status, vendor, period_end)

		credits_result = await self.allocate_period_credits(
			user.id, plan, billing_period, subscription_id, period_end, vendor
		)

		await self.sync_subscription_payments(user.id, subscription_id, plan, billing_period)
		if session_id and self.checkout_store:
			await self.checkout_store.mark_completed(session_id)

		return CompletePaymentResponse(
			subscription=SubscriptionSummary(
				id=subscription_id,
				status=sub_status,
				plan=plan,
				billingPeriod=billing_period,
				next_billing_date=as_utc(period_end),
				cancel_at_next_billing_date=cancel_at_next_billing,
			),
			credits=credits_result,
		)

	async def find_webhook_user(self, vendor: Dict[str, Any]) -> Optional[User]:
		user_id, email = vendor_owner(vendor)
		if user_id:
			user = await self.session.get(User, user_id)
			if user:
				return user
		if email:
			result = await self.session.execute(select(User).where(User.email == email))
			user = result.scalar_one_or_none()
			if user:
				return user

		subscription_id = vendor.get("subscription_id")
		if subscription_id:
			result = await self.session.execute(
				select(Subscription).where(Subscription.dodo_subscription_id == subscription_id)
			)
			row = result.scalar_one_or_none()
			if row:
				return await self.session.get(User, row.user_id)
		return None

	async def activate_from_webhook(self, vendor: Dict[str, Any]) -> Optional[AllocationResult]:
		subscription_id = vendor.get("subscription_id")
		user = await self.find_webhook_user(vendor)
		if not subscription_id or user is None:
			logger.warning("Webhook subscription %s has no resolvable user", subscription_id)
			return None

		plan, billing_period = await self._plan_and_period(vendor, None)
		if get_plan(plan) is None:
			logger.error("Webhook subscription %s has unknown plan %s", subscription_id, plan)
			return None

		existing = await self.get_user_subscription(user.id)
		period_end = resolve_period_end(billing_period, vendor, existing, subscription_id)
		sub_status = "pending_cancellation" if vendor.get("cancel_at_next_billing_date") else "active"
		await self.upsert_subscription(user.id, plan, billing_period, sub_status, vendor, period_end)
		return await self.allocate_period_credits(
			user.id, plan, billing_period, subscription_id, period_end, vendor
		)

	async def apply_payment_succeeded(self, payment: Dict[str, Any]) -> Optional[AllocationResult]:
		"""
		payment.succeeded: записуємо платіж; для поповнень - нараховуємо
		безстрокові кредити. Платежі підписки кредитів тут не дають.
		"""
		metadata = payment.get("metadata") or {}
		user = await self.find_webhook_user(payment)
		if user is None:
			logger.warning("Webhook payment %s has no resolvable user", payment.get("payment_id"))
			return None

		await self.record_payment(
			user.id, payment,
			plan=metadata.get("plan"),
			billing_period=metadata.get("billingPeriod"),
		)

		if metadata.get("type") not in ("credit_purchase", "topup"):
			return None

		payment_id = payment.get("payment_id")
		result = await self.session.execute(
			select(CreditPurchase).where(CreditPurchase.dodo_payment_id == payment_id)
		)
		purchase = result.scalar_one_or_none()

		credits = purchase.credits if purchase else int(metadata.get("credits") or 0)
		package_type = purchase.package_type if purchase else metadata.get("packageType") or "custom"
		if credits <= 0:
			logger.error("Credit purchase %s has no credit amount", payment_id)
			return None

		allocation = await self.credits.allocate_purchase_credits(
			user.id, credits, payment_id, package_type
		)

		if purchase is not None and purchase.status != "completed":
			purchase.status = "completed"
			purchase.completed_at = utcnow()
			purchase.updated_at = utcnow()
			await self.session.commit()
		return allocation
