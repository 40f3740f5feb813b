import enum
import uuid

from sqlalchemy import (
	Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, func,
	Enum as AlchemyEnum
)

from app.core.database import Base


def _enum_values(enum_cls):
	return [member.value for member in enum_cls]


class CreditGrantType(enum.Enum):
	SUBSCRIPTION = "subscription"  # нарахування за період підписки
	PURCHASE = "purchase"          # разова покупка (top-up)
	BONUS = "bonus"                # нараховано адміном


class CreditGrant(Base):
	"""Позитивний запис кредитів; баланс рахується з цих рядків на льоту."""
	__tablename__ = "credits"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	amount = Column(Integer, nullable=False)
	type = Column(
		AlchemyEnum(
			CreditGrantType, native_enum=False, length=24,
			values_callable=_enum_values
		),
		nullable=False
	)
	source = Column(String, nullable=True)  # payment / admin / plan_change
	# ключ ідемпотентності: sub_period_{id}_{date}, purchase_{payment_id}, ...
	transaction_id = Column(String, unique=True, nullable=True)
	dodo_subscription_id = Column(String, nullable=True, index=True)
	expires_at = Column(DateTime(timezone=True), nullable=True)  # None: не згорає
	is_active = Column(Boolean, default=True, nullable=False)
	info = Column(JSON, default=dict)
	created_at = Column(DateTime(timezone=True), server_default=func.now())


class CreditTransactionType(enum.Enum):
	CREDIT = "credit"  # поповнення
	DEBIT = "debit"    # списання


class CreditTransaction(Base):
	__tablename__ = "credit_transactions"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	credit_id = Column(String, ForeignKey("credits.id"), nullable=True)

	amount = Column(Integer, nullable=False)  # + або -
	type = Column(
		AlchemyEnum(
			CreditTransactionType, native_enum=False, length=16,
			values_callable=_enum_values
		),
		nullable=False
	)
	reason = Column(String, nullable=False)
	description = Column(String, nullable=True)
	balance_before = Column(Integer, nullable=False)
	balance_after = Column(Integer, nullable=False)

	enhancement_task_id = Column(String, nullable=True, index=True)
	info = Column(JSON, default=dict)
	created_at = Column(DateTime(timezone=True), server_default=func.now())
