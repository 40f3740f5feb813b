import uuid

from sqlalchemy import (
	Column, Integer, String, DateTime, ForeignKey, JSON, func
)

from app.core.database import Base


class Payment(Base):
	__tablename__ = "payments"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	# append-only, дедуплікація по id платежу у Dodo
	dodo_payment_id = Column(String, unique=True, nullable=False)
	dodo_customer_id = Column(String, nullable=True)

	amount = Column(Integer, default=0)  # центи
	currency = Column(String(8), default="USD")
	status = Column(String(32), nullable=False)
	payment_method = Column(String, nullable=True)
	plan = Column(String(32), nullable=True)
	billing_period = Column(String(16), nullable=True)

	paid_at = Column(DateTime(timezone=True), nullable=True)
	info = Column(JSON, default=dict)
	created_at = Column(DateTime(timezone=True), server_default=func.now())
	updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CreditPurchase(Base):
	__tablename__ = "credit_purchases"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	package_type = Column(String(32), nullable=False)
	status = Column(String(16), nullable=False, default="pending")  # pending / completed / failed
	credits = Column(Integer, nullable=False)
	amount = Column(Integer, nullable=False)  # центи
	currency = Column(String(8), default="USD")
	description = Column(String, nullable=True)

	dodo_payment_id = Column(String, nullable=True, index=True)
	checkout_url = Column(String, nullable=True)
	product_id = Column(String, nullable=True)

	created_at = Column(DateTime(timezone=True), server_default=func.now())
	updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
	completed_at = Column(DateTime(timezone=True), nullable=True)
