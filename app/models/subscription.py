from sqlalchemy import (
	Column, Integer, String, DateTime, ForeignKey, func
)
from sqlalchemy.orm import relationship

from app.core.database import Base


# статуси, які вважаються "план діє"
ACTIVE_LIKE_STATUSES = ("active", "trialing", "pending", "pending_cancellation")


class Subscription(Base):
	__tablename__ = "subscriptions"

	id = Column(Integer, primary_key=True)
	# один рядок на користувача: ключ upsert
	user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)
	plan = Column(String(32), nullable=False)
	billing_period = Column(String(16), nullable=False, default="monthly")
	status = Column(String(32), nullable=False, default="pending")

	dodo_subscription_id = Column(String, nullable=True, index=True)
	dodo_customer_id = Column(String, nullable=True)
	next_billing_date = Column(DateTime(timezone=True), nullable=True)

	billing_name = Column(String, nullable=True)
	billing_email = Column(String, nullable=True)
	currency = Column(String(8), default="USD")
	amount = Column(Integer, default=0)  # центи

	start_date = Column(DateTime(timezone=True), nullable=True)
	created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
	updated_at = Column(
		DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
	)

	user = relationship("User", back_populates="subscription")
