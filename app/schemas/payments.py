from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.schemas.credits import AllocationResult


class CheckoutRequest(BaseModel):
	plan: str
	billingPeriod: str = "monthly"


class CheckoutResponse(BaseModel):
	success: bool = True
	checkoutUrl: str
	sessionId: str


class CompletePaymentRequest(BaseModel):
	# браузер повертається з різними назвами параметрів
	subscription_id: Optional[str] = Field(
		None, validation_alias=AliasChoices("subscriptionId", "subscription_id")
	)
	payment_id: Optional[str] = Field(
		None, validation_alias=AliasChoices("paymentId", "payment_id")
	)
	session_id: Optional[str] = Field(
		None, validation_alias=AliasChoices("sessionId", "session_id")
	)


class SubscriptionSummary(BaseModel):
	id: str
	status: str
	plan: str
	billingPeriod: str
	next_billing_date: Optional[datetime] = None
	cancel_at_next_billing_date: bool = False


class CompletePaymentResponse(BaseModel):
	success: bool = True
	subscription: SubscriptionSummary
	credits: AllocationResult


class PendingPaymentResponse(BaseModel):
	success: bool = False
	pending: bool = True
	status: str
	message: str


class PaymentOut(BaseModel):
	id: str
	dodo_payment_id: str
	amount: int
	currency: Optional[str] = None
	status: str
	payment_method: Optional[str] = None
	plan: Optional[str] = None
	billing_period: Optional[str] = None
	paid_at: Optional[datetime] = None
	created_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class PaymentStatusResponse(BaseModel):
	success: bool = True
	payment_id: str
	status: str
	amount: Optional[int] = None
	currency: Optional[str] = None
	source: str  # vendor / local
	payment: Optional[PaymentOut] = None


class PaymentsListResponse(BaseModel):
	success: bool = True
	payments: List[PaymentOut]


class InvoiceOut(BaseModel):
	id: str
	amount: int = 0
	currency: Optional[str] = None
	status: Optional[str] = None
	date: Optional[datetime] = None
	invoice_url: Optional[str] = None


class InvoicesResponse(BaseModel):
	success: bool = True
	invoices: List[InvoiceOut]
	source: str  # vendor / local


class WebhookAck(BaseModel):
	received: bool = True
	event: Optional[str] = None
