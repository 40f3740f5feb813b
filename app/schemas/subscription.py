from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from app.schemas.credits import AllocationResult, CreditBalance


class SubscriptionOut(BaseModel):
	plan: str
	billing_period: str
	status: str
	dodo_subscription_id: Optional[str] = None
	next_billing_date: Optional[datetime] = None
	currency: Optional[str] = None
	amount: Optional[int] = None
	start_date: Optional[datetime] = None
	updated_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)


class UserSubscriptionResponse(BaseModel):
	has_active_subscription: bool
	current_plan: str
	subscription: Optional[SubscriptionOut] = None


class SubscriptionActionResponse(BaseModel):
	success: bool = True
	message: str
	subscription: SubscriptionOut


class ChangePlanRequest(BaseModel):
	plan: str
	billingPeriod: str = "monthly"


class ChangePlanResponse(BaseModel):
	success: bool = True
	subscription: SubscriptionOut
	credits: Optional[AllocationResult] = None
	creditDelta: int = 0


class UserOut(BaseModel):
	id: str
	email: str
	name: Optional[str] = None

	model_config = ConfigDict(from_attributes=True)


class UserMeResponse(BaseModel):
	user: UserOut
	balance: CreditBalance
	subscription: UserSubscriptionResponse
