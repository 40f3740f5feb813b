from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.credits import CreditBalance


class AdminGrantCredits(BaseModel):
	user_id: str
	amount: int = Field(..., gt=0)
	reason: str = "Admin grant"
	expires_in_days: Optional[int] = Field(None, gt=0)


class AdminGrantResponse(BaseModel):
	success: bool
	user_id: str
	granted: int
	transaction_id: str
	expires_at: Optional[datetime] = None
	balance: CreditBalance


class AdminExpireResponse(BaseModel):
	success: bool = True
	expired: int


class AdminUserCreditsResponse(BaseModel):
	user_id: str
	email: str
	balance: CreditBalance
