from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class CreditBalance(BaseModel):
	total: int = 0
	used: int = 0
	remaining: int = 0
	expires_at: Optional[datetime] = None


class CreditHistoryItem(BaseModel):
	id: str
	amount: int
	type: str
	reason: str
	description: Optional[str] = None
	balance_before: int
	balance_after: int
	created_at: Optional[datetime] = None

	model_config = ConfigDict(from_attributes=True)

	@field_serializer("amount")
	def absolute_amount(self, v: int, _info):
		# напрямок вже у type (credit / debit)
		return abs(v)


class AllocationResult(BaseModel):
	allocated: bool
	duplicate: bool = False
	credits: int = 0
	transaction_id: str
	grant_id: Optional[str] = None


class DeductionResult(BaseModel):
	success: bool
	deducted: int = 0
	balance_after: Optional[int] = None
	duplicate: bool = False
	error: Optional[str] = None


# **************    Routes
class CreditsBalanceResponse(BaseModel):
	success: bool = True
	balance: CreditBalance


class CreditsHistoryResponse(BaseModel):
	success: bool = True
	history: List[CreditHistoryItem]


class CreditsDeductRequest(BaseModel):
	amount: Optional[int] = Field(None, gt=0)
	taskId: Optional[str] = None
	description: Optional[str] = None


class CreditsDeductResponse(BaseModel):
	success: bool = True
	deducted: int


class CreditPackageOut(BaseModel):
	credits: int
	price: int
	currency: str
	description: str
	bonus: int = 0
	configured: bool


class CreditPackageCatalog(BaseModel):
	packages: Dict[str, CreditPackageOut]
	customCreditsRate: int
	minCustomAmount: int
	maxCustomAmount: int


class CreditsPurchaseRequest(BaseModel):
	packageType: Optional[str] = None
	customAmount: Optional[float] = None


class CreditsPurchaseResponse(BaseModel):
	success: bool = True
	checkoutUrl: str
	paymentId: str
	purchaseId: str
	credits: int
	amount: int
	description: str
