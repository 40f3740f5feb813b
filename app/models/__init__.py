from app.models.user import User, AuthSession
from app.models.credits import (
	CreditGrant, CreditGrantType, CreditTransaction, CreditTransactionType
)
from app.models.subscription import Subscription, ACTIVE_LIKE_STATUSES
from app.models.payment import Payment, CreditPurchase
from app.models.task import EnhancementTask, TaskStatus, TERMINAL_TASK_STATUSES
from app.models.settings import AdminLog, AdminOperationType
