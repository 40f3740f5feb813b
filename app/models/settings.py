import enum
from sqlalchemy import (
	Column, String, DateTime, func, JSON, Enum as AlchemyEnum
)

from app.core.database import Base


# AdminLog модель зберігає зміни, що зроблено Admin у DB
class AdminOperationType(enum.Enum):
	GRANT_CREDITS = "grant_credits"
	EXPIRE_CREDITS = "expire_credits"


class AdminLog(Base):
	__tablename__ = "admin_log"

	id = Column(String, primary_key=True)
	operation_type = Column(
		AlchemyEnum(AdminOperationType, native_enum=False, length=32),
		nullable=False
	)
	entity = Column(String, nullable=False)  # object: "CreditGrant", ...
	entity_id = Column(String, nullable=True)  # object_id: ID (якщо є)
	changes = Column(JSON, nullable=False)  # {"amount": 500, "reason": "support"}
	created_at = Column(DateTime(timezone=True), server_default=func.now())
