import enum
import uuid

from sqlalchemy import (
	Column, Integer, Float, String, DateTime, ForeignKey, JSON, func,
	Enum as AlchemyEnum
)

from app.core.database import Base


class TaskStatus(enum.Enum):
	PENDING = "pending"
	PROCESSING = "processing"
	COMPLETED = "completed"
	FAILED = "failed"


TERMINAL_TASK_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED)


class EnhancementTask(Base):
	__tablename__ = "enhancement_tasks"

	id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
	user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
	status = Column(
		AlchemyEnum(
			TaskStatus, native_enum=False, length=16,
			values_callable=lambda e: [m.value for m in e]
		),
		nullable=False,
		default=TaskStatus.PENDING
	)
	progress = Column(Integer, default=0, nullable=False)

	original_image_url = Column(String, nullable=False)
	enhanced_image_url = Column(String, nullable=True)
	provider = Column(String(32), nullable=False)  # replicate / runninghub
	model_id = Column(String(64), nullable=False)
	model_name = Column(String, nullable=True)
	prompt = Column(String, nullable=True)
	settings = Column(JSON, default=dict)

	job_id = Column(String, nullable=True)  # id задачі у провайдера
	error_message = Column(String, nullable=True)
	processing_time = Column(Float, nullable=True)  # секунди
	credits_consumed = Column(Integer, default=0, nullable=False)

	created_at = Column(DateTime(timezone=True), server_default=func.now())
	updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
	started_at = Column(DateTime(timezone=True), nullable=True)
	completed_at = Column(DateTime(timezone=True), nullable=True)
	failed_at = Column(DateTime(timezone=True), nullable=True)
