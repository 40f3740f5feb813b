from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class TaskCreateRequest(BaseModel):
	imageUrl: str = Field(..., min_length=1)
	modelId: str
	prompt: Optional[str] = None
	settings: Dict[str, Any] = Field(default_factory=dict)


class TaskOut(BaseModel):
	# у відповіді - camelCase, як очікує клієнт
	model_config = ConfigDict(
		from_attributes=True, alias_generator=to_camel, populate_by_name=True
	)

	id: str
	status: str
	progress: int = 0
	original_image_url: str
	enhanced_image_url: Optional[str] = None
	provider: str
	model_id: str
	model_name: Optional[str] = None
	prompt: Optional[str] = None
	settings: Optional[Dict[str, Any]] = None
	job_id: Optional[str] = None
	error_message: Optional[str] = None
	processing_time: Optional[float] = None
	credits_consumed: int = 0
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None
	failed_at: Optional[datetime] = None

	@field_validator("status", mode="before")
	@classmethod
	def status_value(cls, v):
		return getattr(v, "value", v)


class TaskResponse(BaseModel):
	success: bool = True
	task: TaskOut


class TaskListResponse(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	tasks: List[TaskOut]
	total: int
	has_more: bool


class TaskDeleteResponse(BaseModel):
	success: bool = True
	taskId: str
