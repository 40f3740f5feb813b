import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user, get_provider_registry, get_session
from app.models import EnhancementTask, TaskStatus, TERMINAL_TASK_STATUSES, User
from app.schemas.tasks import (
    TaskCreateRequest, TaskDeleteResponse, TaskListResponse, TaskOut, TaskResponse
)
from app.utils.common import as_utc, utcnow
from app.utils.pricing import ENHANCEMENT_MODELS, calculate_task_credits
from app.utils.providers import ProviderError, ProviderRegistry, ProviderStatus
from app.utils.service_balance import CreditsService

logger = logging.getLogger("[TASKS]")


# Tasks API: покращення зображень
tasks_router = APIRouter(prefix="/api/tasks", tags=["Tasks API"])

TASK_NOT_FOUND_RESPONSE = {
    "description": "Not found.",
    "content": {
        "application/json": {
            "example": {"detail": "Task not found"}
        },
    },
}


async def apply_provider_status(
        session: AsyncSession,
        task: EnhancementTask,
        provider_status: ProviderStatus,
) -> EnhancementTask:
    """Переносить стан задачі у провайдера в рядок enhancement_tasks."""
    now = utcnow()

    if provider_status.status == "completed":
        task.status = TaskStatus.COMPLETED
        task.progress = 100
        task.enhanced_image_url = provider_status.output_url
        task.completed_at = now
        started = as_utc(task.started_at) or as_utc(task.created_at) or now
        task.processing_time = round((now - started).total_seconds(), 2)
        task.updated_at = now

        # кредити списуються один раз, ключ - id задачі
        model = ENHANCEMENT_MODELS.get(task.model_id)
        cost = calculate_task_credits(model, task.settings) if model else 0
        if cost > 0:
            deduction = await CreditsService(session).deduct_credits(
                task.user_id, cost, task.id, f"Image enhancement ({task.model_name or task.model_id})"
            )
            if deduction.success:
                task.credits_consumed = deduction.deducted
            else:
                logger.error(
                    "Task %s completed but credits could not be deducted: %s",
                    task.id, deduction.error
                )
        logger.info("Task %s completed in %ss", task.id, task.processing_time)

    elif provider_status.status == "failed":
        task.status = TaskStatus.FAILED
        task.error_message = provider_status.error or "Enhancement failed"
        task.failed_at = now
        task.updated_at = now
        logger.warning("Task %s failed: %s", task.id, task.error_message)

    else:
        task.status = TaskStatus.PROCESSING
        task.progress = max(task.progress or 0, provider_status.progress)
        task.updated_at = now

    await session.commit()
    return task


@tasks_router.post(
    "",
    summary="Створення задачі покращення зображення",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {
            "description": "Bad Request.",
            "content": {
                "application/json": {
                    "example": {"detail": "Unknown model: foo"}
                },
            },
        },
        402: {
            "description": "Payment Required.",
            "content": {
                "application/json": {
                    "example": {"detail": "Insufficient credits"}
                },
            },
        },
        502: {
            "description": "Bad Gateway.",
            "content": {
                "application/json": {
                    "example": {"detail": {"error": "Enhancement provider failed"}}
                },
            },
        },
    },
)
async def create_task(
        payload: TaskCreateRequest,
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        registry: ProviderRegistry = Depends(get_provider_registry),
):
    model = ENHANCEMENT_MODELS.get(payload.modelId)
    if model is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown model: {payload.modelId}",
        )

    cost = calculate_task_credits(model, payload.settings)
    if not await CreditsService(session).has_enough_credits(user.id, cost):
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="Insufficient credits",
        )

    now = utcnow()
    task = EnhancementTask(
        id=str(uuid.uuid4()),
        user_id=user.id,
        status=TaskStatus.PENDING,
        progress=0,
        original_image_url=payload.imageUrl,
        provider=model.provider,
        model_id=model.id,
        model_name=model.name,
        prompt=payload.prompt,
        settings=payload.settings,
        credits_consumed=0,
        created_at=now,
        updated_at=now,
    )
    session.add(task)
    await session.commit()

    try:
        provider = registry.get(model.provider)
        job_id = await provider.submit(model, payload.imageUrl, payload.prompt, payload.settings)
    except ProviderError as e:
        task.status = TaskStatus.FAILED
        task.error_message = e.message
        task.failed_at = utcnow()
        task.updated_at = task.failed_at
        await session.commit()
        logger.error("Task %s submission to %s failed: %s", task.id, e.provider, e.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Enhancement provider failed", "details": e.message, "taskId": task.id},
        )

    task.status = TaskStatus.PROCESSING
    task.job_id = job_id
    task.progress = 10
    task.started_at = utcnow()
    task.updated_at = task.started_at
    await session.commit()

    logger.info(
        "Task %s submitted to %s as %s (estimated %s credits)",
        task.id, model.provider, job_id, cost
    )
    return TaskResponse(task=TaskOut.model_validate(task))


@tasks_router.get(
    "/list",
    summary="Список задач користувача",
    response_model=TaskListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_tasks(
        task_status: Optional[str] = Query("all", alias="status"),
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    query = select(EnhancementTask).where(EnhancementTask.user_id == user.id)
    if task_status and task_status != "all":
        try:
            query = query.where(EnhancementTask.status == TaskStatus(task_status))
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid status: {task_status}",
            )

    total = (await session.execute(
        select(func.count()).select_from(query.subquery())
    )).scalar_one()

    result = await session.execute(
        query.order_by(EnhancementTask.created_at.desc()).offset(offset).limit(limit)
    )
    tasks = result.scalars().all()

    return TaskListResponse(
        tasks=[TaskOut.model_validate(t) for t in tasks],
        total=total,
        has_more=offset + len(tasks) < total,
    )


@tasks_router.get(
    "/{task_id}",
    summary="Статус задачі (клієнт опитує кожні ~3 с)",
    response_model=TaskResponse,
    status_code=status.HTTP_200_OK,
    responses={404: TASK_NOT_FOUND_RESPONSE},
)
async def get_task(
        task_id: str,
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        registry: ProviderRegistry = Depends(get_provider_registry),
):
    task = await session.get(EnhancementTask, task_id)
    if task is None or task.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    # термінальні стани не змінюються
    if task.status not in TERMINAL_TASK_STATUSES and task.job_id:
        try:
            provider_status = await registry.get(task.provider).get_status(task.job_id)
        except ProviderError as e:
            logger.warning("Polling task %s failed: %s", task.id, e.message)
        else:
            task = await apply_provider_status(session, task, provider_status)

    return TaskResponse(task=TaskOut.model_validate(task))


@tasks_router.delete(
    "/{task_id}",
    summary="Видалення задачі користувача",
    description="Записи списання кредитів у леджері залишаються.",
    response_model=TaskDeleteResponse,
    status_code=status.HTTP_200_OK,
    responses={404: TASK_NOT_FOUND_RESPONSE},
)
async def delete_task(
        task_id: str,
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    task = await session.get(EnhancementTask, task_id)
    if task is None or task.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")

    await session.delete(task)
    await session.commit()

    logger.info("Task %s deleted by user %s", task_id, user.id)
    return TaskDeleteResponse(taskId=task_id)
