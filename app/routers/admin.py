import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import access_admin, get_session
from app.models.settings import AdminLog, AdminOperationType
from app.schemas.admin import (
    AdminExpireResponse, AdminGrantCredits, AdminGrantResponse, AdminUserCreditsResponse
)
from app.utils.common import user_existing_check, utcnow
from app.utils.logging import generate_admin_log_id, get_extra_data_log
from app.utils.service_balance import CreditsService

logger = logging.getLogger("[ADMIN]")


# Admin API
admin_router = APIRouter(prefix="/api/admin", tags=["Admin API"])

FORBIDDEN_RESPONSE = {
    "description": "Forbidden.",
    "content": {
        "application/json": {
            "example": {"detail": "Invalid admin token."}
        },
    },
}
USER_NOT_FOUND_RESPONSE = {
    "description": "Not found.",
    "content": {
        "application/json": {
            "example": {"detail": "User 'user_111' not found."}
        },
    },
}


@admin_router.post(
    "/credits/grant",
    dependencies=[Depends(access_admin)],
    summary="Нарахування бонусних кредитів користувачу",
    description="Доступ лише для адміністратора. Headers: X-Admin-Token",
    response_model=AdminGrantResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_RESPONSE, 404: USER_NOT_FOUND_RESPONSE},
)
async def grant_credits(
        payload: AdminGrantCredits,
        session: AsyncSession = Depends(get_session)
):
    # перевірка user існує? як що ні: Exception
    await user_existing_check(session, payload.user_id)

    expires_at = None
    if payload.expires_in_days:
        expires_at = utcnow() + timedelta(days=payload.expires_in_days)

    service = CreditsService(session)
    allocation = await service.grant_bonus_credits(
        payload.user_id, payload.amount, payload.reason, expires_at
    )
    balance = await service.get_user_credits(payload.user_id)

    # create new AdminLog
    operation_type = AdminOperationType.GRANT_CREDITS.value
    new_admin_log = AdminLog(
        id=generate_admin_log_id(operation_type),
        operation_type=operation_type.upper(),
        entity="CreditGrant",
        entity_id=allocation.grant_id,
        changes={
            "success": allocation.allocated,
            "user_id": payload.user_id,
            "amount": payload.amount,
            "reason": payload.reason,
            "expires_at": expires_at.isoformat() if expires_at else None,
        },
        created_at=utcnow(),
    )

    session.add(new_admin_log)
    await session.flush()

    logger.info(
        "Granted bonus credits. AdminLog:", extra=get_extra_data_log(new_admin_log)
    )
    await session.commit()

    return AdminGrantResponse(
        success=allocation.allocated,
        user_id=payload.user_id,
        granted=allocation.credits,
        transaction_id=allocation.transaction_id,
        expires_at=expires_at,
        balance=balance,
    )


@admin_router.post(
    "/credits/expire",
    dependencies=[Depends(access_admin)],
    summary="Деактивація прострочених нарахувань кредитів",
    description="Доступ лише для адміністратора. Headers: X-Admin-Token",
    response_model=AdminExpireResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_RESPONSE},
)
async def expire_credits(session: AsyncSession = Depends(get_session)):
    expired = await CreditsService(session).expire_old_credits()

    # create new AdminLog
    operation_type = AdminOperationType.EXPIRE_CREDITS.value
    new_admin_log = AdminLog(
        id=generate_admin_log_id(operation_type),
        operation_type=operation_type.upper(),
        entity="CreditGrant",
        entity_id=None,
        changes={"success": True, "expired": expired},
        created_at=utcnow(),
    )

    session.add(new_admin_log)
    await session.flush()

    logger.info(
        "Expired old credit grants. AdminLog:", extra=get_extra_data_log(new_admin_log)
    )
    await session.commit()
    return AdminExpireResponse(expired=expired)


@admin_router.get(
    "/users/{user_id}/credits",
    dependencies=[Depends(access_admin)],
    summary="Баланс кредитів користувача",
    description="Доступ лише для адміністратора. Headers: X-Admin-Token",
    response_model=AdminUserCreditsResponse,
    status_code=status.HTTP_200_OK,
    responses={403: FORBIDDEN_RESPONSE, 404: USER_NOT_FOUND_RESPONSE},
)
async def get_user_credits(
        user_id: str,
        session: AsyncSession = Depends(get_session)
):
    user = await user_existing_check(session, user_id)
    balance = await CreditsService(session).get_user_credits(user_id)
    return AdminUserCreditsResponse(user_id=user.id, email=user.email, balance=balance)
