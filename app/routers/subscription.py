import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.core.dependencies import get_current_user, get_dodo_client, get_session
from app.models import Payment, Subscription, User
from app.schemas.payments import (
    InvoiceOut, InvoicesResponse, PaymentOut, PaymentsListResponse
)
from app.schemas.subscription import (
    ChangePlanRequest, ChangePlanResponse,
    SubscriptionActionResponse, SubscriptionOut,
    UserMeResponse, UserOut, UserSubscriptionResponse,
)
from app.utils.common import as_utc, compute_period_end, parse_datetime, utcnow
from app.utils.dodo_client import DodoAPIError, DodoClient
from app.utils.pricing import get_plan
from app.utils.service_balance import CreditsService
from app.utils.service_subscription import get_user_subscription, is_subscription_active

logger = logging.getLogger("[PAYMENTS]")

INVOICE_LIMIT = 10


# User API: підписка, платежі, профіль
user_router = APIRouter(prefix="/api/user", tags=["User API"])

NOT_FOUND_RESPONSE = {
    "description": "Not found.",
    "content": {
        "application/json": {
            "example": {"detail": "No active subscription found"}
        },
    },
}


def subscription_summary(row: Optional[Subscription]) -> UserSubscriptionResponse:
    active = is_subscription_active(row)
    return UserSubscriptionResponse(
        has_active_subscription=active,
        current_plan=row.plan if active else "free",
        subscription=SubscriptionOut.model_validate(row) if row is not None else None,
    )


@user_router.get(
    "/subscription",
    summary="Поточна підписка користувача",
    response_model=UserSubscriptionResponse,
    status_code=status.HTTP_200_OK,
)
async def get_subscription(
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    row = await get_user_subscription(session, user.id)
    return subscription_summary(row)


@user_router.post(
    "/subscription/cancel",
    summary="Скасування підписки в кінці періоду",
    response_model=SubscriptionActionResponse,
    status_code=status.HTTP_200_OK,
    responses={404: NOT_FOUND_RESPONSE},
)
async def cancel_subscription(
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    row = await get_user_subscription(session, user.id)
    if row is None or row.status not in ("active", "trialing"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found")
    if not row.dodo_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subscription is not linked to the payment provider",
        )

    try:
        await dodo.update_subscription(
            row.dodo_subscription_id, {"cancel_at_next_billing_date": True}
        )
    except DodoAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to cancel subscription", "details": e.message},
        )

    # доступ зберігається до кінця оплаченого періоду
    row.status = "pending_cancellation"
    row.updated_at = utcnow()
    await session.commit()

    logger.info("Subscription %s set to cancel at period end", row.dodo_subscription_id)
    return SubscriptionActionResponse(
        message="Subscription will be cancelled at the end of the billing period",
        subscription=SubscriptionOut.model_validate(row),
    )


@user_router.post(
    "/subscription/reactivate",
    summary="Відновлення підписки, скасованої на кінець періоду",
    response_model=SubscriptionActionResponse,
    status_code=status.HTTP_200_OK,
    responses={404: NOT_FOUND_RESPONSE},
)
async def reactivate_subscription(
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    row = await get_user_subscription(session, user.id)
    if row is None or row.status != "pending_cancellation":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No subscription pending cancellation found",
        )
    if not row.dodo_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subscription is not linked to the payment provider",
        )

    try:
        await dodo.update_subscription(
            row.dodo_subscription_id, {"cancel_at_next_billing_date": False}
        )
    except DodoAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to reactivate subscription", "details": e.message},
        )

    row.status = "active"
    row.updated_at = utcnow()
    await session.commit()

    logger.info("Subscription %s reactivated", row.dodo_subscription_id)
    return SubscriptionActionResponse(
        message="Subscription reactivated",
        subscription=SubscriptionOut.model_validate(row),
    )


@user_router.post(
    "/subscription/change-plan",
    summary="Зміна тарифного плану з пропорційним донарахуванням кредитів",
    response_model=ChangePlanResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {
            "description": "Bad Request.",
            "content": {
                "application/json": {
                    "example": {"detail": "Daily plans cannot be used for plan changes"}
                },
            },
        },
        404: NOT_FOUND_RESPONSE,
    },
)
async def change_plan(
        payload: ChangePlanRequest,
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    billing_period = (payload.billingPeriod or "").strip().lower()
    plan_config = get_plan(payload.plan)
    if billing_period == "daily" or (plan_config and "daily" in plan_config.periods):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Daily plans cannot be used for plan changes",
        )
    if plan_config is None or billing_period not in plan_config.periods:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid plan or billing period",
        )

    row = await get_user_subscription(session, user.id)
    if row is None or row.status not in ("active", "trialing", "pending_cancellation"):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active subscription found")
    if not row.dodo_subscription_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Subscription is not linked to the payment provider",
        )

    period_end = as_utc(row.next_billing_date)
    if period_end is not None and period_end <= utcnow():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current billing period has ended; renew before changing plan",
        )

    product_id = config.plan_product_id(plan_config.key, billing_period)
    if not product_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Payment product not configured",
                "message": f"No Dodo product configured for {plan_config.name} ({billing_period}).",
            },
        )

    subscription_id = row.dodo_subscription_id
    try:
        await dodo.change_plan(subscription_id, product_id)
    except DodoAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to change plan", "details": e.message},
        )

    cancel_at_next_billing = row.status == "pending_cancellation"
    try:
        vendor_after = await dodo.get_subscription(subscription_id)
        cancel_at_next_billing = bool(vendor_after.get("cancel_at_next_billing_date"))
    except DodoAPIError:
        logger.warning("Could not refresh subscription %s after plan change", subscription_id)

    row.plan = plan_config.key
    row.billing_period = billing_period
    row.status = "pending_cancellation" if cancel_at_next_billing else "active"
    row.updated_at = utcnow()
    await session.commit()

    credits_service = CreditsService(session)
    # донараховуємо різницю між новим планом і вже виданими за підписку кредитами
    already_granted = await credits_service.active_subscription_credits(user.id, subscription_id)
    delta = plan_config.credits - already_granted
    allocation = None
    if delta > 0:
        expires_at = period_end or compute_period_end(billing_period)
        allocation = await credits_service.allocate_subscription_credits(
            user_id=user.id,
            plan=plan_config.key,
            billing_period=billing_period,
            subscription_id=subscription_id,
            transaction_id=f"sub_change_{subscription_id}_{expires_at.date().isoformat()}_{product_id}",
            credits=delta,
            expires_at=expires_at,
            description=f"Plan change to {plan_config.name} ({billing_period})",
        )

    logger.info(
        "User %s changed plan to %s %s, credit delta %s",
        user.id, plan_config.key, billing_period, delta
    )
    return ChangePlanResponse(
        subscription=SubscriptionOut.model_validate(row),
        credits=allocation,
        creditDelta=max(0, delta),
    )


@user_router.get(
    "/payments",
    summary="Історія платежів користувача",
    response_model=PaymentsListResponse,
    status_code=status.HTTP_200_OK,
)
async def list_payments(
        limit: int = Query(20, ge=1, le=100),
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    result = await session.execute(
        select(Payment)
        .where(Payment.user_id == user.id)
        .order_by(Payment.created_at.desc())
        .limit(limit)
    )
    payments = result.scalars().all()
    return PaymentsListResponse(payments=[PaymentOut.model_validate(p) for p in payments])


def vendor_invoice(payment: dict) -> InvoiceOut:
    return InvoiceOut(
        id=payment.get("payment_id") or payment.get("id") or "",
        amount=payment.get("total_amount") or payment.get("amount") or 0,
        currency=payment.get("currency"),
        status=payment.get("status"),
        date=parse_datetime(payment.get("created_at")),
        invoice_url=payment.get("receipt_url") or payment.get("invoice_url"),
    )


def local_invoice(payment: Payment) -> InvoiceOut:
    info = payment.info or {}
    return InvoiceOut(
        id=payment.dodo_payment_id,
        amount=payment.amount,
        currency=payment.currency,
        status=payment.status,
        date=payment.paid_at or payment.created_at,
        invoice_url=info.get("receipt_url") or info.get("invoice_url"),
    )


@user_router.get(
    "/invoices",
    summary="Рахунки користувача (з Dodo, або з локальних платежів)",
    description="Якщо Dodo недоступний, повертаються записи з таблиці payments.",
    response_model=InvoicesResponse,
    status_code=status.HTTP_200_OK,
)
async def list_invoices(
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    row = await get_user_subscription(session, user.id)
    if row is not None and row.dodo_customer_id:
        try:
            payments = await asyncio.wait_for(
                dodo.list_customer_payments(row.dodo_customer_id, page_size=INVOICE_LIMIT),
                timeout=config.DODO_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, DodoAPIError):
            logger.warning(
                "Invoice fetch for customer %s failed, using local payments",
                row.dodo_customer_id, exc_info=True
            )
        else:
            return InvoicesResponse(
                invoices=[vendor_invoice(p) for p in payments], source="vendor"
            )

    result = await session.execute(
        select(Payment)
        .where(Payment.user_id == user.id)
        .order_by(Payment.created_at.desc())
        .limit(INVOICE_LIMIT)
    )
    return InvoicesResponse(
        invoices=[local_invoice(p) for p in result.scalars().all()], source="local"
    )


@user_router.get(
    "/me",
    summary="Профіль, баланс і підписка користувача",
    response_model=UserMeResponse,
    status_code=status.HTTP_200_OK,
)
async def get_me(
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
):
    row = await get_user_subscription(session, user.id)
    balance = await CreditsService(session).get_user_credits(user.id)
    return UserMeResponse(
        user=UserOut.model_validate(user),
        balance=balance,
        subscription=subscription_summary(row),
    )
