import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.core.dependencies import (
    get_current_user, get_checkout_store, get_dodo_client, get_session
)
from app.models import Payment, User
from app.schemas.payments import (
    CheckoutRequest, CheckoutResponse,
    CompletePaymentRequest, CompletePaymentResponse, PendingPaymentResponse,
    PaymentOut, PaymentStatusResponse,
)
from app.utils.common import resolve_base_url
from app.utils.dodo_client import DodoAPIError, DodoClient, DodoTimeoutError
from app.utils.pricing import get_plan
from app.utils.redis_cache import CheckoutMappingStore
from app.utils.service_subscription import SubscriptionService

logger = logging.getLogger("[PAYMENTS]")


# Payments API
payments_router = APIRouter(prefix="/api/payments", tags=["Payments API"])


@payments_router.post(
    "/checkout",
    summary="Створення checkout-сесії підписки у Dodo",
    response_model=CheckoutResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {
            "description": "Bad Request.",
            "content": {
                "application/json": {
                    "example": {"detail": "Invalid plan or billing period"}
                },
            },
        },
        408: {
            "description": "Request Timeout.",
            "content": {
                "application/json": {
                    "example": {"detail": "Payment provider timed out"}
                },
            },
        },
        502: {
            "description": "Bad Gateway.",
            "content": {
                "application/json": {
                    "example": {"detail": {"error": "Failed to create checkout session"}}
                },
            },
        },
    },
)
async def create_checkout(
        payload: CheckoutRequest,
        request: Request,
        user: User = Depends(get_current_user),
        dodo: DodoClient = Depends(get_dodo_client),
        checkout_store: CheckoutMappingStore = Depends(get_checkout_store),
):
    plan_config = get_plan(payload.plan)
    billing_period = (payload.billingPeriod or "").strip().lower()
    if plan_config is None or billing_period not in plan_config.periods:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid plan or billing period",
        )

    product_id = config.plan_product_id(plan_config.key, billing_period)
    if not product_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Payment product not configured",
                "message": f"No Dodo product configured for {plan_config.name} ({billing_period}).",
                "nextSteps": [
                    "Create Subscription products in your Dodo dashboard for each plan/period",
                    "Set DODO_*_PRODUCT_ID environment variables (e.g., DODO_CREATOR_MONTHLY_PRODUCT_ID)",
                    "Restart the server and try again",
                ],
            },
        )

    base_url = resolve_base_url(request)
    checkout_payload = {
        "product_cart": [{"product_id": product_id, "quantity": 1}],
        "customer": {"email": user.email, "name": user.name or user.email},
        "return_url": f"{base_url}/app/dashboard?payment=success",
        "metadata": {
            "userId": user.id,
            "plan": plan_config.key,
            "billingPeriod": billing_period,
            "type": "subscription",
            "credits": str(plan_config.credits),
            "user_email": user.email,
            "user_name": user.name or user.email,
            "cancel_url": f"{base_url}/?payment=cancelled#pricing-section",
        },
    }

    try:
        checkout = await asyncio.wait_for(
            dodo.create_checkout_session(checkout_payload),
            timeout=config.DODO_TIMEOUT_SECONDS,
        )
    except (asyncio.TimeoutError, DodoTimeoutError):
        logger.error("Dodo checkout timed out for user %s", user.id)
        raise HTTPException(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            detail="Payment provider timed out",
        )
    except DodoAPIError as e:
        if e.status_code == 401:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={
                    "error": "Payment provider authentication failed",
                    "message": "Check DODO_PAYMENTS_API_KEY and DODO_ENVIRONMENT.",
                },
            )
        if e.status_code == 404:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={
                    "error": "Payment product not found",
                    "message": f"Product {product_id} does not exist in this Dodo environment.",
                },
            )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to create checkout session", "details": e.message},
        )

    session_id = checkout.get("session_id") or checkout.get("id")
    checkout_url = checkout.get("checkout_url") or checkout.get("url")
    if not session_id or not checkout_url:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to create checkout session", "details": "Missing checkout URL"},
        )

    # best-effort: complete-флоу має запасне джерело plan/period
    await checkout_store.store(session_id, {
        "userId": user.id,
        "plan": plan_config.key,
        "billingPeriod": billing_period,
        "userEmail": user.email,
    })

    logger.info(
        "Created checkout session %s for user %s (%s %s)",
        session_id, user.id, plan_config.key, billing_period
    )
    return CheckoutResponse(checkoutUrl=checkout_url, sessionId=session_id)


@payments_router.post(
    "/complete",
    summary="Підтвердження оплати підписки після повернення з checkout",
    description="Ідемпотентно: повторні виклики не нараховують кредити двічі.",
    response_model=CompletePaymentResponse,
    status_code=status.HTTP_200_OK,
    responses={
        202: {"model": PendingPaymentResponse, "description": "Payment not confirmed yet."},
        403: {
            "description": "Forbidden.",
            "content": {
                "application/json": {
                    "example": {"detail": "Unable to verify subscription ownership"}
                },
            },
        },
        404: {
            "description": "Not found.",
            "content": {
                "application/json": {
                    "example": {"detail": "Subscription not found"}
                },
            },
        },
    },
)
async def complete_payment(
        payload: CompletePaymentRequest,
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
        checkout_store: CheckoutMappingStore = Depends(get_checkout_store),
):
    service = SubscriptionService(session, dodo, checkout_store)
    result = await service.complete(
        user, payload.subscription_id, payload.payment_id, payload.session_id
    )
    if isinstance(result, PendingPaymentResponse):
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED, content=result.model_dump()
        )
    return result


@payments_router.get(
    "/status",
    summary="Статус платежу (Dodo, з запасним локальним записом)",
    response_model=PaymentStatusResponse,
    status_code=status.HTTP_200_OK,
    responses={
        404: {
            "description": "Not found.",
            "content": {
                "application/json": {
                    "example": {"detail": "Payment not found"}
                },
            },
        },
    },
)
async def payment_status(
        payment_id: str = Query(..., min_length=1),
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    result = await session.execute(
        select(Payment).where(
            Payment.dodo_payment_id == payment_id,
            Payment.user_id == user.id,
        )
    )
    local = result.scalar_one_or_none()

    vendor = None
    try:
        vendor = await dodo.get_payment(payment_id)
    except DodoAPIError as e:
        logger.warning("Vendor status lookup failed for %s: %s", payment_id, e.message)

    if vendor is not None:
        owner = (vendor.get("metadata") or {}).get("userId")
        if owner and owner != user.id:
            vendor = None

    local_out = PaymentOut.model_validate(local) if local is not None else None
    if vendor is not None:
        return PaymentStatusResponse(
            payment_id=payment_id,
            status=vendor.get("status") or "unknown",
            amount=vendor.get("total_amount"),
            currency=vendor.get("currency"),
            source="vendor",
            payment=local_out,
        )
    if local is not None:
        return PaymentStatusResponse(
            payment_id=payment_id,
            status=local.status,
            amount=local.amount,
            currency=local.currency,
            source="local",
            payment=local_out,
        )
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
