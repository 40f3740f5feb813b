import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.core.dependencies import get_dodo_client, get_session
from app.schemas.payments import WebhookAck
from app.utils.dodo_client import DodoAPIError, DodoClient
from app.utils.service_subscription import SubscriptionService

logger = logging.getLogger("[PAYMENTS]")

SIGNATURE_HEADERS = ("webhook-signature", "dodo-signature")


# Webhook API (виклики від Dodo)
webhooks_router = APIRouter(prefix="/api/payments", tags=["Webhook API"])


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(request: Request, body: bytes) -> None:
    signature = next(
        (request.headers.get(h) for h in SIGNATURE_HEADERS if request.headers.get(h)),
        None,
    )
    secret = config.DODO_PAYMENTS_WEBHOOK_SECRET

    if not secret:
        # без секрету непідписані події приймаємо лише поза production
        if config.is_production:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Webhook secret is not configured",
            )
        return

    if not signature:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")

    # допускаємо префікси "sha256=" та "v1,"
    signature = signature.split("=", 1)[-1].split(",", 1)[-1].strip()
    if not hmac.compare_digest(signature, compute_signature(secret, body)):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")


@webhooks_router.post(
    "/webhook",
    summary="Webhook подій Dodo Payments",
    description="Підпис: HMAC-SHA256 hex від сирого тіла запиту.",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    responses={
        401: {
            "description": "Unauthorized.",
            "content": {
                "application/json": {
                    "example": {"detail": "Invalid signature"}
                },
            },
        },
        500: {
            "description": "Internal Server Error.",
            "content": {
                "application/json": {
                    "example": {"detail": "Webhook handler failed"}
                }
            },
        },
    },
)
async def payment_webhook(
        request: Request,
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    body = await request.body()
    verify_signature(request, body)

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    event_type = event.get("type") or event.get("event_type")
    data = event.get("data") or {}
    service = SubscriptionService(session, dodo)

    logger.info("Webhook event received: %s", event_type)

    try:
        if event_type == "payment.succeeded":
            await service.apply_payment_succeeded(data)
        elif event_type in ("subscription.active", "subscription.renewed"):
            await service.activate_from_webhook(data)
        elif event_type in ("subscription.cancelled", "subscription.expired"):
            subscription_id = data.get("subscription_id")
            if subscription_id:
                await service.mark_cancelled(subscription_id)
        else:
            logger.info("Unhandled webhook event: %s", event_type)
    except (SQLAlchemyError, DodoAPIError, ValueError):
        logger.exception("Webhook handler failed for %s", event_type)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed",
        )

    return WebhookAck(event=event_type)
