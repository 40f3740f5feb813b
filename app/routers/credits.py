import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import config
from app.core.dependencies import (
    get_current_user, get_credits_service, get_dodo_client, get_session
)
from app.models import CreditPurchase, User
from app.schemas.credits import (
    CreditsBalanceResponse, CreditsHistoryResponse,
    CreditsDeductRequest, CreditsDeductResponse,
    CreditPackageCatalog, CreditPackageOut,
    CreditsPurchaseRequest, CreditsPurchaseResponse,
)
from app.utils.common import resolve_base_url, utcnow
from app.utils.dodo_client import DodoAPIError, DodoClient, DodoTimeoutError
from app.utils.pricing import (
    CREDIT_PACKAGES, CUSTOM_CREDITS_RATE, MIN_CUSTOM_AMOUNT, MAX_CUSTOM_AMOUNT
)
from app.utils.service_balance import CreditsService
from app.utils.service_subscription import get_user_subscription, is_subscription_active

logger = logging.getLogger("[CREDITS]")

# Dodo вимагає billing-адресу; реальну клієнт вводить на сторінці checkout
DEFAULT_BILLING_ADDRESS = {
    "city": "San Francisco",
    "country": "US",
    "state": "CA",
    "street": "123 Main St",
    "zipcode": "94105",
}


# Credits API
credits_router = APIRouter(prefix="/api/credits", tags=["Credits API"])

UNAUTHORIZED_RESPONSE = {
    "description": "Unauthorized.",
    "content": {
        "application/json": {
            "example": {"detail": "Authentication required"}
        },
    },
}


@credits_router.get(
    "/balance",
    summary="Поточний баланс кредитів користувача",
    description="Баланс перераховується з леджера при кожному запиті.",
    response_model=CreditsBalanceResponse,
    status_code=status.HTTP_200_OK,
    responses={401: UNAUTHORIZED_RESPONSE},
)
async def get_balance(
        user: User = Depends(get_current_user),
        service: CreditsService = Depends(get_credits_service),
):
    balance = await service.get_user_credits(user.id)
    return CreditsBalanceResponse(balance=balance)


@credits_router.get(
    "/history",
    summary="Історія операцій з кредитами",
    response_model=CreditsHistoryResponse,
    status_code=status.HTTP_200_OK,
    responses={401: UNAUTHORIZED_RESPONSE},
)
async def get_history(
        limit: int = Query(50, description="1..100"),
        user: User = Depends(get_current_user),
        service: CreditsService = Depends(get_credits_service),
):
    history = await service.get_credit_history(user.id, limit)
    return CreditsHistoryResponse(history=history)


@credits_router.post(
    "/deduct",
    summary="Списання кредитів за задачу",
    response_model=CreditsDeductResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {
            "description": "Bad Request.",
            "content": {
                "application/json": {
                    "example": {"detail": "Insufficient credits"}
                },
            },
        },
        401: UNAUTHORIZED_RESPONSE,
    },
)
async def deduct_credits(
        payload: CreditsDeductRequest,
        user: User = Depends(get_current_user),
        service: CreditsService = Depends(get_credits_service),
):
    if not payload.amount or not payload.taskId:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="amount and taskId are required",
        )

    result = await service.deduct_credits(
        user.id,
        payload.amount,
        payload.taskId,
        payload.description or f"Credits used for task {payload.taskId}",
    )
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.error or "Failed to deduct credits",
        )
    return CreditsDeductResponse(deducted=result.deducted)


@credits_router.get(
    "/purchase",
    summary="Каталог пакетів кредитів",
    response_model=CreditPackageCatalog,
    status_code=status.HTTP_200_OK,
)
async def get_packages():
    packages = {
        key: CreditPackageOut(
            credits=package.credits,
            price=package.price,
            currency=package.currency,
            description=package.description,
            bonus=package.bonus,
            configured=config.package_product_id(key) is not None,
        )
        for key, package in CREDIT_PACKAGES.items()
    }
    return CreditPackageCatalog(
        packages=packages,
        customCreditsRate=CUSTOM_CREDITS_RATE,
        minCustomAmount=MIN_CUSTOM_AMOUNT,
        maxCustomAmount=MAX_CUSTOM_AMOUNT,
    )


@credits_router.post(
    "/purchase",
    summary="Купівля пакету кредитів (разовий платіж Dodo)",
    description="Доступно лише з активною підпискою.",
    response_model=CreditsPurchaseResponse,
    status_code=status.HTTP_200_OK,
    responses={
        400: {
            "description": "Bad Request.",
            "content": {
                "application/json": {
                    "example": {"detail": "Invalid package type"}
                },
            },
        },
        401: UNAUTHORIZED_RESPONSE,
        403: {
            "description": "Forbidden.",
            "content": {
                "application/json": {
                    "example": {"detail": "An active subscription is required to purchase credits"}
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
    },
)
async def purchase_credits(
        payload: CreditsPurchaseRequest,
        request: Request,
        user: User = Depends(get_current_user),
        session: AsyncSession = Depends(get_session),
        dodo: DodoClient = Depends(get_dodo_client),
):
    # поповнення лише для користувачів з діючим планом
    subscription = await get_user_subscription(session, user.id)
    if not is_subscription_active(subscription):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="An active subscription is required to purchase credits",
        )

    if not payload.packageType and payload.customAmount is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="packageType or customAmount is required",
        )

    if payload.customAmount is not None:
        if not MIN_CUSTOM_AMOUNT <= payload.customAmount <= MAX_CUSTOM_AMOUNT:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Custom amount must be between ${MIN_CUSTOM_AMOUNT} and ${MAX_CUSTOM_AMOUNT}",
            )
        # Dodo бере ціну з продукту; довільна сума потребує окремого продукту
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Custom credit amounts require a one-time product and are not available yet",
        )

    package = CREDIT_PACKAGES.get(payload.packageType)
    if package is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid package type",
        )

    product_id = config.package_product_id(package.key)
    if not product_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "Credits purchase is not configured yet.",
                "nextSteps": (
                    "Create one-time products in Dodo for each credits package and set "
                    f"DODO_CREDITS_{package.key.upper()}_PRODUCT_ID."
                ),
            },
        )

    base_url = resolve_base_url(request)
    credits = package.total_credits
    payment_payload = {
        "billing": DEFAULT_BILLING_ADDRESS,
        "customer": {"email": user.email, "name": user.name or user.email},
        "product_cart": [{"product_id": product_id, "quantity": 1}],
        "payment_link": True,
        "return_url": f"{base_url}/app/dashboard?payment=success&type=credits",
        "metadata": {
            "userId": user.id,
            "type": "credit_purchase",
            "credits": str(credits),
            "packageType": package.key,
            "description": package.description,
        },
    }

    try:
        payment = await asyncio.wait_for(
            dodo.create_payment(payment_payload), timeout=config.DODO_TIMEOUT_SECONDS
        )
    except (asyncio.TimeoutError, DodoTimeoutError):
        logger.error("Dodo payment creation timed out for user %s", user.id)
        raise HTTPException(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            detail="Payment provider timed out",
        )
    except DodoAPIError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to create credit purchase", "details": e.message},
        )

    purchase = CreditPurchase(
        id=str(uuid.uuid4()),
        user_id=user.id,
        package_type=package.key,
        status="pending",
        credits=credits,
        amount=package.price * 100,
        currency=package.currency,
        description=package.description,
        dodo_payment_id=payment.get("payment_id"),
        checkout_url=payment.get("payment_link"),
        product_id=product_id,
        created_at=utcnow(),
        updated_at=utcnow(),
    )
    session.add(purchase)
    await session.commit()

    logger.info(
        "Created credit purchase %s for user %s (%s credits)",
        purchase.id, user.id, credits
    )

    return CreditsPurchaseResponse(
        checkoutUrl=purchase.checkout_url or "",
        paymentId=purchase.dodo_payment_id or "",
        purchaseId=purchase.id,
        credits=credits,
        amount=package.price,
        description=package.description,
    )
