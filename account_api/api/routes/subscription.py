"""Subscription endpoints: status, checkout, cancellation, history and webhooks."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from account_api.core.auth import CurrentUser, get_current_user, verify_api_key
from account_api.core.config import settings
from account_api.core.dependencies import get_subscription_service
from account_api.schemas.subscription import (
    CancelSubscriptionResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    ModelAccessResponse,
    PaymentHistoryResponse,
    ReconcileResponse,
    SubscriptionStatusResponse,
    WebhookAck,
)
from account_api.services.subscription_service import SubscriptionService

router = APIRouter(prefix="/subscription", tags=["Subscription"])

SubscriptionServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]
CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]


@router.get("/status", response_model=SubscriptionStatusResponse)
def subscription_status(
    user: CurrentUserDep, service: SubscriptionServiceDep
) -> SubscriptionStatusResponse:
    """Current plan of the caller; first access creates a free row."""

    return service.get_status(user.id)


@router.post("/create", response_model=CreateSubscriptionResponse)
async def create_subscription(
    payload: CreateSubscriptionRequest,
    user: CurrentUserDep,
    service: SubscriptionServiceDep,
) -> CreateSubscriptionResponse:
    """Start a paid checkout.

    The response carries the gateway URL the user must visit to approve the
    recurring payment. The local row stays ``pending`` until the gateway
    confirms payment through the webhook.
    """

    return await service.create(
        user.id,
        payload.plan_type,
        email=user.email or "",
        payment_method=payload.payment_method,
        name=user.name,
        phone=user.phone,
    )


@router.post("/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    user: CurrentUserDep, service: SubscriptionServiceDep
) -> CancelSubscriptionResponse:
    return await service.cancel(user.id)


@router.get("/history", response_model=PaymentHistoryResponse)
def payment_history(user: CurrentUserDep, service: SubscriptionServiceDep) -> PaymentHistoryResponse:
    return PaymentHistoryResponse(payments=service.payment_history(user.id))


@router.get("/models/{model_id}/access", response_model=ModelAccessResponse)
def model_access(
    model_id: str, user: CurrentUserDep, service: SubscriptionServiceDep
) -> ModelAccessResponse:
    """Whether the caller's plan allows chatting with ``model_id``."""

    return service.model_access(user.id, model_id)


@router.post("/webhook", response_model=WebhookAck)
async def subscription_webhook(request: Request, service: SubscriptionServiceDep) -> WebhookAck:
    """Receive a signed gateway event.

    The signature is computed over the raw body, so the body is read as
    bytes before any JSON decoding.
    """

    raw_body = await request.body()
    signature = request.headers.get(settings.billing.webhook_signature_header)
    return await service.handle_webhook(raw_body, signature)


@router.post("/paypal/webhook", response_model=WebhookAck)
async def paypal_webhook(request: Request, service: SubscriptionServiceDep) -> WebhookAck:
    """Receive a PayPal notification; PayPal itself confirms each delivery."""

    raw_body = await request.body()
    return await service.handle_paypal_webhook(raw_body, request.headers)


@router.post(
    "/reconcile",
    response_model=ReconcileResponse,
    dependencies=[Depends(verify_api_key)],
)
def reconcile_pending(service: SubscriptionServiceDep) -> ReconcileResponse:
    """Expire checkouts that were started but never confirmed."""

    return ReconcileResponse(expired=service.expire_abandoned_pending())
