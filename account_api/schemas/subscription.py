"""Pydantic schemas for subscriptions, payments and gateway webhooks."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PlanType(str, Enum):
    FREE = "free"
    PRO_MONTHLY = "pro_monthly"
    PRO_YEARLY = "pro_yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PENDING = "pending"
    PAYMENT_DUE = "payment_due"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class WebhookEventType(str, Enum):
    """Gateway events understood by the webhook endpoint."""

    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    PAYMENT_SUCCESS = "payment.success"
    PAYMENT_FAILED = "payment.failed"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"
    MANDATE_CREATED = "mandate.created"
    MANDATE_REVOKED = "mandate.revoked"


PRO_PLANS = frozenset({PlanType.PRO_MONTHLY, PlanType.PRO_YEARLY})

# Free users may only pick these models; pro users may pick any.
FREE_PLAN_MODELS = frozenset({"nvidia-deepseek-r1", "qwen-3-32b", "gpt-oss-120b"})


def _new_id() -> str:
    return str(uuid.uuid4())


class Subscription(BaseModel):
    """One subscription row per user."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    plan_type: PlanType = PlanType.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    payment_gateway: str | None = None
    subscription_id: str | None = None
    mandate_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    next_billing_date: datetime | None = None
    amount_inr: int | None = None
    last_payment_date: datetime | None = None
    last_payment_status: str | None = None
    payment_retry_count: int = Field(0, ge=0)
    payment_due_date: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = Field(0, ge=0)


class PaymentHistory(BaseModel):
    """Append-only ledger row for one payment attempt."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    subscription_id: str | None = None
    transaction_id: str | None = None
    gateway_payment_id: str | None = None
    amount_inr: int = 0
    currency: str = "INR"
    status: PaymentStatus
    payment_method: str | None = None
    gateway_response: dict[str, Any] | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None


class WebhookEvent(BaseModel):
    """Gateway webhook payload after the event type has been recognised."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: WebhookEventType
    subscription_id: str
    mandate_id: str | None = None
    transaction_id: str | None = None
    amount: int | None = Field(None, description="Amount in paisa.")
    status: str | None = None
    timestamp: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class CreateSubscriptionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    plan_type: str = Field(..., description="pro_monthly or pro_yearly.")
    payment_method: str | None = Field(
        None, description="Gateway to check out with (payin or paypal)."
    )


class CreateSubscriptionResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    payment_method: str
    payment_url: str
    subscription_id: str | None = None


class CancelSubscriptionResponse(BaseModel):
    success: bool
    message: str


class SubscriptionStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    subscription: Subscription
    is_pro: bool = Field(..., alias="isPro")


class PaymentHistoryResponse(BaseModel):
    payments: list[PaymentHistory]


class ModelAccessResponse(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, protected_namespaces=()
    )

    model_id: str
    allowed: bool
    is_pro: bool


class WebhookAck(BaseModel):
    received: bool = True
    duplicate: bool = False
    ignored: bool = False


class ReconcileResponse(BaseModel):
    expired: int
