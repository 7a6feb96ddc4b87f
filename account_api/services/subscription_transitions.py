"""Pure subscription state transitions.

Each function takes the current row plus an instant and returns the new row
(and, for payment events, the ledger row to append). Nothing here touches the
store or a gateway, so the whole lifecycle can be unit tested with values:

    pending --payment.success--> active --payment.failed--> payment_due
    payment_due --payment.failed (retries exhausted)--> expired
    active | payment_due --cancel / subscription.cancelled--> cancelled
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from account_api.schemas.subscription import (
    FREE_PLAN_MODELS,
    PRO_PLANS,
    PaymentHistory,
    PaymentStatus,
    PlanType,
    Subscription,
    SubscriptionStatus,
    WebhookEvent,
    WebhookEventType,
)
from account_api.utils.billing_dates import add_grace_period, next_billing_date

# Pro access is kept while a failed payment is being retried.
PRO_ACCESS_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.PAYMENT_DUE})


@dataclass(frozen=True)
class BillingPolicy:
    grace_period_days: int = 3
    max_payment_retries: int = 3


@dataclass(frozen=True)
class Transition:
    subscription: Subscription
    payment: PaymentHistory | None = None


def is_pro(subscription: Subscription | None) -> bool:
    if subscription is None:
        return False
    return subscription.plan_type in PRO_PLANS and subscription.status in PRO_ACCESS_STATUSES


def can_access_model(model_id: str, subscription: Subscription | None) -> bool:
    if is_pro(subscription):
        return True
    return model_id in FREE_PLAN_MODELS


def free_subscription(user_id: str, now: datetime) -> Subscription:
    return Subscription(
        user_id=user_id,
        plan_type=PlanType.FREE,
        status=SubscriptionStatus.ACTIVE,
        created_at=now,
        updated_at=now,
    )


def start_checkout(
    existing: Subscription | None,
    *,
    user_id: str,
    plan_type: PlanType,
    payment_gateway: str,
    subscription_id: str | None,
    mandate_id: str | None,
    amount_inr: int,
    now: datetime,
) -> Subscription:
    """Row written before the user is sent to the gateway.

    The row is ``pending`` until a webhook confirms payment; abandoned
    checkouts are expired by the reconciliation sweep.
    """

    base = existing or Subscription(user_id=user_id, created_at=now)
    return base.model_copy(
        update={
            "plan_type": plan_type,
            "status": SubscriptionStatus.PENDING,
            "payment_gateway": payment_gateway,
            "subscription_id": subscription_id,
            "mandate_id": mandate_id,
            "amount_inr": amount_inr,
            "next_billing_date": next_billing_date(plan_type, now),
            "cancelled_at": None,
            "updated_at": now,
        }
    )


def cancel(subscription: Subscription, now: datetime) -> Subscription:
    return subscription.model_copy(
        update={
            "status": SubscriptionStatus.CANCELLED,
            "cancelled_at": now,
            "updated_at": now,
        }
    )


def expire_pending(subscription: Subscription, now: datetime) -> Subscription:
    return subscription.model_copy(
        update={"status": SubscriptionStatus.EXPIRED, "updated_at": now}
    )


def _ledger_row(
    subscription: Subscription,
    event: WebhookEvent,
    status: PaymentStatus,
    now: datetime,
) -> PaymentHistory:
    amount = event.amount if event.amount is not None else subscription.amount_inr or 0
    return PaymentHistory(
        user_id=subscription.user_id,
        subscription_id=subscription.id,
        transaction_id=event.transaction_id,
        gateway_payment_id=event.data.get("payment_id") or event.transaction_id,
        amount_inr=amount,
        status=status,
        payment_method=subscription.payment_gateway,
        gateway_response=event.data or None,
        created_at=now,
        completed_at=now if status == PaymentStatus.SUCCESS else None,
    )


def _payment_succeeded(
    subscription: Subscription, event: WebhookEvent, now: datetime, policy: BillingPolicy
) -> Transition:
    period_end = next_billing_date(subscription.plan_type, now)
    updated = subscription.model_copy(
        update={
            "status": SubscriptionStatus.ACTIVE,
            "current_period_start": now,
            "current_period_end": period_end,
            "next_billing_date": period_end,
            "last_payment_date": now,
            "last_payment_status": PaymentStatus.SUCCESS.value,
            "payment_retry_count": 0,
            "payment_due_date": None,
            "updated_at": now,
        }
    )
    return Transition(updated, _ledger_row(updated, event, PaymentStatus.SUCCESS, now))


def _payment_failed(
    subscription: Subscription, event: WebhookEvent, now: datetime, policy: BillingPolicy
) -> Transition:
    retries = subscription.payment_retry_count + 1
    update: dict = {
        "payment_retry_count": retries,
        "last_payment_status": PaymentStatus.FAILED.value,
        "updated_at": now,
    }
    if retries >= policy.max_payment_retries:
        update["status"] = SubscriptionStatus.EXPIRED
    else:
        update["status"] = SubscriptionStatus.PAYMENT_DUE
        update["payment_due_date"] = add_grace_period(now, policy.grace_period_days)
    updated = subscription.model_copy(update=update)
    return Transition(updated, _ledger_row(updated, event, PaymentStatus.FAILED, now))


def _cancelled(
    subscription: Subscription, event: WebhookEvent, now: datetime, policy: BillingPolicy
) -> Transition:
    return Transition(cancel(subscription, now))


def _mandate_recorded(
    subscription: Subscription, event: WebhookEvent, now: datetime, policy: BillingPolicy
) -> Transition:
    if not event.mandate_id:
        return Transition(subscription)
    return Transition(
        subscription.model_copy(update={"mandate_id": event.mandate_id, "updated_at": now})
    )


EventHandler = Callable[[Subscription, WebhookEvent, datetime, BillingPolicy], Transition]

EVENT_HANDLERS: dict[WebhookEventType, EventHandler] = {
    WebhookEventType.SUBSCRIPTION_CREATED: _mandate_recorded,
    WebhookEventType.SUBSCRIPTION_ACTIVATED: _payment_succeeded,
    WebhookEventType.PAYMENT_SUCCESS: _payment_succeeded,
    WebhookEventType.PAYMENT_FAILED: _payment_failed,
    WebhookEventType.SUBSCRIPTION_CANCELLED: _cancelled,
    WebhookEventType.MANDATE_CREATED: _mandate_recorded,
    WebhookEventType.MANDATE_REVOKED: _cancelled,
}


def apply_event(
    subscription: Subscription,
    event: WebhookEvent,
    now: datetime,
    policy: BillingPolicy | None = None,
) -> Transition:
    """Apply a gateway event to ``subscription``.

    Args:
        subscription: Row the event refers to.
        event: Parsed webhook event.
        now: Processing instant.
        policy: Grace period and retry limits.

    Returns:
        Transition with the new row and an optional ledger row.
    """

    handler = EVENT_HANDLERS[event.event]
    return handler(subscription, event, now, policy or BillingPolicy())
