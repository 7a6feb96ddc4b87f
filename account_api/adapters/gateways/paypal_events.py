"""Translation of PayPal webhook notifications into subscription events."""

from __future__ import annotations

from typing import Any, Mapping

from account_api.core.errors import ValidationAppError
from account_api.schemas.subscription import WebhookEvent, WebhookEventType

PAYPAL_EVENT_MAP: dict[str, WebhookEventType] = {
    "BILLING.SUBSCRIPTION.ACTIVATED": WebhookEventType.SUBSCRIPTION_ACTIVATED,
    "PAYMENT.SALE.COMPLETED": WebhookEventType.PAYMENT_SUCCESS,
    "PAYMENT.SALE.DENIED": WebhookEventType.PAYMENT_FAILED,
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": WebhookEventType.PAYMENT_FAILED,
    "BILLING.SUBSCRIPTION.CANCELLED": WebhookEventType.SUBSCRIPTION_CANCELLED,
    "BILLING.SUBSCRIPTION.SUSPENDED": WebhookEventType.SUBSCRIPTION_CANCELLED,
}

# Sale resources point at their subscription through billing_agreement_id.
SALE_EVENTS = frozenset({"PAYMENT.SALE.COMPLETED", "PAYMENT.SALE.DENIED"})


def to_webhook_event(notification: Mapping[str, Any]) -> WebhookEvent | None:
    """Map a verified PayPal notification onto a ``WebhookEvent``.

    Sale notifications are keyed by the sale id, so a redelivered sale is
    recognised as the same transaction. Subscription notifications are keyed
    by the notification id.

    Returns:
        The event, or None for notification types that do not change a
        subscription.

    Raises:
        ValidationAppError: If a handled notification has no subscription id.
    """

    event_type = notification.get("event_type")
    mapped = PAYPAL_EVENT_MAP.get(event_type) if isinstance(event_type, str) else None
    if mapped is None:
        return None

    resource = notification.get("resource")
    if not isinstance(resource, Mapping):
        resource = {}

    if event_type in SALE_EVENTS:
        subscription_id = resource.get("billing_agreement_id")
        transaction_id = resource.get("id")
    else:
        subscription_id = resource.get("id")
        transaction_id = notification.get("id")

    if not subscription_id:
        raise ValidationAppError(
            code="invalid_webhook_payload",
            message="Missing required fields",
            details={"event": event_type, "context": {"fields": ["resource"]}},
        )

    return WebhookEvent(
        event=mapped,
        subscription_id=str(subscription_id),
        transaction_id=str(transaction_id) if transaction_id else None,
        status=resource.get("status") or resource.get("state"),
        timestamp=notification.get("create_time"),
        data={
            "paypal_event_id": notification.get("id"),
            "paypal_event_type": event_type,
            "resource": dict(resource),
        },
    )
