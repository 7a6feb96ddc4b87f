"""Subscription lifecycle service.

Orchestrates the store, the payment gateways and the pure transitions in
``subscription_transitions``. Every write to a subscription row is
conditional on the version that was read; a lost race re-reads the row and
re-applies the change.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from account_api.adapters.gateways.base import AbstractPaymentGateway, CheckoutRequest
from account_api.adapters.gateways.factory import SUPPORTED_GATEWAYS, create_payment_gateway
from account_api.adapters.gateways.paypal_events import to_webhook_event
from account_api.adapters.subscriptions.base import AbstractSubscriptionStore
from account_api.core.errors import (
    AppError,
    AuthenticationAppError,
    ConflictAppError,
    NotFoundAppError,
    PersistenceAppError,
    ValidationAppError,
)
from account_api.core.signatures import verify_signature
from account_api.schemas.subscription import (
    PRO_PLANS,
    CancelSubscriptionResponse,
    CreateSubscriptionResponse,
    ModelAccessResponse,
    PaymentHistory,
    PlanType,
    Subscription,
    SubscriptionStatus,
    SubscriptionStatusResponse,
    WebhookAck,
    WebhookEvent,
    WebhookEventType,
)
from account_api.services.rate_limit_service import utcnow
from account_api.services.subscription_transitions import (
    BillingPolicy,
    apply_event,
    can_access_model,
    cancel,
    expire_pending,
    free_subscription,
    is_pro,
    start_checkout,
)

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str], AbstractPaymentGateway]

_KNOWN_EVENTS = {event.value for event in WebhookEventType}


def _parse_plan(plan_type: str) -> PlanType:
    try:
        plan = PlanType(plan_type)
    except ValueError:
        plan = None
    if plan not in PRO_PLANS:
        raise ValidationAppError(
            code="invalid_plan_type",
            message="Invalid plan type",
            details={"plan_type": plan_type, "hint": "Use pro_monthly or pro_yearly"},
        )
    return plan


def _reject_active_subscription(existing: Subscription | None) -> None:
    if (
        existing is not None
        and existing.plan_type != PlanType.FREE
        and existing.status == SubscriptionStatus.ACTIVE
    ):
        raise ValidationAppError(
            code="already_subscribed",
            message="Already subscribed",
            details={"plan_type": existing.plan_type.value},
        )


def _decode_json_object(raw_body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationAppError(
            code="invalid_webhook_payload",
            message="Webhook body is not valid JSON",
        ) from exc

    if not isinstance(payload, dict):
        raise ValidationAppError(
            code="invalid_webhook_payload",
            message="Webhook body must be a JSON object",
        )
    return payload


def parse_webhook_event(raw_body: bytes) -> WebhookEvent:
    """Decode a verified webhook body into a typed event.

    Raises:
        ValidationAppError: If the body is not JSON, the event type is not
            recognised, or required fields are missing.
    """

    payload = _decode_json_object(raw_body)

    event_type = payload.get("event")
    if event_type not in _KNOWN_EVENTS:
        logger.warning("webhook.unsupported_event", extra={"event": str(event_type)})
        raise ValidationAppError(
            code="unsupported_webhook_event",
            message=f"Unsupported webhook event: {event_type}",
            details={"event": str(event_type)},
        )

    try:
        return WebhookEvent.model_validate(payload)
    except ValidationError as exc:
        fields = [".".join(str(part) for part in err["loc"]) for err in exc.errors()]
        raise ValidationAppError(
            code="invalid_webhook_payload",
            message="Missing required fields",
            details={"event": event_type, "context": {"fields": fields}},
        ) from exc


class SubscriptionService:
    """Plan status, checkout, cancellation and gateway webhooks for users."""

    def __init__(
        self,
        store: AbstractSubscriptionStore,
        *,
        gateway_factory: GatewayFactory = create_payment_gateway,
        policy: BillingPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_write_attempts: int = 3,
        default_gateway: str = "payin",
        public_base_url: str = "http://localhost:3000",
        webhook_secret: str | None = None,
        pending_max_age: timedelta = timedelta(hours=24),
    ) -> None:
        if max_write_attempts < 1:
            raise ValueError("max_write_attempts must be >= 1")
        self.store = store
        self.policy = policy or BillingPolicy()
        self._gateway_factory = gateway_factory
        self._clock = clock
        self._max_write_attempts = max_write_attempts
        self._default_gateway = default_gateway
        self._public_base_url = public_base_url.rstrip("/")
        self._webhook_secret = webhook_secret
        self._pending_max_age = pending_max_age

    def _write_conflict(self, user_id: str, operation: str) -> ConflictAppError:
        logger.warning(
            "subscription.write_conflict",
            extra={"user_id": user_id, "operation": operation},
        )
        return ConflictAppError(
            code="subscription_write_conflict",
            message="Subscription is being updated concurrently. Try again.",
        )

    def _get_or_create(self, user_id: str) -> Subscription:
        subscription = self.store.get_by_user(user_id)
        if subscription is not None:
            return subscription
        try:
            subscription = self.store.insert(free_subscription(user_id, self._clock()))
        except ConflictAppError:
            subscription = self.store.get_by_user(user_id)
            if subscription is None:
                raise
            return subscription
        logger.info("subscription.free_row_created", extra={"user_id": user_id})
        return subscription

    def _reread_for_checkout(self, user_id: str, checkout_id: str | None) -> Subscription | None:
        """Re-read the row after a lost write; it may have been activated meanwhile."""

        existing = self.store.get_by_user(user_id)
        try:
            _reject_active_subscription(existing)
        except ValidationAppError:
            logger.warning(
                "subscription.checkout_superseded",
                extra={"user_id": user_id, "subscription_id": checkout_id},
            )
            raise
        return existing

    def get_subscription(self, user_id: str) -> Subscription:
        """The user's row, created as free/active on first access."""
        return self._get_or_create(user_id)

    def get_status(self, user_id: str) -> SubscriptionStatusResponse:
        subscription = self._get_or_create(user_id)
        return SubscriptionStatusResponse(subscription=subscription, is_pro=is_pro(subscription))

    def model_access(self, user_id: str, model_id: str) -> ModelAccessResponse:
        subscription = self._get_or_create(user_id)
        return ModelAccessResponse(
            model_id=model_id,
            allowed=can_access_model(model_id, subscription),
            is_pro=is_pro(subscription),
        )

    def payment_history(self, user_id: str) -> list[PaymentHistory]:
        return self.store.list_payments(user_id)

    async def create(
        self,
        user_id: str,
        plan_type: str,
        *,
        email: str,
        payment_method: str | None = None,
        name: str | None = None,
        phone: str | None = None,
    ) -> CreateSubscriptionResponse:
        """Start a paid checkout and record the row as ``pending``.

        Args:
            user_id: Authenticated user.
            plan_type: pro_monthly or pro_yearly.
            email: Customer email passed to the gateway.
            payment_method: Gateway name; defaults to the configured gateway.
            name: Optional customer name.
            phone: Optional customer phone.

        Returns:
            CreateSubscriptionResponse with the URL the user must visit.

        Raises:
            ValidationAppError: Bad plan, unknown gateway, or already subscribed.
            GatewayAppError: The gateway refused or was unreachable.
            ConflictAppError: Concurrent writers kept winning.
        """

        plan = _parse_plan(plan_type)
        gateway_name = (payment_method or self._default_gateway).lower()
        if gateway_name not in SUPPORTED_GATEWAYS:
            raise ValidationAppError(
                code="invalid_payment_method",
                message="Invalid payment method",
                details={
                    "payment_gateway": gateway_name,
                    "hint": f"Use one of: {', '.join(SUPPORTED_GATEWAYS)}",
                },
            )

        existing = self.store.get_by_user(user_id)
        _reject_active_subscription(existing)

        gateway = self._gateway_factory(gateway_name)
        session = await gateway.create_subscription(
            CheckoutRequest(
                user_id=user_id,
                email=email,
                plan_type=plan,
                return_url=f"{self._public_base_url}/subscription",
                webhook_url=f"{self._public_base_url}/v1/subscription/webhook",
                name=name,
                phone=phone,
            )
        )

        for _ in range(self._max_write_attempts):
            now = self._clock()
            pending = start_checkout(
                existing,
                user_id=user_id,
                plan_type=plan,
                payment_gateway=gateway.name,
                subscription_id=session.subscription_id,
                mandate_id=session.mandate_id,
                amount_inr=session.amount_inr,
                now=now,
            )
            if existing is None:
                try:
                    self.store.insert(pending)
                except ConflictAppError:
                    existing = self._reread_for_checkout(user_id, session.subscription_id)
                    continue
                break
            if self.store.update(pending, expected_version=existing.version) is not None:
                break
            existing = self._reread_for_checkout(user_id, session.subscription_id)
        else:
            raise self._write_conflict(user_id, "create")

        logger.info(
            "subscription.checkout_started",
            extra={
                "user_id": user_id,
                "plan_type": plan.value,
                "payment_gateway": gateway.name,
                "subscription_id": session.subscription_id,
            },
        )
        return CreateSubscriptionResponse(
            success=True,
            payment_method=gateway.name,
            payment_url=session.payment_url,
            subscription_id=session.subscription_id,
        )

    async def cancel(self, user_id: str) -> CancelSubscriptionResponse:
        """Cancel the user's paid plan, at the gateway first when possible.

        Raises:
            NotFoundAppError: The user has no subscription row.
            ValidationAppError: The row is on the free plan.
            GatewayAppError: The gateway refused; the local row is unchanged.
            ConflictAppError: Concurrent writers kept winning.
        """

        subscription = self.store.get_by_user(user_id)
        if subscription is None:
            raise NotFoundAppError(code="subscription_not_found", message="No subscription found")
        if subscription.plan_type == PlanType.FREE:
            raise ValidationAppError(code="free_plan", message="Cannot cancel free plan")
        if subscription.status == SubscriptionStatus.CANCELLED:
            return CancelSubscriptionResponse(success=True, message="Subscription already cancelled")

        if subscription.subscription_id and subscription.payment_gateway in SUPPORTED_GATEWAYS:
            gateway = self._gateway_factory(subscription.payment_gateway)
            if gateway.supports_remote_cancel:
                await gateway.cancel_subscription(subscription.subscription_id)

        for _ in range(self._max_write_attempts):
            if self.store.update(
                cancel(subscription, self._clock()), expected_version=subscription.version
            ) is not None:
                logger.info(
                    "subscription.cancelled",
                    extra={
                        "user_id": user_id,
                        "subscription_id": subscription.subscription_id,
                        "payment_gateway": subscription.payment_gateway,
                    },
                )
                return CancelSubscriptionResponse(
                    success=True, message="Subscription cancelled successfully"
                )
            subscription = self.store.get_by_user(user_id)
            if subscription is None:
                raise NotFoundAppError(code="subscription_not_found", message="No subscription found")
        raise self._write_conflict(user_id, "cancel")

    async def handle_webhook(self, raw_body: bytes, signature: str | None) -> WebhookAck:
        """Verify, decode and apply one gateway event.

        Raises:
            AuthenticationAppError: Missing or invalid signature.
            ValidationAppError: Malformed body or unsupported event type.
            NotFoundAppError: No row has the event's subscription id.
            ConflictAppError: Concurrent writers kept winning.
        """

        verify_signature(self._webhook_secret, raw_body, signature)
        return self._apply_event(parse_webhook_event(raw_body))

    async def handle_paypal_webhook(
        self, raw_body: bytes, headers: Mapping[str, str]
    ) -> WebhookAck:
        """Verify a PayPal notification with PayPal and apply it.

        Notification types that do not affect subscriptions are acknowledged
        with ``ignored`` so PayPal stops redelivering them.

        Raises:
            AuthenticationAppError: PayPal did not confirm the delivery.
            ValidationAppError: Malformed body, or PayPal is not configured.
            GatewayAppError: PayPal's verification API failed.
            NotFoundAppError: No row has the notification's subscription id.
            ConflictAppError: Concurrent writers kept winning.
        """

        notification = _decode_json_object(raw_body)
        event_type = str(notification.get("event_type"))
        gateway = self._gateway_factory("paypal")
        if not await gateway.verify_webhook(headers, notification):
            logger.warning("webhook.paypal_unverified", extra={"event": event_type})
            raise AuthenticationAppError(
                code="invalid_signature",
                message="Invalid webhook signature",
            )

        event = to_webhook_event(notification)
        if event is None:
            logger.info("webhook.paypal_event_ignored", extra={"event": event_type})
            return WebhookAck(ignored=True)
        return self._apply_event(event)

    def _apply_event(self, event: WebhookEvent) -> WebhookAck:
        """Apply a verified event to its subscription row.

        A payment event first records its ledger row. The unique transaction
        id on that row claims the delivery, so a concurrent or later copy of
        the same event stops there without touching the subscription. If the
        subscription update then fails the claim is withdrawn, and the
        gateway's redelivery is applied normally.
        """

        log_extra = {
            "event": event.event.value,
            "subscription_id": event.subscription_id,
            "transaction_id": event.transaction_id,
        }

        if event.transaction_id and self.store.has_transaction(event.transaction_id):
            logger.info("webhook.duplicate", extra=log_extra)
            return WebhookAck(duplicate=True)

        claimed: PaymentHistory | None = None
        try:
            for _ in range(self._max_write_attempts):
                subscription = self.store.get_by_subscription_id(event.subscription_id)
                if subscription is None:
                    logger.warning("webhook.subscription_not_found", extra=log_extra)
                    raise NotFoundAppError(
                        code="subscription_not_found",
                        message="Subscription not found",
                        details={"event": event.event.value},
                    )

                transition = apply_event(subscription, event, self._clock(), self.policy)
                if claimed is None and transition.payment is not None:
                    try:
                        claimed = self.store.append_payment(transition.payment)
                    except ConflictAppError:
                        logger.info("webhook.duplicate_race", extra=log_extra)
                        return WebhookAck(duplicate=True)

                stored = self.store.update(
                    transition.subscription, expected_version=subscription.version
                )
                if stored is None:
                    continue

                logger.info(
                    "webhook.applied",
                    extra={
                        **log_extra,
                        "user_id": stored.user_id,
                        "status": stored.status.value,
                        "payment_retry_count": stored.payment_retry_count,
                    },
                )
                return WebhookAck()

            raise self._write_conflict(event.subscription_id, "webhook")
        except AppError:
            if claimed is not None:
                self._withdraw_payment(claimed, log_extra)
            raise

    def _withdraw_payment(self, payment: PaymentHistory, log_extra: dict[str, Any]) -> None:
        try:
            self.store.remove_payment(payment.id)
        except PersistenceAppError:
            # the original error is re-raised by the caller; this row needs manual cleanup
            logger.exception(
                "webhook.ledger_withdraw_failed",
                extra={**log_extra, "payment_id": payment.id},
            )

    def expire_abandoned_pending(self, now: datetime | None = None) -> int:
        """Expire ``pending`` rows whose checkout was never completed.

        Rows changed concurrently since they were listed are skipped.

        Returns:
            Number of rows moved to ``expired``.
        """

        now = now or self._clock()
        cutoff = now - self._pending_max_age
        expired = 0
        for subscription in self.store.list_pending_updated_before(cutoff):
            if self.store.update(
                expire_pending(subscription, now), expected_version=subscription.version
            ) is not None:
                expired += 1
        logger.info(
            "subscription.pending_reconciled",
            extra={"expired": expired, "cutoff": cutoff.isoformat()},
        )
        return expired
