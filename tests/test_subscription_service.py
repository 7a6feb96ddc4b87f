"""Tests for the subscription service with a fake gateway and the in-memory store."""

import json
from datetime import timedelta

import pytest

from account_api.adapters.gateways.base import (
    AbstractPaymentGateway,
    CheckoutRequest,
    CheckoutSession,
)
from account_api.core.errors import (
    AuthenticationAppError,
    ConflictAppError,
    GatewayAppError,
    NotFoundAppError,
    PersistenceAppError,
    ValidationAppError,
)
from account_api.core.signatures import sign_payload
from account_api.schemas.subscription import (
    PaymentStatus,
    PlanType,
    Subscription,
    SubscriptionStatus,
)
from account_api.services.subscription_service import SubscriptionService, parse_webhook_event

SECRET = "whsec-test"


class FakeGateway(AbstractPaymentGateway):
    def __init__(
        self, name: str = "payin", *, fail: bool = False, webhook_valid: bool = True
    ) -> None:
        self.name = name
        self.fail = fail
        self.webhook_valid = webhook_valid
        self.created: list[CheckoutRequest] = []
        self.cancelled: list[str] = []
        self.verified: list[dict] = []

    async def create_subscription(self, request: CheckoutRequest) -> CheckoutSession:
        if self.fail:
            raise GatewayAppError(code="gateway_create_failed", message="Payment provider request failed.")
        self.created.append(request)
        return CheckoutSession(
            payment_url=f"https://pay.example/{self.name}/checkout",
            amount_inr=129900,
            subscription_id=f"{self.name}_sub_1",
            mandate_id="mdt_1" if self.name == "payin" else None,
        )

    async def cancel_subscription(self, subscription_id: str) -> None:
        if self.fail:
            raise GatewayAppError(code="gateway_cancel_failed", message="Payment provider request failed.")
        self.cancelled.append(subscription_id)

    async def verify_webhook(self, headers, event) -> bool:
        self.verified.append(event)
        return self.webhook_valid


class GatewayRegistry:
    def __init__(self, **gateways: FakeGateway) -> None:
        self.gateways = gateways

    def __call__(self, name: str) -> FakeGateway:
        return self.gateways[name]


@pytest.fixture
def gateways() -> GatewayRegistry:
    return GatewayRegistry(payin=FakeGateway("payin"), paypal=FakeGateway("paypal"))


@pytest.fixture
def service(subscription_store, gateways, clock) -> SubscriptionService:
    return SubscriptionService(
        subscription_store,
        gateway_factory=gateways,
        clock=clock,
        public_base_url="https://app.example",
        webhook_secret=SECRET,
    )


def signed(payload: dict) -> tuple[bytes, str]:
    body = json.dumps(payload).encode()
    return body, sign_payload(SECRET, body)


def seed_active(store, clock, **overrides) -> Subscription:
    fields = {
        "user_id": "user-1",
        "plan_type": PlanType.PRO_MONTHLY,
        "status": SubscriptionStatus.ACTIVE,
        "payment_gateway": "payin",
        "subscription_id": "payin_sub_1",
        "amount_inr": 129900,
        "created_at": clock.now,
        "updated_at": clock.now,
    }
    fields.update(overrides)
    return store.insert(Subscription(**fields))


class TestStatus:
    def test_first_access_creates_free_row(self, service, subscription_store) -> None:
        result = service.get_status("user-1")

        assert result.is_pro is False
        assert result.subscription.plan_type == PlanType.FREE
        assert result.subscription.status == SubscriptionStatus.ACTIVE
        assert subscription_store.get_by_user("user-1") is not None

    def test_status_is_stable_across_calls(self, service) -> None:
        first = service.get_status("user-1")
        second = service.get_status("user-1")

        assert first.subscription.id == second.subscription.id

    def test_model_access_for_free_user(self, service) -> None:
        assert service.model_access("user-1", "gpt-oss-120b").allowed is True
        assert service.model_access("user-1", "claude-opus").allowed is False


class TestCreate:
    @pytest.mark.asyncio
    async def test_creates_pending_row_with_default_gateway(
        self, service, subscription_store, gateways, clock
    ) -> None:
        result = await service.create("user-1", "pro_monthly", email="a@example.com")

        assert result.success is True
        assert result.payment_method == "payin"
        assert result.payment_url == "https://pay.example/payin/checkout"
        assert result.subscription_id == "payin_sub_1"

        row = subscription_store.get_by_user("user-1")
        assert row.status == SubscriptionStatus.PENDING
        assert row.plan_type == PlanType.PRO_MONTHLY
        assert row.payment_gateway == "payin"
        assert row.mandate_id == "mdt_1"
        assert row.amount_inr == 129900
        assert row.next_billing_date is not None

        request = gateways.gateways["payin"].created[0]
        assert request.return_url == "https://app.example/subscription"
        assert request.webhook_url == "https://app.example/v1/subscription/webhook"

    @pytest.mark.asyncio
    async def test_upgrades_existing_free_row(self, service, subscription_store) -> None:
        free_id = service.get_status("user-1").subscription.id

        await service.create("user-1", "pro_yearly", email="a@example.com", payment_method="paypal")

        row = subscription_store.get_by_user("user-1")
        assert row.id == free_id
        assert row.plan_type == PlanType.PRO_YEARLY
        assert row.payment_gateway == "paypal"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("plan_type", ["free", "gold", ""])
    async def test_rejects_invalid_plan(self, service, plan_type) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            await service.create("user-1", plan_type, email="a@example.com")

        assert exc_info.value.code == "invalid_plan_type"

    @pytest.mark.asyncio
    async def test_rejects_unknown_payment_method(self, service) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            await service.create("user-1", "pro_monthly", email="a@example.com", payment_method="payu")

        assert exc_info.value.code == "invalid_payment_method"

    @pytest.mark.asyncio
    async def test_rejects_active_pro_user(self, service, subscription_store, clock) -> None:
        seed_active(subscription_store, clock)

        with pytest.raises(ValidationAppError) as exc_info:
            await service.create("user-1", "pro_yearly", email="a@example.com")

        assert exc_info.value.code == "already_subscribed"

    @pytest.mark.asyncio
    async def test_gateway_failure_writes_nothing(self, subscription_store, clock) -> None:
        service = SubscriptionService(
            subscription_store,
            gateway_factory=GatewayRegistry(payin=FakeGateway("payin", fail=True)),
            clock=clock,
        )

        with pytest.raises(GatewayAppError):
            await service.create("user-1", "pro_monthly", email="a@example.com")

        assert subscription_store.get_by_user("user-1") is None

    @pytest.mark.asyncio
    async def test_row_activated_during_checkout_is_not_overwritten(
        self, service, subscription_store
    ) -> None:
        free = service.get_status("user-1").subscription
        original_update = subscription_store.update
        calls = {"n": 0}

        def update_after_activation(subscription, *, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                # a webhook confirms an earlier checkout while this one is in flight
                original_update(
                    free.model_copy(
                        update={
                            "plan_type": PlanType.PRO_YEARLY,
                            "status": SubscriptionStatus.ACTIVE,
                        }
                    ),
                    expected_version=free.version,
                )
            return original_update(subscription, expected_version=expected_version)

        subscription_store.update = update_after_activation

        with pytest.raises(ValidationAppError) as exc_info:
            await service.create("user-1", "pro_monthly", email="a@example.com")

        assert exc_info.value.code == "already_subscribed"
        row = subscription_store.get_by_user("user-1")
        assert row.plan_type == PlanType.PRO_YEARLY
        assert row.status == SubscriptionStatus.ACTIVE


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancels_at_gateway_then_locally(
        self, service, subscription_store, gateways, clock
    ) -> None:
        seed_active(subscription_store, clock)

        result = await service.cancel("user-1")

        assert result.success is True
        assert gateways.gateways["payin"].cancelled == ["payin_sub_1"]
        row = subscription_store.get_by_user("user-1")
        assert row.status == SubscriptionStatus.CANCELLED
        assert row.cancelled_at == clock.now

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_status_unchanged(self, subscription_store, clock) -> None:
        seed_active(subscription_store, clock, payment_gateway="paypal", subscription_id="I-1")
        service = SubscriptionService(
            subscription_store,
            gateway_factory=GatewayRegistry(paypal=FakeGateway("paypal", fail=True)),
            clock=clock,
        )

        with pytest.raises(GatewayAppError):
            await service.cancel("user-1")

        assert subscription_store.get_by_user("user-1").status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_without_external_id_cancels_locally(
        self, service, subscription_store, gateways, clock
    ) -> None:
        seed_active(subscription_store, clock, subscription_id=None)

        await service.cancel("user-1")

        assert gateways.gateways["payin"].cancelled == []
        assert subscription_store.get_by_user("user-1").status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_missing_subscription_is_404(self, service) -> None:
        with pytest.raises(NotFoundAppError):
            await service.cancel("nobody")

    @pytest.mark.asyncio
    async def test_free_plan_cannot_be_cancelled(self, service) -> None:
        service.get_status("user-1")

        with pytest.raises(ValidationAppError) as exc_info:
            await service.cancel("user-1")

        assert exc_info.value.message == "Cannot cancel free plan"


class TestWebhook:
    @pytest.mark.asyncio
    async def test_payment_success_activates_and_records_payment(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock, status=SubscriptionStatus.PENDING)
        body, signature = signed(
            {
                "event": "payment.success",
                "subscriptionId": "payin_sub_1",
                "transactionId": "txn_1",
                "amount": 129900,
                "data": {"payment_id": "pay_1"},
            }
        )

        ack = await service.handle_webhook(body, signature)

        assert ack.received is True
        assert ack.duplicate is False
        row = subscription_store.get_by_user("user-1")
        assert row.status == SubscriptionStatus.ACTIVE
        payments = service.payment_history("user-1")
        assert len(payments) == 1
        assert payments[0].status == PaymentStatus.SUCCESS
        assert payments[0].gateway_payment_id == "pay_1"
        assert payments[0].subscription_id == row.id

    @pytest.mark.asyncio
    async def test_replayed_transaction_is_acknowledged_once(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock)
        body, signature = signed(
            {"event": "payment.success", "subscriptionId": "payin_sub_1", "transactionId": "txn_1"}
        )

        await service.handle_webhook(body, signature)
        version_after_first = subscription_store.get_by_user("user-1").version
        ack = await service.handle_webhook(body, signature)

        assert ack.duplicate is True
        assert len(service.payment_history("user-1")) == 1
        assert subscription_store.get_by_user("user-1").version == version_after_first

    @pytest.mark.asyncio
    async def test_three_failures_expire(self, service, subscription_store, clock) -> None:
        seed_active(subscription_store, clock)

        for attempt in range(3):
            body, signature = signed(
                {
                    "event": "payment.failed",
                    "subscriptionId": "payin_sub_1",
                    "transactionId": f"fail_{attempt}",
                }
            )
            await service.handle_webhook(body, signature)

        row = subscription_store.get_by_user("user-1")
        assert row.status == SubscriptionStatus.EXPIRED
        assert row.payment_retry_count == 3
        assert service.get_status("user-1").is_pro is False

    @pytest.mark.asyncio
    async def test_bad_signature_does_not_mutate(self, service, subscription_store, clock) -> None:
        seed_active(subscription_store, clock)
        body, _ = signed({"event": "subscription.cancelled", "subscriptionId": "payin_sub_1"})

        with pytest.raises(AuthenticationAppError):
            await service.handle_webhook(body, "0" * 64)

        assert subscription_store.get_by_user("user-1").status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, service) -> None:
        body, _ = signed({"event": "subscription.cancelled", "subscriptionId": "payin_sub_1"})

        with pytest.raises(AuthenticationAppError) as exc_info:
            await service.handle_webhook(body, None)

        assert exc_info.value.code == "missing_signature"

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self, service, subscription_store, clock) -> None:
        seed_active(subscription_store, clock)
        body, signature = signed({"event": "refund.issued", "subscriptionId": "payin_sub_1"})

        with pytest.raises(ValidationAppError) as exc_info:
            await service.handle_webhook(body, signature)

        assert exc_info.value.code == "unsupported_webhook_event"
        assert subscription_store.get_by_user("user-1").version == 0

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_404(self, service) -> None:
        body, signature = signed({"event": "payment.success", "subscriptionId": "nope"})

        with pytest.raises(NotFoundAppError):
            await service.handle_webhook(body, signature)

    @pytest.mark.asyncio
    async def test_lost_race_reapplies_event(self, subscription_store, clock) -> None:
        seed_active(subscription_store, clock)
        original_update = subscription_store.update
        calls = {"n": 0}

        def flaky_update(subscription, *, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return original_update(subscription, expected_version=expected_version)

        subscription_store.update = flaky_update
        service = SubscriptionService(
            subscription_store, gateway_factory=GatewayRegistry(), clock=clock, webhook_secret=SECRET
        )
        body, signature = signed({"event": "payment.failed", "subscriptionId": "payin_sub_1"})

        await service.handle_webhook(body, signature)

        assert calls["n"] == 2
        assert subscription_store.get_by_user("user-1").payment_retry_count == 1

    @pytest.mark.asyncio
    async def test_conflict_after_retries(self, subscription_store, clock) -> None:
        seed_active(subscription_store, clock)
        subscription_store.update = lambda subscription, *, expected_version: None
        service = SubscriptionService(
            subscription_store, gateway_factory=GatewayRegistry(), clock=clock, webhook_secret=SECRET
        )
        body, signature = signed({"event": "payment.failed", "subscriptionId": "payin_sub_1"})

        with pytest.raises(ConflictAppError):
            await service.handle_webhook(body, signature)

    @pytest.mark.asyncio
    async def test_failed_ledger_write_leaves_row_for_redelivery(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock)
        original_append = subscription_store.append_payment
        calls = {"n": 0}

        def flaky_append(payment):
            calls["n"] += 1
            if calls["n"] == 1:
                raise PersistenceAppError(code="store_unavailable", message="Store unavailable")
            return original_append(payment)

        subscription_store.append_payment = flaky_append
        body, signature = signed(
            {"event": "payment.failed", "subscriptionId": "payin_sub_1", "transactionId": "txn-1"}
        )

        with pytest.raises(PersistenceAppError):
            await service.handle_webhook(body, signature)
        assert subscription_store.get_by_user("user-1").payment_retry_count == 0

        ack = await service.handle_webhook(body, signature)

        assert ack.duplicate is False
        assert subscription_store.get_by_user("user-1").payment_retry_count == 1
        assert len(service.payment_history("user-1")) == 1

    @pytest.mark.asyncio
    async def test_failed_row_update_withdraws_ledger_row(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock)
        original_update = subscription_store.update
        calls = {"n": 0}

        def flaky_update(subscription, *, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                raise PersistenceAppError(code="store_unavailable", message="Store unavailable")
            return original_update(subscription, expected_version=expected_version)

        subscription_store.update = flaky_update
        body, signature = signed(
            {"event": "payment.failed", "subscriptionId": "payin_sub_1", "transactionId": "txn-1"}
        )

        with pytest.raises(PersistenceAppError):
            await service.handle_webhook(body, signature)
        assert service.payment_history("user-1") == []

        ack = await service.handle_webhook(body, signature)

        assert ack.duplicate is False
        assert subscription_store.get_by_user("user-1").payment_retry_count == 1
        assert len(service.payment_history("user-1")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_copy_stops_at_ledger(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock)
        body, signature = signed(
            {"event": "payment.failed", "subscriptionId": "payin_sub_1", "transactionId": "txn-1"}
        )
        await service.handle_webhook(body, signature)
        version_after_first = subscription_store.get_by_user("user-1").version
        # the copy checked for the transaction before the first delivery committed
        subscription_store.has_transaction = lambda transaction_id: False

        ack = await service.handle_webhook(body, signature)

        assert ack.duplicate is True
        row = subscription_store.get_by_user("user-1")
        assert row.version == version_after_first
        assert row.payment_retry_count == 1
        assert len(service.payment_history("user-1")) == 1


def paypal_notification(event_type: str, resource: dict, event_id: str = "WH-1") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "event_type": event_type,
            "create_time": "2025-01-15T12:00:00Z",
            "resource": resource,
        }
    ).encode()


PAYPAL_HEADERS = {"paypal-transmission-id": "tx-1", "paypal-transmission-sig": "sig"}


class TestPayPalWebhook:
    @pytest.mark.asyncio
    async def test_activation_confirms_pending_checkout(
        self, service, subscription_store, gateways, clock
    ) -> None:
        seed_active(
            subscription_store,
            clock,
            status=SubscriptionStatus.PENDING,
            payment_gateway="paypal",
            subscription_id="I-SUB1",
        )
        body = paypal_notification(
            "BILLING.SUBSCRIPTION.ACTIVATED", {"id": "I-SUB1", "status": "ACTIVE"}
        )

        ack = await service.handle_paypal_webhook(body, PAYPAL_HEADERS)

        assert ack.received is True
        assert ack.ignored is False
        assert gateways.gateways["paypal"].verified[0]["id"] == "WH-1"
        assert service.get_status("user-1").is_pro is True
        payments = service.payment_history("user-1")
        assert [p.transaction_id for p in payments] == ["WH-1"]
        assert payments[0].status == PaymentStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_denied_sale_is_keyed_by_sale_id(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock, payment_gateway="paypal", subscription_id="I-SUB1")
        resource = {"id": "SALE-1", "billing_agreement_id": "I-SUB1", "state": "denied"}

        await service.handle_paypal_webhook(
            paypal_notification("PAYMENT.SALE.DENIED", resource, event_id="WH-2"), PAYPAL_HEADERS
        )
        ack = await service.handle_paypal_webhook(
            paypal_notification("PAYMENT.SALE.DENIED", resource, event_id="WH-3"), PAYPAL_HEADERS
        )

        assert ack.duplicate is True
        row = subscription_store.get_by_user("user-1")
        assert row.status == SubscriptionStatus.PAYMENT_DUE
        assert row.payment_retry_count == 1

    @pytest.mark.asyncio
    async def test_suspension_cancels(self, service, subscription_store, clock) -> None:
        seed_active(subscription_store, clock, payment_gateway="paypal", subscription_id="I-SUB1")

        await service.handle_paypal_webhook(
            paypal_notification("BILLING.SUBSCRIPTION.SUSPENDED", {"id": "I-SUB1"}), PAYPAL_HEADERS
        )

        assert subscription_store.get_by_user("user-1").status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unverified_delivery_is_rejected(self, subscription_store, clock) -> None:
        seed_active(subscription_store, clock, payment_gateway="paypal", subscription_id="I-SUB1")
        service = SubscriptionService(
            subscription_store,
            gateway_factory=GatewayRegistry(paypal=FakeGateway("paypal", webhook_valid=False)),
            clock=clock,
        )
        body = paypal_notification("BILLING.SUBSCRIPTION.CANCELLED", {"id": "I-SUB1"})

        with pytest.raises(AuthenticationAppError) as exc_info:
            await service.handle_paypal_webhook(body, PAYPAL_HEADERS)

        assert exc_info.value.code == "invalid_signature"
        assert subscription_store.get_by_user("user-1").status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unrelated_event_type_is_ignored(
        self, service, subscription_store, clock
    ) -> None:
        seed_active(subscription_store, clock, payment_gateway="paypal", subscription_id="I-SUB1")
        body = paypal_notification("CUSTOMER.DISPUTE.CREATED", {"id": "PP-D-1"})

        ack = await service.handle_paypal_webhook(body, PAYPAL_HEADERS)

        assert ack.ignored is True
        assert subscription_store.get_by_user("user-1").version == 0

    @pytest.mark.asyncio
    async def test_non_json_body_is_rejected(self, service) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            await service.handle_paypal_webhook(b"<xml/>", PAYPAL_HEADERS)

        assert exc_info.value.code == "invalid_webhook_payload"


class TestParseWebhookEvent:
    def test_invalid_json(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            parse_webhook_event(b"not json")

        assert exc_info.value.code == "invalid_webhook_payload"

    def test_missing_subscription_id(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            parse_webhook_event(b'{"event": "payment.success"}')

        assert exc_info.value.message == "Missing required fields"

    def test_camel_case_fields(self) -> None:
        event = parse_webhook_event(
            b'{"event": "mandate.created", "subscriptionId": "s1", "mandateId": "m1"}'
        )

        assert event.subscription_id == "s1"
        assert event.mandate_id == "m1"


class TestReconcile:
    def test_expires_only_stale_pending_rows(self, service, subscription_store, clock) -> None:
        seed_active(subscription_store, clock, status=SubscriptionStatus.PENDING)
        seed_active(
            subscription_store,
            clock,
            user_id="user-2",
            subscription_id="s2",
            status=SubscriptionStatus.PENDING,
            updated_at=clock.now + timedelta(hours=20),
        )
        seed_active(subscription_store, clock, user_id="user-3", subscription_id="s3")

        clock.advance(timedelta(hours=25))
        expired = service.expire_abandoned_pending()

        assert expired == 1
        assert subscription_store.get_by_user("user-1").status == SubscriptionStatus.EXPIRED
        assert subscription_store.get_by_user("user-2").status == SubscriptionStatus.PENDING
        assert subscription_store.get_by_user("user-3").status == SubscriptionStatus.ACTIVE
