"""Unit tests for the in-memory store adapters."""

from datetime import datetime, timedelta, timezone

import pytest

from account_api.core.errors import ConflictAppError
from account_api.schemas.rate_limit import RateLimitRecord
from account_api.schemas.subscription import (
    PaymentHistory,
    PaymentStatus,
    PlanType,
    Subscription,
    SubscriptionStatus,
)

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


class TestRateLimitStore:
    def test_insert_then_get_returns_copy(self, rate_limit_store) -> None:
        rate_limit_store.insert(RateLimitRecord(user_id="u1", action_type="otp_send"))

        record = rate_limit_store.get("u1", "otp_send")
        record.attempt_count = 99

        assert rate_limit_store.get("u1", "otp_send").attempt_count == 0

    def test_duplicate_insert_conflicts(self, rate_limit_store) -> None:
        rate_limit_store.insert(RateLimitRecord(user_id="u1", action_type="otp_send"))

        with pytest.raises(ConflictAppError):
            rate_limit_store.insert(RateLimitRecord(user_id="u1", action_type="otp_send"))

    def test_update_bumps_version(self, rate_limit_store) -> None:
        stored = rate_limit_store.insert(RateLimitRecord(user_id="u1", action_type="otp_send"))

        updated = rate_limit_store.update(
            stored.model_copy(update={"attempt_count": 1}), expected_version=stored.version
        )

        assert updated.version == stored.version + 1
        assert rate_limit_store.get("u1", "otp_send").attempt_count == 1

    def test_stale_update_is_rejected(self, rate_limit_store) -> None:
        stored = rate_limit_store.insert(RateLimitRecord(user_id="u1", action_type="otp_send"))
        rate_limit_store.update(stored, expected_version=stored.version)

        assert rate_limit_store.update(stored, expected_version=stored.version) is None

    def test_update_of_missing_record_is_rejected(self, rate_limit_store) -> None:
        record = RateLimitRecord(user_id="ghost", action_type="otp_send")

        assert rate_limit_store.update(record, expected_version=0) is None


def make_subscription(**overrides) -> Subscription:
    fields = {
        "user_id": "u1",
        "plan_type": PlanType.PRO_MONTHLY,
        "status": SubscriptionStatus.PENDING,
        "subscription_id": "sub_1",
        "updated_at": NOW,
    }
    fields.update(overrides)
    return Subscription(**fields)


class TestSubscriptionStore:
    def test_lookup_by_user_and_external_id(self, subscription_store) -> None:
        subscription_store.insert(make_subscription())

        assert subscription_store.get_by_user("u1").subscription_id == "sub_1"
        assert subscription_store.get_by_subscription_id("sub_1").user_id == "u1"
        assert subscription_store.get_by_subscription_id("missing") is None

    def test_one_row_per_user(self, subscription_store) -> None:
        subscription_store.insert(make_subscription())

        with pytest.raises(ConflictAppError):
            subscription_store.insert(make_subscription(subscription_id="sub_2"))

    def test_stale_update_is_rejected(self, subscription_store) -> None:
        stored = subscription_store.insert(make_subscription())
        subscription_store.update(stored, expected_version=0)

        assert subscription_store.update(stored, expected_version=0) is None

    def test_pending_rows_before_cutoff(self, subscription_store) -> None:
        subscription_store.insert(make_subscription(user_id="old", subscription_id="a",
                                                    updated_at=NOW - timedelta(days=2)))
        subscription_store.insert(make_subscription(user_id="fresh", subscription_id="b"))
        subscription_store.insert(make_subscription(user_id="active", subscription_id="c",
                                                    status=SubscriptionStatus.ACTIVE,
                                                    updated_at=NOW - timedelta(days=2)))

        rows = subscription_store.list_pending_updated_before(NOW - timedelta(hours=24))

        assert [row.user_id for row in rows] == ["old"]

    def test_duplicate_transaction_conflicts(self, subscription_store) -> None:
        payment = PaymentHistory(user_id="u1", transaction_id="txn_1", status=PaymentStatus.SUCCESS)
        subscription_store.append_payment(payment)

        assert subscription_store.has_transaction("txn_1") is True
        with pytest.raises(ConflictAppError):
            subscription_store.append_payment(payment.model_copy(update={"id": "other"}))

    def test_removed_payment_frees_its_transaction_id(self, subscription_store) -> None:
        payment = subscription_store.append_payment(
            PaymentHistory(user_id="u1", transaction_id="txn_1", status=PaymentStatus.FAILED)
        )
        subscription_store.append_payment(
            PaymentHistory(user_id="u1", transaction_id="txn_2", status=PaymentStatus.SUCCESS)
        )

        subscription_store.remove_payment(payment.id)

        assert subscription_store.has_transaction("txn_1") is False
        assert [p.transaction_id for p in subscription_store.list_payments("u1")] == ["txn_2"]
        subscription_store.append_payment(payment)

    def test_payments_without_transaction_id_are_all_kept(self, subscription_store) -> None:
        for _ in range(2):
            subscription_store.append_payment(
                PaymentHistory(user_id="u1", status=PaymentStatus.FAILED, created_at=NOW)
            )

        assert len(subscription_store.list_payments("u1")) == 2

    def test_payments_listed_newest_first(self, subscription_store) -> None:
        for offset, txn in ((0, "old"), (2, "new"), (1, "mid")):
            subscription_store.append_payment(
                PaymentHistory(
                    user_id="u1",
                    transaction_id=txn,
                    status=PaymentStatus.SUCCESS,
                    created_at=NOW + timedelta(days=offset),
                )
            )
        subscription_store.append_payment(
            PaymentHistory(user_id="u2", transaction_id="other", status=PaymentStatus.SUCCESS)
        )

        assert [p.transaction_id for p in subscription_store.list_payments("u1")] == [
            "new",
            "mid",
            "old",
        ]
