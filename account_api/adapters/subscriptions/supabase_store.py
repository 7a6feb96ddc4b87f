"""Supabase-backed subscription store (``subscriptions`` and ``payment_history`` tables)."""

from __future__ import annotations

from datetime import datetime

from supabase import Client

from account_api.adapters.subscriptions.base import AbstractSubscriptionStore
from account_api.adapters.supabase_client import is_unique_violation, store_error
from account_api.core.errors import ConflictAppError
from account_api.schemas.subscription import PaymentHistory, Subscription, SubscriptionStatus

SUBSCRIPTIONS = "subscriptions"
PAYMENTS = "payment_history"


class SupabaseSubscriptionStore(AbstractSubscriptionStore):
    """Subscription rows keyed by ``user_id``; payments unique on ``transaction_id``."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def _select_one(self, field: str, value: str) -> Subscription | None:
        try:
            result = (
                self.client.table(SUBSCRIPTIONS)
                .select("*")
                .eq(field, value)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise store_error(SUBSCRIPTIONS, "select", exc) from exc
        return Subscription.model_validate(result.data[0]) if result.data else None

    def get_by_user(self, user_id: str) -> Subscription | None:
        return self._select_one("user_id", user_id)

    def get_by_subscription_id(self, subscription_id: str) -> Subscription | None:
        return self._select_one("subscription_id", subscription_id)

    def insert(self, subscription: Subscription) -> Subscription:
        payload = subscription.model_dump(mode="json")
        payload["version"] = 0
        try:
            result = self.client.table(SUBSCRIPTIONS).insert(payload).execute()
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictAppError(
                    code="record_exists",
                    message="Subscription already exists for user",
                ) from exc
            raise store_error(SUBSCRIPTIONS, "insert", exc) from exc
        if result.data:
            return Subscription.model_validate(result.data[0])
        return subscription.model_copy(update={"version": 0})

    def update(self, subscription: Subscription, *, expected_version: int) -> Subscription | None:
        payload = subscription.model_dump(mode="json", exclude={"id", "user_id", "created_at"})
        payload["version"] = expected_version + 1
        try:
            result = (
                self.client.table(SUBSCRIPTIONS)
                .update(payload)
                .eq("user_id", subscription.user_id)
                .eq("version", expected_version)
                .execute()
            )
        except Exception as exc:
            raise store_error(SUBSCRIPTIONS, "update", exc) from exc
        return Subscription.model_validate(result.data[0]) if result.data else None

    def list_pending_updated_before(self, cutoff: datetime) -> list[Subscription]:
        try:
            result = (
                self.client.table(SUBSCRIPTIONS)
                .select("*")
                .eq("status", SubscriptionStatus.PENDING.value)
                .lt("updated_at", cutoff.isoformat())
                .execute()
            )
        except Exception as exc:
            raise store_error(SUBSCRIPTIONS, "select", exc) from exc
        return [Subscription.model_validate(row) for row in result.data or []]

    def append_payment(self, payment: PaymentHistory) -> PaymentHistory:
        try:
            result = (
                self.client.table(PAYMENTS)
                .insert(payment.model_dump(mode="json"))
                .execute()
            )
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictAppError(
                    code="duplicate_transaction",
                    message="Transaction already recorded",
                ) from exc
            raise store_error(PAYMENTS, "insert", exc) from exc
        return PaymentHistory.model_validate(result.data[0]) if result.data else payment

    def remove_payment(self, payment_id: str) -> None:
        try:
            self.client.table(PAYMENTS).delete().eq("id", payment_id).execute()
        except Exception as exc:
            raise store_error(PAYMENTS, "delete", exc) from exc

    def has_transaction(self, transaction_id: str) -> bool:
        try:
            result = (
                self.client.table(PAYMENTS)
                .select("id")
                .eq("transaction_id", transaction_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise store_error(PAYMENTS, "select", exc) from exc
        return bool(result.data)

    def list_payments(self, user_id: str) -> list[PaymentHistory]:
        try:
            result = (
                self.client.table(PAYMENTS)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as exc:
            raise store_error(PAYMENTS, "select", exc) from exc
        return [PaymentHistory.model_validate(row) for row in result.data or []]
