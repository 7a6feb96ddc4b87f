"""In-memory subscription store (per-process, thread-safe)."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from account_api.adapters.subscriptions.base import AbstractSubscriptionStore
from account_api.core.errors import ConflictAppError
from account_api.schemas.subscription import PaymentHistory, Subscription, SubscriptionStatus

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InMemorySubscriptionStore(AbstractSubscriptionStore):
    """Dictionary-backed store used for development and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._by_user: dict[str, Subscription] = {}
        self._payments: list[PaymentHistory] = []

    def get_by_user(self, user_id: str) -> Subscription | None:
        with self._lock:
            sub = self._by_user.get(user_id)
            return sub.model_copy() if sub else None

    def get_by_subscription_id(self, subscription_id: str) -> Subscription | None:
        with self._lock:
            for sub in self._by_user.values():
                if sub.subscription_id == subscription_id:
                    return sub.model_copy()
            return None

    def insert(self, subscription: Subscription) -> Subscription:
        with self._lock:
            if subscription.user_id in self._by_user:
                raise ConflictAppError(
                    code="record_exists",
                    message="Subscription already exists for user",
                )
            stored = subscription.model_copy(update={"version": 0})
            self._by_user[subscription.user_id] = stored
            return stored.model_copy()

    def update(self, subscription: Subscription, *, expected_version: int) -> Subscription | None:
        with self._lock:
            current = self._by_user.get(subscription.user_id)
            if current is None or current.version != expected_version:
                return None
            stored = subscription.model_copy(update={"version": expected_version + 1})
            self._by_user[subscription.user_id] = stored
            return stored.model_copy()

    def list_pending_updated_before(self, cutoff: datetime) -> list[Subscription]:
        with self._lock:
            return [
                sub.model_copy()
                for sub in self._by_user.values()
                if sub.status == SubscriptionStatus.PENDING
                and sub.updated_at is not None
                and sub.updated_at < cutoff
            ]

    def append_payment(self, payment: PaymentHistory) -> PaymentHistory:
        with self._lock:
            if payment.transaction_id and any(
                p.transaction_id == payment.transaction_id for p in self._payments
            ):
                raise ConflictAppError(
                    code="duplicate_transaction",
                    message="Transaction already recorded",
                )
            self._payments.append(payment.model_copy())
            return payment.model_copy()

    def remove_payment(self, payment_id: str) -> None:
        with self._lock:
            self._payments = [p for p in self._payments if p.id != payment_id]

    def has_transaction(self, transaction_id: str) -> bool:
        with self._lock:
            return any(p.transaction_id == transaction_id for p in self._payments)

    def list_payments(self, user_id: str) -> list[PaymentHistory]:
        with self._lock:
            rows = [p.model_copy() for p in self._payments if p.user_id == user_id]
        # newest first; ties keep the later append first
        rows.reverse()
        rows.sort(key=lambda p: p.created_at or _EPOCH, reverse=True)
        return rows
