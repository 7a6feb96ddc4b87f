"""Subscription and payment ledger store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from account_api.schemas.subscription import PaymentHistory, Subscription


class AbstractSubscriptionStore(ABC):
    """Persistence for subscription rows (one per user) and payment history.

    Subscription writes are conditional on the version the caller read, the
    same contract as the rate limit store. Payment rows are append-only,
    except that a webhook may withdraw the row it wrote when its subscription
    update failed.
    """

    @abstractmethod
    def get_by_user(self, user_id: str) -> Subscription | None:
        raise NotImplementedError

    @abstractmethod
    def get_by_subscription_id(self, subscription_id: str) -> Subscription | None:
        """Find a row by the gateway's external subscription id."""
        raise NotImplementedError

    @abstractmethod
    def insert(self, subscription: Subscription) -> Subscription:
        """Create a row.

        Raises:
            ConflictAppError: If the user already has a row.
            PersistenceAppError: If the backend is unavailable.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, subscription: Subscription, *, expected_version: int) -> Subscription | None:
        """Replace the row if its stored version still equals ``expected_version``.

        Returns:
            The stored row with its version bumped, or None on a lost race.
        """
        raise NotImplementedError

    @abstractmethod
    def list_pending_updated_before(self, cutoff: datetime) -> list[Subscription]:
        """Rows still ``pending`` whose last write is older than ``cutoff``."""
        raise NotImplementedError

    @abstractmethod
    def append_payment(self, payment: PaymentHistory) -> PaymentHistory:
        """Append a ledger row.

        Raises:
            ConflictAppError: If ``transaction_id`` is already recorded.
            PersistenceAppError: If the backend is unavailable.
        """
        raise NotImplementedError

    @abstractmethod
    def remove_payment(self, payment_id: str) -> None:
        """Delete a ledger row written by a webhook whose row update then failed.

        Raises:
            PersistenceAppError: If the backend is unavailable.
        """
        raise NotImplementedError

    @abstractmethod
    def has_transaction(self, transaction_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_payments(self, user_id: str) -> list[PaymentHistory]:
        """Ledger rows for a user, newest first."""
        raise NotImplementedError
