"""Rate limit store interface.

Services depend on this abstraction (not a concrete backend) so the in-memory
store used in development and tests can be swapped for Supabase without
touching the limiter logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from account_api.schemas.rate_limit import RateLimitRecord


class AbstractRateLimitStore(ABC):
    """Persistence for attempt counters keyed by (user_id, action_type).

    Every write is conditional on the record version the caller read, which
    lets concurrent checks detect that they lost a race instead of silently
    overwriting each other.
    """

    @abstractmethod
    def get(self, user_id: str, action_type: str) -> RateLimitRecord | None:
        """Fetch the record for a pair, or None when it does not exist.

        Raises:
            PersistenceAppError: If the backend is unavailable.
        """
        raise NotImplementedError

    @abstractmethod
    def insert(self, record: RateLimitRecord) -> RateLimitRecord:
        """Create a record.

        Returns:
            The stored record (version 0).

        Raises:
            ConflictAppError: If a record for the pair already exists.
            PersistenceAppError: If the backend is unavailable.
        """
        raise NotImplementedError

    @abstractmethod
    def update(self, record: RateLimitRecord, *, expected_version: int) -> RateLimitRecord | None:
        """Replace the record if its stored version still equals ``expected_version``.

        Returns:
            The stored record with its version bumped, or None when the
            stored version moved on (lost race).

        Raises:
            PersistenceAppError: If the backend is unavailable.
        """
        raise NotImplementedError
