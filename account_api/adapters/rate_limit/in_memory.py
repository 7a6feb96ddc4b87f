"""In-memory rate limit store.

Notes:
- Per-process only: running multiple workers gives each its own counters.
- Thread-safe: uses a lock around shared state.
"""

from __future__ import annotations

import threading

from account_api.adapters.rate_limit.base import AbstractRateLimitStore
from account_api.core.errors import ConflictAppError
from account_api.schemas.rate_limit import RateLimitRecord


class InMemoryRateLimitStore(AbstractRateLimitStore):
    """Dictionary-backed store used for development and tests."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[tuple[str, str], RateLimitRecord] = {}

    def get(self, user_id: str, action_type: str) -> RateLimitRecord | None:
        with self._lock:
            record = self._records.get((user_id, action_type))
            return record.model_copy() if record else None

    def insert(self, record: RateLimitRecord) -> RateLimitRecord:
        key = (record.user_id, record.action_type)
        with self._lock:
            if key in self._records:
                raise ConflictAppError(
                    code="record_exists",
                    message="Rate limit record already exists",
                )
            stored = record.model_copy(update={"version": 0})
            self._records[key] = stored
            return stored.model_copy()

    def update(self, record: RateLimitRecord, *, expected_version: int) -> RateLimitRecord | None:
        key = (record.user_id, record.action_type)
        with self._lock:
            current = self._records.get(key)
            if current is None or current.version != expected_version:
                return None
            stored = record.model_copy(update={"version": expected_version + 1})
            self._records[key] = stored
            return stored.model_copy()
