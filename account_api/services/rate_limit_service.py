"""Attempt rate limiting for sensitive actions (OTP send/verify, password reset).

The service is a thin persistence loop around ``rate_limit_policy.evaluate``:
read the record, evaluate it, write the result back conditionally on the
version that was read, and start over when another request won the race.

Failure policy:
- ``check`` fails open: if the store is unavailable the caller gets the
  default "0 attempts, not blocked" status.
- ``increment`` propagates store failures; ``record_attempt`` logs them and
  still answers with the evaluated status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from account_api.adapters.rate_limit.base import AbstractRateLimitStore
from account_api.core.errors import ConflictAppError, PersistenceAppError, ValidationAppError
from account_api.schemas.rate_limit import RateLimitRecord, RateLimitStatus
from account_api.services.rate_limit_policy import (
    AttemptPolicy,
    count_attempt,
    evaluate,
    open_status,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require(user_id: str, action_type: str) -> None:
    if not user_id or not action_type:
        raise ValidationAppError(
            code="missing_rate_limit_key",
            message="Missing userId or actionType",
        )


class RateLimitService:
    """Check and count attempts per (user_id, action_type)."""

    def __init__(
        self,
        store: AbstractRateLimitStore,
        *,
        policy: AttemptPolicy | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_write_attempts: int = 3,
    ) -> None:
        if max_write_attempts < 1:
            raise ValueError("max_write_attempts must be >= 1")
        self.store = store
        self.policy = policy or AttemptPolicy()
        self._clock = clock
        self._max_write_attempts = max_write_attempts

    def _get_or_create(self, user_id: str, action_type: str, now: datetime) -> RateLimitRecord:
        record = self.store.get(user_id, action_type)
        if record is not None:
            return record
        try:
            return self.store.insert(
                RateLimitRecord(
                    user_id=user_id,
                    action_type=action_type,
                    attempt_count=0,
                    first_attempt_at=now,
                )
            )
        except ConflictAppError:
            # Created concurrently; use the winner's row.
            record = self.store.get(user_id, action_type)
            if record is None:
                raise
            return record

    def _write_conflict(self, user_id: str, action_type: str) -> ConflictAppError:
        logger.warning(
            "rate_limit.write_conflict",
            extra={"user_id": user_id, "action_type": action_type},
        )
        return ConflictAppError(
            code="rate_limit_write_conflict",
            message="Rate limit record is being updated concurrently. Try again.",
        )

    def _check(self, user_id: str, action_type: str) -> RateLimitStatus:
        for _ in range(self._max_write_attempts):
            now = self._clock()
            record = self._get_or_create(user_id, action_type, now)
            outcome = evaluate(record, now, self.policy)
            if outcome.record is None:
                return outcome.status
            if self.store.update(outcome.record, expected_version=record.version) is not None:
                if outcome.status.blocked:
                    logger.warning(
                        "rate_limit.blocked",
                        extra={
                            "user_id": user_id,
                            "action_type": action_type,
                            "attempts": record.attempt_count,
                            "blocked_until": outcome.record.blocked_until,
                        },
                    )
                else:
                    logger.info(
                        "rate_limit.lockout_expired",
                        extra={"user_id": user_id, "action_type": action_type},
                    )
                return outcome.status
        raise self._write_conflict(user_id, action_type)

    def check(self, user_id: str, action_type: str) -> RateLimitStatus:
        """Report the attempt budget, applying lazy reset and lockout.

        Args:
            user_id: User the action belongs to.
            action_type: Sensitive action being limited.

        Returns:
            RateLimitStatus; ``blocked`` is True while locked out.

        Raises:
            ValidationAppError: If either key part is empty.
            ConflictAppError: If concurrent writers keep winning.
        """

        _require(user_id, action_type)
        try:
            return self._check(user_id, action_type)
        except PersistenceAppError as exc:
            logger.error(
                "rate_limit.check_failed_open",
                extra={
                    "user_id": user_id,
                    "action_type": action_type,
                    "error_code": exc.code,
                },
            )
            return open_status(0, self.policy)

    def increment(self, user_id: str, action_type: str) -> bool:
        """Count one attempt. Call only after a real attempt was made.

        Raises:
            ValidationAppError: If either key part is empty.
            PersistenceAppError: If the store is unavailable.
            ConflictAppError: If concurrent writers keep winning.
        """

        _require(user_id, action_type)
        for _ in range(self._max_write_attempts):
            now = self._clock()
            record = self.store.get(user_id, action_type)
            if record is None:
                try:
                    self.store.insert(
                        RateLimitRecord(
                            user_id=user_id,
                            action_type=action_type,
                            attempt_count=1,
                            first_attempt_at=now,
                            last_attempt_at=now,
                        )
                    )
                except ConflictAppError:
                    continue
                return True
            if self.store.update(count_attempt(record, now), expected_version=record.version) is not None:
                logger.info(
                    "rate_limit.attempt_counted",
                    extra={
                        "user_id": user_id,
                        "action_type": action_type,
                        "attempts": record.attempt_count + 1,
                    },
                )
                return True
        raise self._write_conflict(user_id, action_type)

    def record_attempt(self, user_id: str, action_type: str) -> RateLimitStatus:
        """Check and count in one version-checked write.

        A blocked caller (or one whose check crosses the threshold) is not
        counted. Otherwise the attempt is counted and the post-increment
        status returned.

        Raises:
            ValidationAppError: If either key part is empty.
            ConflictAppError: If concurrent writers keep winning.
        """

        _require(user_id, action_type)
        status: RateLimitStatus | None = None
        try:
            for _ in range(self._max_write_attempts):
                now = self._clock()
                record = self._get_or_create(user_id, action_type, now)
                outcome = evaluate(record, now, self.policy)
                status = outcome.status
                if status.blocked:
                    if outcome.record is None:
                        return status
                    if self.store.update(outcome.record, expected_version=record.version) is not None:
                        logger.warning(
                            "rate_limit.blocked",
                            extra={
                                "user_id": user_id,
                                "action_type": action_type,
                                "attempts": record.attempt_count,
                            },
                        )
                        return status
                    continue

                counted = count_attempt(outcome.record or record, now)
                if self.store.update(counted, expected_version=record.version) is not None:
                    return open_status(counted.attempt_count, self.policy)
        except PersistenceAppError as exc:
            logger.error(
                "rate_limit.record_attempt_failed_open",
                extra={
                    "user_id": user_id,
                    "action_type": action_type,
                    "error_code": exc.code,
                },
            )
            return status or open_status(0, self.policy)
        raise self._write_conflict(user_id, action_type)
