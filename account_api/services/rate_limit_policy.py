"""Pure attempt-limit evaluation.

``evaluate`` decides what a check observes for a record at a given instant and
which record state (if any) has to be written back. It never touches the
store, so lockout and reset transitions can be tested with plain values.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from account_api.schemas.rate_limit import RateLimitRecord, RateLimitStatus


@dataclass(frozen=True)
class AttemptPolicy:
    """Attempt threshold and lockout window.

    Attributes:
        max_attempts: Attempts allowed before the action is locked.
        lockout: How long a lock lasts once applied.
    """

    max_attempts: int = 3
    lockout: timedelta = timedelta(hours=2)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.lockout <= timedelta(0):
            raise ValueError("lockout must be positive")


@dataclass(frozen=True)
class Evaluation:
    """Outcome of evaluating a record.

    Attributes:
        status: What the caller is told.
        record: New record state to persist, or None when nothing changed.
    """

    status: RateLimitStatus
    record: RateLimitRecord | None = None


def lockout_reason(minutes: int) -> str:
    return f"Too many attempts. Try again in {minutes} minutes."


def minutes_until(until: datetime, now: datetime) -> int:
    """Whole minutes left until ``until``, rounded up."""
    return math.ceil((until - now).total_seconds() / 60)


def open_status(attempts: int, policy: AttemptPolicy) -> RateLimitStatus:
    return RateLimitStatus(
        attempts=attempts,
        max_attempts=policy.max_attempts,
        remaining=max(0, policy.max_attempts - attempts),
        blocked=False,
        reset_time=None,
    )


def blocked_status(
    attempts: int, blocked_until: datetime, now: datetime, policy: AttemptPolicy
) -> RateLimitStatus:
    return RateLimitStatus(
        attempts=attempts,
        max_attempts=policy.max_attempts,
        remaining=0,
        blocked=True,
        reset_time=blocked_until,
        reason=lockout_reason(minutes_until(blocked_until, now)),
    )


def evaluate(record: RateLimitRecord, now: datetime, policy: AttemptPolicy) -> Evaluation:
    """Evaluate ``record`` at ``now``.

    Order matters: an elapsed lock resets the record before anything else,
    an active lock wins over the counter, and only then is the counter
    compared with the threshold.

    Args:
        record: Current stored state.
        now: Evaluation instant (timezone-aware).
        policy: Threshold and lockout window.

    Returns:
        Evaluation with the caller-facing status and the record to write.
    """

    if record.blocked_until is not None and record.blocked_until <= now:
        reset = record.model_copy(
            update={
                "attempt_count": 0,
                "is_blocked": False,
                "blocked_until": None,
                "first_attempt_at": now,
            }
        )
        return Evaluation(status=open_status(0, policy), record=reset)

    if record.is_blocked and record.blocked_until is not None:
        return Evaluation(
            status=blocked_status(record.attempt_count, record.blocked_until, now, policy)
        )

    if record.attempt_count >= policy.max_attempts:
        blocked_until = now + policy.lockout
        blocked = record.model_copy(
            update={"is_blocked": True, "blocked_until": blocked_until}
        )
        return Evaluation(
            status=blocked_status(record.attempt_count, blocked_until, now, policy),
            record=blocked,
        )

    return Evaluation(status=open_status(record.attempt_count, policy))


def count_attempt(record: RateLimitRecord, now: datetime) -> RateLimitRecord:
    """Return ``record`` with one more attempt counted."""

    return record.model_copy(
        update={
            "attempt_count": record.attempt_count + 1,
            "last_attempt_at": now,
            "first_attempt_at": record.first_attempt_at or now,
        }
    )
