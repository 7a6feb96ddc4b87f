"""Pydantic schemas for attempt rate limiting."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RateLimitRecord(BaseModel):
    """Stored attempt counter for one (user_id, action_type) pair."""

    user_id: str
    action_type: str
    attempt_count: int = Field(0, ge=0)
    is_blocked: bool = False
    first_attempt_at: datetime | None = None
    last_attempt_at: datetime | None = None
    blocked_until: datetime | None = None
    version: int = Field(0, ge=0)


class RateLimitRequest(BaseModel):
    """Body of the rate limit endpoints."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str = Field("", description="Supabase user id the attempt belongs to.")
    action_type: str = Field(
        "", description="Sensitive action being limited (e.g. otp_send, otp_verify)."
    )


class RateLimitStatus(BaseModel):
    """Attempt budget for a (user, action) pair as reported to callers."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    attempts: int = Field(..., description="Attempts counted in the current window.")
    max_attempts: int = Field(..., description="Attempts allowed before lockout.")
    remaining: int = Field(..., description="Attempts left (0 when blocked).")
    blocked: bool = Field(..., description="Whether the action is locked out.")
    reset_time: datetime | None = Field(
        None, description="When the lockout ends (null when not blocked)."
    )
    reason: str | None = Field(
        None, description="Human-readable lockout message including minutes left."
    )


class IncrementResponse(BaseModel):
    """Result of counting one attempt."""

    success: bool
