"""Supabase-backed rate limit store (``rate_limits`` table)."""

from __future__ import annotations

from supabase import Client

from account_api.adapters.rate_limit.base import AbstractRateLimitStore
from account_api.adapters.supabase_client import is_unique_violation, store_error
from account_api.core.errors import ConflictAppError
from account_api.schemas.rate_limit import RateLimitRecord

TABLE = "rate_limits"


class SupabaseRateLimitStore(AbstractRateLimitStore):
    """Stores counters in PostgREST; conditional updates filter on ``version``."""

    def __init__(self, client: Client) -> None:
        self.client = client

    def get(self, user_id: str, action_type: str) -> RateLimitRecord | None:
        try:
            result = (
                self.client.table(TABLE)
                .select("*")
                .eq("user_id", user_id)
                .eq("action_type", action_type)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise store_error(TABLE, "select", exc) from exc
        return RateLimitRecord.model_validate(result.data[0]) if result.data else None

    def insert(self, record: RateLimitRecord) -> RateLimitRecord:
        payload = record.model_dump(mode="json")
        payload["version"] = 0
        try:
            result = self.client.table(TABLE).insert(payload).execute()
        except Exception as exc:
            if is_unique_violation(exc):
                raise ConflictAppError(
                    code="record_exists",
                    message="Rate limit record already exists",
                ) from exc
            raise store_error(TABLE, "insert", exc) from exc
        if result.data:
            return RateLimitRecord.model_validate(result.data[0])
        return record.model_copy(update={"version": 0})

    def update(self, record: RateLimitRecord, *, expected_version: int) -> RateLimitRecord | None:
        payload = record.model_dump(mode="json", exclude={"user_id", "action_type"})
        payload["version"] = expected_version + 1
        try:
            result = (
                self.client.table(TABLE)
                .update(payload)
                .eq("user_id", record.user_id)
                .eq("action_type", record.action_type)
                .eq("version", expected_version)
                .execute()
            )
        except Exception as exc:
            raise store_error(TABLE, "update", exc) from exc
        return RateLimitRecord.model_validate(result.data[0]) if result.data else None
