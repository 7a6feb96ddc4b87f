"""Supabase client construction and error translation shared by the stores."""

from __future__ import annotations

import logging
from functools import lru_cache

from supabase import Client, create_client

from account_api.core.config import settings
from account_api.core.errors import PersistenceAppError, ValidationAppError

logger = logging.getLogger(__name__)

# PostgreSQL unique_violation
UNIQUE_VIOLATION = "23505"


@lru_cache(maxsize=1)
def get_supabase_client() -> Client:
    """Return a process-wide Supabase client using the service role key.

    The service role bypasses row level security, which server-side writes
    to the rate limit and billing tables need.

    Raises:
        ValidationAppError: If the project URL or service role key is missing.
    """

    if not settings.supabase.url or not settings.supabase.service_role_key:
        raise ValidationAppError(
            code="supabase_not_configured",
            message="Supabase storage requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY",
        )

    client = create_client(settings.supabase.url, settings.supabase.service_role_key)
    logger.info("supabase.client_created", extra={"supabase_url": settings.supabase.url})
    return client


def is_unique_violation(exc: Exception) -> bool:
    return getattr(exc, "code", None) == UNIQUE_VIOLATION


def store_error(table: str, operation: str, exc: Exception) -> PersistenceAppError:
    """Log a failed query and wrap it in a PersistenceAppError."""

    logger.error(
        "store.query_failed",
        extra={
            "table": table,
            "operation": operation,
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
        },
    )
    return PersistenceAppError(
        code="store_unavailable",
        message="Storage backend is unavailable",
        details={"context": {"table": table, "operation": operation}},
    )
