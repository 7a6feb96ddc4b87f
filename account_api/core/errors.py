"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    reset_time: str
    plan_type: str
    payment_gateway: str
    event: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when a caller cannot be authenticated (missing/invalid token or signature)."""


class NotFoundAppError(AppError):
    """Raised when a subscription or user record does not exist."""


class ConflictAppError(AppError):
    """Raised on duplicate inserts or when version-checked writes keep losing."""


class GatewayAppError(AppError):
    """Raised when a payment gateway call fails or answers non-2xx."""


class PersistenceAppError(AppError):
    """Raised when the backing store is unreachable or rejects a query."""
