"""Caller authentication.

Two schemes are used:
- Service endpoints (rate limiting, reconciliation) take an X-API-Key checked
  against a comma-separated list from environment variables.
- User endpoints (subscriptions) take a Supabase access token as a Bearer
  token, verified locally with the project JWT secret.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from account_api.core.config import settings
from account_api.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.
    
    Args:
        keys_string: Comma-separated string of API keys, or None.
    
    Returns:
        Set of trimmed, non-empty API keys.
    
    Examples:
        >>> parse_api_keys("key1,key2,key3")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
        >>> parse_api_keys("")
        set()
    """
    if not keys_string:
        return set()
    
    keys = {key.strip() for key in keys_string.split(",") if key.strip()}
    return keys


def validate_api_key(provided_key: str) -> None:
    """Validate that provided API key matches configured keys.
    
    Pure validation logic without FastAPI dependencies for easy testing.
    
    Args:
        provided_key: API key to validate.
    
    Raises:
        AuthenticationAppError: If key is invalid or authentication is required but no keys configured.
    """
    if not settings.app.api_key_required:
        # Authentication disabled - allow all requests
        return
    
    valid_keys = parse_api_keys(settings.app.api_keys)
    
    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={
                "reason": "api_keys_not_configured",
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )
    
    if provided_key not in valid_keys:
        api_key_hash = hashlib.sha256(provided_key.encode()).hexdigest()[:16]
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": api_key_hash,
                "auth_required": settings.app.api_key_required,
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
            details={"context": {"provided_key_length": len(provided_key) if provided_key else 0}},
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for API key authentication.
    
    Validates the X-API-Key header against configured API keys.
    Can be disabled by setting APP_API_KEY_REQUIRED=false in configuration.
    
    Usage:
        @router.post("/protected", dependencies=[Depends(verify_api_key)])
        async def protected_endpoint():
            return {"message": "Authenticated!"}
    
    Args:
        x_api_key: API key from X-API-Key header (injected by FastAPI).
    
    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.api_key_required:
        # Authentication disabled - early return
        logger.debug(
            "auth.skipped",
            extra={"reason": "auth_required_false"},
        )
        return
    
    if not x_api_key:
        logger.warning(
            "auth.missing_key",
            extra={
                "auth_required": True,
                "api_key_present": False,
            },
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )
    
    try:
        validate_api_key(x_api_key)
        logger.info(
            "auth.success",
            extra={
                "auth_required": True,
                "api_key_present": True,
                "api_key_hash": hashlib.sha256(x_api_key.encode()).hexdigest()[:16],
            },
        )
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc


bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Authenticated end user taken from Supabase access token claims."""

    id: str
    email: str | None = None
    phone: str | None = None
    name: str | None = None


def decode_access_token(token: str) -> CurrentUser:
    """Verify a Supabase access token and return its user.

    Args:
        token: Raw JWT from the Authorization header.

    Returns:
        CurrentUser built from the ``sub``, ``email``, ``phone`` and
        ``user_metadata.name`` claims.

    Raises:
        AuthenticationAppError: If the secret is unset or the token is
            malformed, expired, for another audience, or has no subject.
    """
    secret = settings.supabase.jwt_secret
    if not secret:
        logger.error("auth.jwt_secret_not_configured")
        raise AuthenticationAppError(
            code="jwt_not_configured",
            message="Token verification is not configured",
            details={"hint": "Set SUPABASE_JWT_SECRET"},
        )

    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=settings.supabase.jwt_audience,
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationAppError(code="token_expired", message="Access token expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.warning("auth.invalid_token", extra={"error_type": type(exc).__name__})
        raise AuthenticationAppError(code="invalid_token", message="Unauthorized") from exc

    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationAppError(code="invalid_token", message="Token has no subject")

    metadata = claims.get("user_metadata") or {}
    return CurrentUser(
        id=user_id,
        email=claims.get("email") or None,
        phone=claims.get("phone") or None,
        name=metadata.get("name") or metadata.get("full_name"),
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> CurrentUser:
    """FastAPI dependency resolving the Bearer token to a CurrentUser.

    Raises:
        AuthenticationAppError: 401 when the header is missing or the token
            does not verify.
    """
    if credentials is None or not credentials.credentials.strip():
        raise AuthenticationAppError(code="missing_token", message="Unauthorized")

    user = decode_access_token(credentials.credentials.strip())
    logger.debug("auth.user_resolved", extra={"user_id": user.id})
    return user
