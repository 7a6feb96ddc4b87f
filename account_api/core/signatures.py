"""Webhook signature verification (HMAC-SHA256, hex encoded)."""

from __future__ import annotations

import hashlib
import hmac
import logging

from account_api.core.errors import AuthenticationAppError

logger = logging.getLogger(__name__)


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    """Check ``signature`` against HMAC-SHA256(secret, body).

    The comparison is constant time. A missing secret is treated as a failed
    check so an unconfigured deployment never accepts events.

    Raises:
        AuthenticationAppError: If the secret or signature is missing or the
            signature does not match.
    """

    if not secret:
        logger.error("webhook.secret_not_configured")
        raise AuthenticationAppError(
            code="webhook_secret_not_configured",
            message="Webhook verification is not configured",
        )
    if not signature:
        logger.warning("webhook.signature_missing", extra={"body_length": len(body)})
        raise AuthenticationAppError(
            code="missing_signature",
            message="Missing webhook signature",
        )

    # Header values may hold any latin-1 text; compare_digest only takes ASCII str
    expected = sign_payload(secret, body).encode()
    provided = signature.strip().lower().encode("utf-8", "replace")
    if not hmac.compare_digest(expected, provided):
        logger.warning("webhook.signature_invalid", extra={"body_length": len(body)})
        raise AuthenticationAppError(
            code="invalid_signature",
            message="Invalid webhook signature",
        )
