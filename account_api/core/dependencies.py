"""Service providers for FastAPI routes.

Services are built once per process from settings and cached in-module so
the in-memory stores keep their state across requests. Routes depend on the
provider functions only; tests swap them via ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from account_api.adapters.store_factory import (
    create_rate_limit_store,
    create_subscription_store,
)
from account_api.core.config import settings
from account_api.services.rate_limit_policy import AttemptPolicy
from account_api.services.rate_limit_service import RateLimitService
from account_api.services.subscription_service import SubscriptionService
from account_api.services.subscription_transitions import BillingPolicy

logger = logging.getLogger(__name__)


_rate_limit_service: RateLimitService | None = None
_rate_limit_config: tuple | None = None
_subscription_service: SubscriptionService | None = None
_subscription_config: tuple | None = None


def get_rate_limit_service() -> RateLimitService:
    """Return the process-wide rate limit service.

    Rebuilt when the relevant settings change (primarily in tests).
    """

    global _rate_limit_service, _rate_limit_config

    config = (
        settings.app.storage_backend,
        settings.app.store_conflict_retries,
        settings.rate_limit.max_attempts,
        settings.rate_limit.lockout_minutes,
    )
    if _rate_limit_service is None or _rate_limit_config != config:
        _rate_limit_service = RateLimitService(
            create_rate_limit_store(),
            policy=AttemptPolicy(
                max_attempts=settings.rate_limit.max_attempts,
                lockout=timedelta(minutes=settings.rate_limit.lockout_minutes),
            ),
            max_write_attempts=settings.app.store_conflict_retries,
        )
        _rate_limit_config = config
        logger.info(
            "rate_limit.service_initialized",
            extra={
                "storage_backend": settings.app.storage_backend,
                "max_attempts": settings.rate_limit.max_attempts,
                "lockout_minutes": settings.rate_limit.lockout_minutes,
            },
        )

    return _rate_limit_service


def get_subscription_service() -> SubscriptionService:
    """Return the process-wide subscription service."""

    global _subscription_service, _subscription_config

    billing = settings.billing
    config = (
        settings.app.storage_backend,
        settings.app.store_conflict_retries,
        settings.app.public_base_url,
        billing.default_gateway,
        billing.grace_period_days,
        billing.max_payment_retries,
        billing.pending_max_age_hours,
        billing.webhook_secret,
    )
    if _subscription_service is None or _subscription_config != config:
        _subscription_service = SubscriptionService(
            create_subscription_store(),
            policy=BillingPolicy(
                grace_period_days=billing.grace_period_days,
                max_payment_retries=billing.max_payment_retries,
            ),
            max_write_attempts=settings.app.store_conflict_retries,
            default_gateway=billing.default_gateway,
            public_base_url=settings.app.public_base_url,
            webhook_secret=billing.webhook_secret,
            pending_max_age=timedelta(hours=billing.pending_max_age_hours),
        )
        _subscription_config = config
        logger.info(
            "subscription.service_initialized",
            extra={
                "storage_backend": settings.app.storage_backend,
                "default_gateway": billing.default_gateway,
            },
        )

    return _subscription_service


def reset_services() -> None:
    """Drop cached services so the next request rebuilds them."""

    global _rate_limit_service, _rate_limit_config
    global _subscription_service, _subscription_config
    _rate_limit_service = _rate_limit_config = None
    _subscription_service = _subscription_config = None
