from __future__ import annotations

"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) so
tests can build a fresh app per module.
"""

from fastapi import FastAPI

from account_api.api.routes import health_router, rate_limit_router, subscription_router
from account_api.core.config import settings
from account_api.core.exception_handlers import setup_exception_handlers
from account_api.core.logging import configure_logging
from account_api.core.middleware import request_id_middleware
from account_api.core.openapi import apply_openapi_customizations


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Account API",
        description=(
            "Attempt rate limiting for OTP and other sensitive actions, and the "
            "subscription lifecycle of the chat app: plan status, recurring "
            "checkout through Pay.in or PayPal, cancellation, payment history "
            "and signed gateway webhooks."
        ),
        version="0.1.0",
        debug=settings.app.debug,
    )

    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(rate_limit_router, prefix="/v1")
    app.include_router(subscription_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
