from __future__ import annotations

from account_api.api.routes.health import router as health_router
from account_api.api.routes.rate_limit import router as rate_limit_router
from account_api.api.routes.subscription import router as subscription_router

__all__ = ["health_router", "rate_limit_router", "subscription_router"]
