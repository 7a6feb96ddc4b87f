"""Factory functions for creating store instances from configuration."""

from account_api.adapters.rate_limit.base import AbstractRateLimitStore
from account_api.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from account_api.adapters.subscriptions.base import AbstractSubscriptionStore
from account_api.adapters.subscriptions.in_memory import InMemorySubscriptionStore
from account_api.core.config import settings
from account_api.core.errors import ValidationAppError

SUPPORTED_BACKENDS = ("memory", "supabase")


def _backend() -> str:
    backend = settings.app.storage_backend.lower()
    if backend not in SUPPORTED_BACKENDS:
        raise ValidationAppError(
            code="unknown_storage_backend",
            message=(
                f"Unknown storage backend: '{backend}'. "
                f"Supported backends: {', '.join(SUPPORTED_BACKENDS)}"
            ),
        )
    return backend


def create_rate_limit_store() -> AbstractRateLimitStore:
    """Instantiate the rate limit store selected by APP_STORAGE_BACKEND.

    Raises:
        ValidationAppError: If the backend is unknown or not configured.
    """
    if _backend() == "supabase":
        from account_api.adapters.rate_limit.supabase_store import SupabaseRateLimitStore
        from account_api.adapters.supabase_client import get_supabase_client

        return SupabaseRateLimitStore(get_supabase_client())

    return InMemoryRateLimitStore()


def create_subscription_store() -> AbstractSubscriptionStore:
    """Instantiate the subscription store selected by APP_STORAGE_BACKEND.

    Raises:
        ValidationAppError: If the backend is unknown or not configured.
    """
    if _backend() == "supabase":
        from account_api.adapters.subscriptions.supabase_store import SupabaseSubscriptionStore
        from account_api.adapters.supabase_client import get_supabase_client

        return SupabaseSubscriptionStore(get_supabase_client())

    return InMemorySubscriptionStore()
