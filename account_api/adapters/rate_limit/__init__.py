"""Rate limit storage adapters.

This package provides a small abstraction layer so development can run on an
in-memory store and production on Supabase without changing the limiter.
"""

from account_api.adapters.rate_limit.base import AbstractRateLimitStore
from account_api.adapters.rate_limit.in_memory import InMemoryRateLimitStore

__all__ = ["AbstractRateLimitStore", "InMemoryRateLimitStore"]
