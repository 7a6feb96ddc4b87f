"""Subscription and payment ledger storage adapters."""

from account_api.adapters.subscriptions.base import AbstractSubscriptionStore
from account_api.adapters.subscriptions.in_memory import InMemorySubscriptionStore

__all__ = ["AbstractSubscriptionStore", "InMemorySubscriptionStore"]
