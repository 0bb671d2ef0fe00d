"""Service layer for the query cache.

Architecture:
    QueryClient -> QueryExecutor -> QueryCache -> SubscriptionRegistry
                -> MutationRunner

Usage:
    ```python
    from query_cache.services import QueryClient

    # Using factory method (recommended)
    client = QueryClient.create()
    client = QueryClient.create(stale_time=30, retry_attempts=5)

    # Or manual creation
    cache = QueryCache(stale_time=30)
    client = QueryClient(cache=cache, executor=QueryExecutor(cache), mutations=MutationRunner())
    ```
"""

from .mutation_runner import MutationHooks, MutationRunner
from .query_cache import CacheEvent, CacheEventType, QueryCache, SubscriptionHandle
from .query_client import QueryClient
from .query_executor import QueryExecutor
from .query_observer import QueryObserver
from .subscription_registry import SubscriptionRegistry, SubscriptionToken

__all__ = [
    "CacheEvent",
    "CacheEventType",
    "MutationHooks",
    "MutationRunner",
    "QueryCache",
    "QueryClient",
    "QueryExecutor",
    "QueryObserver",
    "SubscriptionHandle",
    "SubscriptionRegistry",
    "SubscriptionToken",
]
