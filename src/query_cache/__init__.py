"""Query Cache - client-side server-state synchronization cache.

This package provides a layered architecture around an asyncio query cache:

Layers:
    - protocols: Interface contracts (PostsSource, QueryListener)
    - repositories: Data access implementations (json-server over HTTP)
    - services: Query cache, executor, mutation runner, subscriptions
    - handlers: Post list endpoint handlers
    - dto: Data transfer objects (API contracts)
    - entities: Domain models (internal)

Usage:
    ```python
    from query_cache.services import QueryClient

    # Using class method (recommended, like Path.home())
    client = QueryClient.create()
    client = QueryClient.create(stale_time=30)
    ```

For HTTP API:
    ```python
    from query_cache.api.app import app
    ```
"""

from query_cache.config import settings
from query_cache.dto import CreatePostRequest, Post
from query_cache.entities import MutationContext, QueryEntry, QueryKey, QueryResult, QueryStatus
from query_cache.errors import DecodeError, HttpStatusError, MutationError, NetworkError, QueryCacheError
from query_cache.handlers import PostListHandler
from query_cache.protocols import PostsSource, QueryListener
from query_cache.repositories import HttpPostsRepository
from query_cache.services import (
    MutationHooks,
    MutationRunner,
    QueryCache,
    QueryClient,
    QueryExecutor,
    SubscriptionRegistry,
)

__all__ = [
    # Configuration
    "settings",
    # Protocols (interfaces)
    "PostsSource",
    "QueryListener",
    # Services (cache core)
    "QueryClient",
    "QueryCache",
    "QueryExecutor",
    "MutationRunner",
    "MutationHooks",
    "SubscriptionRegistry",
    # Handlers (HTTP)
    "PostListHandler",
    # Repositories (data access)
    "HttpPostsRepository",
    # Entities (domain models)
    "QueryEntry",
    "QueryKey",
    "QueryResult",
    "QueryStatus",
    "MutationContext",
    # DTOs (API contracts)
    "Post",
    "CreatePostRequest",
    # Errors
    "QueryCacheError",
    "NetworkError",
    "HttpStatusError",
    "DecodeError",
    "MutationError",
]
