"""Repository layer for data access.

This layer hides the posts backend behind the PostsSource protocol, so the
cache and handlers can run against json-server, a real API, or an in-memory
fake in tests.
"""

from query_cache.protocols import PostsSource

from .http_posts_repository import HttpPostsRepository

__all__ = [
    "PostsSource",
    "HttpPostsRepository",
]
