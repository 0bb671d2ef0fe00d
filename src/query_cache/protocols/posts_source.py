"""Posts source protocol.

Defines the interface of the backend the post list talks to.

Implementations can include:
- json-server over HTTP (default)
- An in-memory fake for tests
"""

from typing import Protocol, runtime_checkable

from query_cache.dto import Post


@runtime_checkable
class PostsSource(Protocol):
    """Protocol for the posts backend.

    Any type that implements these methods satisfies the protocol,
    no explicit inheritance needed.

    Example:
        ```python
        from query_cache.protocols import PostsSource

        source: PostsSource = HttpPostsRepository.create()
        ```
    """

    async def fetch_posts(self, page: int | None = None, per_page: int | None = None) -> list[Post]:
        """Fetch posts, newest first.

        Args:
            page: 1-based page number, or None for the whole list
            per_page: Page size when ``page`` is given

        Returns:
            The posts
        """
        ...

    async def fetch_tags(self) -> list[str]:
        """Fetch the available tags.

        Returns:
            Tag names
        """
        ...

    async def add_post(self, post: Post) -> Post:
        """Create a post.

        Args:
            post: The post to create

        Returns:
            The created post as echoed by the backend
        """
        ...

    async def is_available(self) -> bool:
        """Check if the backend is reachable.

        Returns:
            True if available, False otherwise
        """
        ...
