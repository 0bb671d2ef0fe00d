"""HTTP handlers for the post list.

Handlers play the part of the post list component: they read posts and
tags through the QueryClient, and submit new posts as optimistic mutations.
They convert between DTOs and service calls and map failures to HTTP errors.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import HTTPException, status

from query_cache.dto import CreatePostRequest, Post, PostListResponse
from query_cache.entities import MutationContext, QueryKey
from query_cache.errors import MutationError
from query_cache.protocols import PostsSource
from query_cache.services import MutationHooks, QueryClient, QueryObserver

logger = logging.getLogger(__name__)

POSTS_KEY: QueryKey = ("posts",)
TAGS_KEY: QueryKey = ("tags",)


def posts_key(page: int | None = None) -> QueryKey:
    """Query key of the post list, optionally for one page."""
    if page is None:
        return POSTS_KEY
    return (*POSTS_KEY, {"page": page})


def next_post_id(posts: list[Post]) -> int:
    """Id for a new post: one above the highest known id."""
    return max((post.id for post in posts), default=0) + 1


class PostListHandler:
    """HTTP handlers for the post list.

    Example:
        ```python
        handler = PostListHandler(query_client=client, source=repository)
        handler.mount()  # keep posts and tags observed, like a mounted component

        view = await handler.list_posts()
        created = await handler.create_post(CreatePostRequest(title="Hi", tags=["news"]))
        ```
    """

    def __init__(
        self,
        query_client: QueryClient,
        source: PostsSource,
        per_page: int | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            query_client: Client holding the query cache (required).
            source: Posts backend (required).
            per_page: Page size for paginated lists; the source default if None.
        """
        self._client = query_client
        self._source = source
        self._per_page = per_page
        self._observers: list[QueryObserver[Any]] = []

    def mount(self) -> None:
        """Start observing the full post list and the tags."""
        if self._observers:
            return
        self._observers = [
            self._client.observe(POSTS_KEY, self._posts_fn(None)),
            self._client.observe(TAGS_KEY, self._source.fetch_tags),
        ]

    def unmount(self) -> None:
        """Stop observing; entries are evicted after the retention window."""
        for observer in self._observers:
            observer.close()
        self._observers = []

    async def list_posts(self, page: int | None = None) -> PostListResponse:
        """Handle GET /posts requests.

        Query errors are rendered, not raised: the response carries
        ``status="error"`` and the error message.

        Args:
            page: Page number, or None for the full list

        Returns:
            PostListResponse with the current query state
        """
        result = await self._client.query(posts_key(page), self._posts_fn(page))

        return PostListResponse(
            status=result.status.value,
            posts=result.data or [],
            error=result.error_message if result.is_error else None,
            is_loading=result.is_loading,
            is_fetching=result.is_fetching,
            is_stale=result.is_stale,
            page=page,
        )

    async def list_tags(self) -> list[str]:
        """Handle GET /tags requests.

        Returns:
            Tag names, empty until they could be loaded
        """
        result = await self._client.query(TAGS_KEY, self._source.fetch_tags)
        return result.data or []

    async def create_post(self, request: CreatePostRequest) -> Post:
        """Handle POST /posts requests.

        The post is shown immediately (optimistic update), rolled back if the
        backend rejects it, and the post lists are refetched once the write
        settles.

        Args:
            request: The submitted form

        Returns:
            The created post

        Raises:
            HTTPException: 400 for an empty title or no tags, 503 if the post list
                cannot be loaded, 502 if the backend write fails
        """
        title = request.title.strip()
        if not title or not request.tags:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="A post needs a title and at least one tag",
            )

        current = await self._client.query(POSTS_KEY, self._posts_fn(None))
        if current.is_error:
            # Without the current list the next id could collide
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=f"Cannot load posts to assign an id: {current.error_message}",
            )

        new_post = Post(id=next_post_id(current.data or []), title=title, tags=request.tags)

        hooks = MutationHooks(
            on_mutate=self._optimistic_insert,
            on_error=self._rollback,
            on_settled=self._refresh_posts,
        )

        try:
            return await self._client.mutate(self._source.add_post, new_post, hooks)
        except MutationError as e:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Failed to create post: {e.cause or e}",
            ) from e

    def _posts_fn(self, page: int | None) -> Callable[[], Awaitable[list[Post]]]:
        async def fetch() -> list[Post]:
            return await self._source.fetch_posts(page=page, per_page=self._per_page)

        return fetch

    async def _optimistic_insert(self, post: Post) -> MutationContext:
        # A fetch finishing now would overwrite the optimistic list
        await self._client.cancel_queries(POSTS_KEY, exact=True)
        context = self._client.snapshot(POSTS_KEY, post_id=post.id)
        # Newest first, matching _sort=-id
        self._client.set_query_data(POSTS_KEY, lambda posts: [post, *(posts or [])])
        return context

    def _rollback(self, error: BaseException, post: Post, context: MutationContext | None) -> None:
        logger.info("Rolling back optimistic post %s: %s", post.id, error)
        self._client.restore(context)

    async def _refresh_posts(self, *_: Any) -> None:
        await self._client.invalidate_queries(POSTS_KEY)
