"""HTTP implementation of PostsSource.

Talks to a json-server style mock backend:

    GET  /posts?_sort=-id[&_page=N&_per_page=M]
    GET  /tags
    POST /posts   {"id": ..., "title": ..., "tags": [...]}

httpx does not raise on error statuses by itself; this repository turns
transport failures, non-2xx responses and malformed bodies into the
query_cache error types before anything reaches the cache.
"""

from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from query_cache.config import settings
from query_cache.dto import Post
from query_cache.errors import DecodeError, HttpStatusError, NetworkError, QueryCacheError

_posts_adapter = TypeAdapter(list[Post])
_tags_adapter = TypeAdapter(list[str])


class HttpPostsRepository:
    """json-server implementation of the PostsSource protocol.

    This class satisfies the PostsSource protocol through structural
    typing - no explicit inheritance needed.

    Example:
        ```python
        repository = HttpPostsRepository.create(base_url="http://localhost:5000")

        posts = await repository.fetch_posts()
        page = await repository.fetch_posts(page=2)
        created = await repository.add_post(Post(id=7, title="Hi", tags=["news"]))
        ```
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        per_page: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            base_url: Backend base URL. Defaults to settings.posts_api_url.
            timeout: Request timeout in seconds. Defaults to settings.http_timeout.
            per_page: Page size for paginated reads. Defaults to settings.posts_per_page.
            client: Preconfigured client; created lazily when None.
        """
        self._base_url = (base_url or settings.posts_api_url).rstrip("/")
        self._timeout = timeout or settings.http_timeout
        self._per_page = per_page or settings.posts_per_page
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-load the async HTTP client.

        Returns:
            The httpx.AsyncClient instance
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
        return self._client

    @property
    def base_url(self) -> str:
        return self._base_url

    @classmethod
    def create(
        cls,
        base_url: str | None = None,
        per_page: int | None = None,
    ) -> "HttpPostsRepository":
        """Factory method to create HttpPostsRepository with defaults.

        Args:
            base_url: Backend URL. If None, uses settings.
            per_page: Page size. If None, uses settings.

        Returns:
            Configured HttpPostsRepository
        """
        return cls(base_url=base_url, per_page=per_page)

    async def fetch_posts(self, page: int | None = None, per_page: int | None = None) -> list[Post]:
        """Fetch posts, newest first.

        Args:
            page: 1-based page number; None fetches the whole list
            per_page: Page size, only sent with ``page``

        Returns:
            The posts

        Raises:
            NetworkError: If the backend is unreachable
            HttpStatusError: If the backend answers with a non-2xx status
            DecodeError: If the body is not a list of posts
        """
        params: dict[str, Any] = {"_sort": "-id"}
        if page is not None:
            params["_page"] = page
            params["_per_page"] = per_page or self._per_page

        payload = await self._request("GET", "/posts", params=params)

        # json-server wraps paginated results: {"first": 1, ..., "data": [...]}
        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]

        return self._decode(_posts_adapter, payload, "/posts")

    async def fetch_tags(self) -> list[str]:
        """Fetch the available tags.

        Returns:
            Tag names
        """
        payload = await self._request("GET", "/tags")
        return self._decode(_tags_adapter, payload, "/tags")

    async def add_post(self, post: Post) -> Post:
        """Create a post.

        Args:
            post: The post to create

        Returns:
            The created post as echoed by the backend
        """
        payload = await self._request("POST", "/posts", json=post.model_dump(mode="json"))
        return self._decode(TypeAdapter(Post), payload, "/posts")

    async def is_available(self) -> bool:
        """Check if the backend answers.

        Returns:
            True if the tags endpoint can be read, False otherwise
        """
        try:
            await self.fetch_tags()
            return True
        except QueryCacheError:
            return False

    async def close(self) -> None:
        """Close the async HTTP client.

        Should be called when shutting down the application.
        """
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            error_msg = f"Posts API unreachable: {e}"
            if isinstance(e, httpx.ConnectError):
                error_msg += " (is json-server running?)"
            raise NetworkError(error_msg, url=url) from e

        if not response.is_success:
            raise HttpStatusError(response.status_code, str(response.url), response.reason_phrase)

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Response from {path} is not valid JSON", url=url) from e

    @staticmethod
    def _decode(adapter: TypeAdapter, payload: Any, path: str) -> Any:
        try:
            return adapter.validate_python(payload)
        except ValidationError as e:
            raise DecodeError(
                f"Unexpected response shape from {path}: {e.error_count()} validation error(s)"
            ) from e
