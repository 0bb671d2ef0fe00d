"""Query observer: one mounted consumer of a query key."""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from query_cache.entities import QueryEntry, QueryKey, QueryResult

if TYPE_CHECKING:
    from .query_client import QueryClient

T = TypeVar("T")


class QueryObserver(Generic[T]):
    """Keeps a key subscribed and turns entry updates into QueryResults.

    Created by ``QueryClient.observe``. Closing the observer detaches it,
    which starts the key's retention window once nobody else observes it.
    """

    def __init__(
        self,
        client: "QueryClient",
        key: QueryKey,
        query_fn: Callable[[], Awaitable[T]],
        listener: Callable[[QueryResult[T]], None] | None = None,
    ) -> None:
        self._client = client
        self._key = key
        self._query_fn = query_fn
        self._listener = listener
        self._handle = client.cache.subscribe(key, self._on_entry)
        self._closed = False

    @property
    def key(self) -> QueryKey:
        return self._key

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def result(self) -> QueryResult[T]:
        """Current state of the observed query."""
        entry = self._client.cache.build(self._key)
        return self._client.result_for(entry)

    async def refetch(self) -> QueryResult[T]:
        """Fetch now, ignoring freshness."""
        entry = await self._client.executor.run(self._key, self._query_fn)
        return self._client.result_for(entry)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._client.cache.unsubscribe(self._handle)

    def __enter__(self) -> "QueryObserver[T]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _on_entry(self, entry: QueryEntry[Any]) -> None:
        if self._listener is not None:
            self._listener(self._client.result_for(entry))
