"""Query entry domain entity."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from .query_key import QueryKey

T = TypeVar("T")


class QueryStatus(str, Enum):
    """Lifecycle state of a cached query."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(eq=False)
class QueryEntry(Generic[T]):
    """Cached state for one query key.

    Entries are owned by the QueryCache and only written through
    ``QueryCache.set``. Consumers should read them through ``QueryResult``.

    Attributes:
        key: The normalized query key (never changes)
        key_hash: Canonical serialized form of the key
        status: Current lifecycle state
        data: Last successfully fetched payload
        error: Last failure, kept until the next success
        fetched_at: Clock time of the last successful write, None if never
        stale_time: Seconds after ``fetched_at`` before the entry is stale
        subscriber_count: Number of attached consumers
        is_invalidated: Set by invalidation, cleared by the next success
        failure_count: Attempts that failed during the last fetch
        updated_at: Clock time of the last write of any kind
        query_fn: Last fetch function registered for the key
    """

    key: QueryKey
    key_hash: str
    status: QueryStatus = QueryStatus.IDLE
    data: T | None = None
    error: BaseException | None = None
    fetched_at: float | None = None
    stale_time: float = 0.0
    subscriber_count: int = 0
    is_invalidated: bool = False
    failure_count: int = 0
    updated_at: float | None = None
    query_fn: Callable[[], Awaitable[Any]] | None = field(default=None, repr=False)

    @property
    def has_data(self) -> bool:
        """Whether a payload has ever been written."""
        return self.fetched_at is not None

    def is_stale_at(self, now: float) -> bool:
        """Check staleness at the given clock time."""
        if self.is_invalidated or self.fetched_at is None:
            return True
        return now - self.fetched_at > self.stale_time
