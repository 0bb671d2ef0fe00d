"""Read-only view of a query entry for consumers."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from .query_entry import QueryEntry, QueryStatus
from .query_key import QueryKey

T = TypeVar("T")


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """What a subscribing component renders.

    ``status`` follows the entry state machine, so a background refresh
    reports ``loading`` while ``data`` still holds the previous payload.
    """

    key: QueryKey
    status: QueryStatus
    data: T | None
    error: BaseException | None
    fetched_at: float | None
    failure_count: int
    is_stale: bool
    is_fetching: bool

    @classmethod
    def from_entry(cls, entry: QueryEntry[T], is_stale: bool, is_fetching: bool) -> "QueryResult[T]":
        return cls(
            key=entry.key,
            status=entry.status,
            data=entry.data,
            error=entry.error,
            fetched_at=entry.fetched_at,
            failure_count=entry.failure_count,
            is_stale=is_stale,
            is_fetching=is_fetching,
        )

    @property
    def is_loading(self) -> bool:
        """First load in progress, nothing to show yet."""
        return self.status is QueryStatus.LOADING and self.fetched_at is None

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    @property
    def error_message(self) -> str | None:
        """Message string to display when the query failed."""
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__
