"""Mutation context domain entities."""

from dataclasses import dataclass, field
from typing import Any

from .query_entry import QueryStatus
from .query_key import QueryKey


@dataclass(frozen=True)
class QuerySnapshot:
    """Copy of an entry's observable state, taken before an optimistic write.

    Attributes:
        key: The key the snapshot was taken from
        existed: False if there was no entry for the key
        status: Status at snapshot time
        data: Deep copy of the payload at snapshot time
        error: Error at snapshot time
        fetched_at: Fetch time at snapshot time
    """

    key: QueryKey
    existed: bool
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: BaseException | None = None
    fetched_at: float | None = None


@dataclass
class MutationContext:
    """Per-invocation record returned by ``on_mutate``.

    Attributes:
        previous_snapshot: State to restore if the write fails
        metadata: Arbitrary caller-supplied values
    """

    previous_snapshot: QuerySnapshot | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
