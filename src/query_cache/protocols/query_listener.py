"""Query listener protocol.

Subscribers of a query key are plain callables taking the updated entry.
"""

from typing import Any, Protocol

from query_cache.entities import QueryEntry


class QueryListener(Protocol):
    """Callback invoked synchronously after every write to a subscribed key."""

    def __call__(self, entry: QueryEntry[Any]) -> None: ...
