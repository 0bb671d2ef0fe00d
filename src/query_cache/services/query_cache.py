"""In-memory query cache.

The cache is the only writer of ``QueryEntry`` objects. Every write goes
through ``set``, which notifies the key's subscribers synchronously once the
write is complete.
"""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from query_cache.config import settings
from query_cache.entities import QueryEntry, QueryKey, QueryStatus, hash_key, matches_key, normalize_key
from query_cache.protocols import QueryListener

from .subscription_registry import SubscriptionRegistry, SubscriptionToken

logger = logging.getLogger(__name__)


class CacheEventType(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    REMOVED = "removed"


@dataclass(frozen=True)
class CacheEvent:
    """Cache-wide notification, delivered to ``on_event`` callbacks."""

    type: CacheEventType
    entry: QueryEntry[Any]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Returned by ``QueryCache.subscribe``; pass it to ``unsubscribe``."""

    token: SubscriptionToken
    listener: QueryListener

    @property
    def key(self) -> QueryKey:
        return self.token.key


class QueryCache:
    """Keyed store of query entries.

    Example:
        ```python
        cache = QueryCache(stale_time=30, retention=300)
        handle = cache.subscribe(["posts"], lambda entry: print(entry.status))
        cache.set(["posts"], status=QueryStatus.SUCCESS, data=[...])
        cache.invalidate(["posts"])  # also stales ("posts", {"page": 2})
        cache.unsubscribe(handle)
        ```
    """

    _WRITABLE = frozenset(
        {
            "status",
            "data",
            "error",
            "fetched_at",
            "stale_time",
            "is_invalidated",
            "failure_count",
            "query_fn",
        }
    )

    def __init__(
        self,
        stale_time: float | None = None,
        retention: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            stale_time: Default freshness window in seconds. Defaults to settings.
            retention: Seconds an unreferenced entry is kept. Defaults to settings.
            clock: Time source (monotonic seconds). Defaults to time.monotonic.
        """
        self._stale_time = settings.query_stale_time if stale_time is None else stale_time
        self._clock = clock or time.monotonic
        self._entries: dict[str, QueryEntry[Any]] = {}
        self._listeners: dict[str, dict[int, QueryListener]] = {}
        self._event_callbacks: list[Callable[[CacheEvent], None]] = []
        self._eviction_guards: list[Callable[[QueryKey], bool]] = []
        self._registry = SubscriptionRegistry(
            retention=settings.query_retention if retention is None else retention,
            on_expire=self._evict,
            on_count=self._track_subscribers,
            clock=self._clock,
        )

    @property
    def clock(self) -> Callable[[], float]:
        return self._clock

    @property
    def stale_time(self) -> float:
        return self._stale_time

    @property
    def registry(self) -> SubscriptionRegistry:
        """Get the subscription registry (for testing)."""
        return self._registry

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Sequence[Any]) -> bool:
        return self.get(key) is not None

    def get(self, key: Sequence[Any]) -> QueryEntry[Any] | None:
        """Return the entry for a key, or None."""
        return self._entries.get(hash_key(normalize_key(key)))

    def build(
        self,
        key: Sequence[Any],
        stale_time: float | None = None,
        query_fn: Callable[[], Awaitable[Any]] | None = None,
    ) -> QueryEntry[Any]:
        """Return the entry for a key, creating an idle one if missing.

        Args:
            key: The query key
            stale_time: Freshness window for this key, overrides the default
            query_fn: Fetch function to remember for refetches

        Returns:
            The entry
        """
        key = normalize_key(key)
        key_hash = hash_key(key)
        entry = self._entries.get(key_hash)

        if entry is None:
            entry = QueryEntry(
                key=key,
                key_hash=key_hash,
                stale_time=self._stale_time if stale_time is None else stale_time,
                query_fn=query_fn,
                updated_at=self._clock(),
            )
            self._entries[key_hash] = entry
            self._registry.track(key)
            logger.debug("Created cache entry for %s", key)
            self._emit(CacheEventType.ADDED, entry)
            return entry

        if stale_time is not None:
            entry.stale_time = stale_time
        if query_fn is not None:
            entry.query_fn = query_fn
        return entry

    def set(self, key: Sequence[Any], **patch: Any) -> QueryEntry[Any]:
        """Write fields of an entry and notify its subscribers.

        Writing ``status=SUCCESS`` clears ``error`` and stamps ``fetched_at``
        with the current time unless one is given.

        Args:
            key: The query key (entry is created if missing)
            **patch: Entry fields to write

        Returns:
            The updated entry

        Raises:
            ValueError: On unknown fields or a write that breaks the status invariants
        """
        unknown = set(patch) - self._WRITABLE
        if unknown:
            raise ValueError(f"Cannot set query entry fields: {sorted(unknown)}")

        status = patch.get("status")
        if status is not None:
            status = QueryStatus(status)
            patch["status"] = status

        entry = self.build(key)

        if status is QueryStatus.ERROR and patch.get("error", entry.error) is None:
            raise ValueError("An entry in error status must carry an error")

        now = self._clock()
        if status is QueryStatus.SUCCESS:
            patch["error"] = None
            patch.setdefault("fetched_at", now)

        for name, value in patch.items():
            setattr(entry, name, value)
        entry.updated_at = now

        self._notify(entry)
        self._emit(CacheEventType.UPDATED, entry)
        return entry

    def is_stale(self, entry: QueryEntry[Any]) -> bool:
        """Check whether an entry is past its freshness window (or invalidated)."""
        return entry.is_stale_at(self._clock())

    def find_all(self, key: Sequence[Any] | None = None, exact: bool = False) -> list[QueryEntry[Any]]:
        """Return entries addressed by a key filter (all entries if None)."""
        if key is None:
            return list(self._entries.values())

        filter_key = normalize_key(key)
        return [e for e in list(self._entries.values()) if matches_key(e.key, filter_key, exact=exact)]

    def invalidate(self, key: Sequence[Any], exact: bool = False) -> list[QueryEntry[Any]]:
        """Mark entries stale so the next access refetches them.

        Args:
            key: Key, or key prefix when ``exact`` is False
            exact: Only invalidate the entry whose key equals ``key``

        Returns:
            The invalidated entries
        """
        entries = self.find_all(key, exact=exact)
        for entry in entries:
            self.set(entry.key, is_invalidated=True)

        logger.debug("Invalidated %d entries for %s (exact=%s)", len(entries), key, exact)
        return entries

    def subscribe(self, key: Sequence[Any], listener: QueryListener) -> SubscriptionHandle:
        """Register a listener for a key and count it as a consumer."""
        entry = self.build(key)
        token = self._registry.attach(entry.key)
        self._listeners.setdefault(entry.key_hash, {})[token.id] = listener
        return SubscriptionHandle(token=token, listener=listener)

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Remove a listener. Unsubscribing twice is a no-op."""
        listeners = self._listeners.get(handle.token.key_hash)
        if listeners is not None:
            listeners.pop(handle.token.id, None)
            if not listeners:
                del self._listeners[handle.token.key_hash]

        self._registry.detach(handle.token)

    def subscriber_count(self, key: Sequence[Any]) -> int:
        return self._registry.count(key)

    def remove(self, key: Sequence[Any]) -> bool:
        """Drop an entry and its listeners.

        Returns:
            True if an entry was removed
        """
        key_hash = hash_key(normalize_key(key))
        entry = self._entries.pop(key_hash, None)
        if entry is None:
            return False

        self._listeners.pop(key_hash, None)
        self._registry.forget(entry.key)
        logger.debug("Removed cache entry for %s", entry.key)
        self._emit(CacheEventType.REMOVED, entry)
        return True

    def clear(self) -> int:
        """Remove all entries.

        Returns:
            Number of entries removed
        """
        keys = [entry.key for entry in list(self._entries.values())]
        for key in keys:
            self.remove(key)
        return len(keys)

    def on_event(self, callback: Callable[[CacheEvent], None]) -> Callable[[], None]:
        """Register a cache-wide event callback.

        Returns:
            A function that unregisters the callback
        """
        self._event_callbacks.append(callback)

        def unregister() -> None:
            if callback in self._event_callbacks:
                self._event_callbacks.remove(callback)

        return unregister

    def add_eviction_guard(self, guard: Callable[[QueryKey], bool]) -> None:
        """Register a predicate that keeps a key alive past its retention window.

        While any guard returns True for a key, retention expiry skips it.
        Whoever holds the key must call ``registry.track(key)`` once it lets go
        so the window starts again.
        """
        self._eviction_guards.append(guard)

    def get_stats(self) -> dict:
        """Get cache statistics.

        Returns:
            Dictionary with cache statistics
        """
        entries = list(self._entries.values())
        return {
            "total_entries": len(entries),
            "active_entries": sum(1 for e in entries if e.subscriber_count > 0),
            "stale_entries": sum(1 for e in entries if self.is_stale(e)),
            "stale_time": self._stale_time,
            "retention": self._registry.retention,
        }

    def close(self) -> None:
        """Stop retention timers."""
        self._registry.close()

    def _notify(self, entry: QueryEntry[Any]) -> None:
        for listener in list(self._listeners.get(entry.key_hash, {}).values()):
            try:
                listener(entry)
            except Exception:
                logger.exception("Query listener failed for %s", entry.key)

    def _emit(self, event_type: CacheEventType, entry: QueryEntry[Any]) -> None:
        event = CacheEvent(type=event_type, entry=entry)
        for callback in list(self._event_callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Cache event callback failed for %s", entry.key)

    def _track_subscribers(self, key: QueryKey, count: int) -> None:
        entry = self._entries.get(hash_key(key))
        if entry is not None:
            entry.subscriber_count = count

    def _evict(self, key: QueryKey) -> bool:
        if any(guard(key) for guard in self._eviction_guards):
            return False
        self.remove(key)
        return True
