"""Subscription registry.

Counts the consumers attached to each query key. When the last consumer
detaches, a retention timer starts; if nobody re-attaches before it fires,
the key is handed to ``on_expire`` for eviction.
"""

import asyncio
import itertools
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from query_cache.entities import QueryKey, hash_key, normalize_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionToken:
    """Opaque handle returned by ``attach``."""

    id: int
    key: QueryKey
    key_hash: str


class SubscriptionRegistry:
    """Tracks which consumers observe which keys.

    Retention timers run on the event loop (``loop.call_later``). When no
    loop is running the deadline is only recorded, and ``sweep()`` evicts
    keys whose deadline has passed.

    Example:
        ```python
        registry = SubscriptionRegistry(retention=300, on_expire=evict_query)
        token = registry.attach(("posts",))
        registry.detach(token)  # eviction in 5 minutes unless re-attached
        ```
    """

    def __init__(
        self,
        retention: float,
        on_expire: Callable[[QueryKey], bool | None],
        on_count: Callable[[QueryKey, int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the registry.

        Args:
            retention: Seconds an unreferenced key is kept; ``math.inf`` keeps forever.
            on_expire: Called with the key when its retention window elapses.
                Returning False keeps the key tracked without a deadline.
            on_count: Called with the key and its new count after every change.
            clock: Time source for sweep deadlines.
        """
        if retention < 0:
            raise ValueError("Retention must not be negative")

        self._retention = retention
        self._on_expire = on_expire
        self._on_count = on_count
        self._clock = clock
        self._ids = itertools.count(1)
        self._tokens: dict[int, SubscriptionToken] = {}
        self._counts: dict[str, int] = {}
        self._keys: dict[str, QueryKey] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._deadlines: dict[str, float] = {}

    @property
    def retention(self) -> float:
        return self._retention

    def track(self, key: Sequence[Any]) -> None:
        """Register a key nobody has attached to yet, starting its retention window."""
        key = normalize_key(key)
        key_hash = hash_key(key)
        self._keys[key_hash] = key
        if not self._counts.get(key_hash) and key_hash not in self._deadlines:
            self._start_retention(key_hash)

    def attach(self, key: Sequence[Any]) -> SubscriptionToken:
        """Attach a consumer to a key.

        Args:
            key: The query key

        Returns:
            Token to pass to ``detach``
        """
        key = normalize_key(key)
        key_hash = hash_key(key)
        self._cancel_retention(key_hash)

        token = SubscriptionToken(id=next(self._ids), key=key, key_hash=key_hash)
        self._tokens[token.id] = token
        self._keys[key_hash] = key

        count = self._counts.get(key_hash, 0) + 1
        self._counts[key_hash] = count
        self._report(key, count)
        return token

    def detach(self, token: SubscriptionToken) -> None:
        """Detach a consumer. Detaching the same token twice is a no-op."""
        if self._tokens.pop(token.id, None) is None:
            return

        count = self._counts.get(token.key_hash, 1) - 1
        if count > 0:
            self._counts[token.key_hash] = count
        else:
            self._counts.pop(token.key_hash, None)
        self._report(token.key, count)

        if count == 0:
            self._start_retention(token.key_hash)

    def count(self, key: Sequence[Any]) -> int:
        """Number of consumers attached to a key."""
        return self._counts.get(hash_key(normalize_key(key)), 0)

    def forget(self, key: Sequence[Any]) -> None:
        """Drop all state for a key that was removed from the cache."""
        key_hash = hash_key(normalize_key(key))
        self._cancel_retention(key_hash)
        if not self._counts.get(key_hash):
            self._keys.pop(key_hash, None)

    def sweep(self) -> list[QueryKey]:
        """Evict every key whose retention deadline has passed.

        Returns:
            The evicted keys
        """
        now = self._clock()
        expired = [h for h, deadline in self._deadlines.items() if deadline <= now]

        evicted = []
        for key_hash in expired:
            key = self._expire(key_hash)
            if key is not None:
                evicted.append(key)
        return evicted

    def close(self) -> None:
        """Cancel all pending retention timers."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._deadlines.clear()

    def _report(self, key: QueryKey, count: int) -> None:
        if self._on_count is not None:
            self._on_count(key, count)

    def _start_retention(self, key_hash: str) -> None:
        if math.isinf(self._retention):
            return

        self._cancel_retention(key_hash)
        self._deadlines[key_hash] = self._clock() + self._retention

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: left for sweep()
            return

        self._timers[key_hash] = loop.call_later(self._retention, self._expire, key_hash)

    def _cancel_retention(self, key_hash: str) -> None:
        self._deadlines.pop(key_hash, None)
        timer = self._timers.pop(key_hash, None)
        if timer is not None:
            timer.cancel()

    def _expire(self, key_hash: str) -> QueryKey | None:
        self._cancel_retention(key_hash)
        if self._counts.get(key_hash):
            return None

        key = self._keys.get(key_hash)
        if key is None:
            return None

        if self._on_expire(key) is False:
            # Kept alive; a later track() restarts the window
            logger.debug("Retention window elapsed for %s, eviction deferred", key)
            return None

        logger.debug("Retention window elapsed for %s, evicted", key)
        self._keys.pop(key_hash, None)
        return key
