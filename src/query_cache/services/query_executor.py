"""Query executor.

Runs fetch functions and drives entries through
``idle -> loading -> success | error``. Failed attempts are retried with
exponential backoff (tenacity); only the final failure reaches the entry.
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from tenacity import AsyncRetrying, before_sleep_log, stop_after_attempt, wait_exponential

from query_cache.config import settings
from query_cache.entities import QueryEntry, QueryStatus, hash_key, normalize_key

from .query_cache import CacheEvent, CacheEventType, QueryCache

logger = logging.getLogger(__name__)


class QueryExecutor:
    """Fetches query data into a QueryCache.

    At most one fetch per key is in flight; concurrent ``run`` calls for the
    same key share it. ``run`` never raises fetch errors, they end up on the
    entry as ``status=error``.

    Example:
        ```python
        executor = QueryExecutor(cache, retry_attempts=3, retry_delay=1.0)
        entry = await executor.run(["posts"], source.fetch_posts)
        print(entry.status, entry.data)
        ```
    """

    def __init__(
        self,
        cache: QueryCache,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        max_retry_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the executor.

        Args:
            cache: The cache to write results into (required).
            retry_attempts: Total attempts per fetch. Defaults to settings.
            retry_delay: Backoff multiplier in seconds. Defaults to settings.
            max_retry_delay: Upper bound for a single backoff. Defaults to settings.
            sleep: Coroutine used to wait between attempts.

        Raises:
            ValueError: If retry_attempts is below 1 or a delay is negative
        """
        self._cache = cache
        self._retry_attempts = (
            settings.query_retry_attempts if retry_attempts is None else retry_attempts
        )
        self._retry_delay = settings.query_retry_delay if retry_delay is None else retry_delay
        self._max_retry_delay = (
            settings.query_max_retry_delay if max_retry_delay is None else max_retry_delay
        )
        if self._retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self._retry_delay < 0 or self._max_retry_delay < 0:
            raise ValueError("Retry delays must not be negative")

        self._sleep = sleep
        self._in_flight: dict[str, asyncio.Task] = {}
        self._generations: dict[str, int] = {}
        self._previous_status: dict[str, tuple[QueryEntry[Any], QueryStatus]] = {}

        cache.on_event(self._on_cache_event)
        cache.add_eviction_guard(self.is_fetching)

    @property
    def retry_attempts(self) -> int:
        return self._retry_attempts

    @property
    def in_flight_count(self) -> int:
        return sum(1 for task in self._in_flight.values() if not task.done())

    def is_fetching(self, key: Sequence[Any]) -> bool:
        """Whether a fetch for the key is in flight."""
        task = self._in_flight.get(hash_key(normalize_key(key)))
        return task is not None and not task.done()

    async def run(
        self,
        key: Sequence[Any],
        fetch_fn: Callable[[], Awaitable[Any]] | None = None,
        retry_attempts: int | None = None,
    ) -> QueryEntry[Any]:
        """Fetch a key into the cache, or join the fetch already in flight.

        Args:
            key: The query key
            fetch_fn: Coroutine function producing the payload. Defaults to
                the function last registered on the entry.
            retry_attempts: Override the total number of attempts

        Returns:
            The entry after the fetch settled (or was cancelled)

        Raises:
            ValueError: If no fetch function is known for the key, or
                retry_attempts is below 1
        """
        if retry_attempts is not None and retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")

        entry = self._cache.build(key, query_fn=fetch_fn)
        fetch_fn = fetch_fn or entry.query_fn
        if fetch_fn is None:
            raise ValueError(f"No fetch function registered for query {entry.key}")

        task = self._in_flight.get(entry.key_hash)
        if task is None or task.done():
            task = self._start(
                entry,
                fetch_fn,
                self._retry_attempts if retry_attempts is None else retry_attempts,
            )
        else:
            logger.debug("Joining in-flight fetch for %s", entry.key)

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # Only swallow the fetch's own cancellation, not ours
            if not task.cancelled():
                raise

        return entry

    def cancel(self, key: Sequence[Any]) -> bool:
        """Cancel the in-flight fetch for a key.

        The cancelled fetch's result is discarded and the entry goes back to
        the status it had before the fetch began.

        Returns:
            True if a fetch was cancelled
        """
        key_hash = hash_key(normalize_key(key))
        task = self._in_flight.pop(key_hash, None)
        previous = self._previous_status.pop(key_hash, None)
        if task is None or task.done():
            return False

        self._generations[key_hash] = self._generations.get(key_hash, 0) + 1
        task.cancel()

        if previous is not None:
            entry, status = previous
            if entry.status is QueryStatus.LOADING:
                if self._cache.get(entry.key) is entry:
                    self._cache.set(entry.key, status=status)
                else:
                    # Already evicted: no listeners left to notify
                    entry.status = status

        logger.debug("Cancelled fetch for %s", key)
        return True

    async def close(self) -> None:
        """Cancel every in-flight fetch and wait for them to finish."""
        tasks = list(self._in_flight.values())
        for key_hash in list(self._in_flight):
            self._generations[key_hash] = self._generations.get(key_hash, 0) + 1
        for task in tasks:
            task.cancel()
        self._in_flight.clear()
        self._previous_status.clear()

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _start(
        self,
        entry: QueryEntry[Any],
        fetch_fn: Callable[[], Awaitable[Any]],
        attempts: int,
    ) -> asyncio.Task:
        key_hash = entry.key_hash
        generation = self._generations.get(key_hash, 0) + 1
        self._generations[key_hash] = generation
        self._previous_status[key_hash] = (entry, entry.status)

        # Keeps data and error: a refetch never blanks what is shown
        self._cache.set(entry.key, status=QueryStatus.LOADING)

        task = asyncio.create_task(self._fetch(entry, fetch_fn, attempts, generation))
        self._in_flight[key_hash] = task
        task.add_done_callback(functools.partial(self._release, entry))
        return task

    async def _fetch(
        self,
        entry: QueryEntry[Any],
        fetch_fn: Callable[[], Awaitable[Any]],
        attempts: int,
        generation: int,
    ) -> None:
        attempts_made = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self._retry_delay, max=self._max_retry_delay),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts_made += 1
                    data = await fetch_fn()
        except Exception as e:
            if not self._is_current(entry, generation):
                logger.debug("Discarding failure of superseded fetch for %s", entry.key)
                return

            logger.warning(
                "Query %s failed after %d attempt(s): %s", entry.key, attempts_made, e
            )
            self._cache.set(entry.key, status=QueryStatus.ERROR, error=e, failure_count=attempts_made)
            return

        if not self._is_current(entry, generation):
            logger.debug("Discarding result of superseded fetch for %s", entry.key)
            return

        self._cache.set(
            entry.key,
            status=QueryStatus.SUCCESS,
            data=data,
            is_invalidated=False,
            failure_count=0,
        )

    def _is_current(self, entry: QueryEntry[Any], generation: int) -> bool:
        if self._generations.get(entry.key_hash) != generation:
            return False
        # Evicted while fetching: do not resurrect the entry
        return self._cache.get(entry.key) is entry

    def _release(self, entry: QueryEntry[Any], task: asyncio.Task) -> None:
        if self._in_flight.get(entry.key_hash) is task:
            del self._in_flight[entry.key_hash]
            self._previous_status.pop(entry.key_hash, None)

        # Expiry is deferred while fetching; restart the retention window
        if self._cache.get(entry.key) is entry:
            self._cache.registry.track(entry.key)

    def _on_cache_event(self, event: CacheEvent) -> None:
        if event.type is CacheEventType.REMOVED:
            self.cancel(event.entry.key)
