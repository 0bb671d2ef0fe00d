"""Query client: the handle consumers share.

Bundles one QueryCache, one QueryExecutor and one MutationRunner. Pass the
client explicitly to whatever needs it; separate clients never share state,
which keeps tests isolated.
"""

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from typing import Any, TypeVar

from query_cache.entities import (
    MutationContext,
    QueryEntry,
    QueryResult,
    QuerySnapshot,
    QueryStatus,
    normalize_key,
)

from .mutation_runner import MutationHooks, MutationRunner
from .query_cache import QueryCache
from .query_executor import QueryExecutor
from .query_observer import QueryObserver

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueryClient:
    """Entry point for reading, observing and mutating server state.

    Example:
        ```python
        from query_cache.services import QueryClient

        async with QueryClient.create(stale_time=30) as client:
            result = await client.query(["posts"], source.fetch_posts)
            print(result.status, result.data)

            observer = client.observe(["posts"], source.fetch_posts, listener=render)
            await client.invalidate_queries(["posts"])  # refetches, render() sees it
            observer.close()
        ```
    """

    def __init__(
        self,
        cache: QueryCache,
        executor: QueryExecutor,
        mutations: MutationRunner,
    ) -> None:
        """Initialize the client.

        Args:
            cache: Query cache (required).
            executor: Executor writing into ``cache`` (required).
            mutations: Mutation runner (required).
        """
        self._cache = cache
        self._executor = executor
        self._mutations = mutations
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def create(
        cls,
        stale_time: float | None = None,
        retention: float | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        max_retry_delay: float | None = None,
        clock: Callable[[], float] | None = None,
    ) -> "QueryClient":
        """Factory method to create a QueryClient with sensible defaults.

        Every argument left as None falls back to settings.

        Args:
            stale_time: Default freshness window in seconds.
            retention: Seconds unreferenced entries are kept (``math.inf`` for forever).
            retry_attempts: Total attempts per fetch.
            retry_delay: Backoff multiplier in seconds.
            max_retry_delay: Upper bound for one backoff sleep.
            clock: Time source, mostly for tests.

        Returns:
            Configured QueryClient
        """
        cache = QueryCache(stale_time=stale_time, retention=retention, clock=clock)
        executor = QueryExecutor(
            cache,
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
            max_retry_delay=max_retry_delay,
        )
        return cls(cache=cache, executor=executor, mutations=MutationRunner())

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def executor(self) -> QueryExecutor:
        return self._executor

    @property
    def mutations(self) -> MutationRunner:
        return self._mutations

    async def __aenter__(self) -> "QueryClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def result_for(self, entry: QueryEntry[T]) -> QueryResult[T]:
        """Build the consumer view of an entry."""
        return QueryResult.from_entry(
            entry,
            is_stale=self._cache.is_stale(entry),
            is_fetching=self._executor.is_fetching(entry.key),
        )

    def get_query_state(self, key: Sequence[Any]) -> QueryResult[Any] | None:
        entry = self._cache.get(key)
        return None if entry is None else self.result_for(entry)

    def get_query_data(self, key: Sequence[Any]) -> Any:
        """Return the cached payload for a key, or None."""
        entry = self._cache.get(key)
        return None if entry is None else entry.data

    def set_query_data(self, key: Sequence[Any], updater: Any) -> Any:
        """Write a payload directly, as if it had just been fetched.

        Args:
            key: The query key
            updater: New payload, or a function of the current payload

        Returns:
            The payload written
        """
        if callable(updater):
            data = updater(self.get_query_data(key))
        else:
            data = updater

        self._cache.set(key, status=QueryStatus.SUCCESS, data=data, is_invalidated=False)
        return data

    async def query(
        self,
        key: Sequence[Any],
        query_fn: Callable[[], Awaitable[T]],
        stale_time: float | None = None,
    ) -> QueryResult[T]:
        """Read a query.

        Cached data is returned immediately, even when stale; a stale entry
        gets a background refetch. Only a key without data waits for the
        fetch. Fetch errors come back as ``status=error``, never raised.

        Args:
            key: The query key
            query_fn: Coroutine function producing the payload
            stale_time: Freshness window for this key

        Returns:
            The query result
        """
        entry = self._cache.build(key, stale_time=stale_time, query_fn=query_fn)

        if entry.has_data:
            if self._cache.is_stale(entry) and not self._executor.is_fetching(entry.key):
                self._spawn(self._executor.run(entry.key, query_fn))
            return self.result_for(entry)

        entry = await self._executor.run(entry.key, query_fn)
        return self.result_for(entry)

    async def prefetch_query(
        self,
        key: Sequence[Any],
        query_fn: Callable[[], Awaitable[Any]],
        stale_time: float | None = None,
    ) -> None:
        """Fetch a key ahead of use unless it is still fresh."""
        entry = self._cache.build(key, stale_time=stale_time, query_fn=query_fn)
        if self._cache.is_stale(entry):
            await self._executor.run(entry.key, query_fn)

    def observe(
        self,
        key: Sequence[Any],
        query_fn: Callable[[], Awaitable[T]],
        listener: Callable[[QueryResult[T]], None] | None = None,
        stale_time: float | None = None,
        enabled: bool = True,
    ) -> QueryObserver[T]:
        """Subscribe to a key, fetching in the background when it is stale.

        Must be called from a running event loop when a fetch is needed.

        Args:
            key: The query key
            query_fn: Coroutine function producing the payload
            listener: Called with a QueryResult after every write to the key
            stale_time: Freshness window for this key
            enabled: Set to False to subscribe without fetching

        Returns:
            The observer; close it to detach
        """
        entry = self._cache.build(key, stale_time=stale_time, query_fn=query_fn)
        observer = QueryObserver(self, entry.key, query_fn, listener)

        if enabled and self._cache.is_stale(entry) and not self._executor.is_fetching(entry.key):
            self._spawn(self._executor.run(entry.key, query_fn))

        return observer

    async def invalidate_queries(
        self,
        key: Sequence[Any],
        exact: bool = False,
        refetch_active: bool = True,
    ) -> list[QueryEntry[Any]]:
        """Mark entries stale and refetch the ones somebody observes.

        An in-flight fetch of an observed key is cancelled and restarted, so
        the refetch sees the latest server state.

        Args:
            key: Key, or key prefix when ``exact`` is False
            exact: Only invalidate the equal key
            refetch_active: Refetch invalidated entries that have subscribers

        Returns:
            The invalidated entries
        """
        entries = self._cache.invalidate(key, exact=exact)
        if not refetch_active:
            return entries

        refetches = []
        for entry in entries:
            if entry.subscriber_count > 0 and entry.query_fn is not None:
                self._executor.cancel(entry.key)
                refetches.append(self._executor.run(entry.key, entry.query_fn))

        if refetches:
            await asyncio.gather(*refetches)
        return entries

    async def cancel_queries(self, key: Sequence[Any], exact: bool = False) -> int:
        """Cancel in-flight fetches. Their results will be discarded.

        Returns:
            Number of fetches cancelled
        """
        cancelled = 0
        for entry in self._cache.find_all(key, exact=exact):
            if self._executor.cancel(entry.key):
                cancelled += 1
        # Let the cancellations propagate
        await asyncio.sleep(0)
        return cancelled

    def remove_queries(self, key: Sequence[Any], exact: bool = False) -> int:
        """Drop entries from the cache.

        Returns:
            Number of entries removed
        """
        entries = self._cache.find_all(key, exact=exact)
        for entry in entries:
            self._cache.remove(entry.key)
        return len(entries)

    async def mutate(
        self,
        mutation_fn: Callable[[Any], Any],
        variables: Any,
        hooks: MutationHooks[Any, Any] | None = None,
    ) -> Any:
        """Run a mutation (see MutationRunner.run)."""
        return await self._mutations.run(mutation_fn, variables, hooks)

    def snapshot(self, key: Sequence[Any], **metadata: Any) -> MutationContext:
        """Capture a key's state for rollback, typically inside ``on_mutate``."""
        key = normalize_key(key)
        entry = self._cache.get(key)
        if entry is None:
            snapshot = QuerySnapshot(key=key, existed=False)
        else:
            snapshot = QuerySnapshot(
                key=key,
                existed=True,
                status=entry.status,
                data=copy.deepcopy(entry.data),
                error=entry.error,
                fetched_at=entry.fetched_at,
            )
        return MutationContext(previous_snapshot=snapshot, metadata=metadata)

    def restore(self, context: MutationContext | QuerySnapshot | None) -> None:
        """Put a snapshotted key back the way it was, typically inside ``on_error``."""
        snapshot = context.previous_snapshot if isinstance(context, MutationContext) else context
        if snapshot is None:
            return

        if not snapshot.existed:
            self._cache.remove(snapshot.key)
            return

        status = snapshot.status
        if status is QueryStatus.LOADING:
            # The fetch that was loading has been cancelled by now
            status = QueryStatus.SUCCESS if snapshot.fetched_at is not None else QueryStatus.IDLE

        patch: dict[str, Any] = {"status": status, "data": snapshot.data, "fetched_at": snapshot.fetched_at}
        if status is not QueryStatus.SUCCESS:
            patch["error"] = snapshot.error
        self._cache.set(snapshot.key, **patch)
        logger.debug("Restored %s from snapshot", snapshot.key)

    async def wait_idle(self) -> None:
        """Wait until background fetches started by this client have finished."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def get_stats(self) -> dict:
        """Get client statistics.

        Returns:
            Cache statistics plus in-flight fetch and pending mutation counts
        """
        stats = self._cache.get_stats()
        stats["fetching"] = self._executor.in_flight_count
        stats["pending_mutations"] = self._mutations.pending_count
        return stats

    async def close(self) -> None:
        """Cancel background work and drop every entry."""
        for task in list(self._tasks):
            task.cancel()
        await self._executor.close()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._cache.close()
        self._cache.clear()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
