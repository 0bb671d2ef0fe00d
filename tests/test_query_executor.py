"""
Tests for the query executor: state machine, retries, de-duplication
and cancellation.
"""

import asyncio

import pytest
import pytest_asyncio

from query_cache.entities import QueryStatus
from query_cache.services import QueryCache, QueryExecutor


class FlakyFetch:
    """Fails a given number of times, then returns the payload."""

    def __init__(self, failures: int, payload=None) -> None:
        self.failures = failures
        self.payload = payload
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return self.payload


@pytest.fixture
def cache(clock):
    return QueryCache(stale_time=0, retention=60, clock=clock)


@pytest_asyncio.fixture
async def executor(cache):
    query_executor = QueryExecutor(cache, retry_attempts=3, retry_delay=0)
    yield query_executor
    await query_executor.close()


@pytest.mark.asyncio
async def test_successful_fetch_goes_loading_then_success(cache, executor):
    statuses = []
    cache.subscribe(["posts"], lambda entry: statuses.append(entry.status))

    entry = await executor.run(["posts"], FlakyFetch(0, payload=["a"]))

    assert statuses == [QueryStatus.LOADING, QueryStatus.SUCCESS]
    assert entry.status is QueryStatus.SUCCESS
    assert entry.data == ["a"]
    assert entry.error is None


@pytest.mark.asyncio
async def test_retries_hide_transient_failures(cache, executor):
    """Two failures then success: subscribers never see an error."""
    seen = []
    cache.subscribe(["posts"], lambda entry: seen.append((entry.status, entry.error)))
    fetch = FlakyFetch(2, payload=["ok"])

    entry = await executor.run(["posts"], fetch)

    assert fetch.calls == 3
    assert entry.status is QueryStatus.SUCCESS
    assert entry.data == ["ok"]
    assert all(status is not QueryStatus.ERROR and error is None for status, error in seen)


@pytest.mark.asyncio
async def test_exhausted_retries_surface_error(executor):
    fetch = FlakyFetch(failures=100)

    entry = await executor.run(["posts"], fetch)

    assert fetch.calls == 3
    assert entry.status is QueryStatus.ERROR
    assert isinstance(entry.error, ConnectionError)
    assert entry.failure_count == 3


@pytest.mark.asyncio
async def test_retry_attempts_can_be_overridden_per_run(executor):
    fetch = FlakyFetch(failures=100)

    await executor.run(["posts"], fetch, retry_attempts=1)

    assert fetch.calls == 1


@pytest.mark.asyncio
async def test_concurrent_runs_share_one_fetch(executor):
    gate = asyncio.Event()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await gate.wait()
        return ["shared"]

    first = asyncio.create_task(executor.run(["posts"], fetch))
    second = asyncio.create_task(executor.run(["posts"], fetch))
    await asyncio.sleep(0)
    assert executor.is_fetching(["posts"])

    gate.set()
    entries = await asyncio.gather(first, second)

    assert calls == 1
    assert entries[0] is entries[1]
    assert entries[0].data == ["shared"]
    assert not executor.is_fetching(["posts"])


@pytest.mark.asyncio
async def test_refetch_keeps_previous_data_while_loading(cache, executor):
    await executor.run(["posts"], FlakyFetch(0, payload=["old"]))
    seen = []
    cache.subscribe(["posts"], lambda entry: seen.append((entry.status, entry.data)))

    await executor.run(["posts"], FlakyFetch(0, payload=["new"]))

    assert seen == [(QueryStatus.LOADING, ["old"]), (QueryStatus.SUCCESS, ["new"])]


@pytest.mark.asyncio
async def test_failed_refetch_keeps_previous_data(executor):
    await executor.run(["posts"], FlakyFetch(0, payload=["old"]))

    entry = await executor.run(["posts"], FlakyFetch(failures=100))

    assert entry.status is QueryStatus.ERROR
    assert entry.data == ["old"]


@pytest.mark.asyncio
async def test_cancelled_fetch_is_discarded(cache, executor):
    started = asyncio.Event()

    async def slow_fetch():
        started.set()
        await asyncio.sleep(10)
        return ["late"]

    run = asyncio.create_task(executor.run(["posts"], slow_fetch))
    await started.wait()

    assert executor.cancel(["posts"]) is True
    cache.set(["posts"], status=QueryStatus.SUCCESS, data=["newer"])
    entry = await run

    assert entry.data == ["newer"]
    assert entry.status is QueryStatus.SUCCESS
    assert executor.cancel(["posts"]) is False


@pytest.mark.asyncio
async def test_cancel_reverts_status(cache, executor):
    started = asyncio.Event()

    async def slow_fetch():
        started.set()
        await asyncio.sleep(10)

    run = asyncio.create_task(executor.run(["posts"], slow_fetch))
    await started.wait()
    assert cache.get(["posts"]).status is QueryStatus.LOADING

    executor.cancel(["posts"])
    await run

    assert cache.get(["posts"]).status is QueryStatus.IDLE


@pytest.mark.asyncio
async def test_eviction_cancels_in_flight_fetch(cache, executor):
    started = asyncio.Event()

    async def slow_fetch():
        started.set()
        await asyncio.sleep(10)
        return ["late"]

    run = asyncio.create_task(executor.run(["posts"], slow_fetch))
    await started.wait()

    cache.remove(["posts"])
    await run

    assert cache.get(["posts"]) is None
    assert not executor.is_fetching(["posts"])


@pytest.mark.asyncio
async def test_run_reuses_registered_fetch_function(executor):
    fetch = FlakyFetch(0, payload=["again"])
    await executor.run(["posts"], fetch)

    entry = await executor.run(["posts"])

    assert fetch.calls == 2
    assert entry.data == ["again"]


@pytest.mark.asyncio
async def test_run_without_fetch_function_fails(executor):
    with pytest.raises(ValueError, match="No fetch function"):
        await executor.run(["unknown"])


@pytest.mark.asyncio
async def test_evicted_entry_is_not_left_loading(cache, executor):
    started = asyncio.Event()

    async def slow_fetch():
        started.set()
        await asyncio.sleep(10)

    run = asyncio.create_task(executor.run(["posts"], slow_fetch))
    await started.wait()

    cache.remove(["posts"])
    entry = await run

    assert entry.status is QueryStatus.IDLE


@pytest.mark.asyncio
async def test_retries_back_off_exponentially_up_to_the_cap(cache):
    waits = []

    async def record_sleep(seconds):
        waits.append(seconds)

    executor = QueryExecutor(
        cache, retry_attempts=5, retry_delay=1, max_retry_delay=5, sleep=record_sleep
    )
    fetch = FlakyFetch(failures=4, payload=["ok"])

    entry = await executor.run(["posts"], fetch)

    assert entry.status is QueryStatus.SUCCESS
    assert fetch.calls == 5
    assert waits == [1, 2, 4, 5]
    await executor.close()


def test_retry_attempts_below_one_are_rejected(cache):
    with pytest.raises(ValueError, match="at least 1"):
        QueryExecutor(cache, retry_attempts=0)


@pytest.mark.asyncio
async def test_run_rejects_zero_attempt_override(executor):
    with pytest.raises(ValueError, match="at least 1"):
        await executor.run(["posts"], FlakyFetch(0), retry_attempts=0)
