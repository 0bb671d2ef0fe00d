"""
Tests for the query client: stale-while-revalidate reads, observers,
invalidation and the create-post scenario.
"""

import asyncio

import pytest

from query_cache.entities import QueryStatus
from query_cache.services import MutationHooks, QueryClient


class Backend:
    """Tiny stand-in for the posts server."""

    def __init__(self, posts):
        self.posts = list(posts)
        self.fetches = 0

    async def fetch_posts(self):
        self.fetches += 1
        return [dict(post) for post in self.posts]

    async def add_post(self, post):
        created = {"id": max(p["id"] for p in self.posts) + 1, **post}
        self.posts.append(created)
        return created


@pytest.fixture
def backend():
    return Backend([{"id": 5, "title": "A", "tags": ["x"]}])


@pytest.mark.asyncio
async def test_query_without_data_waits_for_fetch(client, backend):
    result = await client.query(["posts"], backend.fetch_posts)

    assert result.is_success
    assert result.data == [{"id": 5, "title": "A", "tags": ["x"]}]
    assert backend.fetches == 1


@pytest.mark.asyncio
async def test_fresh_data_is_served_from_cache(client, backend):
    await client.query(["posts"], backend.fetch_posts, stale_time=30)
    result = await client.query(["posts"], backend.fetch_posts)
    await client.wait_idle()

    assert result.data[0]["title"] == "A"
    assert not result.is_stale
    assert backend.fetches == 1


@pytest.mark.asyncio
async def test_stale_data_is_returned_immediately_and_refetched(client, backend, clock):
    await client.query(["posts"], backend.fetch_posts, stale_time=30)
    backend.posts.append({"id": 6, "title": "B", "tags": []})
    clock.advance(31)

    result = await client.query(["posts"], backend.fetch_posts)

    assert result.is_stale
    assert len(result.data) == 1

    await client.wait_idle()
    assert len(client.get_query_data(["posts"])) == 2
    assert backend.fetches == 2


@pytest.mark.asyncio
async def test_query_errors_are_not_raised(client):
    async def broken():
        raise ConnectionError("backend down")

    result = await client.query(["posts"], broken)

    assert result.is_error
    assert result.error_message == "backend down"
    assert result.failure_count == 3


@pytest.mark.asyncio
async def test_observe_fetches_in_background_and_notifies(client, backend):
    seen = []
    observer = client.observe(["posts"], backend.fetch_posts, listener=seen.append)

    assert observer.result.data is None
    await client.wait_idle()

    assert [r.status for r in seen] == [QueryStatus.LOADING, QueryStatus.SUCCESS]
    assert seen[0].is_loading
    assert observer.result.data[0]["id"] == 5
    assert client.cache.get(["posts"]).subscriber_count == 1

    observer.close()
    assert client.cache.get(["posts"]).subscriber_count == 0


@pytest.mark.asyncio
async def test_disabled_observer_does_not_fetch(client, backend):
    client.observe(["posts"], backend.fetch_posts, enabled=False)
    await client.wait_idle()

    assert backend.fetches == 0


@pytest.mark.asyncio
async def test_reobserve_within_retention_keeps_data(backend, clock):
    async with QueryClient.create(stale_time=30, retention=0.05, retry_delay=0, clock=clock) as client:
        with client.observe(["posts"], backend.fetch_posts):
            await client.wait_idle()

        observer = client.observe(["posts"], backend.fetch_posts)
        await asyncio.sleep(0.1)

        assert observer.result.data[0]["id"] == 5
        assert backend.fetches == 1


@pytest.mark.asyncio
async def test_unobserved_entry_is_evicted_after_retention(backend, clock):
    async with QueryClient.create(stale_time=30, retention=0.05, retry_delay=0, clock=clock) as client:
        with client.observe(["posts"], backend.fetch_posts):
            await client.wait_idle()

        await asyncio.sleep(0.1)

        assert client.get_query_state(["posts"]) is None


@pytest.mark.asyncio
async def test_slow_first_fetch_outlives_retention(backend, clock):
    async def slow_fetch():
        await asyncio.sleep(0.1)
        return await backend.fetch_posts()

    async with QueryClient.create(stale_time=30, retention=0.05, retry_delay=0, clock=clock) as client:
        result = await client.query(["posts", {"page": 2}], slow_fetch)

        assert result.is_success
        assert result.data[0]["id"] == 5
        assert client.get_query_state(["posts", {"page": 2}]).status is QueryStatus.SUCCESS

        # The retention window restarts once the fetch settles
        await asyncio.sleep(0.1)
        assert client.get_query_state(["posts", {"page": 2}]) is None


@pytest.mark.asyncio
async def test_zero_retention_still_delivers_result(backend, clock):
    async def yielding_fetch():
        await asyncio.sleep(0)
        return await backend.fetch_posts()

    async with QueryClient.create(stale_time=30, retention=0, retry_delay=0, clock=clock) as client:
        result = await client.query(["posts"], yielding_fetch)

    assert result.status is QueryStatus.SUCCESS
    assert result.data[0]["id"] == 5


@pytest.mark.asyncio
async def test_invalidate_refetches_only_observed_queries(client, backend):
    other_fetches = 0

    async def fetch_page():
        nonlocal other_fetches
        other_fetches += 1
        return []

    observer = client.observe(["posts"], backend.fetch_posts)
    await client.wait_idle()
    await client.query(["posts", {"page": 2}], fetch_page)

    invalidated = await client.invalidate_queries(["posts"])

    assert len(invalidated) == 2
    assert backend.fetches == 2
    assert other_fetches == 1
    assert not observer.result.is_stale
    assert client.get_query_state(["posts", {"page": 2}]).is_stale


@pytest.mark.asyncio
async def test_create_post_scenario(client, backend):
    """A subscriber sees the refetched list after the mutation invalidates it."""
    seen = []
    client.observe(["posts"], backend.fetch_posts, listener=seen.append)
    await client.wait_idle()
    assert seen[-1].data == [{"id": 5, "title": "A", "tags": ["x"]}]

    hooks = MutationHooks(on_success=lambda *_: client.invalidate_queries(["posts"]))
    created = await client.mutate(backend.add_post, {"title": "B", "tags": ["x"]}, hooks)

    assert created == {"id": 6, "title": "B", "tags": ["x"]}
    assert seen[-1].data == [
        {"id": 5, "title": "A", "tags": ["x"]},
        {"id": 6, "title": "B", "tags": ["x"]},
    ]
    assert client.get_query_data(["posts"]) == seen[-1].data


@pytest.mark.asyncio
async def test_cancel_queries_discards_in_flight_fetch(client):
    started = asyncio.Event()

    async def slow_fetch():
        started.set()
        await asyncio.sleep(10)
        return ["late"]

    client.observe(["posts"], slow_fetch)
    await started.wait()

    assert await client.cancel_queries(["posts"]) == 1
    client.set_query_data(["posts"], ["optimistic"])
    await client.wait_idle()

    assert client.get_query_data(["posts"]) == ["optimistic"]


@pytest.mark.asyncio
async def test_remove_queries(client, backend):
    await client.query(["posts"], backend.fetch_posts)
    await client.query(["posts", {"page": 1}], backend.fetch_posts)

    assert client.remove_queries(["posts"]) == 2
    assert len(client.cache) == 0


@pytest.mark.asyncio
async def test_prefetch_skips_fresh_entries(client, backend):
    await client.prefetch_query(["posts"], backend.fetch_posts, stale_time=30)
    await client.prefetch_query(["posts"], backend.fetch_posts)

    assert backend.fetches == 1


@pytest.mark.asyncio
async def test_stats(client, backend):
    client.observe(["posts"], backend.fetch_posts)
    await client.wait_idle()

    stats = client.get_stats()

    assert stats["total_entries"] == 1
    assert stats["active_entries"] == 1
    assert stats["fetching"] == 0
    assert stats["pending_mutations"] == 0


@pytest.mark.asyncio
async def test_separate_clients_do_not_share_state(backend):
    async with QueryClient.create(retry_delay=0) as first, QueryClient.create(retry_delay=0) as second:
        await first.query(["posts"], backend.fetch_posts)

        assert second.get_query_data(["posts"]) is None
