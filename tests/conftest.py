"""
Shared fixtures for the query cache tests.
"""

import pytest
import pytest_asyncio

from query_cache.dto import Post
from query_cache.services import QueryClient


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePostsSource:
    """In-memory PostsSource."""

    def __init__(self, posts: list[Post] | None = None, tags: list[str] | None = None) -> None:
        self.posts = list(posts or [])
        self.tags = list(tags or [])
        self.fetch_calls = 0
        self.fetch_error: Exception | None = None
        self.add_error: Exception | None = None

    async def fetch_posts(self, page: int | None = None, per_page: int | None = None) -> list[Post]:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        ordered = sorted(self.posts, key=lambda p: p.id, reverse=True)
        if page is None:
            return ordered
        size = per_page or 5
        return ordered[(page - 1) * size : page * size]

    async def fetch_tags(self) -> list[str]:
        return list(self.tags)

    async def add_post(self, post: Post) -> Post:
        if self.add_error is not None:
            raise self.add_error
        self.posts.append(post)
        return post

    async def is_available(self) -> bool:
        return True


@pytest.fixture
def clock():
    """A clock that only moves when told to."""
    return FakeClock()


@pytest.fixture
def source():
    """Posts backend with one post and three tags."""
    return FakePostsSource(
        posts=[Post(id=5, title="A", tags=["x"])],
        tags=["x", "y", "z"],
    )


@pytest_asyncio.fixture
async def client(clock):
    """Query client with no backoff and a fake clock."""
    query_client = QueryClient.create(
        stale_time=0,
        retention=60,
        retry_attempts=3,
        retry_delay=0,
        clock=clock,
    )
    yield query_client
    await query_client.close()
