"""
Tests for the post list handler (optimistic create, rendered errors).
"""

import pytest
import pytest_asyncio
from fastapi import HTTPException

from query_cache.dto import CreatePostRequest, Post
from query_cache.handlers import POSTS_KEY, PostListHandler, next_post_id, posts_key


@pytest_asyncio.fixture
async def handler(client, source):
    post_list = PostListHandler(query_client=client, source=source, per_page=2)
    post_list.mount()
    await client.wait_idle()
    yield post_list
    post_list.unmount()


def test_posts_key():
    assert posts_key() == ("posts",)
    assert posts_key(3) == ("posts", {"page": 3})


def test_next_post_id():
    assert next_post_id([]) == 1
    assert next_post_id([Post(id=5, title="A"), Post(id=2, title="B")]) == 6


@pytest.mark.asyncio
async def test_list_posts(handler):
    view = await handler.list_posts()

    assert view.status == "success"
    assert [p.title for p in view.posts] == ["A"]
    assert view.error is None
    assert not view.is_loading


@pytest.mark.asyncio
async def test_list_posts_page(handler, source):
    source.posts += [Post(id=6, title="B"), Post(id=7, title="C")]

    view = await handler.list_posts(page=2)

    assert view.page == 2
    assert [p.id for p in view.posts] == [5]


@pytest.mark.asyncio
async def test_list_tags(handler):
    assert await handler.list_tags() == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_fetch_error_is_rendered(handler, source):
    source.fetch_error = ConnectionError("Failed to fetch")

    view = await handler.list_posts(page=9)

    assert view.status == "error"
    assert view.error == "Failed to fetch"
    assert view.posts == []


@pytest.mark.asyncio
async def test_create_post_refetches_list(handler, client, source):
    created = await handler.create_post(CreatePostRequest(title=" B ", tags=["x"]))

    assert created == Post(id=6, title="B", tags=["x"])
    assert [p.id for p in client.get_query_data(POSTS_KEY)] == [6, 5]
    assert source.fetch_calls == 2


@pytest.mark.asyncio
async def test_failed_create_rolls_back(handler, client, source):
    source.add_error = ConnectionError("backend down")

    with pytest.raises(HTTPException) as exc_info:
        await handler.create_post(CreatePostRequest(title="B", tags=["x"]))

    assert exc_info.value.status_code == 502
    assert "backend down" in exc_info.value.detail
    assert [p.id for p in client.get_query_data(POSTS_KEY)] == [5]


@pytest.mark.asyncio
async def test_blank_title_is_rejected(handler, source):
    with pytest.raises(HTTPException) as exc_info:
        await handler.create_post(CreatePostRequest(title="   ", tags=["x"]))

    assert exc_info.value.status_code == 400
    assert len(source.posts) == 1


@pytest.mark.asyncio
async def test_create_post_needs_the_current_list(client, source):
    source.fetch_error = ConnectionError("Failed to fetch")
    post_list = PostListHandler(query_client=client, source=source)

    with pytest.raises(HTTPException) as exc_info:
        await post_list.create_post(CreatePostRequest(title="B", tags=["x"]))

    assert exc_info.value.status_code == 503
    assert "Failed to fetch" in exc_info.value.detail
    assert len(source.posts) == 1
