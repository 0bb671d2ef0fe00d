#!/usr/bin/env python3
"""
Demo script for the query cache.

Requires json-server running on POSTS_API_URL (default http://localhost:5000)
with a db.json holding "posts" and "tags":

    npx json-server db.json --port 5000
"""

import asyncio

from query_cache.dto import Post
from query_cache.entities import QueryResult
from query_cache.handlers import POSTS_KEY, TAGS_KEY, posts_key
from query_cache.repositories import HttpPostsRepository
from query_cache.services import MutationHooks, QueryClient


def print_section(title: str) -> None:
    """Print a section header."""
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def render(result: QueryResult) -> None:
    """Print a post list the way the list component shows it."""
    if result.is_loading:
        print("  Loading.....")
    elif result.is_error:
        print(f"  ✗ {result.error_message}")
    for post in result.data or []:
        print(f"  #{post.id} {post.title}  [{', '.join(post.tags)}]")


async def demo_queries(client: QueryClient, repository: HttpPostsRepository) -> None:
    """Demonstrate cached reads and stale-while-revalidate."""
    print_section("Queries")

    result = await client.query(POSTS_KEY, repository.fetch_posts)
    print(f"\n🔍 First read: status={result.status.value}")
    render(result)

    result = await client.query(POSTS_KEY, repository.fetch_posts)
    print(f"\n🔍 Second read (served from cache, stale={result.is_stale}):")
    render(result)

    tags = await client.query(TAGS_KEY, repository.fetch_tags)
    print(f"\n🏷  Tags: {tags.data}")

    page = await client.query(posts_key(1), lambda: repository.fetch_posts(page=1))
    print(f"\n📄 Page 1: {len(page.data or [])} post(s)")


async def demo_mutation(client: QueryClient, repository: HttpPostsRepository) -> None:
    """Demonstrate an optimistic create with invalidation."""
    print_section("Optimistic Mutation")

    observer = client.observe(
        POSTS_KEY,
        repository.fetch_posts,
        listener=lambda result: print(f"  ↻ update: status={result.status.value}, {len(result.data or [])} post(s)"),
    )
    await client.wait_idle()

    posts = client.get_query_data(POSTS_KEY) or []
    new_post = Post(id=max((p.id for p in posts), default=0) + 1, title="Hello from the demo", tags=["demo"])

    def on_mutate(post: Post):
        context = client.snapshot(POSTS_KEY)
        client.set_query_data(POSTS_KEY, lambda current: [post, *(current or [])])
        return context

    hooks = MutationHooks(
        on_mutate=on_mutate,
        on_error=lambda error, post, context: client.restore(context),
        on_settled=lambda *_: client.invalidate_queries(POSTS_KEY),
    )

    print(f"\n📝 Creating post #{new_post.id}...")
    created = await client.mutate(repository.add_post, new_post, hooks)
    print(f"  ✓ Created: {created.title}")

    render(observer.result)
    observer.close()


async def main() -> None:
    repository = HttpPostsRepository.create()

    if not await repository.is_available():
        print(f"✗ json-server is not reachable at {repository.base_url}")
        await repository.close()
        return

    async with QueryClient.create(stale_time=5) as client:
        await demo_queries(client, repository)
        await demo_mutation(client, repository)

        print_section("Stats")
        for name, value in client.get_stats().items():
            print(f"  {name}: {value}")

    await repository.close()


if __name__ == "__main__":
    asyncio.run(main())
