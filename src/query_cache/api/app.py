"""FastAPI application serving the post list.

Run with:
    uvicorn query_cache.api.app:app --reload
"""

from typing import Any

from fastapi import FastAPI, HTTPException, Query, status

from query_cache.config import settings
from query_cache.dto import (
    CacheStatsResponse,
    CreatePostRequest,
    HealthCheckResponse,
    InvalidateRequest,
    InvalidateResponse,
    Post,
    PostListResponse,
)

from .dependencies import ClientDep, HandlerDep, SourceDep, lifespan

app = FastAPI(
    title="Query Cache API",
    description="Post list backed by a client-side query cache over a json-server backend",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/")
async def root() -> dict[str, Any]:
    """Root endpoint with API information."""
    return {
        "name": "Query Cache API",
        "version": "0.1.0",
        "description": "Post list backed by a client-side query cache",
        "endpoints": {
            "posts": "/posts",
            "tags": "/tags",
            "cache": "/cache/invalidate",
            "stats": "/stats",
            "health": "/health",
            "docs": "/docs",
        },
    }


@app.get("/health", response_model=HealthCheckResponse)
async def health(source: SourceDep) -> HealthCheckResponse:
    """Health check endpoint."""
    backend_healthy = await source.is_available()
    if not backend_healthy:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Posts backend unreachable at {settings.posts_api_url}",
        )
    return HealthCheckResponse(status="healthy", backend_healthy=True)


@app.get("/posts", response_model=PostListResponse)
async def list_posts(
    handler: HandlerDep,
    page: int | None = Query(None, ge=1, description="Page number; omit for the full list"),
) -> PostListResponse:
    """List posts, newest first, as the cache currently knows them."""
    return await handler.list_posts(page=page)


@app.get("/tags", response_model=list[str])
async def list_tags(handler: HandlerDep) -> list[str]:
    """List the tags a post can carry."""
    return await handler.list_tags()


@app.post("/posts", response_model=Post, status_code=status.HTTP_201_CREATED)
async def create_post(request: CreatePostRequest, handler: HandlerDep) -> Post:
    """Create a post (optimistically shown, refetched once settled)."""
    return await handler.create_post(request)


@app.post("/cache/invalidate", response_model=InvalidateResponse)
async def invalidate(request: InvalidateRequest, client: ClientDep) -> InvalidateResponse:
    """Mark cached queries stale; observed ones are refetched."""
    try:
        entries = await client.invalidate_queries(request.key, exact=request.exact)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return InvalidateResponse(invalidated=len(entries))


@app.get("/stats", response_model=CacheStatsResponse)
async def get_stats(client: ClientDep) -> CacheStatsResponse:
    """Get cache statistics."""
    stats = client.get_stats()
    return CacheStatsResponse(
        total_entries=stats["total_entries"],
        active_entries=stats["active_entries"],
        stale_entries=stats["stale_entries"],
        fetching=stats["fetching"],
        pending_mutations=stats["pending_mutations"],
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "query_cache.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
