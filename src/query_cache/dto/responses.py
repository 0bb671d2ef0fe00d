"""Response DTOs for API endpoints and backend payloads."""

from pydantic import BaseModel, Field


class Post(BaseModel):
    """A post as stored by the posts backend."""

    id: int = Field(..., description="Post id (higher is newer)")
    title: str = Field(..., description="The post text")
    tags: list[str] = Field(default_factory=list, description="Tags attached to the post")

    model_config = {"extra": "allow"}


class PostListResponse(BaseModel):
    """Response DTO for the rendered post list.

    Mirrors what the list component shows: a loading marker, the error
    message, or the posts.
    """

    status: str = Field(..., description="Query status: idle, loading, success or error")
    posts: list[Post] = Field(default_factory=list, description="Posts, newest first")
    error: str | None = Field(None, description="Error message when status is 'error'")
    is_loading: bool = Field(..., description="First load in progress")
    is_fetching: bool = Field(..., description="A fetch is in flight (first load or refresh)")
    is_stale: bool = Field(..., description="Cached data is past its freshness window")
    page: int | None = Field(None, description="Page number, null for the full list")


class InvalidateResponse(BaseModel):
    """Response DTO for cache invalidation."""

    invalidated: int = Field(..., description="Number of entries marked stale", ge=0)


class CacheStatsResponse(BaseModel):
    """Response DTO for cache statistics."""

    total_entries: int = Field(..., description="Number of cached queries", ge=0)
    active_entries: int = Field(..., description="Entries with at least one subscriber", ge=0)
    stale_entries: int = Field(..., description="Entries past their freshness window", ge=0)
    fetching: int = Field(..., description="Fetches currently in flight", ge=0)
    pending_mutations: int = Field(..., description="Mutations not yet settled", ge=0)


class HealthCheckResponse(BaseModel):
    """Response DTO for health check."""

    status: str = Field(..., description="Health status: 'healthy' or 'unhealthy'")
    backend_healthy: bool = Field(..., description="Whether the posts backend is reachable")
