"""Data Transfer Objects for API contracts.

These Pydantic models define the external contracts: the posts backend
payloads and the post list API. They are used for validation and
serialization.

Internal cache logic should use entities from the entities package.
"""

from .requests import CreatePostRequest, InvalidateRequest
from .responses import (
    CacheStatsResponse,
    HealthCheckResponse,
    InvalidateResponse,
    Post,
    PostListResponse,
)

__all__ = [
    "CreatePostRequest",
    "InvalidateRequest",
    "Post",
    "PostListResponse",
    "InvalidateResponse",
    "CacheStatsResponse",
    "HealthCheckResponse",
]
