"""Request DTOs for API endpoints."""

from typing import Any

from pydantic import BaseModel, Field


class CreatePostRequest(BaseModel):
    """Request DTO for submitting the new-post form.

    The handler assigns the id; the form only carries the title and
    the checked tags.
    """

    title: str = Field(..., description="The post text", min_length=1)
    tags: list[str] = Field(..., description="Tags checked in the form", min_length=1)


class InvalidateRequest(BaseModel):
    """Request DTO for invalidating cached queries."""

    key: list[Any] = Field(..., description="Query key or key prefix, e.g. [\"posts\"]", min_length=1)
    exact: bool = Field(False, description="Only invalidate the exactly matching key")
