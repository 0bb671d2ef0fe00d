"""HTTP handlers layer.

Handlers convert between DTOs (API contracts) and service calls.
They handle HTTP concerns like status codes and error mapping.
"""

from .post_list_handler import POSTS_KEY, TAGS_KEY, PostListHandler, next_post_id, posts_key

__all__ = [
    "POSTS_KEY",
    "TAGS_KEY",
    "PostListHandler",
    "next_post_id",
    "posts_key",
]
