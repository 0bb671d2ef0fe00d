"""Protocol interfaces for swappable implementations.

This package contains protocol definitions using structural typing.
Protocols enable:
- Easy swapping of implementations (json-server → real API, HTTP → in-memory)
- Unit testing with fake implementations
- Clear separation of concerns
"""

from .posts_source import PostsSource
from .query_listener import QueryListener

__all__ = [
    "PostsSource",
    "QueryListener",
]
