"""Domain entities for internal representation.

These are plain dataclasses used by the services layer. They are NOT used
for API contracts - use DTOs from the dto package for that.

Entities should have:
- No JSON serialization logic
- No Pydantic validation
- No external dependencies
"""

from .mutation_context import MutationContext, QuerySnapshot
from .query_entry import QueryEntry, QueryStatus
from .query_key import QueryKey, hash_key, matches_key, normalize_key
from .query_result import QueryResult

__all__ = [
    "MutationContext",
    "QueryEntry",
    "QueryKey",
    "QueryResult",
    "QuerySnapshot",
    "QueryStatus",
    "hash_key",
    "matches_key",
    "normalize_key",
]
