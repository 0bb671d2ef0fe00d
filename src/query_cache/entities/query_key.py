"""Query key helpers.

A query key is an ordered tuple of JSON-serializable parts, for example
``("posts",)`` or ``("posts", {"page": 2})``. Keys are compared by their
canonical JSON form, so ``{"a": 1, "b": 2}`` and ``{"b": 2, "a": 1}`` address
the same entry.
"""

import json
from collections.abc import Sequence
from typing import Any

QueryKey = tuple[Any, ...]


def normalize_key(key: Sequence[Any] | str) -> QueryKey:
    """Convert a key given as list/tuple (or a bare string) into a tuple.

    Args:
        key: The key as supplied by the caller

    Returns:
        The key as a tuple

    Raises:
        ValueError: If the key is empty or not JSON-serializable
    """
    if isinstance(key, str):
        parts: QueryKey = (key,)
    else:
        parts = tuple(key)

    if not parts:
        raise ValueError("Query key must have at least one part")

    # Fail early on keys that can never be hashed
    hash_key(parts)
    return parts


def _dump(value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Query key part is not JSON-serializable: {value!r}") from e


def hash_key(key: Sequence[Any]) -> str:
    """Return the canonical serialized form of a key."""
    return _dump(list(key))


def matches_key(key: Sequence[Any], filter_key: Sequence[Any], exact: bool = False) -> bool:
    """Check whether ``key`` is addressed by ``filter_key``.

    Args:
        key: The key of a cached entry
        filter_key: The key given to invalidate/cancel/remove
        exact: Only match equal keys when True, prefix match otherwise

    Returns:
        True if the entry is addressed by the filter
    """
    if exact:
        return hash_key(key) == hash_key(filter_key)

    if len(filter_key) > len(key):
        return False

    return all(_dump(a) == _dump(b) for a, b in zip(key, filter_key))
