"""
Sort and index key specifications.

Accepts the shapes pymongo accepts for ``sort()`` and ``create_index()``
and normalizes them to a list of (field, direction) pairs.
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..exceptions import TranslationError
from .filters import canonical_field

ASCENDING = 1
DESCENDING = -1

_DIRECTIONS = (ASCENDING, DESCENDING)

# Cross-type ordering, following MongoDB's comparison order
_TYPE_RANK = {
    "number": 1,
    "string": 2,
    "object": 3,
    "array": 4,
    "boolean": 5,
    "date": 6,
    "other": 7,
}


def _direction(value: Any, path: str) -> int:
    if isinstance(value, bool) or value not in _DIRECTIONS:
        raise TranslationError(
            f"Sort direction must be 1 or -1, got {value!r}", operator="$sort", path=path
        )
    return int(value)


def _is_pair(value: Any) -> bool:
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and isinstance(value[0], str)
        and not isinstance(value[1], (list, tuple))
    )


def normalize_sort(key_or_list: Any, direction: int | None = None) -> list[tuple[str, int]]:
    """
    Normalize a sort or index key specification.

    Examples:
        normalize_sort("created")               -> [("created", 1)]
        normalize_sort("created", -1)           -> [("created", -1)]
        normalize_sort({"created": -1})         -> [("created", -1)]
        normalize_sort([("a", 1), ("b", -1)])   -> [("a", 1), ("b", -1)]

    Raises:
        TranslationError: On malformed keys or directions other than 1/-1
    """
    if key_or_list is None:
        return []

    if isinstance(key_or_list, str):
        pairs: Iterable = [(key_or_list, ASCENDING if direction is None else direction)]
    elif direction is not None:
        raise TranslationError("A direction is only accepted with a single field name")
    elif isinstance(key_or_list, Mapping):
        pairs = key_or_list.items()
    elif _is_pair(key_or_list):
        pairs = [key_or_list]
    elif isinstance(key_or_list, (list, tuple)):
        pairs = key_or_list
    else:
        raise TranslationError(
            f"Unsupported sort specification: {type(key_or_list).__name__}"
        )

    normalized = []
    for pair in pairs:
        if not _is_pair(pair):
            raise TranslationError(f"Invalid sort key: {pair!r}")
        name = canonical_field(pair[0], "$sort")
        normalized.append((name, _direction(pair[1], name)))
    return normalized


def index_name(keys: list[tuple[str, int]]) -> str:
    """Default index name in pymongo's convention (``created_-1``)."""
    return "_".join(f"{name}_{direction}" for name, direction in keys)


def sort_value_key(value: Any) -> tuple:
    """
    Total ordering key for heterogeneous document values.

    Missing and ``None`` values sort first; other types follow MongoDB's
    cross-type order. Naive datetimes are read as UTC.
    """
    if value is None:
        return (0,)
    if isinstance(value, bool):
        return (_TYPE_RANK["boolean"], value)
    if isinstance(value, (int, float)):
        return (_TYPE_RANK["number"], value)
    if isinstance(value, str):
        return (_TYPE_RANK["string"], value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (_TYPE_RANK["date"], value)
    if isinstance(value, (list, tuple)):
        return (_TYPE_RANK["array"], tuple(sort_value_key(item) for item in value))
    if isinstance(value, Mapping):
        return (_TYPE_RANK["object"], str(sorted(value.items(), key=lambda kv: kv[0])))
    return (_TYPE_RANK["other"], str(value))


def sort_documents(
    documents: list[dict[str, Any]], keys: list[tuple[str, int]]
) -> list[dict[str, Any]]:
    """
    Stable multi-key sort; documents that compare equal keep their order.
    """
    result = list(documents)
    for name, direction in reversed(keys):
        result.sort(
            key=lambda doc, name=name: sort_value_key(doc.get(name)),
            reverse=direction == DESCENDING,
        )
    return result
