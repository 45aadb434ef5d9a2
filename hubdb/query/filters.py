"""
Filter algebra.

MongoDB-style filter documents are compiled once per call into a small,
immutable expression tree. The file backend evaluates the tree in memory
via ``expr.matches(document)``; the relational and document backends render
the same tree into SQL or a normalized MongoDB filter.

Supported surface:
    {"field": literal}                          equality
    {"field": {"$in": [v1, v2]}}                membership
    {"field": {"$regex": "^a", "$options": "i"}} pattern match
    {"$or": [{...}, {...}]}                     disjunction
Top-level keys compose by conjunction. Anything else is rejected with a
TranslationError so a typo never turns into an unfiltered query.
"""

import copy
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

from ..constants import IDENTITY_ALIASES, IDENTITY_FIELD
from ..exceptions import TranslationError

REGEX_FLAGS: dict[str, int] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
}
"""``$options`` letters accepted by ``$regex`` and their Python flags."""


def canonical_field(name: Any, path: str = "") -> str:
    """Validate a field name and fold identity aliases onto ``_id``."""
    if not isinstance(name, str) or not name:
        raise TranslationError(f"Invalid field name: {name!r}", path=path or None)
    if name in IDENTITY_ALIASES:
        return IDENTITY_FIELD
    return name


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def values_equal(left: Any, right: Any) -> bool:
    """
    Deep equality as the document model sees it.

    Booleans never equal numbers, naive datetimes are read as UTC, and
    lists/dicts compare element by element.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if isinstance(left, datetime) and isinstance(right, datetime):
        return _as_utc(left) == _as_utc(right)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(values_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(values_equal(left[k], right[k]) for k in left)
    return left == right


@dataclass(frozen=True)
class FieldEquals:
    """The field is present and equal to ``value``."""

    field: str
    value: Any

    def matches(self, document: Mapping[str, Any]) -> bool:
        return self.field in document and values_equal(document[self.field], self.value)


@dataclass(frozen=True)
class FieldIn:
    """The field is present and equal to one of ``values``."""

    field: str
    values: tuple

    def matches(self, document: Mapping[str, Any]) -> bool:
        if self.field not in document:
            return False
        current = document[self.field]
        return any(values_equal(current, candidate) for candidate in self.values)


@dataclass(frozen=True)
class FieldRegex:
    """The field's text (or any element of a list field) matches ``pattern``."""

    field: str
    pattern: str
    options: str = ""
    compiled: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        flags = 0
        for letter in self.options:
            flags |= REGEX_FLAGS[letter]
        object.__setattr__(self, "compiled", re.compile(self.pattern, flags))

    def _search(self, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, bool):
            value = "true" if value else "false"
        return self.compiled.search(str(value)) is not None

    def matches(self, document: Mapping[str, Any]) -> bool:
        if self.field not in document:
            return False
        current = document[self.field]
        if isinstance(current, (list, tuple)):
            return any(self._search(item) for item in current)
        return self._search(current)


@dataclass(frozen=True)
class AllOf:
    """Conjunction; an empty conjunction matches everything."""

    clauses: tuple = ()

    def matches(self, document: Mapping[str, Any]) -> bool:
        return all(clause.matches(document) for clause in self.clauses)


@dataclass(frozen=True)
class AnyOf:
    """Disjunction over one or more branches."""

    branches: tuple

    def matches(self, document: Mapping[str, Any]) -> bool:
        return any(branch.matches(document) for branch in self.branches)


FilterExpression = Union[FieldEquals, FieldIn, FieldRegex, AllOf, AnyOf]

MATCH_ALL = AllOf()


def parse_filter(filter: Mapping[str, Any] | None) -> FilterExpression:
    """
    Compile a filter document into an expression tree.

    Args:
        filter: Filter document; ``None`` or ``{}`` matches everything

    Raises:
        TranslationError: On unsupported operators or malformed arguments
    """
    if filter is None:
        return MATCH_ALL
    if not isinstance(filter, Mapping):
        raise TranslationError(
            f"Query filter must be a mapping, got {type(filter).__name__}",
        )
    return _parse_conjunction(filter, path="")


def _parse_conjunction(filter: Mapping[str, Any], path: str) -> FilterExpression:
    clauses = []
    for key, value in filter.items():
        key_path = f"{path}.{key}" if path else str(key)
        if key == "$or":
            clauses.append(_parse_or(value, key_path))
        elif isinstance(key, str) and key.startswith("$"):
            raise TranslationError(
                f"Unsupported query operator: {key}", operator=key, path=key_path
            )
        else:
            clauses.append(_parse_field(canonical_field(key, key_path), value, key_path))

    if len(clauses) == 1:
        return clauses[0]
    return AllOf(tuple(clauses))


def _parse_or(value: Any, path: str) -> AnyOf:
    if not isinstance(value, (list, tuple)) or not value:
        raise TranslationError("$or requires a non-empty list", operator="$or", path=path)

    branches = []
    for index, sub_filter in enumerate(value):
        if not isinstance(sub_filter, Mapping):
            raise TranslationError(
                f"$or entries must be mappings, got {type(sub_filter).__name__}",
                operator="$or",
                path=f"{path}[{index}]",
            )
        branches.append(_parse_conjunction(sub_filter, f"{path}[{index}]"))
    return AnyOf(tuple(branches))


def _parse_field(name: str, value: Any, path: str) -> FilterExpression:
    if not isinstance(value, Mapping) or not any(
        isinstance(k, str) and k.startswith("$") for k in value
    ):
        return FieldEquals(name, copy.deepcopy(value))

    if not all(isinstance(k, str) and k.startswith("$") for k in value):
        raise TranslationError(
            "Cannot mix operators and literal keys in one condition", path=path
        )

    clauses = []
    for operator in value:
        if operator not in ("$in", "$regex", "$options"):
            raise TranslationError(
                f"Unsupported query operator: {operator}", operator=operator, path=path
            )

    if "$in" in value:
        candidates = value["$in"]
        if not isinstance(candidates, (list, tuple)):
            raise TranslationError("$in requires a list", operator="$in", path=path)
        clauses.append(FieldIn(name, tuple(copy.deepcopy(list(candidates)))))

    if "$regex" in value:
        clauses.append(_parse_regex(name, value["$regex"], value.get("$options", ""), path))
    elif "$options" in value:
        raise TranslationError("$options requires $regex", operator="$options", path=path)

    if len(clauses) == 1:
        return clauses[0]
    return AllOf(tuple(clauses))


def _parse_regex(name: str, pattern: Any, options: Any, path: str) -> FieldRegex:
    if not isinstance(pattern, str):
        raise TranslationError("$regex requires a string pattern", operator="$regex", path=path)
    if options is None:
        options = ""
    if not isinstance(options, str):
        raise TranslationError("$options must be a string", operator="$options", path=path)

    unknown = set(options) - set(REGEX_FLAGS)
    if unknown:
        raise TranslationError(
            f"Unsupported $options flags: {''.join(sorted(unknown))}",
            operator="$options",
            path=path,
        )

    try:
        return FieldRegex(name, pattern, "".join(sorted(set(options))))
    except re.error as e:
        raise TranslationError(
            f"Invalid regular expression: {e}", operator="$regex", path=path
        ) from e
