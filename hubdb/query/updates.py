"""
Update algebra.

Update documents are parsed into an UpdatePlan holding the ``$set``,
``$push``, ``$pull`` and ``$inc`` assignments. The plan is applied in that
fixed order: ``$set`` first, then ``$push``, ``$pull`` and ``$inc``.
Identity keys are dropped from every operator.
"""

import copy
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from numbers import Number
from typing import Any

from ..constants import IDENTITY_FIELD
from ..exceptions import TranslationError
from .filters import canonical_field, values_equal

logger = logging.getLogger(__name__)

UPDATE_OPERATORS: tuple[str, ...] = ("$set", "$push", "$pull", "$inc")
"""Supported update operators, in application order."""


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


@dataclass(frozen=True)
class UpdatePlan:
    """Parsed update document, one tuple of (field, value) pairs per operator."""

    set_fields: tuple = ()
    push_fields: tuple = ()
    pull_fields: tuple = ()
    inc_fields: tuple = ()

    @property
    def is_empty(self) -> bool:
        return not (self.set_fields or self.push_fields or self.pull_fields or self.inc_fields)

    def operations(self) -> Iterator[tuple[str, str, Any]]:
        """Yield (operator, field, value) in application order."""
        for operator, pairs in zip(
            UPDATE_OPERATORS,
            (self.set_fields, self.push_fields, self.pull_fields, self.inc_fields),
        ):
            for name, value in pairs:
                yield operator, name, value


def parse_update(update: Mapping[str, Any]) -> UpdatePlan:
    """
    Parse an update document.

    Raises:
        TranslationError: For unknown operators, replacement documents,
            non-numeric ``$inc`` amounts, or a field named by two operators
    """
    if not isinstance(update, Mapping):
        raise TranslationError(
            f"Update must be a mapping, got {type(update).__name__}",
        )
    if not update:
        raise TranslationError("Update document must contain at least one operator")

    for key in update:
        if key not in UPDATE_OPERATORS:
            if isinstance(key, str) and key.startswith("$"):
                raise TranslationError(f"Unsupported update operator: {key}", operator=key)
            raise TranslationError(
                "Replacement documents are not supported; use $set",
                path=str(key),
            )

    seen: dict[str, str] = {}
    parsed: dict[str, list] = {operator: [] for operator in UPDATE_OPERATORS}
    for operator in UPDATE_OPERATORS:
        if operator not in update:
            continue
        assignments = update[operator]
        if not isinstance(assignments, Mapping):
            raise TranslationError(
                f"{operator} requires a mapping of fields", operator=operator
            )
        for key, value in assignments.items():
            path = f"{operator}.{key}"
            name = canonical_field(key, path)
            if name == IDENTITY_FIELD:
                logger.debug(f"Dropping identity field from {operator}")
                continue
            if name in seen:
                raise TranslationError(
                    f"Field '{name}' is targeted by both {seen[name]} and {operator}",
                    operator=operator,
                    path=path,
                )
            _validate_value(operator, value, path)
            seen[name] = operator
            parsed[operator].append((name, copy.deepcopy(value)))

    return UpdatePlan(
        set_fields=tuple(parsed["$set"]),
        push_fields=tuple(parsed["$push"]),
        pull_fields=tuple(parsed["$pull"]),
        inc_fields=tuple(parsed["$inc"]),
    )


def _validate_value(operator: str, value: Any, path: str) -> None:
    if operator == "$inc" and not _is_number(value):
        raise TranslationError("$inc requires a numeric amount", operator=operator, path=path)
    if operator in ("$push", "$pull") and isinstance(value, Mapping):
        modifiers = [k for k in value if isinstance(k, str) and k.startswith("$")]
        if modifiers:
            raise TranslationError(
                f"Unsupported {operator} modifier: {modifiers[0]}",
                operator=modifiers[0],
                path=path,
            )


def apply_update(document: dict[str, Any], plan: UpdatePlan) -> bool:
    """
    Apply a plan to a document in place.

    ``None`` is treated like a missing field by ``$push`` (new list),
    ``$pull`` (no-op) and ``$inc`` (starts from 0).

    Returns:
        True if the document changed

    Raises:
        TranslationError: ``$inc`` on a non-number, ``$push``/``$pull`` on a
            non-list
    """
    changed = False

    for name, value in plan.set_fields:
        if name not in document or not values_equal(document[name], value):
            document[name] = copy.deepcopy(value)
            changed = True

    for name, value in plan.push_fields:
        current = document.get(name)
        if current is None:
            current = document[name] = []
        elif not isinstance(current, list):
            raise TranslationError(
                f"Cannot $push to non-list field '{name}'", operator="$push", path=name
            )
        current.append(copy.deepcopy(value))
        changed = True

    for name, value in plan.pull_fields:
        current = document.get(name)
        if current is None:
            continue
        if not isinstance(current, list):
            raise TranslationError(
                f"Cannot $pull from non-list field '{name}'", operator="$pull", path=name
            )
        kept = [item for item in current if not values_equal(item, value)]
        if len(kept) != len(current):
            document[name] = kept
            changed = True

    for name, amount in plan.inc_fields:
        current = document.get(name)
        if current is None:
            document[name] = amount
            changed = True
            continue
        if not _is_number(current):
            raise TranslationError(
                f"Cannot $inc non-numeric field '{name}'", operator="$inc", path=name
            )
        document[name] = current + amount
        changed = changed or amount != 0

    return changed
