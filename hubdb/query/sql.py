"""
SQL rendering for the relational backend.

SQLTranslator turns filter expressions, update plans and sort
specifications into PostgreSQL fragments with positional ``$n``
placeholders, as expected by asyncpg. Column names come from a static
field map; every identifier is validated before it is interpolated.
"""

import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from ..constants import IDENTITY_FIELD
from ..exceptions import TranslationError
from .filters import AllOf, AnyOf, FieldEquals, FieldIn, FieldRegex, FilterExpression
from .sorting import DESCENDING, normalize_sort
from .updates import UpdatePlan

IDENTITY_COLUMN = "id"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# PostgreSQL ARE newline options keyed by Python's (MULTILINE, DOTALL); without
# one, PostgreSQL lets "." match a newline where Python does not
_NEWLINE_OPTIONS = {
    (False, False): "p",
    (True, False): "n",
    (False, True): "",
    (True, True): "w",
}


def embedded_options(options: str) -> str:
    """Embedded ARE options reproducing Python ``re`` flags ``m``, ``s`` and ``x``."""
    embedded = _NEWLINE_OPTIONS[("m" in options, "s" in options)]
    if "x" in options:
        embedded += "x"
    return embedded


def quote_identifier(name: str) -> str:
    """Validate a table/column/index name for interpolation."""
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise TranslationError(f"Invalid SQL identifier: {name!r}", path=str(name))
    return name


@dataclass(frozen=True)
class SQLFragment:
    """SQL text plus its positional parameter values."""

    text: str
    values: tuple = ()


class _Parameters:
    """Collects values and hands out ``$n`` placeholders."""

    def __init__(self, start: int = 1):
        self._start = start
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${self._start + len(self.values) - 1}"


def _normalize_datetime(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SQLTranslator:
    """
    Render query algebra into PostgreSQL.

    Args:
        field_map: Document field name -> column name; unmapped names
            pass through unchanged
        integer_columns: Columns whose values arrive as digit strings from
            callers (identity and foreign keys) and are converted to int
        array_columns: Array-typed columns; ``$regex`` matches any element
    """

    def __init__(
        self,
        field_map: Mapping[str, str],
        integer_columns: Collection[str] = (IDENTITY_COLUMN,),
        array_columns: Collection[str] = (),
    ):
        self.field_map = dict(field_map)
        self.integer_columns = frozenset(integer_columns)
        self.array_columns = frozenset(array_columns)

    def column(self, field: str) -> str:
        if field == IDENTITY_FIELD:
            return IDENTITY_COLUMN
        return quote_identifier(self.field_map.get(field, field))

    def coerce(self, column: str, value: Any) -> Any:
        """Convert a caller value into what asyncpg expects for ``column``."""
        if column in self.integer_columns and isinstance(value, str):
            if not value.isdigit():
                raise TranslationError(
                    f"Column '{column}' expects an integer identifier, got {value!r}",
                    path=column,
                )
            return int(value)
        if isinstance(value, (list, tuple)):
            return [_normalize_datetime(item) for item in value]
        return _normalize_datetime(value)

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def where(self, expr: FilterExpression, start: int = 1) -> SQLFragment:
        """Render a filter expression; an empty filter renders as ``TRUE``."""
        params = _Parameters(start)
        text = self._render(expr, params)
        return SQLFragment(text, tuple(params.values))

    def _render(self, expr: FilterExpression, params: _Parameters) -> str:
        if isinstance(expr, FieldEquals):
            column = self.column(expr.field)
            if expr.value is None:
                return f"{column} IS NULL"
            return f"{column} = {params.add(self.coerce(column, expr.value))}"

        if isinstance(expr, FieldIn):
            column = self.column(expr.field)
            present = [self.coerce(column, v) for v in expr.values if v is not None]
            has_null = len(present) != len(expr.values)
            if not present:
                return f"{column} IS NULL" if has_null else "FALSE"
            clause = f"{column} = ANY({params.add(present)})"
            if has_null:
                return f"({clause} OR {column} IS NULL)"
            return clause

        if isinstance(expr, FieldRegex):
            column = self.column(expr.field)
            operator = "~*" if "i" in expr.options else "~"
            embedded = embedded_options(expr.options)
            pattern = f"(?{embedded}){expr.pattern}" if embedded else expr.pattern
            placeholder = params.add(pattern)
            if column in self.array_columns:
                return (
                    f"EXISTS (SELECT 1 FROM unnest({column}) AS element "
                    f"WHERE element {operator} {placeholder})"
                )
            return f"{column}::text {operator} {placeholder}"

        if isinstance(expr, AllOf):
            if not expr.clauses:
                return "TRUE"
            parts = [self._render(clause, params) for clause in expr.clauses]
            if len(parts) == 1:
                return parts[0]
            return " AND ".join(f"({part})" for part in parts)

        if isinstance(expr, AnyOf):
            parts = [self._render(branch, params) for branch in expr.branches]
            return "(" + " OR ".join(f"({part})" for part in parts) + ")"

        raise TranslationError(f"Unsupported filter expression: {type(expr).__name__}")

    # ------------------------------------------------------------------
    # SET
    # ------------------------------------------------------------------

    def assignments(self, plan: UpdatePlan, start: int = 1) -> SQLFragment:
        """Render an update plan as the body of a ``SET`` clause."""
        params = _Parameters(start)
        parts = []
        for operator, field, value in plan.operations():
            column = self.column(field)
            placeholder = params.add(self.coerce(column, value))
            if operator == "$set":
                parts.append(f"{column} = {placeholder}")
            elif operator == "$push":
                parts.append(f"{column} = array_append(COALESCE({column}, '{{}}'), {placeholder})")
            elif operator == "$pull":
                parts.append(f"{column} = array_remove({column}, {placeholder})")
            else:
                parts.append(f"{column} = COALESCE({column}, 0) + {placeholder}")
        return SQLFragment(", ".join(parts), tuple(params.values))

    # ------------------------------------------------------------------
    # ORDER BY / INDEXES
    # ------------------------------------------------------------------

    def order_by(self, sort: Any) -> str:
        """
        Render an ORDER BY body.

        NULLs sort first ascending and last descending, and an ``id``
        tiebreaker keeps ties stable across re-queries.
        """
        parts = []
        columns = set()
        for field, direction in normalize_sort(sort):
            column = self.column(field)
            columns.add(column)
            if direction == DESCENDING:
                parts.append(f"{column} DESC NULLS LAST")
            else:
                parts.append(f"{column} ASC NULLS FIRST")
        if IDENTITY_COLUMN not in columns:
            parts.append(f"{IDENTITY_COLUMN} ASC")
        return ", ".join(parts)

    def create_index(
        self,
        table: str,
        keys: list[tuple[str, int]],
        name: str,
        unique: bool = False,
        sparse: bool = False,
    ) -> str:
        """Render ``CREATE INDEX IF NOT EXISTS`` for normalized keys."""
        if not keys:
            raise TranslationError("An index needs at least one key")
        columns = [(self.column(field), direction) for field, direction in keys]
        body = ", ".join(
            f"{column} DESC" if direction == DESCENDING else column for column, direction in columns
        )
        statement = (
            f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS {quote_identifier(name)} "
            f"ON {quote_identifier(table)} ({body})"
        )
        if sparse:
            statement += " WHERE " + " AND ".join(f"{column} IS NOT NULL" for column, _ in columns)
        return statement
