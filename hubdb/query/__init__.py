"""
Query translation.

Compiles MongoDB-style filters, updates and sort specifications into an
in-memory form shared by every backend.
"""

from .filters import (
    MATCH_ALL,
    AllOf,
    AnyOf,
    FieldEquals,
    FieldIn,
    FieldRegex,
    FilterExpression,
    parse_filter,
    values_equal,
)
from .sorting import ASCENDING, DESCENDING, index_name, normalize_sort, sort_documents
from .sql import SQLFragment, SQLTranslator, quote_identifier
from .updates import UPDATE_OPERATORS, UpdatePlan, apply_update, parse_update

__all__ = [
    # Filters
    "FilterExpression",
    "FieldEquals",
    "FieldIn",
    "FieldRegex",
    "AllOf",
    "AnyOf",
    "MATCH_ALL",
    "parse_filter",
    "values_equal",
    # Updates
    "UPDATE_OPERATORS",
    "UpdatePlan",
    "parse_update",
    "apply_update",
    # Sorting
    "ASCENDING",
    "DESCENDING",
    "normalize_sort",
    "sort_documents",
    "index_name",
    # SQL
    "SQLFragment",
    "SQLTranslator",
    "quote_identifier",
]
