"""
Storage backends.

Three interchangeable implementations of one collection interface:
relational (PostgreSQL), file (JSON files) and document (MongoDB).
"""

from .base import (
    BackendKind,
    BaseCollection,
    Cursor,
    DeleteResult,
    InsertOneResult,
    StorageBackend,
    UpdateResult,
)
from .document import DocumentBackend
from .file import FileBackend
from .relational import RelationalBackend

__all__ = [
    # Interface
    "BackendKind",
    "StorageBackend",
    "BaseCollection",
    "Cursor",
    "InsertOneResult",
    "UpdateResult",
    "DeleteResult",
    # Variants
    "RelationalBackend",
    "FileBackend",
    "DocumentBackend",
]
