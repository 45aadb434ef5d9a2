"""
Storage interface shared by every backend.

A backend hands out collection handles that follow pymongo's naming
(insert_one, find_one, find().sort().skip().limit(), update_one, ...).
Filters and updates are parsed here, once per call, so every backend
rejects the same malformed queries the same way; subclasses only
implement the underscore hooks.

Usage:
    users = backend.users                      # or backend["users"]
    result = await users.insert_one({"username": "alice"})
    doc = await users.find_one({"id": result.inserted_id})
    page = await users.find({}).sort("created", -1).skip(20).limit(10).to_list()
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..exceptions import HubDBError, InitializationError, TranslationError
from ..observability.logging import log_operation
from ..observability.metrics import record_operation
from ..query import (
    FilterExpression,
    UpdatePlan,
    normalize_sort,
    parse_filter,
    parse_update,
)

logger = logging.getLogger(__name__)

_COLLECTION_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class BackendKind(str, Enum):
    """Storage backend variants."""

    RELATIONAL = "relational"
    FILE = "file"
    DOCUMENT = "document"


@dataclass(frozen=True)
class InsertOneResult:
    inserted_id: Any
    acknowledged: bool = True


@dataclass(frozen=True)
class UpdateResult:
    matched_count: int
    modified_count: int
    acknowledged: bool = True


@dataclass(frozen=True)
class DeleteResult:
    deleted_count: int
    acknowledged: bool = True


def _check_count(value: Any, operator: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TranslationError(
            f"{operator} requires a non-negative integer, got {value!r}", operator=operator
        )
    return value


class Cursor:
    """
    Lazy query over one collection.

    ``sort``, ``skip`` and ``limit`` may be chained in any order; nothing
    runs until ``await cursor.to_list()`` or ``async for``.
    """

    def __init__(self, collection: "BaseCollection", expr: FilterExpression):
        self._collection = collection
        self._expr = expr
        self._sort: list[tuple[str, int]] = []
        self._skip = 0
        self._limit: int | None = None

    def sort(self, key_or_list: Any, direction: int | None = None) -> "Cursor":
        self._sort = normalize_sort(key_or_list, direction)
        return self

    def skip(self, count: int) -> "Cursor":
        self._skip = _check_count(count, "$skip")
        return self

    def limit(self, count: int) -> "Cursor":
        # pymongo semantics: a limit of 0 means no limit
        count = _check_count(count, "$limit")
        self._limit = count or None
        return self

    async def to_list(self, length: int | None = None) -> list[dict[str, Any]]:
        """Execute the query; ``length`` caps the number of documents returned."""
        limit = self._limit
        if length:
            limit = min(limit, length) if limit else length
        return await self._collection._run(
            "find", self._collection._find, self._expr, self._sort, self._skip, limit
        )

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for document in await self.to_list():
            yield document


class BaseCollection(ABC):
    """
    Collection handle.

    Public methods validate input, time the call and delegate to the
    backend-specific underscore hooks.
    """

    def __init__(self, backend: "StorageBackend", name: str):
        self._backend = backend
        self.name = name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    async def _run(self, operation: str, func, *args):
        self._backend.ensure_initialized()
        start_time = time.perf_counter()
        success = True
        try:
            return await func(*args)
        except Exception:
            success = False
            raise
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            kind = self._backend.kind.value
            record_operation(
                f"collection.{operation}",
                duration_ms,
                success,
                backend=kind,
                collection=self.name,
            )
            log_operation(
                logger,
                f"{kind}.{operation}",
                level=logging.DEBUG if success else logging.WARNING,
                success=success,
                duration_ms=duration_ms,
                collection=self.name,
            )

    async def insert_one(self, document: Mapping[str, Any]) -> InsertOneResult:
        """Insert a document; the backend assigns ``_id`` when it is absent."""
        if not isinstance(document, Mapping):
            raise TranslationError(
                f"Document must be a mapping, got {type(document).__name__}"
            )
        inserted_id = await self._run("insert_one", self._insert_one, dict(document))
        return InsertOneResult(inserted_id=inserted_id)

    async def find_one(self, filter: Mapping[str, Any] | None = None) -> dict[str, Any] | None:
        """First matching document, or None."""
        expr = parse_filter(filter)
        return await self._run("find_one", self._find_one, expr)

    def find(self, filter: Mapping[str, Any] | None = None) -> Cursor:
        """Cursor over matching documents; the filter is validated immediately."""
        return Cursor(self, parse_filter(filter))

    async def update_one(
        self, filter: Mapping[str, Any], update: Mapping[str, Any]
    ) -> UpdateResult:
        """Apply an update to the first matching document."""
        expr = parse_filter(filter)
        plan = parse_update(update)
        return await self._run("update_one", self._update_one, expr, plan)

    async def delete_one(self, filter: Mapping[str, Any]) -> DeleteResult:
        expr = parse_filter(filter)
        deleted = await self._run("delete_one", self._delete, expr, False)
        return DeleteResult(deleted_count=deleted)

    async def delete_many(self, filter: Mapping[str, Any] | None = None) -> DeleteResult:
        expr = parse_filter(filter)
        deleted = await self._run("delete_many", self._delete, expr, True)
        return DeleteResult(deleted_count=deleted)

    async def count_documents(self, filter: Mapping[str, Any] | None = None) -> int:
        expr = parse_filter(filter)
        return await self._run("count_documents", self._count, expr)

    async def create_index(
        self,
        keys: Any,
        *,
        unique: bool = False,
        sparse: bool = False,
        name: str | None = None,
        **options: Any,
    ) -> str:
        """
        Create an index and return its name.

        Args:
            keys: Field name, mapping or list of (field, direction) pairs
            unique: Reject duplicate values
            sparse: Only index documents/rows where the keys are present
            name: Index name (derived from the keys when omitted)
            **options: Other driver options; ignored where unsupported
        """
        normalized = normalize_sort(keys)
        if not normalized:
            raise TranslationError("An index needs at least one key")
        if options:
            logger.debug(f"Ignoring unsupported index options for {self.name}: {sorted(options)}")
        return await self._run(
            "create_index",
            self._create_index,
            normalized,
            unique,
            sparse,
            name,
        )

    @abstractmethod
    async def _insert_one(self, document: dict[str, Any]) -> Any:
        """Store the document and return its identity."""

    @abstractmethod
    async def _find_one(self, expr: FilterExpression) -> dict[str, Any] | None: ...

    @abstractmethod
    async def _find(
        self,
        expr: FilterExpression,
        sort: list[tuple[str, int]],
        skip: int,
        limit: int | None,
    ) -> list[dict[str, Any]]: ...

    @abstractmethod
    async def _update_one(self, expr: FilterExpression, plan: UpdatePlan) -> UpdateResult: ...

    @abstractmethod
    async def _delete(self, expr: FilterExpression, many: bool) -> int:
        """Delete the first (or every) match and return the number removed."""

    @abstractmethod
    async def _count(self, expr: FilterExpression) -> int: ...

    @abstractmethod
    async def _create_index(
        self, keys: list[tuple[str, int]], unique: bool, sparse: bool, name: str | None
    ) -> str: ...


class StorageBackend(ABC):
    """
    One storage engine plus its collection handles.

    Collections are reachable as ``backend.collection("users")``,
    ``backend["users"]`` or ``backend.users``.
    """

    kind: BackendKind

    def __init__(self) -> None:
        self._collections: dict[str, BaseCollection] = {}
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def ensure_initialized(self) -> None:
        if not self._initialized:
            raise InitializationError(
                f"{self.kind.value} backend is not initialized. Call initialize() first.",
                backend=self.kind.value,
            )

    def collection(self, name: str) -> BaseCollection:
        """Get (and cache) the handle for a collection."""
        if not isinstance(name, str) or not _COLLECTION_NAME.match(name):
            raise HubDBError(f"Invalid collection name: {name!r}")
        handle = self._collections.get(name)
        if handle is None:
            handle = self._make_collection(name)
            self._collections[name] = handle
        return handle

    def __getitem__(self, name: str) -> BaseCollection:
        return self.collection(name)

    def __getattr__(self, name: str) -> BaseCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self.collection(name)
        except HubDBError as e:
            raise AttributeError(str(e)) from e

    def __repr__(self) -> str:
        return f"{type(self).__name__}(initialized={self._initialized})"

    @abstractmethod
    def _make_collection(self, name: str) -> BaseCollection: ...

    @abstractmethod
    async def initialize(self) -> None:
        """Connect and prepare storage. Must be idempotent."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections; the backend may be initialized again."""

    @abstractmethod
    async def ping(self) -> None:
        """Round-trip to the storage engine; raises when it is unreachable."""
