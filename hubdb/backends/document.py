"""
Document-store storage (MongoDB via Motor).

Filters and updates go through the same parser as the other backends, so
malformed queries are rejected before they reach the server, and are then
rendered back into native MongoDB documents. ObjectIds surface to callers
as their hex strings; a filter on ``_id`` with such a string matches both
representations.

MongoDB's own matching rules apply here: ``{"field": None}`` also matches
documents without the field, and equality against an array field matches
any element.
"""

import logging
from typing import Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import errors as mongo_errors

from ..constants import (
    ATLAS_HOST_MARKER,
    DEFAULT_MONGO_DB_NAME,
    DEFAULT_MONGO_URI,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    DEFAULT_SOCKET_TIMEOUT_MS,
    IDENTITY_FIELD,
)
from ..exceptions import BackendConnectionError, DuplicateKeyError, HubDBError, TranslationError
from ..observability.logging import mask_uri
from ..observability.metrics import timed_operation
from ..query import (
    AllOf,
    AnyOf,
    FieldEquals,
    FieldIn,
    FieldRegex,
    FilterExpression,
    UpdatePlan,
)
from .base import BackendKind, BaseCollection, StorageBackend, UpdateResult

logger = logging.getLogger(__name__)

DEFAULT_INDEXES: tuple[tuple[str, list[tuple[str, int]], dict[str, Any]], ...] = (
    ("users", [("username", 1)], {"unique": True}),
    ("users", [("email", 1)], {"unique": True}),
    ("users", [("apiKey", 1)], {"sparse": True}),
    ("projects", [("created", -1)], {}),
    ("projects", [("userId", 1)], {}),
    ("discussions", [("created", -1)], {}),
    ("lessons", [("created", -1)], {}),
    ("rooms", [("created", -1)], {}),
    ("rooms", [("status", 1)], {}),
)
"""(collection, keys, options) created after connecting."""


def _identity_value(value: Any) -> Any:
    """Match an identity string against both its ObjectId and string forms."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return {"$in": [ObjectId(value), value]}
    return value


def _identity_candidates(values: tuple) -> list[Any]:
    candidates: list[Any] = []
    for value in values:
        if isinstance(value, str) and ObjectId.is_valid(value):
            candidates.append(ObjectId(value))
        candidates.append(value)
    return candidates


def to_mongo_filter(expr: FilterExpression) -> dict[str, Any]:
    """Render a filter expression as a native MongoDB filter."""
    if isinstance(expr, FieldEquals):
        if expr.field == IDENTITY_FIELD:
            return {expr.field: _identity_value(expr.value)}
        return {expr.field: expr.value}
    if isinstance(expr, FieldIn):
        values = list(expr.values)
        if expr.field == IDENTITY_FIELD:
            values = _identity_candidates(expr.values)
        return {expr.field: {"$in": values}}
    if isinstance(expr, FieldRegex):
        condition: dict[str, Any] = {"$regex": expr.pattern}
        if expr.options:
            condition["$options"] = expr.options
        return {expr.field: condition}
    if isinstance(expr, AllOf):
        if not expr.clauses:
            return {}
        if len(expr.clauses) == 1:
            return to_mongo_filter(expr.clauses[0])
        return {"$and": [to_mongo_filter(clause) for clause in expr.clauses]}
    if isinstance(expr, AnyOf):
        return {"$or": [to_mongo_filter(branch) for branch in expr.branches]}
    raise TranslationError(f"Unsupported filter expression: {type(expr).__name__}")


def to_mongo_update(plan: UpdatePlan) -> dict[str, Any]:
    """Render an update plan as a native MongoDB update document."""
    update: dict[str, dict[str, Any]] = {}
    for operator, field, value in plan.operations():
        update.setdefault(operator, {})[field] = value
    return update


def _surface(document: dict[str, Any] | None) -> dict[str, Any] | None:
    if document is not None and isinstance(document.get(IDENTITY_FIELD), ObjectId):
        document[IDENTITY_FIELD] = str(document[IDENTITY_FIELD])
    return document


def prepare_uri(
    uri: str, db_name: str, tls: bool | None, render: bool, production: bool
) -> tuple[str, dict[str, Any]]:
    """
    Apply hosting rules to a MongoDB URI.

    * Atlas URIs without a database path get ``db_name`` inserted.
    * An explicit ``tls`` setting always wins.
    * On Render in production, a non-SRV URI has ``ssl=true`` switched to
      ``ssl=false`` and TLS disabled; SRV URIs keep the driver default.

    Returns:
        The URI and extra client keyword arguments
    """
    marker_at = uri.find(ATLAS_HOST_MARKER)
    if marker_at != -1:
        rest = uri[marker_at + len(ATLAS_HOST_MARKER):]
        if rest == "" or rest.startswith("?"):
            uri = uri[: marker_at + len(ATLAS_HOST_MARKER)] + db_name + rest

    options: dict[str, Any] = {}
    if tls is not None:
        options["tls"] = tls
    elif production and render:
        logger.info("Using Render-compatible connection settings")
        if not uri.startswith("mongodb+srv://"):
            if "ssl=true" in uri:
                uri = uri.replace("ssl=true", "ssl=false")
                logger.info("Disabled SSL in connection string for Render compatibility")
            options["tls"] = False
    return uri, options


def _wrap(error: mongo_errors.PyMongoError, operation: str, collection: str) -> HubDBError:
    if isinstance(error, mongo_errors.DuplicateKeyError):
        return DuplicateKeyError(
            f"Duplicate key: {error}",
            context={"collection": collection, "error_code": error.code},
        )
    return HubDBError(
        f"Document-store {operation} failed: {error}",
        context={
            "backend": BackendKind.DOCUMENT.value,
            "collection": collection,
            "operation": operation,
            "error_name": type(error).__name__,
        },
    )


class DocumentCollection(BaseCollection):
    """Collection handle over a Motor collection."""

    _backend: "DocumentBackend"

    @property
    def _native(self):
        return self._backend.database[self.name]

    async def _insert_one(self, document: dict[str, Any]) -> Any:
        try:
            result = await self._native.insert_one(document)
        except mongo_errors.PyMongoError as e:
            raise _wrap(e, "insert_one", self.name) from e
        inserted_id = result.inserted_id
        return str(inserted_id) if isinstance(inserted_id, ObjectId) else inserted_id

    async def _find_one(self, expr: FilterExpression) -> dict[str, Any] | None:
        try:
            document = await self._native.find_one(to_mongo_filter(expr))
        except mongo_errors.PyMongoError as e:
            logger.error(f"Database operation failed in find_one: {e}")
            raise _wrap(e, "find_one", self.name) from e
        return _surface(document)

    async def _find(
        self,
        expr: FilterExpression,
        sort: list[tuple[str, int]],
        skip: int,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        cursor = self._native.find(to_mongo_filter(expr))
        if sort:
            if all(field != IDENTITY_FIELD for field, _ in sort):
                sort = [*sort, (IDENTITY_FIELD, 1)]
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit is not None:
            cursor = cursor.limit(limit)
        try:
            documents = await cursor.to_list(length=None)
        except mongo_errors.PyMongoError as e:
            raise _wrap(e, "find", self.name) from e
        return [_surface(document) for document in documents]

    async def _update_one(self, expr: FilterExpression, plan: UpdatePlan) -> UpdateResult:
        filter = to_mongo_filter(expr)
        try:
            if plan.is_empty:
                found = await self._native.find_one(filter, {IDENTITY_FIELD: 1})
                return UpdateResult(matched_count=int(found is not None), modified_count=0)
            result = await self._native.update_one(filter, to_mongo_update(plan))
        except mongo_errors.PyMongoError as e:
            raise _wrap(e, "update_one", self.name) from e
        return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def _delete(self, expr: FilterExpression, many: bool) -> int:
        filter = to_mongo_filter(expr)
        operation = "delete_many" if many else "delete_one"
        try:
            result = await getattr(self._native, operation)(filter)
        except mongo_errors.PyMongoError as e:
            raise _wrap(e, operation, self.name) from e
        return result.deleted_count

    async def _count(self, expr: FilterExpression) -> int:
        try:
            return await self._native.count_documents(to_mongo_filter(expr))
        except mongo_errors.PyMongoError as e:
            raise _wrap(e, "count_documents", self.name) from e

    async def _create_index(
        self, keys: list[tuple[str, int]], unique: bool, sparse: bool, name: str | None
    ) -> str:
        options: dict[str, Any] = {"unique": unique, "sparse": sparse}
        if name is not None:
            options["name"] = name
        try:
            return await self._native.create_index(keys, **options)
        except mongo_errors.PyMongoError as e:
            raise _wrap(e, "create_index", self.name) from e


class DocumentBackend(StorageBackend):
    """
    MongoDB storage through Motor.

    Args:
        uri: MongoDB connection string
        db_name: Database used when the URI names none
        tls: Explicit TLS switch; None applies the hosting rules
        render: Running on Render
        production: Hosted-production mode
    """

    kind = BackendKind.DOCUMENT

    def __init__(
        self,
        uri: str = DEFAULT_MONGO_URI,
        db_name: str = DEFAULT_MONGO_DB_NAME,
        tls: bool | None = None,
        render: bool = False,
        production: bool = False,
        server_selection_timeout_ms: int = DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
        socket_timeout_ms: int = DEFAULT_SOCKET_TIMEOUT_MS,
    ):
        super().__init__()
        self.uri = uri
        self.db_name = db_name
        self.tls = tls
        self.render = render
        self.production = production
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.socket_timeout_ms = socket_timeout_ms
        self._client: AsyncIOMotorClient | None = None
        self._database = None

    @classmethod
    def from_config(cls, config) -> "DocumentBackend":
        """Build from a DatabaseConfig."""
        return cls(
            config.mongodb_uri or DEFAULT_MONGO_URI,
            db_name=config.mongodb_db_name,
            tls=config.mongodb_tls,
            render=config.render,
            production=config.is_production,
        )

    @property
    def database(self):
        self.ensure_initialized()
        return self._database

    def _make_collection(self, name: str) -> DocumentCollection:
        return DocumentCollection(self, name)

    @timed_operation("document.initialize", backend="document")
    async def initialize(self) -> None:
        """
        Connect, verify with ``ping`` and create the default indexes.

        Raises:
            BackendConnectionError: If the server cannot be reached
        """
        if self._initialized:
            return

        uri, options = prepare_uri(self.uri, self.db_name, self.tls, self.render, self.production)
        logger.info(f"Attempting to connect to MongoDB: {mask_uri(uri)}")
        try:
            self._client = AsyncIOMotorClient(
                uri,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                socketTimeoutMS=self.socket_timeout_ms,
                tz_aware=True,
                **options,
            )
            await self._client.admin.command("ping")
        except mongo_errors.PyMongoError as e:
            logger.error(f"MongoDB connection failed: {type(e).__name__}: {e}")
            if self._client is not None:
                self._client.close()
                self._client = None
            raise BackendConnectionError.from_exception(
                "MongoDB connection failed", e, backend=self.kind.value
            ) from e

        self._database = self._client.get_default_database(self.db_name)
        self._initialized = True
        logger.info("Connected to MongoDB successfully")
        await self.create_default_indexes()

    async def create_default_indexes(self) -> None:
        """Create the indexes the application relies on; failures are logged."""
        for name, keys, options in DEFAULT_INDEXES:
            try:
                await self.collection(name).create_index(keys, **options)
            except HubDBError as e:
                logger.error(f"Index creation error on {name}: {e}")
        logger.info("Database indexes created")

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("MongoDB connection closed")
        self._database = None
        self._collections.clear()
        self._initialized = False

    async def ping(self) -> None:
        self.ensure_initialized()
        try:
            await self._client.admin.command("ping")
        except mongo_errors.PyMongoError as e:
            raise BackendConnectionError.from_exception(
                "MongoDB ping failed", e, backend=self.kind.value
            ) from e
