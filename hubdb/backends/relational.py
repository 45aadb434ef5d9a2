"""
Relational storage (PostgreSQL via asyncpg).

Presents the collection interface over the fixed schema in ``schema.py``.
Document field names are translated to columns on the way in and back on
the way out; the ``id`` column surfaces as ``_id``. Every operation is a
single statement, so ``$inc`` is atomic and there are no transactions
spanning calls.
"""

import asyncio
import logging
from typing import Any

import asyncpg

from ..constants import (
    DEFAULT_PG_CONNECT_TIMEOUT_S,
    DEFAULT_PG_IDLE_LIFETIME_S,
    DEFAULT_PG_POOL_MAX_SIZE,
    DEFAULT_PG_POOL_MIN_SIZE,
)
from ..exceptions import (
    BackendConnectionError,
    DuplicateKeyError,
    HubDBError,
    InitializationError,
)
from ..observability.logging import mask_uri
from ..observability.metrics import timed_operation
from ..query import FilterExpression, SQLTranslator, UpdatePlan
from ..query.sql import IDENTITY_COLUMN
from .base import BackendKind, BaseCollection, StorageBackend, UpdateResult
from .dsn import connection_options
from .schema import (
    ARRAY_COLUMNS,
    FIELD_TO_COLUMN,
    INDEXES,
    INTEGER_COLUMNS,
    TABLES,
    row_to_document,
)

logger = logging.getLogger(__name__)

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def _row_count(status: str) -> int:
    """Affected rows from a command tag such as ``UPDATE 1`` or ``DELETE 3``."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


class RelationalCollection(BaseCollection):
    """Collection handle mapped onto one table."""

    _backend: "RelationalBackend"

    def __init__(self, backend: "RelationalBackend", name: str):
        if name not in TABLES:
            raise HubDBError(
                f"Unknown collection '{name}' for the relational schema",
                context={"collection": name, "known": ", ".join(TABLES)},
            )
        super().__init__(backend, name)
        self.table = name

    @property
    def _sql(self) -> SQLTranslator:
        return self._backend.translator

    async def _query(self, operation: str, method: str, statement: str, *args: Any) -> Any:
        return await self._backend.query(operation, method, statement, *args, collection=self.name)

    async def _insert_one(self, document: dict[str, Any]) -> Any:
        columns = []
        values = []
        for field, value in document.items():
            column = self._sql.column(field)
            if column == IDENTITY_COLUMN:
                continue
            columns.append(column)
            values.append(self._sql.coerce(column, value))

        if columns:
            placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
            statement = (
                f"INSERT INTO {self.table} ({', '.join(columns)}) "
                f"VALUES ({placeholders}) RETURNING {IDENTITY_COLUMN}"
            )
        else:
            statement = f"INSERT INTO {self.table} DEFAULT VALUES RETURNING {IDENTITY_COLUMN}"
        return await self._query("insert_one", "fetchval", statement, *values)

    async def _find_one(self, expr: FilterExpression) -> dict[str, Any] | None:
        where = self._sql.where(expr)
        row = await self._query(
            "find_one",
            "fetchrow",
            f"SELECT * FROM {self.table} WHERE {where.text} ORDER BY {IDENTITY_COLUMN} LIMIT 1",
            *where.values,
        )
        return row_to_document(row) if row is not None else None

    async def _find(
        self,
        expr: FilterExpression,
        sort: list[tuple[str, int]],
        skip: int,
        limit: int | None,
    ) -> list[dict[str, Any]]:
        where = self._sql.where(expr)
        values = list(where.values)
        statement = (
            f"SELECT * FROM {self.table} WHERE {where.text} "
            f"ORDER BY {self._sql.order_by(sort)}"
        )
        if skip:
            values.append(skip)
            statement += f" OFFSET ${len(values)}"
        if limit is not None:
            values.append(limit)
            statement += f" LIMIT ${len(values)}"
        rows = await self._query("find", "fetch", statement, *values)
        return [row_to_document(row) for row in rows]

    def _first_match(self, where_text: str) -> str:
        return (
            f"SELECT {IDENTITY_COLUMN} FROM {self.table} WHERE {where_text} "
            f"ORDER BY {IDENTITY_COLUMN} LIMIT 1"
        )

    async def _update_one(self, expr: FilterExpression, plan: UpdatePlan) -> UpdateResult:
        if plan.is_empty:
            where = self._sql.where(expr)
            matched = await self._query(
                "update_one",
                "fetchval",
                f"SELECT COUNT(*) FROM ({self._first_match(where.text)}) AS matched",
                *where.values,
            )
            return UpdateResult(matched_count=matched, modified_count=0)

        assignments = self._sql.assignments(plan)
        where = self._sql.where(expr, start=len(assignments.values) + 1)
        status = await self._query(
            "update_one",
            "execute",
            f"UPDATE {self.table} SET {assignments.text} "
            f"WHERE {IDENTITY_COLUMN} IN ({self._first_match(where.text)})",
            *assignments.values,
            *where.values,
        )
        updated = _row_count(status)
        return UpdateResult(matched_count=updated, modified_count=updated)

    async def _delete(self, expr: FilterExpression, many: bool) -> int:
        where = self._sql.where(expr)
        if many:
            statement = f"DELETE FROM {self.table} WHERE {where.text}"
        else:
            statement = (
                f"DELETE FROM {self.table} "
                f"WHERE {IDENTITY_COLUMN} IN ({self._first_match(where.text)})"
            )
        operation = "delete_many" if many else "delete_one"
        status = await self._query(operation, "execute", statement, *where.values)
        return _row_count(status)

    async def _count(self, expr: FilterExpression) -> int:
        where = self._sql.where(expr)
        return await self._query(
            "count_documents",
            "fetchval",
            f"SELECT COUNT(*) FROM {self.table} WHERE {where.text}",
            *where.values,
        )

    async def _create_index(
        self, keys: list[tuple[str, int]], unique: bool, sparse: bool, name: str | None
    ) -> str:
        if name is None:
            name = f"idx_{self.table}_" + "_".join(self._sql.column(field) for field, _ in keys)
        statement = self._sql.create_index(self.table, keys, name, unique=unique, sparse=sparse)
        await self._query("create_index", "execute", statement)
        return name


class RelationalBackend(StorageBackend):
    """
    PostgreSQL storage through an asyncpg pool.

    Args:
        dsn: PostgreSQL connection URL
        ssl_mode: "require" (TLS without verification) or "disable"
        max_size: Maximum pool size
        min_size: Minimum pool size
        connect_timeout: Connection timeout in seconds
        idle_lifetime: Seconds before an idle connection is closed
    """

    kind = BackendKind.RELATIONAL

    def __init__(
        self,
        dsn: str,
        ssl_mode: str = "require",
        max_size: int = DEFAULT_PG_POOL_MAX_SIZE,
        min_size: int = DEFAULT_PG_POOL_MIN_SIZE,
        connect_timeout: float = DEFAULT_PG_CONNECT_TIMEOUT_S,
        idle_lifetime: float = DEFAULT_PG_IDLE_LIFETIME_S,
    ):
        super().__init__()
        self.dsn = dsn
        self.ssl_mode = ssl_mode
        self.max_size = max_size
        self.min_size = min(min_size, max_size)
        self.connect_timeout = connect_timeout
        self.idle_lifetime = idle_lifetime
        self.translator = SQLTranslator(FIELD_TO_COLUMN, INTEGER_COLUMNS, ARRAY_COLUMNS)
        self._pool: asyncpg.Pool | None = None

    @classmethod
    def from_config(cls, config) -> "RelationalBackend":
        """Build from a DatabaseConfig."""
        return cls(
            config.relational_dsn,
            ssl_mode=config.db_ssl_mode,
            max_size=config.db_pool_max_size,
            connect_timeout=config.db_connect_timeout,
        )

    def _make_collection(self, name: str) -> RelationalCollection:
        return RelationalCollection(self, name)

    @timed_operation("relational.initialize", backend="relational")
    async def initialize(self) -> None:
        """
        Open the pool, verify it, and create the schema.

        Raises:
            BackendConnectionError: If PostgreSQL cannot be reached
            HubDBError: If a schema statement fails
        """
        if self._initialized:
            return

        logger.info("Connecting to PostgreSQL...")
        logger.info(f"Connection string: {mask_uri(self.dsn)}")
        options = await connection_options(self.dsn, self.ssl_mode)
        try:
            self._pool = await asyncpg.create_pool(
                min_size=self.min_size,
                max_size=self.max_size,
                max_inactive_connection_lifetime=self.idle_lifetime,
                timeout=self.connect_timeout,
                **options,
            )
            now = await self._pool.fetchval("SELECT NOW()")
        except DRIVER_ERRORS as e:
            logger.error(f"PostgreSQL connection failed: {type(e).__name__}: {e}")
            await self._terminate_pool()
            raise BackendConnectionError.from_exception(
                "PostgreSQL connection failed", e, backend=self.kind.value
            ) from e
        logger.info(f"Connected to PostgreSQL successfully at: {now}")

        try:
            await self.create_schema()
        except HubDBError:
            await self._terminate_pool()
            raise
        self._initialized = True

    async def create_schema(self) -> None:
        """
        Create tables and indexes, one statement at a time.

        A failure partway leaves the objects created before it in place.
        """
        if self._pool is None:
            raise InitializationError("Connection pool is not open", backend=self.kind.value)
        for statement in (*TABLES.values(), *INDEXES):
            try:
                await self._pool.execute(statement)
            except DRIVER_ERRORS as e:
                logger.error(f"Error creating schema: {e}")
                raise HubDBError(
                    f"Schema creation failed: {e}",
                    context={
                        "backend": self.kind.value,
                        "statement": " ".join(statement.split())[:80],
                    },
                ) from e
        logger.info("PostgreSQL tables and indexes created successfully")

    async def query(
        self, operation: str, method: str, statement: str, *args: Any, collection: str | None = None
    ) -> Any:
        """Run one statement through the pool, translating driver errors."""
        self.ensure_initialized()
        try:
            return await getattr(self._pool, method)(statement, *args)
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(
                f"Duplicate key: {e.detail or e}",
                context={"collection": collection, "constraint": e.constraint_name},
            ) from e
        except DRIVER_ERRORS as e:
            logger.error(f"Relational {operation} failed on {collection}: {type(e).__name__}: {e}")
            raise HubDBError(
                f"Relational {operation} failed: {e}",
                context={
                    "backend": self.kind.value,
                    "collection": collection,
                    "operation": operation,
                    "error_name": type(e).__name__,
                    "sqlstate": getattr(e, "sqlstate", None),
                },
            ) from e

    async def _terminate_pool(self) -> None:
        if self._pool is not None:
            self._pool.terminate()
            self._pool = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection closed")
        self._collections.clear()
        self._initialized = False

    async def ping(self) -> None:
        self.ensure_initialized()
        try:
            await self._pool.fetchval("SELECT 1")
        except DRIVER_ERRORS as e:
            raise BackendConnectionError.from_exception(
                "PostgreSQL ping failed", e, backend=self.kind.value
            ) from e
