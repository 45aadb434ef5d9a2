"""
Backend selection and lifecycle.

DatabaseManager picks exactly one backend from the configuration:

    relational configured (DATABASE_URL / DB_HOST)   -> Relational
    USE_FILE_DB, or production without MONGODB_URI   -> File
    otherwise                                        -> Document store

A Relational or Document-store connection failure falls back to the File
backend in hosted-production mode; anywhere else it is raised, because a
local connection failure almost always means misconfiguration.

Usage:
    manager = DatabaseManager(DatabaseConfig.from_env())
    db = await manager.connect()
    await db.users.insert_one({"username": "alice"})
    await manager.close()

    # Or, in scripts, through the default manager
    db = await connect_db()
    db = get_db()
    await close_db()
"""

import asyncio
import logging

from .backends import DocumentBackend, FileBackend, RelationalBackend, StorageBackend
from .config import DatabaseConfig
from .exceptions import HubDBError, InitializationError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the single active backend of a process (or test).

    ``connect()`` is idempotent: concurrent and repeated calls share one
    backend instance until ``close()``.

    Args:
        config: Settings; read from the environment on first connect when
            omitted
    """

    def __init__(self, config: DatabaseConfig | None = None):
        self.config = config
        self._backend: StorageBackend | None = None
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> StorageBackend | None:
        return self._backend

    @property
    def connected(self) -> bool:
        return self._backend is not None

    async def connect(self) -> StorageBackend:
        """
        Select, initialize and memoize a backend.

        Raises:
            BackendConnectionError: Connection failed outside production
            ConfigurationError: Invalid settings
            PersistenceError: The file backend could not load its data
        """
        if self._backend is not None:
            return self._backend

        async with self._lock:
            if self._backend is not None:
                return self._backend
            if self.config is None:
                self.config = DatabaseConfig.from_env()
            self._backend = await self._select(self.config)
            logger.info(f"Active database backend: {self._backend.kind.value}")
            return self._backend

    async def _select(self, config: DatabaseConfig) -> StorageBackend:
        logger.info(f"Environment: {config.environment}")
        if config.relational_configured:
            logger.info("PostgreSQL configured, using relational backend")
            return await self._attempt(RelationalBackend.from_config(config), config)

        if config.use_file_db or (config.is_production and not config.mongodb_uri):
            return await self._open_file(config)

        return await self._attempt(DocumentBackend.from_config(config), config)

    async def _attempt(self, backend: StorageBackend, config: DatabaseConfig) -> StorageBackend:
        try:
            await backend.initialize()
            return backend
        except HubDBError as e:
            await backend.close()
            if not config.is_production:
                logger.critical(f"{backend.kind.value} backend failed to start: {e}")
                raise
            logger.warning(f"{backend.kind.value} backend failed to start: {e}")
            logger.info("Falling back to file-based database...")
            return await self._open_file(config)

    async def _open_file(self, config: DatabaseConfig) -> FileBackend:
        backend = FileBackend(config.data_dir)
        await backend.initialize()
        return backend

    def get(self) -> StorageBackend:
        """The active backend; raises InitializationError before connect()."""
        if self._backend is None:
            raise InitializationError("Database not initialized. Call connect() first.")
        return self._backend

    async def close(self) -> None:
        """Close the active backend; connect() may be called again afterwards."""
        async with self._lock:
            if self._backend is not None:
                await self._backend.close()
                self._backend = None

    async def __aenter__(self) -> StorageBackend:
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


_default_manager: DatabaseManager | None = None


def get_default_manager() -> DatabaseManager:
    """Get or create the process-wide manager used by connect_db/get_db/close_db."""
    global _default_manager
    if _default_manager is None:
        _default_manager = DatabaseManager()
    return _default_manager


async def connect_db(config: DatabaseConfig | None = None) -> StorageBackend:
    """Connect the default manager (settings from the environment unless given)."""
    manager = get_default_manager()
    if config is not None and not manager.connected:
        manager.config = config
    return await manager.connect()


def get_db() -> StorageBackend:
    return get_default_manager().get()


async def close_db() -> None:
    await get_default_manager().close()
