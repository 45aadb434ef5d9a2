"""
HUBDB - Data access for the learning hub

One pymongo-style collection interface over three interchangeable
backends (PostgreSQL, JSON files, MongoDB), selected from the environment
with a production fallback to local files.
"""

# Backends
from .backends import (BackendKind, BaseCollection, Cursor, DeleteResult,
                       DocumentBackend, FileBackend, InsertOneResult,
                       RelationalBackend, StorageBackend, UpdateResult)
# Configuration
from .config import DatabaseConfig
# Selection and lifecycle
from .connection import DatabaseManager, close_db, connect_db, get_db
# Errors
from .exceptions import (BackendConnectionError, ConfigurationError,
                         DuplicateKeyError, HubDBError, InitializationError,
                         PersistenceError, TranslationError)

__version__ = "0.1.0"

__all__ = [
    # Selection
    "DatabaseConfig",
    "DatabaseManager",
    "connect_db",
    "get_db",
    "close_db",
    # Backends
    "BackendKind",
    "StorageBackend",
    "BaseCollection",
    "Cursor",
    "InsertOneResult",
    "UpdateResult",
    "DeleteResult",
    "RelationalBackend",
    "FileBackend",
    "DocumentBackend",
    # Errors
    "HubDBError",
    "ConfigurationError",
    "InitializationError",
    "BackendConnectionError",
    "TranslationError",
    "PersistenceError",
    "DuplicateKeyError",
]
