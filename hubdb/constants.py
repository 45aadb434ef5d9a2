"""
Constants for HUBDB.

Shared constants used across the backends, kept here to avoid magic
numbers in the connection and persistence code.
"""

from typing import Final

# ============================================================================
# COLLECTIONS
# ============================================================================

KNOWN_COLLECTIONS: Final[tuple[str, ...]] = (
    "users",
    "projects",
    "discussions",
    "replies",
    "lessons",
    "rooms",
)
"""Collections the application uses; loaded eagerly by the file backend."""

IDENTITY_FIELD: Final[str] = "_id"
"""Identity field surfaced to callers by every backend."""

IDENTITY_ALIASES: Final[tuple[str, ...]] = ("_id", "id")
"""Filter/update keys that address the identity field."""

FILE_CREATED_FIELD: Final[str] = "createdAt"
"""Creation timestamp attached by the file backend when absent."""

# ============================================================================
# ENVIRONMENT
# ============================================================================

PRODUCTION_ENVIRONMENT: Final[str] = "production"
"""Environment name that enables hosted-production fallbacks."""

# ============================================================================
# FILE BACKEND
# ============================================================================

DEFAULT_DATA_DIR: Final[str] = "data"
"""Data directory (relative to the working directory) outside production."""

RENDER_DATA_DIR: Final[str] = "/opt/render/project/src/data"
"""Data directory used in hosted production."""

FILE_ID_BYTES: Final[int] = 12
"""Random bytes in a file-backend identity (24 hex characters)."""

# ============================================================================
# RELATIONAL BACKEND
# ============================================================================

DEFAULT_PG_PORT: Final[int] = 5432
DEFAULT_PG_POOL_MAX_SIZE: Final[int] = 10
DEFAULT_PG_POOL_MIN_SIZE: Final[int] = 1
DEFAULT_PG_IDLE_LIFETIME_S: Final[float] = 30.0
DEFAULT_PG_CONNECT_TIMEOUT_S: Final[float] = 15.0

POOLER_HOST_MARKER: Final[str] = ".pooler.supabase.com"
"""Hostname fragment identifying a pooled (multiplexed) Postgres endpoint."""

# ============================================================================
# DOCUMENT STORE
# ============================================================================

DEFAULT_MONGO_URI: Final[str] = "mongodb://localhost:27017/ai-learning-hub"
DEFAULT_MONGO_DB_NAME: Final[str] = "ai-learning-hub"
DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 30000
DEFAULT_SOCKET_TIMEOUT_MS: Final[int] = 45000
ATLAS_HOST_MARKER: Final[str] = "mongodb.net/"

# ============================================================================
# METRICS
# ============================================================================

MAX_METRICS: Final[int] = 10000
"""Maximum number of metric series kept before LRU eviction."""
