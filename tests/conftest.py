"""
Pytest configuration and shared fixtures for HUBDB tests.

This module provides:
- Environment isolation for configuration tests
- File backend fixtures on a temporary directory
- Mock FastAPI request fixtures
- Testcontainers fixtures (real PostgreSQL / MongoDB) for integration tests
"""

import uuid
from typing import Any
from unittest.mock import MagicMock

import pytest

from hubdb.backends import FileBackend
from hubdb.config import DatabaseConfig
from hubdb.observability import clear_correlation_id, clear_storage_context, get_metrics_collector

CONFIG_ENV_VARS = (
    "DATABASE_URL",
    "DB_HOST",
    "DB_PORT",
    "DB_USER",
    "DB_PASSWORD",
    "DB_NAME",
    "DB_SSL_MODE",
    "DB_POOL_MAX_SIZE",
    "DB_CONNECT_TIMEOUT",
    "USE_FILE_DB",
    "ENVIRONMENT",
    "NODE_ENV",
    "RENDER",
    "MONGODB_URI",
    "MONGODB_DB_NAME",
    "MONGODB_TLS",
    "DATA_DIR",
)


# ============================================================================
# ISOLATION FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def reset_observability():
    """Start every test with empty metrics and logging context."""
    get_metrics_collector().reset()
    clear_correlation_id()
    clear_storage_context()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable DatabaseConfig.from_env() reads."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


# ============================================================================
# FILE BACKEND FIXTURES
# ============================================================================


@pytest.fixture
def data_dir(tmp_path):
    """Empty data directory for the file backend."""
    path = tmp_path / "data"
    return path


@pytest.fixture
def file_config(data_dir) -> DatabaseConfig:
    """Configuration that selects the file backend."""
    return DatabaseConfig(use_file_db=True, data_dir=data_dir)


@pytest.fixture
async def file_backend(data_dir):
    """Initialized file backend; closed after the test."""
    backend = FileBackend(data_dir)
    await backend.initialize()
    yield backend
    await backend.close()


# ============================================================================
# TEST DATA FACTORIES
# ============================================================================


@pytest.fixture
def make_user():
    """Factory for user documents with unique username/email."""

    def _make_user(**overrides: Any) -> dict[str, Any]:
        suffix = uuid.uuid4().hex[:8]
        user = {
            "username": f"user_{suffix}",
            "email": f"{suffix}@example.com",
            "password": "hashed-password",
        }
        user.update(overrides)
        return user

    return _make_user


# ============================================================================
# FASTAPI FIXTURES
# ============================================================================


@pytest.fixture
def mock_request():
    """Create a mock FastAPI Request object with an empty app state."""
    request = MagicMock()
    request.app = MagicMock()
    request.app.state = MagicMock(spec=[])
    return request


# ============================================================================
# TESTCONTAINERS FIXTURES (Real databases for integration tests)
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container():
    """
    Start a PostgreSQL container for integration tests.

    Session-scoped: the container starts once and is reused. Skips when
    testcontainers is missing or Docker is unavailable.
    """
    try:
        from testcontainers.postgres import PostgresContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    container = PostgresContainer("postgres:16-alpine", driver=None)
    try:
        container.start()
    except Exception as e:  # noqa: BLE001 - any Docker failure means "not available"
        pytest.skip(f"PostgreSQL container unavailable: {e}")
    yield container
    container.stop()


@pytest.fixture
def postgres_dsn(postgres_container) -> str:
    return postgres_container.get_connection_url()


@pytest.fixture(scope="session")
def mongodb_container():
    """Start a MongoDB container for integration tests (session-scoped)."""
    try:
        from testcontainers.mongodb import MongoDbContainer
    except ImportError:
        pytest.skip("testcontainers not installed. Install with: pip install -e '.[test]'")

    container = MongoDbContainer("mongo:7")
    try:
        container.start()
    except Exception as e:  # noqa: BLE001 - any Docker failure means "not available"
        pytest.skip(f"MongoDB container unavailable: {e}")
    yield container
    container.stop()


@pytest.fixture
def mongodb_uri(mongodb_container) -> str:
    return mongodb_container.get_connection_url()
