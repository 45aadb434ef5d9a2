"""
Configuration management for HUBDB.

Backend selection is driven entirely by environment variables. The
DatabaseConfig model gathers them in one place, validates them with
Pydantic, and exposes the derived facts the selector needs
(is_production, relational_configured, relational_dsn).

Example:
    # From the environment (and a .env file, if present)
    config = DatabaseConfig.from_env()

    # Or directly, e.g. in tests
    config = DatabaseConfig(use_file_db=True, data_dir="/tmp/hub-data")
"""

import logging
import os
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import quote

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_MONGO_DB_NAME,
    DEFAULT_PG_CONNECT_TIMEOUT_S,
    DEFAULT_PG_POOL_MAX_SIZE,
    DEFAULT_PG_PORT,
    PRODUCTION_ENVIRONMENT,
    RENDER_DATA_DIR,
)
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUE_VALUES


def _env_optional_flag(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in _TRUE_VALUES


class DatabaseConfig(BaseModel):
    """
    Settings consumed by the backend selector and the backends.

    Attributes:
        database_url: Full PostgreSQL connection string (DATABASE_URL)
        db_host / db_port / db_user / db_password / db_name: Discrete
            PostgreSQL parameters, used when database_url is not set
        db_ssl_mode: "require" (TLS without certificate verification) or
            "disable" for local servers
        db_pool_max_size: Maximum relational pool size
        db_connect_timeout: Relational connection timeout in seconds
        use_file_db: Force the file backend (USE_FILE_DB)
        environment: Deployment environment; "production" enables fallbacks
        render: Running on Render (RENDER)
        mongodb_uri: Document-store connection string (MONGODB_URI)
        mongodb_db_name: Document-store database name
        mongodb_tls: Explicit TLS switch for the document store; None lets
            the driver decide
        data_dir: Directory for the file backend
    """

    database_url: Optional[str] = None
    db_host: Optional[str] = None
    db_port: int = Field(DEFAULT_PG_PORT, ge=1, le=65535)
    db_user: Optional[str] = None
    db_password: Optional[str] = None
    db_name: Optional[str] = None
    db_ssl_mode: Literal["require", "disable"] = "require"
    db_pool_max_size: int = Field(DEFAULT_PG_POOL_MAX_SIZE, ge=1)
    db_connect_timeout: float = Field(DEFAULT_PG_CONNECT_TIMEOUT_S, gt=0)

    use_file_db: bool = False
    environment: str = "development"
    render: bool = False

    mongodb_uri: Optional[str] = None
    mongodb_db_name: str = DEFAULT_MONGO_DB_NAME
    mongodb_tls: Optional[bool] = None

    data_dir: Optional[Path] = None

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, value: str) -> str:
        return (value or "development").strip().lower()

    @field_validator("database_url", "db_host", "mongodb_uri")
    @classmethod
    def _blank_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _default_data_dir(self) -> "DatabaseConfig":
        if self.data_dir is None:
            self.data_dir = Path(RENDER_DATA_DIR if self.is_production else DEFAULT_DATA_DIR)
        return self

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "DatabaseConfig":
        """
        Build a configuration from environment variables.

        Args:
            load_env_file: Load a .env file first (python-dotenv); existing
                environment variables are not overridden

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        if load_env_file:
            load_dotenv()

        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "db_host": os.getenv("DB_HOST"),
            "db_user": os.getenv("DB_USER"),
            "db_password": os.getenv("DB_PASSWORD"),
            "db_name": os.getenv("DB_NAME"),
            "use_file_db": _env_flag("USE_FILE_DB"),
            "environment": os.getenv("ENVIRONMENT") or os.getenv("NODE_ENV") or "development",
            "render": _env_flag("RENDER"),
            "mongodb_uri": os.getenv("MONGODB_URI"),
            "mongodb_tls": _env_optional_flag("MONGODB_TLS"),
        }
        optional = {
            "db_port": "DB_PORT",
            "db_ssl_mode": "DB_SSL_MODE",
            "db_pool_max_size": "DB_POOL_MAX_SIZE",
            "db_connect_timeout": "DB_CONNECT_TIMEOUT",
            "mongodb_db_name": "MONGODB_DB_NAME",
            "data_dir": "DATA_DIR",
        }
        for field_name, env_name in optional.items():
            raw = os.getenv(env_name)
            if raw:
                values[field_name] = raw

        try:
            config = cls(**values)
        except ValidationError as e:
            first = e.errors()[0]
            field_name = str(first["loc"][0]) if first.get("loc") else None
            raise ConfigurationError(
                f"Invalid database configuration: {first['msg']}",
                config_key=field_name,
                config_value=values.get(field_name) if field_name else None,
            ) from e
        logger.debug(f"Database configuration loaded (environment={config.environment})")
        return config

    @property
    def is_production(self) -> bool:
        """Hosted-production mode: connection failures fall back instead of aborting."""
        return self.environment == PRODUCTION_ENVIRONMENT

    @property
    def relational_configured(self) -> bool:
        """True when a relational connection string or host is configured."""
        return bool(self.database_url or self.db_host)

    @property
    def relational_dsn(self) -> Optional[str]:
        """The PostgreSQL DSN, assembled from discrete parameters when needed."""
        if self.database_url:
            return self.database_url
        if not self.db_host:
            return None
        user = quote(self.db_user or "", safe="")
        password = quote(self.db_password or "", safe="")
        credentials = f"{user}:{password}@" if user or password else ""
        return f"postgresql://{credentials}{self.db_host}:{self.db_port}/{self.db_name or ''}"
