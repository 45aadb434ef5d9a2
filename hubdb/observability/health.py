"""
Health check utilities for HUBDB.

The HTTP layer calls check_database_health() from its health endpoint; the
result reports which backend is active and whether it answers a ping.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..exceptions import HubDBError

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status enumeration."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    name: str
    status: HealthStatus
    message: str
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def is_healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


async def check_database_health(manager: Any | None, timeout_seconds: float = 5.0) -> HealthCheckResult:
    """
    Check the active storage backend.

    Args:
        manager: DatabaseManager instance (may be None before startup)
        timeout_seconds: Timeout for the backend ping

    Returns:
        HealthCheckResult
    """
    backend = getattr(manager, "backend", None) if manager is not None else None
    if backend is None:
        return HealthCheckResult(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message="Database not connected",
        )

    details = {"backend": backend.kind.value, "timeout_seconds": timeout_seconds}
    try:
        await asyncio.wait_for(backend.ping(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        return HealthCheckResult(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message=f"Database ping timed out after {timeout_seconds}s",
            details=details,
        )
    except (HubDBError, OSError) as e:
        logger.warning(f"Database health check failed: {e}")
        return HealthCheckResult(
            name="database",
            status=HealthStatus.UNHEALTHY,
            message=f"Database health check failed: {e}",
            details=details,
        )

    return HealthCheckResult(
        name="database",
        status=HealthStatus.HEALTHY,
        message=f"{backend.kind.value} backend is healthy",
        details=details,
    )
