"""
Observability components.

Provides contextual logging, operation metrics and the database health check.
"""

from .health import HealthCheckResult, HealthStatus, check_database_health
from .logging import (
    ContextualLoggerAdapter,
    clear_correlation_id,
    clear_storage_context,
    get_correlation_id,
    get_logger,
    get_logging_context,
    log_operation,
    mask_uri,
    set_correlation_id,
    set_storage_context,
)
from .metrics import (
    MetricsCollector,
    OperationMetrics,
    get_metrics_collector,
    record_operation,
    timed_operation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "OperationMetrics",
    "get_metrics_collector",
    "record_operation",
    "timed_operation",
    # Logging
    "get_correlation_id",
    "set_correlation_id",
    "clear_correlation_id",
    "set_storage_context",
    "clear_storage_context",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
    "mask_uri",
    # Health
    "HealthStatus",
    "HealthCheckResult",
    "check_database_health",
]
