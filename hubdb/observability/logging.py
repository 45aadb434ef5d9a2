"""
Contextual logging utilities for HUBDB.

Log records emitted through get_logger() carry the request correlation ID
and the active storage context (backend kind, collection) as `extra`
fields, so a structured formatter can group all statements issued for one
HTTP request.
"""

import contextvars
import logging
import re
import uuid
from datetime import datetime
from typing import Any

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)

_storage_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar(
    "storage_context", default=None
)

# Password runs to the last "@": raw passwords may contain "@" or "/"
_URI_PASSWORD = re.compile(r"^(?P<prefix>[A-Za-z][A-Za-z0-9+.-]*://[^:@/?#]*):.*@")


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set a correlation ID in the current context.

    Args:
        correlation_id: Optional correlation ID (generates new one if None)

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id.set(None)


def set_storage_context(backend: str | None = None, **kwargs: Any) -> None:
    """
    Set storage context for logging.

    Args:
        backend: Active backend kind
        **kwargs: Additional context (collection, operation, etc.)
    """
    _storage_context.set({"backend": backend, **kwargs})


def clear_storage_context() -> None:
    """Clear storage context."""
    _storage_context.set(None)


def get_logging_context() -> dict[str, Any]:
    """Current logging context (timestamp, correlation ID, storage context)."""
    context: dict[str, Any] = {"timestamp": datetime.now().isoformat()}

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    storage_context = _storage_context.get()
    if storage_context:
        context.update(storage_context)

    return context


def mask_uri(uri: str | None) -> str:
    """Hide the password of a connection URI before it reaches a log line."""
    if not uri:
        return ""
    return _URI_PASSWORD.sub(r"\g<prefix>:****@", uri, count=1)


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that merges the logging context into `extra`."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = get_logging_context()
        extra = kwargs.get("extra", {})
        if extra:
            context.update(extra)
        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger.

    Args:
        name: Logger name (typically __name__)
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.DEBUG,
    success: bool = True,
    duration_ms: float | None = None,
    **context: Any,
) -> None:
    """
    Log a storage operation with structured context.

    Args:
        logger: Logger instance
        operation: Operation name (e.g. "file.insert_one")
        level: Log level
        success: Whether operation succeeded
        duration_ms: Operation duration in milliseconds
        **context: Additional context
    """
    log_context = get_logging_context()
    log_context.update({"operation": operation, "success": success})
    if duration_ms is not None:
        log_context["duration_ms"] = round(duration_ms, 2)
    if context:
        log_context.update(context)

    message = f"Operation: {operation}" if success else f"Operation failed: {operation}"
    if duration_ms is not None:
        message += f" (duration: {duration_ms:.2f}ms)"

    logger.log(level, message, extra=log_context)
