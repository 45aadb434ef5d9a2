"""
Custom exceptions for HUBDB.

Every error raised by the data-access layer derives from HubDBError,
which stays a RuntimeError so generic handlers keep working.
"""

from typing import Any, Dict, Optional


class HubDBError(RuntimeError):
    """
    Base exception for HUBDB errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (backend,
                 collection, operation, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConfigurationError(HubDBError):
    """
    Raised when configuration is invalid or missing.

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class InitializationError(HubDBError):
    """
    Raised when a backend is used before it is ready or fails to start.

    Attributes:
        message: Error message
        backend: Backend kind ("relational", "file", "document") if known
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if backend:
            context["backend"] = backend
        super().__init__(message, context=context)
        self.backend = backend


class BackendConnectionError(InitializationError):
    """
    Raised when a database engine cannot be reached.

    Carries the driver's diagnostic fields so operators can tell a DNS
    problem from an authentication failure without digging into the cause.

    Attributes:
        error_name: Class name of the underlying driver error
        error_code: Driver/server error code, if any
        code_name: Symbolic server error name, if any (MongoDB codeName,
                   PostgreSQL SQLSTATE)
    """

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        error_name: Optional[str] = None,
        error_code: Optional[Any] = None,
        code_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if error_name:
            context["error_name"] = error_name
        if error_code is not None:
            context["error_code"] = error_code
        if code_name:
            context["code_name"] = code_name
        super().__init__(message, backend=backend, context=context)
        self.error_name = error_name
        self.error_code = error_code
        self.code_name = code_name

    @classmethod
    def from_exception(
        cls, message: str, error: BaseException, backend: Optional[str] = None
    ) -> "BackendConnectionError":
        """Build an error carrying the diagnostic fields of a driver exception."""
        code = getattr(error, "code", None)
        if code is None:
            code = getattr(error, "sqlstate", None)
        code_name = None
        details = getattr(error, "details", None)
        if isinstance(details, dict):
            code_name = details.get("codeName")
        return cls(
            f"{message}: {error}",
            backend=backend,
            error_name=type(error).__name__,
            error_code=code,
            code_name=code_name,
        )


class TranslationError(HubDBError):
    """
    Raised when a filter, update or sort uses something the translator
    does not support.

    Attributes:
        operator: The offending operator (if available)
        path: Path inside the query document (if available)
    """

    def __init__(
        self,
        message: str,
        operator: Optional[str] = None,
        path: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if operator:
            context["operator"] = operator
        if path:
            context["path"] = path
        super().__init__(message, context=context)
        self.operator = operator
        self.path = path


class PersistenceError(HubDBError):
    """
    Raised when the file backend cannot read or write its data files.

    The in-memory collection may already reflect the attempted mutation.
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        collection: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if path:
            context["path"] = path
        if collection:
            context["collection"] = collection
        super().__init__(message, context=context)
        self.path = path
        self.collection = collection


class DuplicateKeyError(HubDBError):
    """Raised when an insert or update violates a unique constraint."""
