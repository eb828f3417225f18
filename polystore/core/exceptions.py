# ==============================================================================
# CUSTOM EXCEPTIONS - Data Access Error Hierarchy
# ==============================================================================
# Structured exception classes for configuration, connection, retry
# and migration failures. Every error is a value the caller can inspect.
# ==============================================================================

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class PolystoreError(Exception):
    """
    Base exception for all data access errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        details: Additional context dictionary

    Example:
        >>> try:
        ...     config = resolve_config("config.yaml")
        ... except PolystoreError as e:
        ...     print(e.to_dict())
    """

    def __init__(
        self,
        message: str = "Data access operation failed",
        error_code: str = "POLYSTORE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary format for logging or JSON output.

        Returns:
            Dictionary containing error details
        """
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message='{self.message}', "
            f"error_code='{self.error_code}')"
        )


# ==============================================================================
# CONFIGURATION EXCEPTIONS
# ==============================================================================

class ConfigErrorKind(str, Enum):
    """Reasons a configuration cannot be resolved."""
    MISSING_REQUIRED = "missing_required"
    INVALID_VALUE = "invalid_value"


class ConfigError(PolystoreError):
    """
    Raised when configuration is missing or invalid.

    Configuration problems are never transient; callers should not
    retry them.

    Attributes:
        kind: MISSING_REQUIRED or INVALID_VALUE
        field: Dotted configuration key at fault (e.g. "database.port")
    """

    def __init__(
        self,
        kind: ConfigErrorKind,
        message: str,
        field: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {"kind": kind.value}
        if field:
            details["field"] = field
        super().__init__(
            message=message,
            error_code=f"CONFIG_{kind.name}",
            details=details,
        )
        self.kind = kind
        self.field = field


# ==============================================================================
# CONNECTION EXCEPTIONS
# ==============================================================================

class ConnectionErrorKind(str, Enum):
    """Reasons a pooled connection cannot be provided."""
    DIAL_FAILED = "dial_failed"
    TIMEOUT = "timeout"
    POOL_EXHAUSTED = "pool_exhausted"


class ConnectionError(PolystoreError):
    """
    Raised when a backend connection cannot be established or acquired.

    The pool never retries on its own; wrap the dial in a RetryExecutor
    to retry DIAL_FAILED.
    """

    def __init__(
        self,
        kind: ConnectionErrorKind,
        message: str = "Failed to connect to backend",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        _details = {"kind": kind.value, **(details or {})}
        super().__init__(
            message=message,
            error_code=f"CONNECTION_{kind.name}",
            details=_details,
        )
        self.kind = kind


# ==============================================================================
# RETRY EXCEPTIONS
# ==============================================================================

class RetryError(PolystoreError):
    """
    Base class for retry loop terminations.

    Attributes:
        attempts: Number of times the operation was invoked
        last_cause: The final exception raised by the operation
    """

    def __init__(
        self,
        message: str,
        error_code: str,
        attempts: int,
        last_cause: Optional[BaseException],
    ) -> None:
        details: Dict[str, Any] = {"attempts": attempts}
        if last_cause is not None:
            details["last_cause"] = repr(last_cause)
        super().__init__(message=message, error_code=error_code, details=details)
        self.attempts = attempts
        self.last_cause = last_cause


class RetryExhausted(RetryError):
    """Raised when every permitted attempt has failed."""

    def __init__(self, attempts: int, last_cause: Optional[BaseException]) -> None:
        super().__init__(
            message=f"Operation failed after {attempts} attempt(s): {last_cause}",
            error_code="RETRY_EXHAUSTED",
            attempts=attempts,
            last_cause=last_cause,
        )


class RetryAborted(RetryError):
    """Raised when a retry wait is cut short by cancellation or deadline."""

    def __init__(
        self,
        attempts: int,
        last_cause: Optional[BaseException],
        reason: str = "cancelled",
    ) -> None:
        super().__init__(
            message=f"Retry aborted ({reason}) after {attempts} attempt(s)",
            error_code="RETRY_ABORTED",
            attempts=attempts,
            last_cause=last_cause,
        )
        self.reason = reason
        self.details["reason"] = reason


# ==============================================================================
# MIGRATION EXCEPTIONS
# ==============================================================================

class DiscoveryErrorKind(str, Enum):
    """Reasons a migration directory cannot be turned into a batch."""
    INVALID_FILENAME = "invalid_filename"
    DUPLICATE_VERSION = "duplicate_version"
    UNREADABLE_DIRECTORY = "unreadable_directory"


class DiscoveryError(PolystoreError):
    """
    Raised when migration discovery or ordering fails.

    Discovery is all-or-nothing: one bad file fails the whole batch.
    """

    def __init__(
        self,
        kind: DiscoveryErrorKind,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        _details = {"kind": kind.value, **(details or {})}
        super().__init__(
            message=message,
            error_code=f"DISCOVERY_{kind.name}",
            details=_details,
        )
        self.kind = kind


class MigrationApplyError(PolystoreError):
    """
    Raised when a migration script fails to apply.

    Attributes:
        version: Version of the failing migration
        cause: Underlying backend exception
        applied: Number of migrations applied before the failure
    """

    def __init__(
        self,
        version: int,
        cause: BaseException,
        applied: int = 0,
    ) -> None:
        super().__init__(
            message=f"Failed to apply migration {version}: {cause}",
            error_code="MIGRATION_APPLY_ERROR",
            details={"version": version, "applied": applied, "cause": repr(cause)},
        )
        self.version = version
        self.cause = cause
        self.applied = applied
