# =============================================================================
# todo_core/errors/exceptions.py
# Custom Exception Hierarchy for the TodoList sync core
# =============================================================================

from typing import Optional, Dict, Any


class TodoSyncError(Exception):
    """
    Base exception for all sync-core errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "NOT_FOUND")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "TODO_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# LOCAL EXCEPTIONS
# =============================================================================

class ValidationError(TodoSyncError):
    """Raised when caller-supplied values are rejected before any I/O"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(
            message=message,
            code="VALIDATION",
            details=details,
            **kwargs,
        )


class RecordNotFoundError(TodoSyncError):
    """Raised when a record cannot be located in the local cache"""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity:
            details["entity"] = entity
        if record_id:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            code="NOT_FOUND",
            details=details,
            **kwargs,
        )


# =============================================================================
# REMOTE / AUTH EXCEPTIONS
# =============================================================================

class AuthenticationError(TodoSyncError):
    """Raised when an operation needs a signed-in user or the provider rejects one"""

    def __init__(self, message: str, code: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            code=code or "AUTH_REQUIRED",
            **kwargs,
        )


class RemoteOperationError(TodoSyncError):
    """
    Raised when the remote backend rejects or fails a call.

    The provider's own error code (if any) is kept verbatim so callers can
    special-case it.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code=code or "REMOTE_ERROR",
            details=details,
            **kwargs,
        )


class SessionError(TodoSyncError):
    """Raised when the persisted session cannot be written or decoded"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message=message, code="SESSION", **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(TodoSyncError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
