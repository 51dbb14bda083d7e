# =============================================================================
# todo_core/errors/__init__.py
# Centralized Error Handling for the TodoList sync core
# =============================================================================

from .exceptions import (
    TodoSyncError,
    ValidationError,
    RecordNotFoundError,
    AuthenticationError,
    RemoteOperationError,
    SessionError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    ErrorContext,
    error_boundary,
)

__all__ = [
    # Exceptions
    "TodoSyncError",
    "ValidationError",
    "RecordNotFoundError",
    "AuthenticationError",
    "RemoteOperationError",
    "SessionError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "ErrorContext",
    "error_boundary",
]
