# =============================================================================
# todo_core/errors/handlers.py
# Error Handling Utilities for the TodoList sync core
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any, Dict

from todo_core.logging import get_logger
from .exceptions import TodoSyncError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        log_error: Whether to log the error
        user_message: Custom message to report (uses error message if None)

    Returns:
        Dict describing the error, suitable for a UI layer to display
    """
    if isinstance(error, TodoSyncError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=error,
        )

    return {
        "message": message,
        "code": code,
        "details": details,
        "recoverable": recoverable,
    }


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error handling.

    Usage:
        removed = safe_execute(
            store.clear_all_cache,
            default=False,
            error_message="Failed to clear cache"
        )
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for best-effort steps: logs failures and, when the step is
    recoverable, suppresses them.

    Usage:
        with ErrorContext("Signing out"):
            auth.sign_out()
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if not issubclass(exc_type, Exception):
                return False
            self.error = exc_val
            handle_error(exc_val, user_message=f"Error during: {self.operation}")
            return self.recoverable

        logger.debug(f"Completed: {self.operation}")
        return False


def error_boundary(
    default_return: Any = None,
    default_factory: Optional[Callable[[], Any]] = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """
    Decorator to wrap functions with error handling.

    The wrapped function never raises; on any exception it logs and returns
    ``default_factory()`` if given, else ``default_return``.

    Usage:
        @error_boundary(default_factory=list, error_message="Failed to read groups cache")
        def get_groups(self) -> List[Group]:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    prefix = error_message or f"Error in {func.__name__}"
                    logger.error(f"{prefix}: {e}", exc_info=True)
                if default_factory is not None:
                    return default_factory()
                return default_return

        return wrapper

    return decorator
