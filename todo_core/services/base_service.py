# =============================================================================
# todo_core/services/base_service.py
# Base Service Class with Common Functionality
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from todo_core.logging import get_logger, LogContext
from todo_core.errors import TodoSyncError


@dataclass
class ServiceResult:
    """
    Standard result container for service operations.

    Every public service call returns one of these instead of raising, so a
    UI layer only needs to branch on ``success`` (and, for special recovery
    flows, on ``error_code``).
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @property
    def from_cache(self) -> bool:
        """True when ``data`` was served from the local cache."""
        return bool((self.metadata or {}).get("from_cache"))

    @property
    def auth_error(self) -> bool:
        """True when the user check failed and cached data was served anyway."""
        return bool((self.metadata or {}).get("auth_error"))

    @classmethod
    def ok(cls, data: Any = None, metadata: Dict[str, Any] = None) -> ServiceResult:
        """Create a successful result"""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls,
        error: str,
        error_code: str = "UNKNOWN",
        data: Any = None,
        metadata: Dict[str, Any] = None
    ) -> ServiceResult:
        """Create a failed result"""
        return cls(
            success=False,
            data=data,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    @classmethod
    def from_exception(cls, e: Exception, data: Any = None) -> ServiceResult:
        """Create a failed result from an exception"""
        if isinstance(e, TodoSyncError):
            return cls(
                success=False,
                data=data,
                error=e.message,
                error_code=e.code,
                metadata=e.details or None,
            )
        return cls(
            success=False,
            data=data,
            error=str(e),
            error_code="EXCEPTION",
        )


class BaseService(ABC):
    """
    Abstract base class for all services.

    Provides common functionality:
    - Logging
    - Error handling
    - Result standardization

    Usage:
        class MyService(BaseService):
            def do_something(self) -> ServiceResult:
                return self.safe_execute("Doing something", self._do_something)
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Create a logging context for an operation.

        Usage:
            with self.log_operation("Deleting group"):
                backend.delete("groups", [group_id])
        """
        return LogContext(self.logger, operation)

    def safe_execute(
        self,
        operation: str,
        func: Callable[..., Any],
        *args,
        **kwargs
    ) -> ServiceResult:
        """
        Execute a function with error handling and logging.

        ``func`` may return a ServiceResult itself (passed through untouched)
        or a plain value (wrapped with ServiceResult.ok).

        Args:
            operation: Description of the operation
            func: Function to execute
            *args, **kwargs: Arguments to pass to func

        Returns:
            ServiceResult with success/failure status
        """
        try:
            with self.log_operation(operation):
                result = func(*args, **kwargs)
        except TodoSyncError as e:
            # LogContext has already logged the failure with its traceback
            return ServiceResult.from_exception(e)
        except Exception as e:
            return ServiceResult.fail(str(e), error_code="EXCEPTION")

        if isinstance(result, ServiceResult):
            return result
        return ServiceResult.ok(result)
