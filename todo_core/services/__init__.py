# =============================================================================
# todo_core/services/__init__.py
# Service Layer for the TodoList sync core
# =============================================================================
"""
Service Layer for the TodoList sync core

Services never raise to their callers; every public call returns a
ServiceResult.

Usage Example:
-------------
    from todo_core.services import DataService

    service = DataService(store, backend, auth_service)

    result = service.load_groups()
    if result.success:
        for group in result.data:
            print(group.name, "(cached)" if result.from_cache else "")

    created = service.create_todo(group_id, "Water the plants")
    if not created:
        print(f"Rolled back: {created.error} [{created.error_code}]")
"""

from todo_core.services.base_service import BaseService, ServiceResult
from todo_core.services.data_service import DataService
from todo_core.services.auth_service import AuthService

__all__ = [
    "BaseService",
    "ServiceResult",
    "DataService",
    "AuthService",
]
