# =============================================================================
# todo_core/__init__.py
# Offline-first sync core for the TodoList desktop app
# =============================================================================
"""
todo_core - local JSON cache, optimistic Supabase gateway and realtime
reconciliation for groups and todos.

Quick start:
    from todo_core import TodoApplication

    app = TodoApplication()
    app.start()
    result = app.data.load_groups()
"""

__version__ = "1.0.0"

from todo_core.app import TodoApplication
from todo_core.models import Group, Theme, Todo
from todo_core.services import ServiceResult

__all__ = [
    "__version__",
    "TodoApplication",
    "Group",
    "Theme",
    "Todo",
    "ServiceResult",
]
