# =============================================================================
# todo_core/data/__init__.py
# Remote persistence layer
# =============================================================================

from todo_core.data.backend import (
    RemoteBackend,
    ChangeCallback,
    GROUPS_TABLE,
    TODOS_TABLE,
)

__all__ = [
    "RemoteBackend",
    "ChangeCallback",
    "GROUPS_TABLE",
    "TODOS_TABLE",
]
