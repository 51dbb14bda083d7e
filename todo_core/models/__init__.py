# =============================================================================
# todo_core/models/__init__.py
# Typed records shared by the store, gateway and reconciler
# =============================================================================

from todo_core.models.entities import (
    Theme,
    Group,
    Todo,
    ChangeEvent,
    EventType,
    SyncState,
    CurrentUser,
    TEMP_ID_PREFIX,
    generate_temp_id,
    is_temp_id,
    utc_now_iso,
    now_ms,
)

__all__ = [
    "Theme",
    "Group",
    "Todo",
    "ChangeEvent",
    "EventType",
    "SyncState",
    "CurrentUser",
    "TEMP_ID_PREFIX",
    "generate_temp_id",
    "is_temp_id",
    "utc_now_iso",
    "now_ms",
]
