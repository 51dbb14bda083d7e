# =============================================================================
# todo_core/offline/__init__.py
# Offline-First Cache Layer
# =============================================================================
"""
Offline-First Cache Layer

The UI reads and writes the local cache immediately; the DataService mirrors
each mutation to the server in the background and rolls the cache back when
the server refuses it. Server-pushed changes are folded back into the same
cache by the RealtimeReconciler.

    ┌──────────────────────────┐
    │       DataService        │  optimistic write / confirm / rollback
    └────────────┬─────────────┘
                 │
       ┌─────────┴─────────┐
       ▼                   ▼
 ┌────────────┐     ┌──────────────────┐
 │ LocalStore │◄────│RealtimeReconciler│◄──── postgres_changes feed
 │ (JSON)     │     └──────────────────┘
 └────────────┘
"""

from todo_core.offline.local_store import LocalStore
from todo_core.offline.realtime_reconciler import (
    RealtimeReconciler,
    GROUPS_CHANNEL,
    todos_channel_name,
)

__all__ = [
    "LocalStore",
    "RealtimeReconciler",
    "GROUPS_CHANNEL",
    "todos_channel_name",
]
