# =============================================================================
# todo_core/data/backend.py
# Remote persistence contract used by the DataService
# =============================================================================
"""
The row-oriented CRUD + change-feed surface the sync core is written against.

Implementations raise ``RemoteOperationError`` (with the provider's own error
code, if any) for every failed call; they never return error values.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence

from todo_core.models import ChangeEvent

GROUPS_TABLE = "groups"
TODOS_TABLE = "todos"

ChangeCallback = Callable[[ChangeEvent], None]


class RemoteBackend(ABC):
    """Abstract remote table store with a realtime change feed."""

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        """Rows matching all equality ``filters``, optionally ordered."""

    @abstractmethod
    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored (server id, timestamps)."""

    @abstractmethod
    def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Update one row by id and return it as stored."""

    @abstractmethod
    def delete(self, table: str, record_ids: Sequence[str]) -> None:
        """Delete every row whose id is in ``record_ids``."""

    @abstractmethod
    def upsert(self, table: str, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert-or-update rows keyed by id."""

    @abstractmethod
    def subscribe(
        self,
        channel_name: str,
        table: str,
        callback: ChangeCallback,
        filter: Optional[str] = None,
    ) -> Any:
        """
        Open a change-feed subscription.

        Args:
            channel_name: Name of the realtime channel
            table: Table to watch
            callback: Invoked with a ChangeEvent per row change
            filter: Optional row filter, e.g. ``"group_id=eq.<id>"``

        Returns:
            An opaque handle accepted by ``unsubscribe``
        """

    @abstractmethod
    def unsubscribe(self, handle: Any) -> None:
        """Close a subscription opened by ``subscribe``."""

    def close(self) -> None:
        """Release long-lived connections such as the change feed."""
