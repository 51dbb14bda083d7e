# =============================================================================
# todo_core/offline/realtime_reconciler.py
# Folds server-pushed row changes into the local cache
# =============================================================================
"""
RealtimeReconciler - keeps the LocalStore in step with the server change feed.

Push events are authoritative: they are written straight into the store with
no rollback path. When a push event and an optimistic rollback touch the same
record, whichever write lands last wins; there is no version comparison.
"""

from __future__ import annotations
import threading
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging

from todo_core.data.backend import GROUPS_TABLE, TODOS_TABLE, RemoteBackend
from todo_core.models import ChangeEvent, EventType, Group, Todo
from todo_core.offline.local_store import LocalStore

logger = logging.getLogger(__name__)

GROUPS_CHANNEL = "groups"

Record = TypeVar("Record", Group, Todo)
EventListener = Callable[[ChangeEvent], None]


def todos_channel_name(group_id: str) -> str:
    return f"todos-{group_id}"


def fold_event(records: List[Record], event: ChangeEvent, parse: Callable[[Dict[str, Any]], Record]) -> List[Record]:
    """
    Apply one change event to a list of records (merge by id).

    INSERT replaces an existing record with the same id instead of appending a
    duplicate; UPDATE replaces a cached record with the full pushed row and is
    a no-op for records not in the cache; DELETE drops the record.
    """
    record_id = event.record_id
    if record_id is None:
        return records

    if event.event_type is EventType.DELETE:
        return [r for r in records if r.id != record_id]

    incoming = parse(event.new)
    for index, existing in enumerate(records):
        if existing.id == record_id:
            updated = list(records)
            updated[index] = incoming
            return updated

    if event.event_type is EventType.INSERT:
        return records + [incoming]
    return records


class RealtimeReconciler:
    """
    Manages realtime subscriptions and applies their events to the store.

    At most one subscription is held per channel name; subscribing again to
    the same name tears the previous one down first.

    Usage:
        reconciler = RealtimeReconciler(store, backend)
        reconciler.subscribe_to_todos(group_id, on_change)
        ...
        reconciler.unsubscribe_all()   # logout / shutdown
    """

    def __init__(self, store: LocalStore, backend: RemoteBackend):
        self.store = store
        self.backend = backend
        self._subscriptions: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def channel_names(self) -> List[str]:
        with self._lock:
            return list(self._subscriptions)

    # =========================================================================
    # FOLDING
    # =========================================================================

    def apply_group_event(self, event: ChangeEvent) -> None:
        """Fold a groups-table change into groups.json."""
        groups = self.store.get_groups()
        folded = fold_event(groups, event, Group.from_dict)
        if folded is not groups:
            self.store.save_groups(folded)

        if event.event_type is EventType.DELETE and event.record_id:
            # The server cascades group deletion to its todos
            self.store.delete_todos_file(event.record_id)

    def apply_todo_event(self, group_id: str, event: ChangeEvent) -> None:
        """Fold a todos-table change into the owning group's todo file."""
        owner = event.new.get("group_id") or event.old.get("group_id") or group_id
        owner = str(owner)
        todos = self.store.get_todos(owner)
        folded = fold_event(todos, event, Todo.from_dict)
        if folded is not todos:
            self.store.save_todos(owner, folded)

    def _dispatch(self, name: str, apply: Callable[[ChangeEvent], None], listener: Optional[EventListener]) -> EventListener:
        def handle(event: ChangeEvent) -> None:
            try:
                apply(event)
            except Exception as e:
                logger.error(f"Failed to apply {event.event_type.value} event on {name}: {e}", exc_info=True)
            if listener is None:
                return
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Error in realtime listener for {name}: {e}", exc_info=True)

        return handle

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe_to_groups(self, listener: Optional[EventListener] = None) -> str:
        """
        Watch every group row visible to the user.

        Returns:
            Channel name to pass to ``unsubscribe``
        """
        handler = self._dispatch(GROUPS_CHANNEL, self.apply_group_event, listener)
        return self._subscribe(GROUPS_CHANNEL, GROUPS_TABLE, handler)

    def subscribe_to_todos(self, group_id: str, listener: Optional[EventListener] = None) -> str:
        """Watch the todos of one group."""
        name = todos_channel_name(group_id)
        handler = self._dispatch(name, lambda event: self.apply_todo_event(group_id, event), listener)
        return self._subscribe(name, TODOS_TABLE, handler, row_filter=f"group_id=eq.{group_id}")

    def _subscribe(self, name: str, table: str, handler: EventListener, row_filter: Optional[str] = None) -> str:
        if name in self.channel_names:
            self.unsubscribe(name)

        handle = self.backend.subscribe(name, table, handler, filter=row_filter)
        with self._lock:
            self._subscriptions[name] = handle
        logger.info(f"Realtime channel opened: {name}")
        return name

    def unsubscribe(self, name: str) -> bool:
        """
        Close one channel.

        Returns:
            False if no channel with that name was open
        """
        with self._lock:
            handle = self._subscriptions.pop(name, None)
        if handle is None:
            return False
        self.backend.unsubscribe(handle)
        logger.info(f"Realtime channel closed: {name}")
        return True

    def unsubscribe_all(self) -> int:
        """
        Close every tracked channel.

        A channel that fails to close is logged and still forgotten, so the
        map is always empty afterwards. The backend's realtime connection is
        closed as well.

        Returns:
            Number of channels closed cleanly
        """
        with self._lock:
            subscriptions = dict(self._subscriptions)
            self._subscriptions.clear()

        closed = 0
        for name, handle in subscriptions.items():
            try:
                self.backend.unsubscribe(handle)
                closed += 1
            except Exception as e:
                logger.warning(f"Failed to close realtime channel {name}: {e}")

        try:
            self.backend.close()
        except Exception as e:
            logger.warning(f"Failed to close realtime connection: {e}")
        return closed
