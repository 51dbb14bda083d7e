# =============================================================================
# todo_core/services/data_service.py
# Remote Data Gateway - optimistic CRUD over the local cache and Supabase
# =============================================================================
"""
DataService - the single API the UI uses for groups and todos.

Every mutation follows the same pattern:

    1. snapshot the affected cache slice (all groups, or one group's todos)
    2. apply the change to the LocalStore immediately
    3. call the remote backend
    4. success -> replace the optimistic record with the server's record
       failure -> put the snapshot back and return a failed ServiceResult

Reads are cache-first: cached data is returned at once and a background
thread refreshes the cache from the server. ``force_refresh=True`` goes to
the server first and falls back to the cache.

Known weak points, accepted for a single-user desktop app:
    - a background refresh can overwrite a temp record of a create that is
      still in flight (the create re-inserts its confirmed record afterwards)
    - a realtime event and a rollback touching the same record race with
      last-writer-wins semantics
    - finding the group of a todo is a linear scan over every cached group
"""

from __future__ import annotations
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

from todo_core.data.backend import GROUPS_TABLE, TODOS_TABLE, RemoteBackend
from todo_core.errors import AuthenticationError, RecordNotFoundError, ValidationError
from todo_core.models import (
    CurrentUser,
    Group,
    Theme,
    Todo,
    generate_temp_id,
    is_temp_id,
    utc_now_iso,
)
from todo_core.offline.local_store import LocalStore
from todo_core.offline.realtime_reconciler import EventListener, RealtimeReconciler
from todo_core.services.base_service import BaseService, ServiceResult

Record = TypeVar("Record", Group, Todo)

GROUP_UPDATABLE_FIELDS = ("name", "theme", "sort_order")
TODO_UPDATABLE_FIELDS = ("text", "completed", "sort_order")


# =============================================================================
# LIST HELPERS
# =============================================================================

def next_sort_order(records: Sequence[Record]) -> int:
    """max(sort_order) + 1, or 0 for an empty collection."""
    if not records:
        return 0
    return max(r.sort_order for r in records) + 1


def by_sort_order(records: Iterable[Record]) -> List[Record]:
    return sorted(records, key=lambda r: r.sort_order)


def swap_in(records: List[Record], placeholder_id: str, confirmed: Record) -> List[Record]:
    """
    Put a server-confirmed record where its placeholder was.

    Any record already carrying the confirmed id (e.g. inserted by a realtime
    event that beat the create call) is dropped first, so exactly one copy
    remains.
    """
    result = [r for r in records if r.id != confirmed.id]
    for index, record in enumerate(result):
        if record.id == placeholder_id:
            result[index] = confirmed
            return result
    result.append(confirmed)
    return result


def replace_record(records: List[Record], confirmed: Record) -> List[Record]:
    return [confirmed if r.id == confirmed.id else r for r in records]


def reinsert(records: List[Record], removed: Sequence[Tuple[int, Record]]) -> List[Record]:
    """Put removed records back at their original positions (skipping ones already present)."""
    result = list(records)
    present = {r.id for r in result}
    for index, record in sorted(removed, key=lambda pair: pair[0]):
        if record.id in present:
            continue
        result.insert(min(index, len(result)), record)
        present.add(record.id)
    return result


def apply_order(records: List[Record], ordered_ids: Sequence[str]) -> List[Record]:
    """
    Rewrite a collection in the requested order with sort_order = index.

    Ids missing from the collection are skipped; records not named keep their
    sort_order and follow the reordered ones.
    """
    by_id = {r.id: r for r in records}
    reordered = [
        replace(by_id[record_id], sort_order=rank)
        for rank, record_id in enumerate(ordered_ids)
        if record_id in by_id
    ]
    named = set(ordered_ids)
    return reordered + [r for r in records if r.id not in named]


def _error_fields(error: Exception) -> Tuple[str, str]:
    message = getattr(error, "message", None) or str(error)
    code = getattr(error, "code", None) or "EXCEPTION"
    return message, str(code)


class DataService(BaseService):
    """
    Optimistic, cache-first gateway for groups and todos.

    Usage:
        service = DataService(store, backend, auth_service)
        result = service.load_groups()
        if result.success:
            render(result.data)
        service.create_todo(group_id, "buy milk")
    """

    def __init__(
        self,
        store: LocalStore,
        backend: RemoteBackend,
        auth: Any,
        reconciler: Optional[RealtimeReconciler] = None,
    ):
        """
        Args:
            store: Local cache shared with the reconciler
            backend: Remote table store
            auth: Anything with ``get_current_user() -> ServiceResult[CurrentUser]``
            reconciler: Realtime reconciler (built over store/backend if omitted)
        """
        super().__init__()
        self.store = store
        self.backend = backend
        self.auth = auth
        self.reconciler = reconciler or RealtimeReconciler(store, backend)
        self._background: List[threading.Thread] = []
        self._background_lock = threading.Lock()

    # =========================================================================
    # INFRASTRUCTURE
    # =========================================================================

    def _current_user(self) -> Optional[CurrentUser]:
        """The signed-in user, or None when the check fails for any reason."""
        try:
            result = self.auth.get_current_user()
        except Exception as e:
            self.logger.warning(f"User check failed: {e}")
            return None
        if not result.success:
            return None
        return result.data

    def _run_in_background(self, name: str, func: Callable[[], Any]) -> threading.Thread:
        """Fire-and-forget: errors are logged, never surfaced."""
        def guarded() -> None:
            try:
                func()
            except Exception as e:
                self.logger.warning(f"Background {name} failed: {e}")

        thread = threading.Thread(target=guarded, daemon=True, name=name)
        with self._background_lock:
            self._background = [t for t in self._background if t.is_alive()]
            self._background.append(thread)
        thread.start()
        return thread

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """
        Join outstanding background refreshes.

        Returns:
            True if none is still running afterwards
        """
        with self._background_lock:
            threads = list(self._background)
        for thread in threads:
            thread.join(timeout)
        return not any(t.is_alive() for t in threads)

    @contextmanager
    def _journal(self, op_type: str, table: str, **fields: Any) -> Iterator[str]:
        """Record an in-flight mutation in the sync state until it settles."""
        op_id = uuid.uuid4().hex
        self.store.add_pending_operation({"id": op_id, "type": op_type, "table": table, **fields})
        try:
            yield op_id
        finally:
            self.store.remove_pending_operation(op_id)

    @staticmethod
    def _clean_updates(updates: Dict[str, Any], allowed: Sequence[str]) -> Dict[str, Any]:
        if not isinstance(updates, dict):
            raise ValidationError("Updates must be a mapping", value=updates)
        unknown = sorted(set(updates) - set(allowed))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}", field=unknown[0])
        if not updates:
            raise ValidationError("No fields to update")

        changes = dict(updates)
        if "theme" in changes:
            changes["theme"] = DataService._validate_theme(changes["theme"]).value
        if "sort_order" in changes:
            if isinstance(changes["sort_order"], bool) or not isinstance(changes["sort_order"], int):
                raise ValidationError("sort_order must be an integer", field="sort_order")
        if "completed" in changes and not isinstance(changes["completed"], bool):
            raise ValidationError("completed must be a boolean", field="completed")
        for text_field in ("name", "text"):
            if text_field in changes and not isinstance(changes[text_field], str):
                raise ValidationError(f"{text_field} must be a string", field=text_field)
        return changes

    @staticmethod
    def _validate_theme(theme: Any) -> Theme:
        try:
            return Theme(theme)
        except ValueError:
            raise ValidationError(
                f"Unknown theme '{theme}' (expected one of {', '.join(Theme.values())})",
                field="theme",
                value=theme,
            ) from None

    @staticmethod
    def _validate_ids(ids: Iterable[str], what: str) -> List[str]:
        if isinstance(ids, str):
            raise ValidationError(f"{what} must be a list of ids")
        try:
            ids = list(ids)
        except TypeError:
            raise ValidationError(f"{what} must be a list of ids") from None
        if not all(isinstance(i, str) for i in ids):
            raise ValidationError(f"{what} must be a list of ids")
        if len(set(ids)) != len(ids):
            raise ValidationError(f"{what} contains duplicate ids")
        return ids

    @staticmethod
    def _require_confirmed(record_id: str, entity: str) -> None:
        if is_temp_id(record_id):
            raise ValidationError(
                f"{entity} {record_id} is not saved on the server yet",
                field="id",
                value=record_id,
            )

    # =========================================================================
    # GROUPS
    # =========================================================================

    def load_groups(self, force_refresh: bool = False) -> ServiceResult:
        """
        All groups ordered by sort_order.

        Cache-first unless ``force_refresh``; metadata ``from_cache`` tells
        which source answered.
        """
        return self.safe_execute("Loading groups", self._load_groups, force_refresh)

    def _fetch_groups(self) -> List[Group]:
        rows = self.backend.select(GROUPS_TABLE, order_by="sort_order")
        groups = [Group.from_dict(row) for row in rows]
        self.store.save_groups(groups)
        self.store.update_last_sync()
        return groups

    def _load_groups(self, force_refresh: bool) -> ServiceResult:
        cached = by_sort_order(self.store.get_groups())

        if cached and not force_refresh:
            self._run_in_background("groups-refresh", self._fetch_groups)
            return ServiceResult.ok(cached, {"from_cache": True})

        try:
            groups = self._fetch_groups()
        except Exception as e:
            message, code = _error_fields(e)
            self.logger.warning(f"Server load of groups failed: {message}")
            if cached:
                return ServiceResult(True, cached, message, code, {"from_cache": True})
            return ServiceResult.fail(message, code, data=[])

        return ServiceResult.ok(by_sort_order(groups), {"from_cache": False})

    def create_group(self, name: str = "", theme: str = Theme.DEFAULT.value) -> ServiceResult:
        """Create a group at the end of the list; data is the confirmed Group."""
        return self.safe_execute("Creating group", self._create_group, name, theme)

    def _create_group(self, name: str, theme: str) -> Group:
        theme = self._validate_theme(theme)
        if not isinstance(name, str):
            raise ValidationError("Group name must be a string", field="name")

        user = self._current_user()
        if user is None:
            raise AuthenticationError("User is not signed in")

        sort_order = next_sort_order(self.store.get_groups())
        now = utc_now_iso()
        placeholder = Group(
            id=generate_temp_id(),
            user_id=user.id,
            name=name,
            theme=theme,
            sort_order=sort_order,
            created_at=now,
            updated_at=now,
        )
        had_groups_file = self.store.has_cached_data()

        with self._journal("create_group", GROUPS_TABLE, record_id=placeholder.id):
            self.store.add_group(placeholder)
            try:
                row = self.backend.insert(GROUPS_TABLE, {
                    "user_id": user.id,
                    "name": name,
                    "theme": theme.value,
                    "sort_order": sort_order,
                })
                confirmed = Group.from_dict(row)
            except Exception:
                remaining = [g for g in self.store.get_groups() if g.id != placeholder.id]
                if remaining or had_groups_file:
                    self.store.save_groups(remaining)
                else:
                    self.store.delete_groups_file()
                raise

            self.store.save_groups(swap_in(self.store.get_groups(), placeholder.id, confirmed))
            self.store.update_last_sync()
            return confirmed

    def update_group(self, group_id: str, updates: Dict[str, Any]) -> ServiceResult:
        """Patch name/theme/sort_order; data is the server's Group."""
        return self.safe_execute("Updating group", self._update_group, group_id, updates)

    def _update_group(self, group_id: str, updates: Dict[str, Any]) -> Group:
        changes = self._clean_updates(updates, GROUP_UPDATABLE_FIELDS)
        self._require_confirmed(group_id, "Group")
        snapshot = self.store.get_groups()

        with self._journal("update_group", GROUPS_TABLE, record_id=group_id):
            self.store.update_group(group_id, changes)
            try:
                confirmed = Group.from_dict(self.backend.update(GROUPS_TABLE, group_id, changes))
            except Exception:
                self.store.save_groups(snapshot)
                raise

            self.store.save_groups(replace_record(self.store.get_groups(), confirmed))
            self.store.update_last_sync()
            return confirmed

    def delete_group(self, group_id: str) -> ServiceResult:
        """Delete a group and (server-side cascade) its todos; data is the id."""
        return self.safe_execute("Deleting group", self._delete_group, group_id)

    def _delete_group(self, group_id: str) -> str:
        self._require_confirmed(group_id, "Group")
        groups = self.store.get_groups()
        removed = [(i, g) for i, g in enumerate(groups) if g.id == group_id]
        todos_snapshot = self.store.get_todos(group_id)
        had_todo_file = self.store.todos_path(group_id).exists()

        with self._journal("delete_group", GROUPS_TABLE, record_id=group_id):
            self.store.delete_group(group_id)
            try:
                self.backend.delete(GROUPS_TABLE, [group_id])
            except Exception:
                self.store.save_groups(reinsert(self.store.get_groups(), removed))
                if had_todo_file or todos_snapshot:
                    self.store.save_todos(group_id, todos_snapshot)
                raise

            self.store.update_last_sync()
            return group_id

    def reorder_groups(self, group_ids: Iterable[str]) -> ServiceResult:
        """
        Persist a new group order.

        Returns:
            ServiceResult whose data is the ``[{"id", "sort_order"}]`` pairs sent
        """
        return self.safe_execute("Reordering groups", self._reorder_groups, group_ids)

    def _reorder_groups(self, group_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = self._validate_ids(group_ids, "group_ids")
        snapshot = self.store.get_groups()
        ranks = [{"id": record_id, "sort_order": rank} for rank, record_id in enumerate(ids)]

        with self._journal("reorder_groups", GROUPS_TABLE, record_ids=ids):
            self.store.save_groups(apply_order(snapshot, ids))
            try:
                self.backend.upsert(GROUPS_TABLE, ranks)
            except Exception:
                self.store.save_groups(snapshot)
                raise

            self.store.update_last_sync()
            return ranks

    # =========================================================================
    # TODOS
    # =========================================================================

    def find_todo_group(self, todo_id: str) -> str:
        """
        Id of the cached group holding ``todo_id``.

        Linear scan over every cached group's todos (no index is kept).

        Raises:
            RecordNotFoundError: if no cached group holds the todo
        """
        for group in self.store.get_groups():
            if any(todo.id == todo_id for todo in self.store.get_todos(group.id)):
                return group.id
        raise RecordNotFoundError(f"Todo {todo_id} not found in local cache", entity="todo", record_id=todo_id)

    def load_todos(self, group_id: str, force_refresh: bool = False) -> ServiceResult:
        """
        Todos of one group ordered by sort_order.

        Needs a signed-in user; when the user check fails the cached todos are
        still served with metadata ``auth_error``.
        """
        return self.safe_execute("Loading todos", self._load_todos, group_id, force_refresh)

    def _fetch_todos(self, group_id: str) -> List[Todo]:
        rows = self.backend.select(TODOS_TABLE, filters={"group_id": group_id}, order_by="sort_order")
        todos = [Todo.from_dict(row) for row in rows]
        self.store.save_todos(group_id, todos)
        self.store.update_last_sync()
        return todos

    def _load_todos(self, group_id: str, force_refresh: bool) -> ServiceResult:
        cached = by_sort_order(self.store.get_todos(group_id))

        if self._current_user() is None:
            if cached:
                return ServiceResult(
                    True, cached, "User is not signed in", "AUTH_REQUIRED",
                    {"from_cache": True, "auth_error": True},
                )
            return ServiceResult.fail(
                "User is not signed in", "AUTH_REQUIRED", data=[], metadata={"auth_error": True}
            )

        if cached and not force_refresh:
            self._run_in_background(f"todos-refresh-{group_id}", lambda: self._fetch_todos(group_id))
            return ServiceResult.ok(cached, {"from_cache": True})

        try:
            todos = self._fetch_todos(group_id)
        except Exception as e:
            message, code = _error_fields(e)
            self.logger.warning(f"Server load of todos for {group_id} failed: {message}")
            if cached:
                return ServiceResult(True, cached, message, code, {"from_cache": True})
            return ServiceResult.fail(message, code, data=[])

        return ServiceResult.ok(by_sort_order(todos), {"from_cache": False})

    def create_todo(self, group_id: str, text: str) -> ServiceResult:
        """Append a todo to a group; data is the confirmed Todo."""
        return self.safe_execute("Creating todo", self._create_todo, group_id, text)

    def _create_todo(self, group_id: str, text: str) -> Todo:
        if not group_id:
            raise ValidationError("group_id is required", field="group_id")
        if not isinstance(text, str):
            raise ValidationError("Todo text must be a string", field="text")
        self._require_confirmed(group_id, "Group")

        sort_order = next_sort_order(self.store.get_todos(group_id))
        now = utc_now_iso()
        placeholder = Todo(
            id=generate_temp_id(),
            group_id=group_id,
            text=text,
            completed=False,
            sort_order=sort_order,
            created_at=now,
            updated_at=now,
        )
        had_todo_file = self.store.todos_path(group_id).exists()

        with self._journal("create_todo", TODOS_TABLE, record_id=placeholder.id, group_id=group_id):
            self.store.add_todo(group_id, placeholder)
            try:
                row = self.backend.insert(TODOS_TABLE, {
                    "group_id": group_id,
                    "text": text,
                    "completed": False,
                    "sort_order": sort_order,
                })
                confirmed = Todo.from_dict(row)
            except Exception:
                remaining = [t for t in self.store.get_todos(group_id) if t.id != placeholder.id]
                if remaining or had_todo_file:
                    self.store.save_todos(group_id, remaining)
                else:
                    self.store.delete_todos_file(group_id)
                raise

            self.store.save_todos(group_id, swap_in(self.store.get_todos(group_id), placeholder.id, confirmed))
            self.store.update_last_sync()
            return confirmed

    def update_todo(self, todo_id: str, updates: Dict[str, Any]) -> ServiceResult:
        """Patch text/completed/sort_order; data is the server's Todo."""
        return self.safe_execute("Updating todo", self._update_todo, todo_id, updates)

    def _update_todo(self, todo_id: str, updates: Dict[str, Any]) -> Todo:
        changes = self._clean_updates(updates, TODO_UPDATABLE_FIELDS)
        self._require_confirmed(todo_id, "Todo")
        group_id = self.find_todo_group(todo_id)
        snapshot = self.store.get_todos(group_id)

        with self._journal("update_todo", TODOS_TABLE, record_id=todo_id, group_id=group_id):
            self.store.update_todo(group_id, todo_id, changes)
            try:
                confirmed = Todo.from_dict(self.backend.update(TODOS_TABLE, todo_id, changes))
            except Exception:
                self.store.save_todos(group_id, snapshot)
                raise

            self.store.save_todos(group_id, replace_record(self.store.get_todos(group_id), confirmed))
            self.store.update_last_sync()
            return confirmed

    def delete_todo(self, todo_id: str) -> ServiceResult:
        """Delete one todo; data is the id."""
        return self.safe_execute("Deleting todo", self._delete_todo, todo_id)

    def _delete_todo(self, todo_id: str) -> str:
        self._require_confirmed(todo_id, "Todo")
        group_id = self.find_todo_group(todo_id)
        removed = [(i, t) for i, t in enumerate(self.store.get_todos(group_id)) if t.id == todo_id]

        with self._journal("delete_todo", TODOS_TABLE, record_id=todo_id, group_id=group_id):
            self.store.delete_todo(group_id, todo_id)
            try:
                self.backend.delete(TODOS_TABLE, [todo_id])
            except Exception:
                self.store.save_todos(group_id, reinsert(self.store.get_todos(group_id), removed))
                raise

            self.store.update_last_sync()
            return todo_id

    def delete_todos(self, todo_ids: Iterable[str]) -> ServiceResult:
        """
        Delete several todos in one server call (they may span groups).

        Ids not found in the cache are still sent to the server.
        """
        return self.safe_execute("Deleting todos", self._delete_todos, todo_ids)

    def _delete_todos(self, todo_ids: Iterable[str]) -> List[str]:
        ids = self._validate_ids(todo_ids, "todo_ids")
        if not ids:
            return []
        wanted = set(ids)

        located: Dict[str, List[Tuple[int, Todo]]] = {}
        for group in self.store.get_groups():
            hits = [(i, t) for i, t in enumerate(self.store.get_todos(group.id)) if t.id in wanted]
            if hits:
                located[group.id] = hits

        with self._journal("delete_todos", TODOS_TABLE, record_ids=ids):
            for group_id, hits in located.items():
                self.store.delete_todos(group_id, [t.id for _, t in hits])
            try:
                self.backend.delete(TODOS_TABLE, ids)
            except Exception:
                for group_id, hits in located.items():
                    self.store.save_todos(group_id, reinsert(self.store.get_todos(group_id), hits))
                raise

            self.store.update_last_sync()
            return ids

    def reorder_todos(self, group_id: str, todo_ids: Iterable[str]) -> ServiceResult:
        """Persist a new todo order within one group; data is the pairs sent."""
        return self.safe_execute("Reordering todos", self._reorder_todos, group_id, todo_ids)

    def _reorder_todos(self, group_id: str, todo_ids: Iterable[str]) -> List[Dict[str, Any]]:
        ids = self._validate_ids(todo_ids, "todo_ids")
        snapshot = self.store.get_todos(group_id)
        ranks = [{"id": record_id, "sort_order": rank} for rank, record_id in enumerate(ids)]

        with self._journal("reorder_todos", TODOS_TABLE, group_id=group_id, record_ids=ids):
            self.store.save_todos(group_id, apply_order(snapshot, ids))
            try:
                self.backend.upsert(TODOS_TABLE, ranks)
            except Exception:
                self.store.save_todos(group_id, snapshot)
                raise

            self.store.update_last_sync()
            return ranks

    # =========================================================================
    # REALTIME
    # =========================================================================

    def subscribe_to_groups(self, callback: Optional[EventListener] = None) -> ServiceResult:
        """Fold pushed group changes into the cache, then call ``callback``."""
        return self.safe_execute("Subscribing to groups", self.reconciler.subscribe_to_groups, callback)

    def subscribe_to_todos(self, group_id: str, callback: Optional[EventListener] = None) -> ServiceResult:
        """Same for one group's todos; replaces an earlier subscription for the group."""
        return self.safe_execute(
            "Subscribing to todos", self.reconciler.subscribe_to_todos, group_id, callback
        )

    def unsubscribe(self, name: str) -> ServiceResult:
        return self.safe_execute(f"Unsubscribing {name}", self.reconciler.unsubscribe, name)

    def unsubscribe_all(self) -> ServiceResult:
        return self.safe_execute("Unsubscribing all channels", self.reconciler.unsubscribe_all)

    # =========================================================================
    # RECOVERY
    # =========================================================================

    def recover_interrupted_operations(self) -> ServiceResult:
        """
        Clean up after a process that died with mutations in flight.

        If the sync-state journal is not empty, every temp-id record is
        purged from the cache and the journal is cleared; the next load then
        reads the server again.
        """
        return self.safe_execute("Recovering interrupted operations", self._recover_interrupted_operations)

    def _recover_interrupted_operations(self) -> Dict[str, int]:
        pending = self.store.get_sync_state().pending_operations
        if not pending:
            return {"interrupted_operations": 0, "purged_records": 0}

        purged = 0
        groups = self.store.get_groups()
        kept_groups = [g for g in groups if not is_temp_id(g.id)]
        for group in groups:
            if is_temp_id(group.id):
                self.store.delete_todos_file(group.id)
        if len(kept_groups) != len(groups):
            purged += len(groups) - len(kept_groups)
            self.store.save_groups(kept_groups)

        for group in kept_groups:
            todos = self.store.get_todos(group.id)
            kept_todos = [t for t in todos if not is_temp_id(t.id)]
            if len(kept_todos) != len(todos):
                purged += len(todos) - len(kept_todos)
                self.store.save_todos(group.id, kept_todos)

        self.store.clear_pending_operations()
        self.logger.warning(
            f"Recovered {len(pending)} interrupted operation(s); purged {purged} unconfirmed record(s)"
        )
        return {"interrupted_operations": len(pending), "purged_records": purged}
