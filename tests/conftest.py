# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import copy
import itertools
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from todo_core.data.backend import GROUPS_TABLE, TODOS_TABLE, RemoteBackend
from todo_core.errors import RemoteOperationError
from todo_core.models import ChangeEvent, CurrentUser, EventType, Group, Theme, Todo
from todo_core.offline import LocalStore
from todo_core.services import DataService, ServiceResult


SERVER_CREATED_AT = "2024-01-01T00:00:00+00:00"
SERVER_UPDATED_AT = "2024-01-02T00:00:00+00:00"


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeChannel:
    """Handle returned by FakeBackend.subscribe"""

    def __init__(self, name: str, table: str, callback: Callable, row_filter: Optional[str]):
        self.name = name
        self.table = table
        self.callback = callback
        self.filter = row_filter
        self.closed = False


class FakeBackend(RemoteBackend):
    """
    In-memory stand-in for the Supabase tables.

    Failure injection:
        backend.fail_on("insert")            # every insert raises
        backend.before_call = hook           # hook(op, table, payload) runs first
    """

    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {GROUPS_TABLE: {}, TODOS_TABLE: {}}
        self.calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.before_call: Optional[Callable[[str, str, Any], None]] = None
        self.channels: List[FakeChannel] = []
        self.close_count = 0
        self._ids = itertools.count(1)

    # ----- test controls ---------------------------------------------------

    def fail_on(self, op: str, error: Optional[Exception] = None) -> None:
        self.failures[op] = error or RemoteOperationError("Network down", code="NETWORK_ERROR", operation=op)

    def clear_failures(self) -> None:
        self.failures.clear()

    def seed(self, table: str, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            self.tables[table][row["id"]] = dict(row)

    def calls_for(self, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == op]

    def open_channels(self, name: Optional[str] = None) -> List[FakeChannel]:
        return [c for c in self.channels if not c.closed and (name is None or c.name == name)]

    def emit(self, channel_name: str, event_type: str, new: Optional[dict] = None, old: Optional[dict] = None) -> None:
        """Deliver a change event to every open channel with that name."""
        for channel in self.open_channels(channel_name):
            channel.callback(ChangeEvent(
                event_type=EventType(event_type),
                table=channel.table,
                new=dict(new or {}),
                old=dict(old or {}),
            ))

    def _enter(self, op: str, table: str, payload: Any) -> None:
        self.calls.append((op, table, copy.deepcopy(payload)))
        if self.before_call is not None:
            self.before_call(op, table, payload)
        if op in self.failures:
            raise self.failures[op]

    # ----- RemoteBackend ---------------------------------------------------

    def select(self, table, filters=None, order_by=None, ascending=True):
        self._enter("select", table, filters)
        rows = [
            dict(row) for row in self.tables[table].values()
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]
        if order_by:
            rows.sort(key=lambda r: r.get(order_by), reverse=not ascending)
        return rows

    def insert(self, table, row):
        self._enter("insert", table, row)
        prefix = "group" if table == GROUPS_TABLE else "todo"
        stored = {
            "id": f"{prefix}-srv-{next(self._ids)}",
            **row,
            "created_at": SERVER_CREATED_AT,
            "updated_at": SERVER_CREATED_AT,
        }
        self.tables[table][stored["id"]] = stored
        return dict(stored)

    def update(self, table, record_id, changes):
        self._enter("update", table, {"id": record_id, **changes})
        if record_id not in self.tables[table]:
            raise RemoteOperationError("No row updated", code="PGRST116", table=table, operation="update")
        row = self.tables[table][record_id]
        row.update(changes)
        row["updated_at"] = SERVER_UPDATED_AT
        return dict(row)

    def delete(self, table, record_ids):
        ids = list(record_ids)
        self._enter("delete", table, ids)
        for record_id in ids:
            self.tables[table].pop(record_id, None)
        if table == GROUPS_TABLE:
            for todo_id, todo in list(self.tables[TODOS_TABLE].items()):
                if todo.get("group_id") in ids:
                    del self.tables[TODOS_TABLE][todo_id]

    def upsert(self, table, rows):
        rows = [dict(r) for r in rows]
        self._enter("upsert", table, rows)
        result = []
        for row in rows:
            stored = self.tables[table].setdefault(row["id"], {})
            stored.update(row)
            result.append(dict(stored))
        return result

    def subscribe(self, channel_name, table, callback, filter=None):
        self._enter("subscribe", table, {"channel": channel_name, "filter": filter})
        channel = FakeChannel(channel_name, table, callback, filter)
        self.channels.append(channel)
        return channel

    def unsubscribe(self, handle):
        self._enter("unsubscribe", handle.table, {"channel": handle.name})
        handle.closed = True

    def close(self):
        self.close_count += 1


class FakeAuth:
    """Auth collaborator with a switchable current user"""

    def __init__(self, user: Optional[CurrentUser] = None):
        self.user = user
        self.raise_error: Optional[Exception] = None

    def get_current_user(self) -> ServiceResult:
        if self.raise_error is not None:
            raise self.raise_error
        if self.user is None:
            return ServiceResult.fail("User is not signed in", error_code="AUTH_REQUIRED")
        return ServiceResult.ok(self.user)


# =============================================================================
# RECORD FACTORIES
# =============================================================================

def make_group(group_id: str, sort_order: int = 0, name: Optional[str] = None, theme: Theme = Theme.DEFAULT) -> Group:
    return Group(
        id=group_id,
        user_id="user-1",
        name=name if name is not None else f"Group {group_id}",
        theme=theme,
        sort_order=sort_order,
        created_at=SERVER_CREATED_AT,
        updated_at=SERVER_CREATED_AT,
    )


def make_todo(todo_id: str, group_id: str, sort_order: int = 0, text: Optional[str] = None, completed: bool = False) -> Todo:
    return Todo(
        id=todo_id,
        group_id=group_id,
        text=text if text is not None else f"Todo {todo_id}",
        completed=completed,
        sort_order=sort_order,
        created_at=SERVER_CREATED_AT,
        updated_at=SERVER_CREATED_AT,
    )


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def current_user():
    return CurrentUser(id="user-1", email="me@example.com")


@pytest.fixture
def store(tmp_path):
    """LocalStore over a fresh temporary directory"""
    return LocalStore(tmp_path / "cache")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def auth(current_user):
    return FakeAuth(current_user)


@pytest.fixture
def service(store, backend, auth):
    """DataService wired to the fakes; background refreshes are joined on teardown"""
    data_service = DataService(store, backend, auth)
    yield data_service
    data_service.wait_for_background(timeout=5)


@pytest.fixture
def seeded(store, backend):
    """
    Two groups (g1, g2) with todos, identical in cache and on the server.

    g1: t1, t2, t3    g2: t4
    """
    groups = [make_group("g1", 0, name="Work"), make_group("g2", 1, name="Home", theme=Theme.BLUE)]
    todos = {
        "g1": [make_todo("t1", "g1", 0), make_todo("t2", "g1", 1), make_todo("t3", "g1", 2)],
        "g2": [make_todo("t4", "g2", 0)],
    }
    store.save_groups(groups)
    backend.seed(GROUPS_TABLE, [g.to_dict() for g in groups])
    for group_id, group_todos in todos.items():
        store.save_todos(group_id, group_todos)
        backend.seed(TODOS_TABLE, [t.to_dict() for t in group_todos])
    return {"groups": groups, "todos": todos}


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.execute.return_value.data = []
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock()
    return mock_client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def ids(records) -> List[str]:
    """Ids of records in list order"""
    return [r.id for r in records]


def snapshot_files(store: LocalStore) -> Dict[str, Any]:
    """Cache content ignoring envelope/record timestamps (for rollback checks)"""
    state = {
        "groups": [g.to_dict() for g in store.get_groups()],
        "pending": [op for op in store.get_sync_state().pending_operations],
    }
    for path in sorted(store.cache_dir.glob("todos-*.json")):
        group_id = path.name[len("todos-"):-len(".json")]
        state[path.name] = [t.to_dict() for t in store.get_todos(group_id)]
    return state
