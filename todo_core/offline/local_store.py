# =============================================================================
# todo_core/offline/local_store.py
# Local JSON Store for Groups, Todos and Sync State
# =============================================================================
"""
LocalStore - Durable per-entity JSON files plus an in-memory todo cache.

Directory Structure:
-------------------
<data_dir>/cache/
├── groups.json              # {"groups": [...], "timestamp": ms}
├── todos-<group_id>.json    # {"groupId": ..., "todos": [...], "timestamp": ms}
└── sync-state.json          # {"lastSync": ms|null, "pendingOperations": [...]}

Every file is rewritten wholesale; there are no partial writes. Every public
method swallows its own I/O and parse errors, logs them and degrades to an
empty/False result, so a corrupt file reads as "no data".
"""

from __future__ import annotations
import copy
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import logging

from todo_core.errors import error_boundary
from todo_core.models import Group, Todo, SyncState, now_ms, utc_now_iso

logger = logging.getLogger(__name__)


class LocalStore:
    """
    File-backed cache of the user's groups and todos.

    Usage:
        store = LocalStore(Path("~/.todo-sync/cache").expanduser())
        groups = store.get_groups()
        store.add_todo(groups[0].id, todo)
    """

    GROUPS_FILE = "groups.json"
    SYNC_STATE_FILE = "sync-state.json"
    TODOS_FILE_PREFIX = "todos-"
    TODOS_FILE_SUFFIX = ".json"

    def __init__(self, cache_dir: Path):
        """
        Initialize the store.

        Args:
            cache_dir: Directory holding the cache files (created if missing)
        """
        self.cache_dir = Path(cache_dir)
        self.groups_path = self.cache_dir / self.GROUPS_FILE
        self.sync_state_path = self.cache_dir / self.SYNC_STATE_FILE
        self._todos_cache: Dict[str, List[Todo]] = {}
        self._lock = threading.RLock()
        self._ensure_directory()

    def _ensure_directory(self) -> None:
        """Create cache directory."""
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create cache directory {self.cache_dir}: {e}")

    # =========================================================================
    # FILE HELPERS
    # =========================================================================

    def _read_json(self, path: Path) -> Optional[Dict[str, Any]]:
        """Read a JSON object from disk; None if the file does not exist."""
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path.name} does not hold a JSON object")
        return data

    def _write_json(self, path: Path, payload: Dict[str, Any]) -> None:
        """Replace a file's contents in one step (write temp file, then rename)."""
        self._ensure_directory()
        tmp_path = path.with_name(path.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)

    def todos_path(self, group_id: str) -> Path:
        return self.cache_dir / f"{self.TODOS_FILE_PREFIX}{group_id}{self.TODOS_FILE_SUFFIX}"

    def _todo_cache_files(self) -> List[Path]:
        if not self.cache_dir.exists():
            return []
        return sorted(
            p for p in self.cache_dir.iterdir()
            if p.is_file()
            and p.name.startswith(self.TODOS_FILE_PREFIX)
            and p.name.endswith(self.TODOS_FILE_SUFFIX)
        )

    # =========================================================================
    # GROUPS
    # =========================================================================

    @error_boundary(default_factory=list, error_message="Failed to read groups cache")
    def get_groups(self) -> List[Group]:
        """All cached groups in stored order; [] when missing or unreadable."""
        with self._lock:
            data = self._read_json(self.groups_path)
            if data is None:
                return []
            return [Group.from_dict(item) for item in data.get("groups") or []]

    @error_boundary(default_return=False, error_message="Failed to save groups cache")
    def save_groups(self, groups: Iterable[Group]) -> bool:
        """Overwrite groups.json with exactly these groups."""
        with self._lock:
            self._write_json(self.groups_path, {
                "groups": [g.to_dict() for g in groups],
                "timestamp": now_ms(),
            })
            return True

    def update_group(self, group_id: str, updates: Dict[str, Any]) -> bool:
        """Shallow-merge ``updates`` into one group and refresh its updated_at."""
        with self._lock:
            groups = self.get_groups()
            for index, group in enumerate(groups):
                if group.id == group_id:
                    merged = {**group.to_dict(), **updates, "id": group_id, "updated_at": utc_now_iso()}
                    groups[index] = Group.from_dict(merged)
                    return self.save_groups(groups)
            return False

    def add_group(self, group: Group) -> bool:
        with self._lock:
            groups = self.get_groups()
            groups.append(group)
            return self.save_groups(groups)

    @error_boundary(default_return=False, error_message="Failed to delete groups cache file")
    def delete_groups_file(self) -> bool:
        """Remove groups.json; the cache then reads as never populated."""
        with self._lock:
            if self.groups_path.exists():
                self.groups_path.unlink()
            return True

    def delete_group(self, group_id: str) -> bool:
        """Remove a group together with its todo cache file and memory entry."""
        with self._lock:
            groups = self.get_groups()
            remaining = [g for g in groups if g.id != group_id]
            self.delete_todos_file(group_id)
            return self.save_groups(remaining)

    # =========================================================================
    # TODOS
    # =========================================================================

    @error_boundary(default_factory=list, error_message="Failed to read todos cache")
    def get_todos(self, group_id: str) -> List[Todo]:
        """Todos of one group: memory first, then todos-<group_id>.json."""
        with self._lock:
            if group_id in self._todos_cache:
                return [copy.copy(t) for t in self._todos_cache[group_id]]

            data = self._read_json(self.todos_path(group_id))
            if data is None:
                return []

            todos = [Todo.from_dict(item) for item in data.get("todos") or []]
            self._todos_cache[group_id] = todos
            return [copy.copy(t) for t in todos]

    @error_boundary(default_return=False, error_message="Failed to save todos cache")
    def save_todos(self, group_id: str, todos: Iterable[Todo]) -> bool:
        """Overwrite one group's todo file and its in-memory entry."""
        with self._lock:
            todos = [copy.copy(t) for t in todos]
            self._write_json(self.todos_path(group_id), {
                "groupId": group_id,
                "todos": [t.to_dict() for t in todos],
                "timestamp": now_ms(),
            })
            self._todos_cache[group_id] = todos
            return True

    def update_todo(self, group_id: str, todo_id: str, updates: Dict[str, Any]) -> bool:
        with self._lock:
            todos = self.get_todos(group_id)
            for index, todo in enumerate(todos):
                if todo.id == todo_id:
                    merged = {**todo.to_dict(), **updates, "id": todo_id, "updated_at": utc_now_iso()}
                    todos[index] = Todo.from_dict(merged)
                    return self.save_todos(group_id, todos)
            return False

    def add_todo(self, group_id: str, todo: Todo) -> bool:
        with self._lock:
            todos = self.get_todos(group_id)
            todos.append(todo)
            return self.save_todos(group_id, todos)

    def delete_todo(self, group_id: str, todo_id: str) -> bool:
        with self._lock:
            todos = self.get_todos(group_id)
            return self.save_todos(group_id, [t for t in todos if t.id != todo_id])

    def delete_todos(self, group_id: str, todo_ids: Iterable[str]) -> bool:
        """Batch removal of several todos from one group."""
        ids = set(todo_ids)
        with self._lock:
            todos = self.get_todos(group_id)
            return self.save_todos(group_id, [t for t in todos if t.id not in ids])

    @error_boundary(default_return=False, error_message="Failed to delete todos cache file")
    def delete_todos_file(self, group_id: str) -> bool:
        with self._lock:
            path = self.todos_path(group_id)
            if path.exists():
                path.unlink()
            self._todos_cache.pop(group_id, None)
            return True

    # =========================================================================
    # SYNC STATE
    # =========================================================================

    @error_boundary(default_factory=SyncState, error_message="Failed to read sync state")
    def get_sync_state(self) -> SyncState:
        with self._lock:
            data = self._read_json(self.sync_state_path)
            return SyncState.from_dict(data) if data is not None else SyncState()

    @error_boundary(default_return=False, error_message="Failed to save sync state")
    def save_sync_state(self, state: SyncState) -> bool:
        with self._lock:
            self._write_json(self.sync_state_path, state.to_dict())
            return True

    def update_last_sync(self) -> bool:
        with self._lock:
            state = self.get_sync_state()
            state.last_sync = now_ms()
            return self.save_sync_state(state)

    def add_pending_operation(self, operation: Dict[str, Any]) -> bool:
        """Journal an operation; a ``timestamp`` (ms) is stamped on it."""
        with self._lock:
            state = self.get_sync_state()
            state.pending_operations.append({**operation, "timestamp": now_ms()})
            return self.save_sync_state(state)

    def remove_pending_operation(self, operation_id: str) -> bool:
        """Drop one journal entry; a journal back to the default state leaves no file."""
        with self._lock:
            state = self.get_sync_state()
            state.pending_operations = [
                op for op in state.pending_operations if op.get("id") != operation_id
            ]
            if state.last_sync is None and not state.pending_operations:
                return self._delete_sync_state_file()
            return self.save_sync_state(state)

    @error_boundary(default_return=False, error_message="Failed to delete sync state")
    def _delete_sync_state_file(self) -> bool:
        with self._lock:
            if self.sync_state_path.exists():
                self.sync_state_path.unlink()
            return True

    def clear_pending_operations(self) -> bool:
        with self._lock:
            state = self.get_sync_state()
            state.pending_operations = []
            return self.save_sync_state(state)

    # =========================================================================
    # CACHE MANAGEMENT
    # =========================================================================

    @error_boundary(default_return=False, error_message="Failed to clear cache")
    def clear_all_cache(self) -> bool:
        """Delete every cache file and empty the in-memory todo map (logout)."""
        with self._lock:
            if self.groups_path.exists():
                self.groups_path.unlink()
            for path in self._todo_cache_files():
                path.unlink()
            if self.sync_state_path.exists():
                self.sync_state_path.unlink()
            self._todos_cache.clear()
            logger.info("Local cache cleared")
            return True

    def has_cached_data(self) -> bool:
        with self._lock:
            return self.groups_path.exists()

    @error_boundary(default_return=None, error_message="Failed to get cache stats")
    def get_cache_stats(self) -> Optional[Dict[str, Any]]:
        """Cache statistics; None if the cache directory cannot be inspected."""
        stats = {
            "groups_count": 0,
            "todo_caches_count": 0,
            "total_size": 0,
            "last_sync": None,
        }

        if self.groups_path.exists():
            stats["groups_count"] = len(self.get_groups())
            stats["total_size"] += self.groups_path.stat().st_size

        for path in self._todo_cache_files():
            stats["todo_caches_count"] += 1
            stats["total_size"] += path.stat().st_size

        stats["last_sync"] = self.get_sync_state().last_sync
        return stats
