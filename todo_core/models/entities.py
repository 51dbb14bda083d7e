# =============================================================================
# todo_core/models/entities.py
# Group / Todo records and the events that mutate them
# =============================================================================
"""
Explicit record types for everything that lives in the local cache.

Records coming from disk or from the server are loose JSON objects; defaults
for missing fields are resolved here, in ``from_dict``, and nowhere else.
``to_dict`` produces exactly the JSON shape persisted in the cache files.
"""

from __future__ import annotations
import random
import string
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


TEMP_ID_PREFIX = "temp_"

_BASE36 = string.digits + string.ascii_lowercase


def now_ms() -> int:
    """Current time as milliseconds since the epoch."""
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def generate_temp_id() -> str:
    """Placeholder id for a record the server has not confirmed yet."""
    suffix = "".join(random.choice(_BASE36) for _ in range(9))
    return f"{TEMP_ID_PREFIX}{now_ms()}_{suffix}"


def is_temp_id(record_id: Optional[str]) -> bool:
    return isinstance(record_id, str) and record_id.startswith(TEMP_ID_PREFIX)


class Theme(str, Enum):
    """Colour theme of a group."""
    DEFAULT = "default"
    BLUE = "blue"
    GREEN = "green"
    PURPLE = "purple"
    GRAY = "gray"
    PINK = "pink"

    @classmethod
    def parse(cls, value: Any) -> Theme:
        """Lenient conversion used when reading stored/server records."""
        if isinstance(value, Theme):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.DEFAULT

    @classmethod
    def values(cls) -> List[str]:
        return [t.value for t in cls]


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class Group:
    """A named, themed list of todos owned by one user."""
    id: str
    user_id: str = ""
    name: str = ""
    theme: Theme = Theme.DEFAULT
    sort_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Group:
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id") or ""),
            name=data.get("name") or "",
            theme=Theme.parse(data.get("theme")),
            sort_order=_as_int(data.get("sort_order")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["theme"] = self.theme.value
        return data


@dataclass
class Todo:
    """A single to-do item; always belongs to exactly one group."""
    id: str
    group_id: str
    text: str = ""
    completed: bool = False
    sort_order: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Todo:
        return cls(
            id=str(data["id"]),
            group_id=str(data.get("group_id") or ""),
            text=data.get("text") or "",
            completed=bool(data.get("completed", False)),
            sort_order=_as_int(data.get("sort_order")),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class EventType(str, Enum):
    """Row-level change kinds pushed by the realtime feed."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """
    A server-pushed row change.

    ``new`` holds the row after INSERT/UPDATE, ``old`` the row (often only the
    primary key) before UPDATE/DELETE.
    """
    event_type: EventType
    table: str = ""
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> ChangeEvent:
        """
        Build an event from a postgres_changes payload.

        Accepts both the flat shape ``{eventType, table, new, old}`` and the
        nested wire shape ``{data: {type, table, record, old_record}}``.
        """
        body = payload.get("data", payload) if isinstance(payload.get("data"), dict) else payload
        raw_type = body.get("eventType") or body.get("type") or body.get("event_type")
        if raw_type is None:
            raise ValueError(f"Change payload without event type: {payload!r}")

        new = body.get("new")
        if new is None:
            new = body.get("record")
        old = body.get("old")
        if old is None:
            old = body.get("old_record")

        return cls(
            event_type=EventType(str(raw_type).upper()),
            table=body.get("table") or "",
            new=dict(new or {}),
            old=dict(old or {}),
        )

    @property
    def record_id(self) -> Optional[str]:
        source = self.old if self.event_type is EventType.DELETE else self.new
        record_id = source.get("id")
        return str(record_id) if record_id is not None else None


@dataclass
class SyncState:
    """Last successful server contact plus the in-flight operation journal."""
    last_sync: Optional[int] = None
    pending_operations: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncState:
        pending = data.get("pendingOperations") or []
        return cls(
            last_sync=data.get("lastSync"),
            pending_operations=[dict(op) for op in pending if isinstance(op, dict)],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastSync": self.last_sync,
            "pendingOperations": list(self.pending_operations),
        }


@dataclass
class CurrentUser:
    """The signed-in user as seen by the data layer."""
    id: str
    email: Optional[str] = None

    @classmethod
    def from_provider(cls, user: Any) -> Optional[CurrentUser]:
        """Normalise an auth-provider user object (or dict) into a CurrentUser."""
        if user is None:
            return None
        if isinstance(user, dict):
            user_id, email = user.get("id"), user.get("email")
        else:
            user_id, email = getattr(user, "id", None), getattr(user, "email", None)
        if not user_id:
            return None
        return cls(id=str(user_id), email=email)
