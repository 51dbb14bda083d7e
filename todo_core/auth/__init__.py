# =============================================================================
# todo_core/auth/__init__.py
# Session persistence
# =============================================================================

from todo_core.auth.session_store import SessionStore, derive_key

__all__ = [
    "SessionStore",
    "derive_key",
]
