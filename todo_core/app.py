# =============================================================================
# todo_core/app.py
# Composition root: wires settings, cache, backend, auth and data services
# =============================================================================
"""
TodoApplication - owns one instance of every component.

    app = TodoApplication()
    app.start()
    if not app.is_authenticated:
        app.auth.sign_in(email, password)
    groups = app.data.load_groups()
    ...
    app.shutdown()

Components can be injected (tests, alternative backends); anything not
given is built from Settings.
"""

from __future__ import annotations
from typing import Any, Dict, Optional
import logging

from todo_core.auth.session_store import SessionStore
from todo_core.data.backend import RemoteBackend
from todo_core.errors import ErrorContext
from todo_core.logging import setup_logging
from todo_core.offline import LocalStore, RealtimeReconciler
from todo_core.services import AuthService, DataService, ServiceResult
from todo_core.settings import Settings, load_settings

logger = logging.getLogger(__name__)


class TodoApplication:
    """The sync core for one user profile (one data directory)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[LocalStore] = None,
        backend: Optional[RemoteBackend] = None,
        auth: Optional[Any] = None,
        session_store: Optional[SessionStore] = None,
        client: Optional[Any] = None,
        configure_logging: bool = True,
    ):
        """
        Args:
            settings: Resolved settings (default: load_settings())
            store: Local cache (default: LocalStore(settings.cache_dir))
            backend: Remote backend (default: SupabaseBackend over ``client``)
            auth: Auth service (default: AuthService over ``client``)
            session_store: Encrypted session file (default: settings.session_path)
            client: Supabase client (default: created from settings when needed)
            configure_logging: Set up logging from settings
        """
        self.settings = settings or load_settings()
        if configure_logging:
            setup_logging(
                self.settings.log_level,
                log_to_file=self.settings.log_to_file,
                log_dir=self.settings.log_dir,
            )

        self.store = store or LocalStore(self.settings.cache_dir)
        self.session_store = session_store or SessionStore(
            self.settings.session_path,
            self.settings.app_id,
            validity_days=self.settings.session_days,
        )

        if client is None and (backend is None or auth is None):
            from todo_core.data.supabase_client import get_supabase_client
            client = get_supabase_client(self.settings)

        if backend is None:
            from todo_core.data.supabase_client import SupabaseBackend
            backend = SupabaseBackend(
                client,
                url=self.settings.supabase_url,
                key=self.settings.supabase_key,
            )
        self.backend = backend

        self.auth = auth or AuthService(client, self.session_store, self.settings.redirect_url)
        self.reconciler = RealtimeReconciler(self.store, self.backend)
        self.data = DataService(self.store, self.backend, self.auth, self.reconciler)
        self.is_authenticated = False

    def start(self) -> Dict[str, Any]:
        """
        Restore the stored session and clean up after an interrupted run.

        Returns:
            Dict with the restore outcome and the recovery summary
        """
        restore = self.auth.restore_session()
        restored = bool(restore.success and restore.data and restore.data.get("restored"))
        self.is_authenticated = restored

        recovery = self.data.recover_interrupted_operations()
        if not recovery.success:
            logger.error(f"Recovery of interrupted operations failed: {recovery.error}")

        status = {
            "authenticated": restored,
            "restore": restore.data if restore.success else {"restored": False, "reason": restore.error},
            "recovery": recovery.data,
        }
        logger.info(f"Application started (authenticated={restored})")
        return status

    def logout(self) -> ServiceResult:
        """
        Close realtime channels, sign out, forget the session and wipe the cache.

        Background refreshes are joined before the wipe so none of them can
        write the old user's data back.

        Every step runs even if an earlier one fails.
        """
        steps = [
            ("Closing realtime channels", self.data.unsubscribe_all),
            ("Waiting for background refreshes", lambda: self.data.wait_for_background(5.0)),
            ("Signing out", self.auth.sign_out),
            ("Clearing stored session", self.session_store.clear_session),
            ("Clearing local cache", self.store.clear_all_cache),
        ]
        failures = []
        for operation, step in steps:
            with ErrorContext(operation) as ctx:
                outcome = step()
                if isinstance(outcome, ServiceResult) and not outcome.success:
                    failures.append(f"{operation}: {outcome.error}")
            if ctx.error is not None:
                failures.append(f"{operation}: {ctx.error}")

        self.is_authenticated = False
        if failures:
            return ServiceResult.fail("; ".join(failures), error_code="LOGOUT_INCOMPLETE")
        logger.info("Logged out")
        return ServiceResult.ok()

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Close realtime channels (stopping the feed loop) and wait for background refreshes."""
        self.data.unsubscribe_all()
        if not self.data.wait_for_background(timeout):
            logger.warning("Background refreshes still running at shutdown")
        logger.info("Application shut down")
