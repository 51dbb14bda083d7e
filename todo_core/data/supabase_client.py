# =============================================================================
# todo_core/data/supabase_client.py
# Supabase Client Configuration for the TodoList sync core
# Handles client creation, CRUD calls and realtime channels
# =============================================================================
"""
CRUD goes through the sync Supabase client (postgrest). The sync client has
no realtime support, so change feeds go through a RealtimeFeed, which runs
the async realtime client on its own event loop.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence
import logging
import threading

from supabase import Client, create_client
from supabase.client import ClientOptions

from todo_core.data.backend import ChangeCallback, RemoteBackend
from todo_core.data.realtime_feed import RealtimeFeed
from todo_core.errors import ConfigurationError, RemoteOperationError
from todo_core.models import ChangeEvent
from todo_core.settings import Settings

logger = logging.getLogger(__name__)


def get_supabase_client(settings: Settings) -> Client:
    """
    Create a Supabase client from settings.

    Raises:
        ConfigurationError: if the project URL or anon key is missing
    """
    url, key = settings.require_remote()
    options = ClientOptions(
        auto_refresh_token=True,
        persist_session=False,
    )
    client: Client = create_client(url, key, options=options)
    logger.info(f"Supabase client created for {url}")
    return client


def _wrap_error(error: Exception, table: str, operation: str) -> RemoteOperationError:
    """Turn a postgrest/transport exception into a RemoteOperationError."""
    message = getattr(error, "message", None) or str(error)
    code = getattr(error, "code", None)
    return RemoteOperationError(
        message,
        code=str(code) if code else None,
        table=table,
        operation=operation,
    )


class SupabaseBackend(RemoteBackend):
    """
    RemoteBackend over a Supabase project.

    Row level security on the server scopes every query to the signed-in
    user, so no user filter is added here.
    """

    def __init__(
        self,
        client: Client,
        schema: str = "public",
        url: Optional[str] = None,
        key: Optional[str] = None,
        feed: Optional[RealtimeFeed] = None,
    ):
        """
        Args:
            client: Supabase client (see get_supabase_client)
            schema: Postgres schema the tables live in
            url: Project URL for realtime (default: the client's)
            key: Anon key for realtime (default: the client's)
            feed: Realtime feed to use instead of building one
        """
        self.client = client
        self.schema = schema
        self._url = url
        self._key = key
        self._feed = feed
        self._feed_lock = threading.Lock()

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        ascending: bool = True,
    ) -> List[Dict[str, Any]]:
        try:
            query = self.client.table(table).select("*")
            for col, val in (filters or {}).items():
                query = query.eq(col, val)
            if order_by:
                query = query.order(order_by, desc=not ascending)
            response = query.execute()
            return list(response.data or [])
        except Exception as e:
            raise _wrap_error(e, table, "select") from e

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.table(table).insert(row).execute()
        except Exception as e:
            raise _wrap_error(e, table, "insert") from e
        if not response.data:
            raise RemoteOperationError("Insert returned no row", table=table, operation="insert")
        return response.data[0]

    def update(self, table: str, record_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.table(table).update(changes).eq("id", record_id).execute()
        except Exception as e:
            raise _wrap_error(e, table, "update") from e
        if not response.data:
            # RLS hides rows the user may not touch; the API reports that as zero rows
            raise RemoteOperationError(
                f"No row with id {record_id} was updated",
                code="PGRST116",
                table=table,
                operation="update",
            )
        return response.data[0]

    def delete(self, table: str, record_ids: Sequence[str]) -> None:
        ids = list(record_ids)
        if not ids:
            return
        try:
            query = self.client.table(table).delete()
            if len(ids) == 1:
                query = query.eq("id", ids[0])
            else:
                query = query.in_("id", ids)
            query.execute()
        except Exception as e:
            raise _wrap_error(e, table, "delete") from e

    def upsert(self, table: str, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            response = self.client.table(table).upsert(list(rows)).execute()
            return list(response.data or [])
        except Exception as e:
            raise _wrap_error(e, table, "upsert") from e

    # =========================================================================
    # REALTIME
    # =========================================================================

    @property
    def feed(self) -> RealtimeFeed:
        """Realtime connection, created on first use."""
        with self._feed_lock:
            if self._feed is None:
                url = self._url or getattr(self.client, "supabase_url", None)
                key = self._key or getattr(self.client, "supabase_key", None)
                if not url or not key:
                    raise ConfigurationError("Realtime needs the Supabase URL and anon key", config_key="supabase_url")
                self._feed = RealtimeFeed(str(url), str(key))
            return self._feed

    def _access_token(self) -> Optional[str]:
        """JWT of the signed-in user, so row level security also filters pushed rows."""
        try:
            session = self.client.auth.get_session()
        except Exception as e:
            logger.debug(f"No auth session for realtime: {e}")
            return None
        token = getattr(session, "access_token", None)
        return token if isinstance(token, str) else None

    def subscribe(
        self,
        channel_name: str,
        table: str,
        callback: ChangeCallback,
        filter: Optional[str] = None,
    ) -> Any:
        def on_change(payload: Dict[str, Any]) -> None:
            try:
                event = ChangeEvent.from_payload(payload)
            except (ValueError, AttributeError) as e:
                logger.warning(f"Ignoring malformed change payload on {channel_name}: {e}")
                return
            if not event.table:
                event.table = table
            callback(event)

        try:
            channel = self.feed.open_channel(
                channel_name,
                self.schema,
                table,
                on_change,
                row_filter=filter,
                access_token=self._access_token(),
            )
        except Exception as e:
            raise _wrap_error(e, table, "subscribe") from e

        logger.debug(f"Subscribed to {table} changes on channel {channel_name}")
        return channel

    def unsubscribe(self, handle: Any) -> None:
        try:
            self.feed.close_channel(handle)
        except Exception as e:
            raise _wrap_error(e, "", "unsubscribe") from e

    def close(self) -> None:
        """Stop the realtime loop thread; CRUD calls keep working."""
        with self._feed_lock:
            feed = self._feed
        if feed is not None:
            feed.stop()
