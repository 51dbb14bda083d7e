# =============================================================================
# todo_core/data/realtime_feed.py
# Supabase Realtime channels on a private asyncio loop
# =============================================================================
"""
RealtimeFeed - Supabase Realtime behind a blocking API.

Realtime is only available as an asyncio client, while the rest of the sync
core is thread based. The feed owns one event loop running in a daemon
thread; channels are created on that loop and the calling thread waits only
until the channel object exists. Connecting and joining continue on the loop
and failures there are logged.

Usage:
    feed = RealtimeFeed(settings.supabase_url, settings.supabase_key)
    channel = feed.open_channel("groups", "public", "groups", on_change)
    ...
    feed.close_channel(channel)
    feed.stop()

Change callbacks run on the loop thread.
"""

from __future__ import annotations
import asyncio
import inspect
import threading
from typing import Any, Callable, Dict, Optional
import logging

from realtime import AsyncRealtimeClient

logger = logging.getLogger(__name__)

PayloadCallback = Callable[[Dict[str, Any]], None]


def realtime_url(supabase_url: str) -> str:
    """https://<ref>.supabase.co -> wss://<ref>.supabase.co/realtime/v1"""
    base = str(supabase_url).rstrip("/")
    return f"{base}/realtime/v1".replace("http", "ws", 1)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class RealtimeFeed:
    """One realtime socket and the event loop it lives on."""

    def __init__(
        self,
        url: str,
        key: str,
        call_timeout: float = 10.0,
        client_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            url: Supabase project URL
            key: Supabase anon key
            call_timeout: Seconds a caller waits for the loop to answer
            client_factory: Builds the async realtime client (url, token=key)
        """
        self.url = realtime_url(url)
        self.key = key
        self.call_timeout = call_timeout
        self._client_factory = client_factory or AsyncRealtimeClient
        self._client: Any = None
        self._connected = False
        self._connect_lock: Optional[asyncio.Lock] = None
        self._joins: Dict[int, asyncio.Task] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    # =========================================================================
    # LOOP THREAD
    # =========================================================================

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=self._run_loop, args=(loop,), daemon=True, name="realtime-feed"
                )
                thread.start()
                self._loop, self._thread = loop, thread
                logger.info("Realtime feed loop started")
            return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()
            logger.info("Realtime feed loop stopped")

    def _call(self, coro: Any) -> Any:
        future = asyncio.run_coroutine_threadsafe(coro, self._ensure_loop())
        return future.result(self.call_timeout)

    # =========================================================================
    # CHANNELS
    # =========================================================================

    def open_channel(
        self,
        channel_name: str,
        schema: str,
        table: str,
        callback: PayloadCallback,
        row_filter: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> Any:
        """
        Create a postgres-changes channel and start joining it.

        Returns:
            The async channel; pass it to ``close_channel``
        """
        return self._call(self._open(channel_name, schema, table, callback, row_filter, access_token))

    async def _open(
        self,
        channel_name: str,
        schema: str,
        table: str,
        callback: PayloadCallback,
        row_filter: Optional[str],
        access_token: Optional[str],
    ) -> Any:
        if self._client is None:
            self._client = self._client_factory(self.url, token=self.key)
            self._connect_lock = asyncio.Lock()

        channel = self._client.channel(channel_name)
        channel.on_postgres_changes(
            "*",
            schema=schema,
            table=table,
            filter=row_filter,
            callback=callback,
        )
        task = asyncio.get_running_loop().create_task(self._join(channel_name, channel, access_token))
        self._joins[id(channel)] = task
        return channel

    async def _join(self, channel_name: str, channel: Any, access_token: Optional[str]) -> bool:
        try:
            async with self._connect_lock:
                if not self._connected:
                    await self._client.connect()
                    self._connected = True
                if access_token:
                    await _maybe_await(self._client.set_auth(access_token))
            await channel.subscribe()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime channel {channel_name} failed to join: {e}")
            return False

        logger.debug(f"Realtime channel {channel_name} joined")
        return True

    def close_channel(self, channel: Any) -> None:
        """Leave a channel; closing the last one closes the socket."""
        if self._loop is None:
            return
        self._call(self._close(channel))

    async def _close(self, channel: Any) -> None:
        task = self._joins.pop(id(channel), None)
        if task is None:
            return
        if not task.done():
            task.cancel()
        elif not task.cancelled() and task.result() and self._joins:
            await self._client.remove_channel(channel)

        if not self._joins:
            await self._release_client()

    async def _release_client(self) -> None:
        client, connected = self._client, self._connected
        self._client, self._connected = None, False
        if client is not None and connected:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Realtime socket did not close cleanly: {e}")

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def stop(self, timeout: float = 5.0) -> None:
        """Close the socket and stop the loop thread."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None:
            return

        try:
            asyncio.run_coroutine_threadsafe(self._shutdown(), loop).result(timeout)
        except Exception as e:
            logger.warning(f"Realtime feed did not shut down cleanly: {e}")

        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Realtime feed thread did not stop")

    async def _shutdown(self) -> None:
        for task in self._joins.values():
            task.cancel()
        self._joins.clear()
        await self._release_client()
