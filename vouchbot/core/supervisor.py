from __future__ import annotations
import inspect
import logging
from typing import Any, Callable

from discord.ext import tasks

from .config import DEFAULT_HEALTH_INTERVAL
from .store import VouchStore

log = logging.getLogger(__name__)

Callback = Callable[[], Any]


class ConnectionSupervisor:
    """
    Owns the store connection lifecycle.

    A background loop runs a liveness query every `interval` seconds and
    reconnects when it fails. Failures are logged; the loop keeps going.
    Owners subscribe with on_connect / on_disconnect.
    """

    def __init__(self, store: VouchStore, interval: float = DEFAULT_HEALTH_INTERVAL):
        self.store = store
        self.interval = float(interval)
        self._on_connect: list[Callback] = []
        self._on_disconnect: list[Callback] = []
        self.health_loop.change_interval(seconds=self.interval)

    def on_connect(self, callback: Callback) -> Callback:
        self._on_connect.append(callback)
        return callback

    def on_disconnect(self, callback: Callback) -> Callback:
        self._on_disconnect.append(callback)
        return callback

    async def _fire(self, callbacks: list[Callback], event: str):
        for cb in callbacks:
            try:
                result = cb()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                log.exception("%s callback %r failed", event, cb)

    async def health_check(self) -> bool:
        if not self.store.db.is_connected:
            return False
        try:
            return await self.store.health_check()
        except Exception as e:
            log.warning("Database health check failed: %s", e)
            return False

    async def ensure_connected(self) -> bool:
        """Reconnect and migrate unless the current connection answers. Raises if that fails."""
        if await self.health_check():
            return True

        if self.store.db.is_connected:
            log.warning("Database connection unhealthy, attempting reconnection...")
            try:
                await self.store.db.close()
            except Exception as e:
                log.warning("Closing stale connection failed: %s", e)
        self.store.cache.invalidate_all()
        await self.store.connect()
        await self._fire(self._on_connect, "connect")
        return True

    async def check_once(self):
        try:
            if not await self.health_check():
                await self.ensure_connected()
        except Exception:
            log.exception("Database reconnect failed, retrying in %.0fs", self.interval)

    @tasks.loop(seconds=DEFAULT_HEALTH_INTERVAL)
    async def health_loop(self):
        await self.check_once()
        self.store.cache.prune()

    async def start(self):
        await self.ensure_connected()
        if not self.health_loop.is_running():
            self.health_loop.start()

    async def stop(self):
        self.health_loop.cancel()
        await self.store.close()
        await self._fire(self._on_disconnect, "disconnect")
