"""Trigger sync batches from connectivity, visibility and a timer."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from .connectivity import ConnectivityMonitor
from .engine import SyncBatchResult, SyncEngine

_LOGGER = logging.getLogger(__name__)


class BackgroundSyncScheduler:
    """Run :meth:`SyncEngine.async_sync_all` without user action.

    A trigger only starts a batch when auto-sync is enabled, URL and token are
    set, the device is online and something is pending. A trigger that arrives
    while a batch runs is dropped. Stopping cancels the timer and detaches the
    listeners; a batch already in flight runs to completion. Connectivity
    signals may arrive from any thread once the scheduler has started.
    """

    def __init__(
        self,
        engine: SyncEngine,
        *,
        connectivity: ConnectivityMonitor | None = None,
        interval: float | None = None,
    ) -> None:
        self.engine = engine
        self.connectivity = connectivity or engine.connectivity
        self.interval = float(interval if interval is not None else engine.interval)
        self._timer: asyncio.Task | None = None
        self._remove_listener: Callable[[], None] | None = None
        self._batches: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def async_start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._remove_listener = self.connectivity.add_listener(self._handle_signal)
        self._timer = asyncio.create_task(self._run_timer())
        self.engine.background_running = True
        _LOGGER.info("Background sync started (every %ss)", self.interval)

    async def async_stop(self) -> None:
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        if self._timer:
            self._timer.cancel()
            with suppress(asyncio.CancelledError):
                await self._timer
        self._timer = None
        self.engine.background_running = False
        _LOGGER.info("Background sync stopped")

    async def async_trigger(self, reason: str) -> SyncBatchResult | None:
        """Run one gated batch. Returns ``None`` when the gate skipped it."""

        if self.engine.syncing:
            _LOGGER.debug("Skipping %s sync: batch already running", reason)
            return None
        if not self.connectivity.online:
            _LOGGER.debug("Skipping %s sync: offline", reason)
            return None
        if not self.engine.config().ready:
            _LOGGER.debug("Skipping %s sync: auto-sync disabled or not configured", reason)
            return None
        pending = self.engine.store.count_pending()
        if not pending:
            return None
        _LOGGER.info("Background sync (%s): %d pending items", reason, pending)
        return await self.engine.async_sync_all()

    async def async_handle_online(self) -> SyncBatchResult | None:
        return await self.async_trigger("online")

    async def async_handle_visible(self) -> SyncBatchResult | None:
        return await self.async_trigger("visible")

    def _handle_signal(self, event: str) -> None:
        """Start a batch for ``event``; callable from any thread."""

        loop = self._loop
        if loop is None or loop.is_closed():
            _LOGGER.debug("Ignoring %s signal: scheduler loop not available", event)
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn(event)
        else:
            loop.call_soon_threadsafe(self._spawn, event)

    def _spawn(self, reason: str) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(reason))
        self._batches.add(task)
        task.add_done_callback(self._batches.discard)
        return task

    async def _guarded(self, reason: str) -> None:
        try:
            await self.async_trigger(reason)
        except Exception as err:  # noqa: BLE001
            _LOGGER.exception("Unexpected background sync error: %s", err)

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self._spawn("timer")

    async def async_wait_idle(self) -> None:
        """Wait for batches started by this scheduler to finish."""

        while self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)


__all__ = ["BackgroundSyncScheduler"]
