"""
client/listener.py — Realtime reconciliation listener.

Subscribes to a trip's change feed for as long as a trip view is open. Any
change to budget_items or budget_splits triggers a FULL cache refresh; event
payloads are never merged.

Refreshes are coalesced: while one is running, further events only mark the
ledger dirty, and exactly one more refresh follows when it finishes.

Feed callbacks arrive on the publishing thread, so they hop onto the
listener's event loop with call_soon_threadsafe before touching anything.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from tripledger.app.errors import AppError
from tripledger.app.realtime import TABLES, ChangeEvent

logger = logging.getLogger(__name__)


class ReconciliationListener:

    def __init__(
            self,
            trip_id: str,
            feed,
            refresh: Callable[[], Awaitable],
    ) -> None:
        self.trip_id = trip_id
        self._feed = feed
        self._refresh = refresh
        self._loop: asyncio.AbstractEventLoop | None = None
        self._subscription = None
        self._task: asyncio.Task | None = None
        self._dirty = False
        self._stopped = False
        self.refresh_count = 0

    @property
    def running(self) -> bool:
        return self._subscription is not None and not self._stopped

    def start(self) -> None:
        """Must be called from inside the event loop that owns the cache."""
        if self._subscription is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._subscription = self._feed.subscribe(self.trip_id, self._on_change)
        logger.debug("Listening for ledger changes in trip %s", self.trip_id)

    def stop(self) -> None:
        self._stopped = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._dirty = False

    # ── Feed side (any thread) ─────────────────────────────────────────────

    def _on_change(self, change: ChangeEvent) -> None:
        if change.table not in TABLES or self._stopped or self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._schedule)
        except RuntimeError:
            # Loop already closed; the view is gone.
            logger.debug("Dropped change for trip %s: event loop closed", self.trip_id)

    # ── Loop side ──────────────────────────────────────────────────────────

    def _schedule(self) -> None:
        if self._stopped:
            return
        if self._task is not None and not self._task.done():
            self._dirty = True
            return
        self._task = self._loop.create_task(self._run())

    async def _run(self) -> None:
        while True:
            self._dirty = False
            try:
                await self._refresh()
                self.refresh_count += 1
            except AppError as exc:
                logger.warning(
                    "Reconciliation refresh failed for trip %s: %s",
                    self.trip_id, exc.code,
                )
            if self._stopped or not self._dirty:
                break

    async def wait_idle(self) -> None:
        """Waits for the current refresh chain, if any, to finish."""
        # Give call_soon_threadsafe callbacks a chance to run first.
        await asyncio.sleep(0)
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
