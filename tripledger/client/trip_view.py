"""
client/trip_view.py — Lifecycle of one open trip ledger.

Opening a view builds its cache, mutation pipeline and reconciliation
listener, loads the ledger once, then starts listening. Closing it stops the
listener and discards the cache; mutations still in flight finish against
the server but no longer change local state.

    view = await TripView.open(trip_id, api, feed, user_id)
    await view.pipeline.create_entry({...})
    print(view.snapshot.summary.total_budget)
    await view.close()
"""

from __future__ import annotations

import logging

from tripledger.client.cache import LedgerCache, LedgerSnapshot
from tripledger.client.listener import ReconciliationListener
from tripledger.client.pipeline import MutationPipeline

logger = logging.getLogger(__name__)


class TripView:

    def __init__(self, trip_id: str, api, feed, user_id: str) -> None:
        self.trip_id = trip_id
        self.cache = LedgerCache(trip_id)
        self.pipeline = MutationPipeline(trip_id, api, self.cache, user_id)
        self.listener = ReconciliationListener(trip_id, feed, self.pipeline.refresh)
        self.closed = False

    @classmethod
    async def open(cls, trip_id: str, api, feed, user_id: str) -> "TripView":
        """Initial load first, so a failing load raises before anything subscribes."""
        view = cls(trip_id, api, feed, user_id)
        await view.pipeline.refresh()
        view.listener.start()
        logger.info("Opened ledger view for trip %s", trip_id)
        return view

    async def close(self) -> None:
        if self.closed:
            return
        self.listener.stop()
        self.cache.discard()
        self.closed = True
        logger.info("Closed ledger view for trip %s", self.trip_id)

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self.cache.snapshot

    async def __aenter__(self) -> "TripView":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
