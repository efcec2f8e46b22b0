"""
realtime.py — Per-trip change feed for ledger rows.

Services record what they changed on the SQLAlchemy session
(record_change); the events are published only after the transaction
commits and are dropped if it rolls back, so subscribers never hear about
rows that were not persisted.

Delivery is at-least-once from the subscriber's point of view: a client may
receive the echo of its own mutation, and one mutation emits several events
(entry + splits). Payloads are refresh triggers, not data to merge.

Callbacks run on the publishing thread (a request thread). Subscribers that
live on an event loop must hop onto it themselves.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from itertools import count
from threading import RLock
from typing import Callable

from sqlalchemy import event

logger = logging.getLogger(__name__)

_PENDING_KEY = "tripledger.pending_changes"

TABLES = frozenset({"budget_items", "budget_splits"})
OPERATIONS = frozenset({"insert", "update", "delete"})


@dataclass(frozen=True)
class ChangeEvent:
    trip_id: str
    table: str
    op: str
    row: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"table": self.table, "op": self.op, "row": self.row}


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe(); call unsubscribe() to stop."""

    def __init__(self, feed: "ChangeFeed", trip_id: str, token: int) -> None:
        self._feed = feed
        self.trip_id = trip_id
        self.token = token
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self.trip_id, self.token)
            self.active = False

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Subscription trip_id={self.trip_id} token={self.token} active={self.active}>"


class ChangeFeed:
    """Thread-safe fan-out of ChangeEvents, one channel per trip."""

    def __init__(self) -> None:
        self._channels: dict[str, dict[int, ChangeCallback]] = defaultdict(dict)
        self._tokens = count(1)
        self._lock = RLock()
        self._hooked = False

    # ── Flask extension wiring ─────────────────────────────────────────────

    def init_app(self, app, db) -> None:
        """Registers the commit/rollback hooks on the app's scoped session."""
        app.extensions["change_feed"] = self
        # db.session is shared by every app built from the same extension.
        if not self._hooked:
            event.listen(db.session, "after_commit", self._after_commit)
            event.listen(db.session, "after_rollback", self._after_rollback)
            self._hooked = True

    def _after_commit(self, session) -> None:
        for change in session.info.pop(_PENDING_KEY, []):
            self.publish(change)

    def _after_rollback(self, session) -> None:
        dropped = session.info.pop(_PENDING_KEY, [])
        if dropped:
            logger.debug("Dropped %d unpublished change(s) after rollback", len(dropped))

    # ── Pub/sub ────────────────────────────────────────────────────────────

    def subscribe(self, trip_id: str, callback: ChangeCallback) -> Subscription:
        with self._lock:
            token = next(self._tokens)
            self._channels[trip_id][token] = callback
        logger.debug("Subscribed token=%s to trip %s", token, trip_id)
        return Subscription(self, trip_id, token)

    def _remove(self, trip_id: str, token: int) -> None:
        with self._lock:
            channel = self._channels.get(trip_id)
            if channel is not None:
                channel.pop(token, None)
                if not channel:
                    del self._channels[trip_id]
        logger.debug("Unsubscribed token=%s from trip %s", token, trip_id)

    def subscriber_count(self, trip_id: str) -> int:
        with self._lock:
            return len(self._channels.get(trip_id, {}))

    def publish(self, change: ChangeEvent) -> int:
        """Delivers to every subscriber of the trip. Returns the delivery count."""
        with self._lock:
            callbacks = list(self._channels.get(change.trip_id, {}).values())

        delivered = 0
        for callback in callbacks:
            try:
                callback(change)
                delivered += 1
            except Exception:
                # One broken subscriber must not starve the others.
                logger.exception(
                    "Change feed subscriber failed for trip %s (%s %s)",
                    change.trip_id, change.op, change.table,
                )
        return delivered


def record_change(session, trip_id: str, table: str, op: str, row: dict) -> None:
    """Queues a ChangeEvent on the session; published after commit."""
    if table not in TABLES or op not in OPERATIONS:
        raise ValueError(f"Unknown change {op!r} on {table!r}")
    session.info.setdefault(_PENDING_KEY, []).append(
        ChangeEvent(trip_id=trip_id, table=table, op=op, row=row)
    )
