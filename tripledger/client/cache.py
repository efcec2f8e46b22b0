"""
client/cache.py — Local ledger cache for one open trip view.

The cache holds a single immutable LedgerSnapshot. Every write builds a new
snapshot (entries, members, recomputed Summary, version + 1) and swaps it in,
so a reader always sees a complete, self-consistent state.

Once discard() has been called every write is ignored and returns False.
Mutations still in flight when a view closes resolve against a discarded
cache and change nothing.

Entries are kept newest-first, the same order the server lists them in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from tripledger.app.services.summary_service import Summary, compute_summary, personal_amount
from tripledger.client.models import LedgerEntry, MemberInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSnapshot:
    entries: tuple[LedgerEntry, ...] = field(default_factory=tuple)
    members: tuple[MemberInfo, ...] = field(default_factory=tuple)
    summary: Summary = field(default_factory=lambda: compute_summary([], 0))
    version: int = 0


class LedgerCache:

    def __init__(self, trip_id: str) -> None:
        self.trip_id = trip_id
        self._snapshot = LedgerSnapshot()
        self._discarded = False

    # ── Reads ──────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> LedgerSnapshot:
        return self._snapshot

    @property
    def entries(self) -> tuple[LedgerEntry, ...]:
        return self._snapshot.entries

    @property
    def summary(self) -> Summary:
        return self._snapshot.summary

    @property
    def members(self) -> tuple[MemberInfo, ...]:
        return self._snapshot.members

    @property
    def discarded(self) -> bool:
        return self._discarded

    def find(self, entry_id: str) -> LedgerEntry | None:
        return next((e for e in self._snapshot.entries if e.id == entry_id), None)

    def personal_amount(self, entry_id: str, user_id: str) -> Decimal | None:
        """User's share of a cached entry, or None when the entry is not cached."""
        snapshot = self._snapshot
        entry = next((e for e in snapshot.entries if e.id == entry_id), None)
        if entry is None:
            return None
        return personal_amount(entry, user_id, snapshot.summary.member_count)

    # ── Writes ─────────────────────────────────────────────────────────────

    def _commit(
            self,
            entries: tuple[LedgerEntry, ...],
            members: tuple[MemberInfo, ...] | None = None,
    ) -> bool:
        if self._discarded:
            logger.debug("Ignoring write to discarded cache for trip %s", self.trip_id)
            return False
        members = self._snapshot.members if members is None else members
        active = sum(1 for m in members if m.is_active)
        self._snapshot = LedgerSnapshot(
            entries=entries,
            members=members,
            summary=compute_summary(entries, active),
            version=self._snapshot.version + 1,
        )
        return True

    def replace_all(self, entries, members) -> bool:
        """Full refresh from the server listing."""
        return self._commit(tuple(entries), tuple(members))

    def upsert(self, entry: LedgerEntry, replace_id: str | None = None) -> bool:
        """
        Puts `entry` in place of the record with its id (or `replace_id`, the
        synthetic id it supersedes). Any other copy is dropped, so a confirmed
        create never shows up twice. New entries go first.
        """
        targets = {entry.id} if replace_id is None else {entry.id, replace_id}
        entries: list[LedgerEntry] = []
        placed = False
        for existing in self._snapshot.entries:
            if existing.id in targets:
                if not placed:
                    entries.append(entry)
                    placed = True
                continue
            entries.append(existing)
        if not placed:
            entries.insert(0, entry)
        return self._commit(tuple(entries))

    def replace(self, entry: LedgerEntry) -> bool:
        """Like upsert, but only when the entry is still cached."""
        if self.find(entry.id) is None:
            return False
        return self.upsert(entry)

    def remove(self, entry_id: str) -> bool:
        entries = tuple(e for e in self._snapshot.entries if e.id != entry_id)
        if len(entries) == len(self._snapshot.entries):
            return False
        return self._commit(entries)

    def discard(self) -> None:
        self._discarded = True
