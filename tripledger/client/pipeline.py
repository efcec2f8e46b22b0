"""
client/pipeline.py — Optimistic ledger mutations.

Each mutation runs the same state machine:

    PENDING ──confirm──▶ CONFIRMED
        └────rollback──▶ ROLLED_BACK

  PENDING      the local result is written to the cache before the network
               call: a synthetic `temp-<uuid>` entry for creates, the merged
               record with a fresh updated_at for updates, removal for deletes.
  CONFIRMED    the server's record replaces the optimistic one (the server
               wins), and a synthetic duplicate is dropped.
  ROLLED_BACK  the whole ledger is reloaded from the server and the error is
               re-raised to the caller.

Mutations are not serialized against each other; each one only touches the
cache through whole-snapshot writes. After the cache is discarded every
resolution is a no-op.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal

from tripledger.app.errors import AppError
from tripledger.app.models.budget_item import SplitType
from tripledger.app.services.split_calculator import compute_splits
from tripledger.client.cache import LedgerCache
from tripledger.client.models import SYNTHETIC_ID_PREFIX, EntrySplit, LedgerEntry

logger = logging.getLogger(__name__)

# Most recent mutations kept in `history`. Pending ones are also tracked
# until they resolve, however many newer ones have been started.
HISTORY_LIMIT = 100

_EDITABLE_FIELDS = (
    "title", "description", "currency", "category",
    "paid_by", "split_type", "is_paid",
)


class MutationKind(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class MutationState(str, enum.Enum):
    PENDING     = "pending"
    CONFIRMED   = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass
class Mutation:
    kind: MutationKind
    entry_id: str
    state: MutationState = MutationState.PENDING
    result: LedgerEntry | None = None
    error: AppError | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_synthetic_id() -> str:
    return f"{SYNTHETIC_ID_PREFIX}{uuid.uuid4()}"


class MutationPipeline:

    def __init__(self, trip_id: str, api, cache: LedgerCache, user_id: str) -> None:
        self.trip_id = trip_id
        self.api = api
        self.cache = cache
        self.user_id = user_id
        self.history: deque[Mutation] = deque(maxlen=HISTORY_LIMIT)
        self._in_flight: dict[str, Mutation] = {}

    # ── State transitions ──────────────────────────────────────────────────

    def _begin(self, kind: MutationKind, entry_id: str) -> Mutation:
        mutation = Mutation(kind=kind, entry_id=entry_id)
        self.history.append(mutation)
        self._in_flight[mutation.id] = mutation
        return mutation

    def _confirm(self, mutation: Mutation, result: LedgerEntry | None = None) -> None:
        mutation.state = MutationState.CONFIRMED
        mutation.result = result
        self._in_flight.pop(mutation.id, None)

    async def _rollback(self, mutation: Mutation, error: AppError) -> None:
        mutation.state = MutationState.ROLLED_BACK
        mutation.error = error
        self._in_flight.pop(mutation.id, None)
        logger.info(
            "Rolling back %s of %s in trip %s: %s",
            mutation.kind.value, mutation.entry_id, self.trip_id, error.code,
        )
        if self.cache.discarded:
            return
        try:
            await self.refresh()
        except AppError as refresh_error:
            # The original error is what the caller needs to see.
            logger.warning(
                "Refresh after rollback failed for trip %s: %s",
                self.trip_id, refresh_error.code,
            )

    # ── Optimistic records ─────────────────────────────────────────────────

    def _optimistic_splits(self, amount: Decimal, split_type: str, payload: dict, payer: str):
        member_ids = sorted(m.user_id for m in self.cache.members if m.is_active)
        shares = None
        if split_type != SplitType.EQUAL.value:
            key = "amount" if split_type == SplitType.CUSTOM.value else "percentage"
            shares = {
                s["user_id"]: Decimal(str(s[key]))
                for s in payload.get("splits") or ()
                if s.get(key) is not None
            }
        try:
            computed = compute_splits(amount, split_type, member_ids, shares, payer_id=payer)
        except (AppError, ValueError, ArithmeticError):
            # The server will report the problem; show the entry without splits.
            return ()
        return tuple(
            EntrySplit(user_id=s["user_id"], amount=s["amount"], percentage=s["percentage"])
            for s in computed
        )

    def _synthesize(self, entry_id: str, payload: dict) -> LedgerEntry:
        now = _now_iso()
        amount = Decimal(str(payload["amount"]))
        split_type = SplitType(payload.get("split_type") or SplitType.EQUAL).value
        payer = payload.get("paid_by") or self.user_id
        return LedgerEntry(
            id=entry_id,
            trip_id=self.trip_id,
            title=str(payload["title"]).strip(),
            description=payload.get("description"),
            amount=amount,
            currency=str(payload.get("currency") or "USD").upper(),
            category=str(payload["category"]).strip(),
            paid_by=payer,
            split_type=split_type,
            is_paid=bool(payload.get("is_paid", False)),
            created_by=self.user_id,
            created_at=now,
            updated_at=now,
            splits=self._optimistic_splits(amount, split_type, payload, payer),
        )

    @staticmethod
    def _merge(entry: LedgerEntry, patch: dict) -> LedgerEntry:
        changes = {k: patch[k] for k in _EDITABLE_FIELDS if k in patch}
        if "split_type" in changes:
            changes["split_type"] = SplitType(changes["split_type"]).value
        if "currency" in changes:
            changes["currency"] = str(changes["currency"]).upper()
        if "amount" in patch:
            changes["amount"] = Decimal(str(patch["amount"]))
        if "paid_by" in changes and changes["paid_by"] is None:
            changes["paid_by"] = entry.created_by
        return replace(entry, updated_at=_now_iso(), **changes)

    # ── Public operations ──────────────────────────────────────────────────

    async def refresh(self) -> bool:
        """Reloads entries and roster from the server; the cache recomputes the summary."""
        listing = await self.api.list_entries(self.trip_id)
        return self.cache.replace_all(listing.entries, listing.members)

    async def create_entry(self, payload: dict) -> LedgerEntry:
        synthetic_id = new_synthetic_id()
        mutation = self._begin(MutationKind.CREATE, synthetic_id)
        try:
            optimistic = self._synthesize(synthetic_id, payload)
        except (KeyError, ValueError, ArithmeticError):
            # Malformed payload: nothing to show, the server's 400 decides.
            optimistic = None
        if optimistic is not None:
            self.cache.upsert(optimistic)

        try:
            entry, _warnings = await self.api.create_entry(self.trip_id, payload)
        except AppError as exc:
            self.cache.remove(synthetic_id)
            await self._rollback(mutation, exc)
            raise

        self.cache.upsert(entry, replace_id=synthetic_id)
        self._confirm(mutation, entry)
        return entry

    async def update_entry(self, entry_id: str, patch: dict) -> LedgerEntry:
        mutation = self._begin(MutationKind.UPDATE, entry_id)
        current = self.cache.find(entry_id)
        if current is not None:
            try:
                self.cache.upsert(self._merge(current, patch))
            except (ValueError, ArithmeticError):
                logger.debug("Patch for %s not applied locally", entry_id)

        try:
            entry = await self.api.update_entry(self.trip_id, entry_id, patch)
        except AppError as exc:
            await self._rollback(mutation, exc)
            raise

        # A concurrent delete may have removed it locally; do not resurrect it.
        self.cache.replace(entry)
        self._confirm(mutation, entry)
        return entry

    async def toggle_paid(self, entry_id: str, is_paid: bool) -> LedgerEntry:
        return await self.update_entry(entry_id, {"is_paid": bool(is_paid)})

    async def delete_entry(self, entry_id: str) -> None:
        mutation = self._begin(MutationKind.DELETE, entry_id)
        self.cache.remove(entry_id)

        try:
            await self.api.delete_entry(self.trip_id, entry_id)
        except AppError as exc:
            await self._rollback(mutation, exc)
            raise

        # A refresh that landed mid-flight may have put it back.
        self.cache.remove(entry_id)
        self._confirm(mutation)

    @property
    def pending(self) -> list[Mutation]:
        return list(self._in_flight.values())
