"""
services/summary_service.py — Trip-level ledger aggregates.

Shared by the server (GET /trips/:id/budget) and the client cache, so both
sides compute the Summary with the same arithmetic.

Works on any sequence of objects exposing `amount`, `is_paid`, `currency`
and `category` attributes — BudgetItem ORM rows on the server, LedgerEntry
dataclasses on the client. The aggregates never read splits, so entries
whose splits were not persisted are summed like any other. personal_amount
reads them and falls back to an even share when the user has none.

Pure functions: no DB, no Flask, no hidden state.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence

DEFAULT_CURRENCY = "USD"
CENT = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Summary:
    total_budget: Decimal
    paid_amount: Decimal
    unpaid_amount: Decimal
    per_person_amount: Decimal
    member_count: int
    currency: str

    def to_dict(self) -> dict:
        return {
            "total_budget": self.total_budget,
            "paid_amount": self.paid_amount,
            "unpaid_amount": self.unpaid_amount,
            "per_person_amount": self.per_person_amount,
            "member_count": self.member_count,
            "currency": self.currency,
        }


def compute_summary(
        entries: Sequence,
        member_count: int,
        default_currency: str = DEFAULT_CURRENCY,
) -> Summary:
    """
    Recomputes the Summary from scratch.

    `entries` are expected newest-first; the currency is taken from the
    first one. per_person_amount is rounded half-up to the cent and is 0
    when there are no members.
    """
    total = sum((Decimal(e.amount) for e in entries), ZERO)
    paid = sum((Decimal(e.amount) for e in entries if e.is_paid), ZERO)

    if member_count > 0:
        per_person = (total / Decimal(member_count)).quantize(CENT, rounding=ROUND_HALF_UP)
    else:
        per_person = ZERO

    return Summary(
        total_budget=total.quantize(CENT),
        paid_amount=paid.quantize(CENT),
        unpaid_amount=(total - paid).quantize(CENT),
        per_person_amount=per_person,
        member_count=member_count,
        currency=entries[0].currency if entries else default_currency,
    )


def category_breakdown(entries: Iterable) -> list[dict]:
    """Returns [{"category", "count", "total"}] ordered by category name."""
    counts: dict[str, int] = defaultdict(int)
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for entry in entries:
        counts[entry.category] += 1
        totals[entry.category] += Decimal(entry.amount)

    return [
        {"category": category, "count": counts[category], "total": totals[category].quantize(CENT)}
        for category in sorted(counts)
    ]


def personal_amount(entry, user_id: str, member_count: int) -> Decimal:
    """
    What `user_id` owes for one entry.

    Their split amount when the entry has one for them; otherwise an even
    share of the entry (amount / member_count, rounded half-up to the cent),
    or 0 when the trip has no active members.
    """
    for split in entry.splits or ():
        if split.user_id == user_id:
            return Decimal(split.amount).quantize(CENT)
    if member_count <= 0:
        return ZERO
    return (Decimal(entry.amount) / Decimal(member_count)).quantize(CENT, rounding=ROUND_HALF_UP)
