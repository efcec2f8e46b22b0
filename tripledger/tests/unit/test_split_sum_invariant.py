"""
tests/unit/test_split_sum_invariant.py — sum(splits) == amount for computed splits.

Equal and percentage splits are computed by the server, so their total must
match the entry amount EXACTLY (tolerance zero), for any amount and any
roster size. Custom splits are checked against the amount with a one-cent
tolerance and stored as supplied; that path lives in test_split_calculator.py.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from tripledger.app.models.budget_item import SplitType
from tripledger.app.services.split_calculator import compute_splits

AMOUNTS = ["0.01", "0.02", "1.00", "10.00", "33.33", "99.99", "100.00", "1234.57", "999999.99"]


def _members(n: int) -> list[str]:
    return [f"user-{i:02d}" for i in range(n)]


def _total(splits: list[dict]) -> Decimal:
    return sum((s["amount"] for s in splits), Decimal("0"))


@pytest.mark.parametrize("amount", AMOUNTS)
@pytest.mark.parametrize("member_count", [1, 2, 3, 6, 7, 12])
def test_equal_split_total_is_exact(amount, member_count):
    members = _members(member_count)
    splits = compute_splits(Decimal(amount), SplitType.EQUAL, members, payer_id=members[-1])

    assert _total(splits) == Decimal(amount)
    assert len(splits) == member_count
    assert all(s["amount"] >= Decimal("0") for s in splits)


@pytest.mark.parametrize("amount", AMOUNTS)
def test_percentage_split_total_is_exact(amount):
    members = _members(3)
    shares = {
        members[0]: Decimal("33.33"),
        members[1]: Decimal("33.33"),
        members[2]: Decimal("33.34"),
    }
    splits = compute_splits(Decimal(amount), SplitType.PERCENTAGE, members, shares, payer_id=members[0])

    assert _total(splits) == Decimal(amount)


@pytest.mark.parametrize("amount", ["0.07", "10.00", "250.55"])
def test_uneven_percentages_total_is_exact(amount):
    members = _members(4)
    shares = dict(zip(members, [Decimal("12.5"), Decimal("37.5"), Decimal("41"), Decimal("9")]))
    splits = compute_splits(Decimal(amount), SplitType.PERCENTAGE, members, shares)

    assert _total(splits) == Decimal(amount)


def test_payer_share_exceeds_others_by_at_most_one_cent():
    members = _members(3)
    splits = compute_splits(Decimal("100.00"), SplitType.EQUAL, members, payer_id=members[1])
    amounts = {s["user_id"]: s["amount"] for s in splits}

    assert amounts[members[1]] == Decimal("33.34")
    assert amounts[members[0]] == amounts[members[2]] == Decimal("33.33")
