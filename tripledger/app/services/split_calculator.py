"""
services/split_calculator.py — Per-member shares of a ledger entry.

This file is the SINGLE SOURCE OF TRUTH for how an entry's amount is divided.
ledger_service.py calls compute_splits() on create and whenever amount or
strategy change; nothing else divides money.

Residue order:
  Rounding always goes DOWN to the cent. The cents left over are handed out
  one at a time, payer first (when the payer is among the members), then the
  remaining members by ascending user id. With N members the residue is at
  most N-1 cents, so every equal share lies within one cent of amount / N and
  sum(shares) == amount exactly.

Strategies:
  equal       — amount / N per member.
  custom      — caller supplies {user_id: amount}; the total must match the
                entry amount within SPLIT_TOLERANCE. Stored as supplied.
  percentage  — caller supplies {user_id: percent}; percentages must total
                100 within PERCENTAGE_TOLERANCE, each with at most 2
                decimal places. Shares are rounded down and the residue is
                distributed in residue order. When the total is over 100
                the excess cents come off the largest share first.

Pure functions: no DB, no Flask, inputs never mutated.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal
from typing import Mapping, Sequence

from tripledger.app.errors import AppError, ErrorCode
from tripledger.app.models.budget_item import SplitType

CENT = Decimal("0.01")
SPLIT_TOLERANCE = Decimal("0.01")
PERCENTAGE_TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")


def residue_order(member_ids: Sequence[str], payer_id: str | None = None) -> list[str]:
    """Payer first (if a member), then the rest by ascending id."""
    ordered = sorted(member_ids)
    if payer_id is not None and payer_id in ordered:
        ordered.remove(payer_id)
        ordered.insert(0, payer_id)
    return ordered


def _distribute_residue(
        shares: dict[str, Decimal],
        residue: Decimal,
        order: list[str],
) -> None:
    """Adds (or removes) the residue one cent at a time, cycling through `order`."""
    cents = int((residue / CENT).to_integral_value())
    step = CENT if cents > 0 else -CENT
    for index in range(abs(cents)):
        shares[order[index % len(order)]] += step


def _reclaim_from_largest(shares: dict[str, Decimal], excess: Decimal) -> None:
    """
    Removes `excess` one cent at a time, always from the currently largest
    share (ties by ascending id). The shares sum to at least `excess`, so
    none of them drops below zero.
    """
    for _ in range(int((excess / CENT).to_integral_value())):
        uid = min(shares, key=lambda u: (-shares[u], u))
        shares[uid] -= CENT


def _check_members(member_ids: Sequence[str]) -> None:
    if not member_ids:
        raise AppError(
            ErrorCode.NO_ACTIVE_MEMBERS,
            "The trip has no active members to split this entry between.",
            422,
        )


def _check_share_users(shares: Mapping[str, Decimal], member_ids: Sequence[str]) -> None:
    """Raises SPLIT_USER_NOT_MEMBER for the first share owner not on the roster."""
    member_set = set(member_ids)
    for user_id in shares:
        if user_id not in member_set:
            raise AppError(
                ErrorCode.SPLIT_USER_NOT_MEMBER,
                f"User {user_id} is not an active member of this trip.",
                422,
                field="splits",
            )


def _equal_shares(
        amount: Decimal,
        member_ids: Sequence[str],
        payer_id: str | None,
) -> list[dict]:
    n = len(member_ids)
    base = (amount / Decimal(n)).quantize(CENT, rounding=ROUND_DOWN)
    shares = {uid: base for uid in member_ids}
    _distribute_residue(shares, amount - base * n, residue_order(member_ids, payer_id))
    return [
        {"user_id": uid, "amount": shares[uid], "percentage": None}
        for uid in member_ids
    ]


def _custom_shares(
        amount: Decimal,
        member_ids: Sequence[str],
        shares: Mapping[str, Decimal],
) -> list[dict]:
    _check_share_users(shares, member_ids)
    for user_id, value in shares.items():
        if value < 0 or value.as_tuple().exponent < -2:
            raise AppError(
                ErrorCode.INVALID_AMOUNT_PRECISION,
                f"Share for user {user_id} must be a non-negative amount with at most 2 decimal places.",
                400,
                field="splits",
            )

    total = sum(shares.values(), Decimal("0"))
    if abs(total - amount) > SPLIT_TOLERANCE:
        raise AppError(
            ErrorCode.SPLIT_SUM_MISMATCH,
            f"Split amounts ({total}) do not equal entry amount ({amount}).",
            422,
            field="splits",
        )

    return [
        {
            "user_id": uid,
            "amount": Decimal(shares.get(uid, Decimal("0"))).quantize(CENT),
            "percentage": None,
        }
        for uid in member_ids
    ]


def _percentage_shares(
        amount: Decimal,
        member_ids: Sequence[str],
        percentages: Mapping[str, Decimal],
        payer_id: str | None,
) -> list[dict]:
    _check_share_users(percentages, member_ids)
    for user_id, pct in percentages.items():
        if pct < 0 or pct > HUNDRED:
            raise AppError(
                ErrorCode.SPLIT_PERCENTAGE_MISMATCH,
                f"Percentage for user {user_id} must be between 0 and 100.",
                422,
                field="splits",
            )
        if pct.as_tuple().exponent < -2:
            raise AppError(
                ErrorCode.INVALID_AMOUNT_PRECISION,
                f"Percentage for user {user_id} must have at most 2 decimal places.",
                400,
                field="splits",
            )

    total_pct = sum(percentages.values(), Decimal("0"))
    if abs(total_pct - HUNDRED) > PERCENTAGE_TOLERANCE:
        raise AppError(
            ErrorCode.SPLIT_PERCENTAGE_MISMATCH,
            f"Percentages total {total_pct}, expected 100.",
            422,
            field="splits",
        )

    shares = {
        uid: (amount * percentages.get(uid, Decimal("0")) / HUNDRED).quantize(
            CENT, rounding=ROUND_DOWN
        )
        for uid in member_ids
    }
    residue = amount - sum(shares.values(), Decimal("0"))
    # Only members with a non-zero percentage absorb residue cents.
    holders = [uid for uid in member_ids if percentages.get(uid, Decimal("0")) > 0]
    if residue > 0:
        _distribute_residue(shares, residue, residue_order(holders, payer_id))
    elif residue < 0:
        # Percentages slightly over 100.
        _reclaim_from_largest(shares, -residue)

    return [
        {
            "user_id": uid,
            "amount": shares[uid],
            "percentage": Decimal(percentages.get(uid, Decimal("0"))).quantize(CENT),
        }
        for uid in member_ids
    ]


def compute_splits(
        amount: Decimal,
        split_type: SplitType,
        member_ids: Sequence[str],
        shares: Mapping[str, Decimal] | None = None,
        payer_id: str | None = None,
) -> list[dict]:
    """
    Returns one {"user_id", "amount", "percentage"} dict per member id, in the
    order the member ids were supplied.

    Args:
        amount:     Entry amount, Decimal with at most 2 decimal places.
        split_type: Strategy to apply.
        member_ids: Active roster at the time of the call.
        shares:     {user_id: amount} for custom, {user_id: percent} for
                    percentage. Ignored for equal.
        payer_id:   Receives residue cents first.

    Raises:
        AppError(NO_ACTIVE_MEMBERS, 422)         — empty roster
        AppError(SPLITS_REQUIRED, 400)           — custom/percentage without shares
        AppError(SPLIT_USER_NOT_MEMBER, 422)     — share owner not on the roster
        AppError(SPLIT_SUM_MISMATCH, 422)        — custom total off by more than 1 cent
        AppError(SPLIT_PERCENTAGE_MISMATCH, 422) — percentages do not total 100
    """
    _check_members(member_ids)
    split_type = SplitType(split_type)

    if split_type == SplitType.EQUAL:
        result = _equal_shares(amount, member_ids, payer_id)
    else:
        if not shares:
            raise AppError(
                ErrorCode.SPLITS_REQUIRED,
                f"splits must be provided when split_type is '{split_type.value}'.",
                400,
                field="splits",
            )
        if split_type == SplitType.CUSTOM:
            return _custom_shares(amount, member_ids, shares)
        result = _percentage_shares(amount, member_ids, shares, payer_id)

    # Sanity check — a failure here is a programming error, not bad input.
    computed_sum = sum((s["amount"] for s in result), Decimal("0"))
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Split computation produced sum {computed_sum} for amount {amount}.",
            500,
        )
    return result
