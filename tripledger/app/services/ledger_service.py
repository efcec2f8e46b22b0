"""
services/ledger_service.py — Ledger entry business logic.

Rules enforced here:
  TRIP_NOT_FOUND (404)          — caller must be an ACTIVE member of the trip
  ENTRY_NOT_FOUND (404)         — entry must exist in this trip
  FORBIDDEN (403)               — edit/delete: entry creator or trip admin only
  PAYER_NOT_MEMBER (422)        — paid_by must be an active member
  split rules                   — delegated to split_calculator.compute_splits

Write ordering:
  - Create: splits are computed against the active roster BEFORE anything is
    written, so bad input never leaves a half-written entry. The entry is
    flushed first; its splits are written inside a SAVEPOINT. If that
    savepoint fails the entry is kept without splits and a
    SPLITS_NOT_PERSISTED warning is returned to the caller.
  - Update: old splits are deleted (and flushed) before new ones are written.
  - Delete: splits first, then the entry. If the splits cannot be removed
    the entry is left alone and UPSTREAM_FAILURE (500) is raised.

Every successful mutation queues change events with realtime.record_change;
they are published on the trip's channel once the route commits.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain strings and dicts; returns ORM objects/dicts or raises AppError.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tripledger.app.errors import AppError, ErrorCode, WarningCode
from tripledger.app.models.budget_item import BudgetItem, SplitType
from tripledger.app.models.budget_split import BudgetSplit
from tripledger.app.realtime import record_change
from tripledger.app.services import membership_service, summary_service
from tripledger.app.services.split_calculator import compute_splits

logger = logging.getLogger(__name__)


# ── Serialization ──────────────────────────────────────────────────────────
# Shared by the routes (response bodies) and the change events (row payloads).

def serialize_split(split: BudgetSplit) -> dict:
    return {
        "id": split.id,
        "budget_item_id": split.budget_item_id,
        "user_id": split.user_id,
        "amount": split.amount,
        "percentage": split.percentage,
        "is_paid": split.is_paid,
    }


def serialize_item(item: BudgetItem, include_splits: bool = True) -> dict:
    """Converts a BudgetItem to a plain dict. Decimals are left for the JSON provider."""
    data = {
        "id": item.id,
        "trip_id": item.trip_id,
        "title": item.title,
        "description": item.description,
        "amount": item.amount,
        "currency": item.currency,
        "category": item.category,
        "paid_by": item.paid_by,
        "split_type": item.split_type.value,
        "is_paid": item.is_paid,
        "created_by": item.created_by,
        "created_at": item.created_at.isoformat() if item.created_at else None,
        "updated_at": item.updated_at.isoformat() if item.updated_at else None,
    }
    if include_splits:
        data["splits"] = [serialize_split(s) for s in item.splits]
    return data


# ── Private helpers ────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _touch(item: BudgetItem) -> None:
    """Advances updated_at, strictly, even when two edits land in the same tick."""
    now = _utcnow()
    previous = item.updated_at
    if previous is not None:
        if previous.tzinfo is None:
            # SQLite hands back naive datetimes; they were written as UTC.
            previous = previous.replace(tzinfo=timezone.utc)
        if now <= previous:
            now = previous + timedelta(microseconds=1)
    item.updated_at = now


def _get_item_or_404(trip_id: str, item_id: str, session: Session) -> BudgetItem:
    """Returns the entry or raises ENTRY_NOT_FOUND (404). Entries of other trips are invisible."""
    item = session.execute(
        select(BudgetItem).where(
            BudgetItem.id == item_id,
            BudgetItem.trip_id == trip_id,
        )
    ).scalar_one_or_none()
    if item is None:
        raise AppError(
            ErrorCode.ENTRY_NOT_FOUND,
            f"Budget item {item_id} does not exist in this trip.",
            404,
        )
    return item


def _require_creator_or_admin(item: BudgetItem, membership, action: str) -> None:
    if not (item.created_by == membership.user_id or membership.is_admin):
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"Only the entry's creator or a trip admin may {action} this budget item.",
            403,
        )


def _validate_payer_is_member(paid_by: str, member_ids: list[str]) -> None:
    if paid_by not in member_ids:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {paid_by} is not an active member of this trip.",
            422,
            field="paid_by",
        )


def _shares_from_payload(split_type: SplitType, splits: list[dict] | None) -> dict[str, Decimal] | None:
    """
    Turns the request's splits array into the {user_id: value} mapping the
    calculator expects. Returns None for equal entries.
    """
    if split_type == SplitType.EQUAL:
        if splits is not None:
            raise AppError(
                ErrorCode.SPLITS_SENT_FOR_EQUAL_MODE,
                "Do not send a splits array when split_type is 'equal'.",
                400,
                field="splits",
            )
        return None

    if splits is None:
        raise AppError(
            ErrorCode.SPLITS_REQUIRED,
            f"splits must be provided when split_type is '{split_type.value}'.",
            400,
            field="splits",
        )

    key = "amount" if split_type == SplitType.CUSTOM else "percentage"
    shares: dict[str, Decimal] = {}
    for split in splits:
        value = split.get(key)
        if value is None:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                f"Every split needs a {key} when split_type is '{split_type.value}'.",
                400,
                field="splits",
            )
        shares[split["user_id"]] = value
    return shares


def _create_split_rows(item: BudgetItem, splits_data: list[dict], session: Session) -> list[BudgetSplit]:
    rows = [
        BudgetSplit(
            budget_item_id=item.id,
            user_id=s["user_id"],
            amount=s["amount"],
            percentage=s["percentage"],
        )
        for s in splits_data
    ]
    session.add_all(rows)
    session.flush()
    return rows


def _delete_splits(item: BudgetItem, session: Session) -> list[dict]:
    """Deletes every split of the entry and flushes. Returns the deleted rows."""
    removed = [serialize_split(s) for s in item.splits]
    for split in list(item.splits):
        session.delete(split)
    session.flush()
    session.expire(item, ["splits"])
    return removed


def _record_split_changes(session: Session, trip_id: str, op: str, rows: list[dict]) -> None:
    for row in rows:
        record_change(session, trip_id, "budget_splits", op, row)


def _list_items(trip_id: str, session: Session) -> list[BudgetItem]:
    stmt = (
        select(BudgetItem)
        .where(BudgetItem.trip_id == trip_id)
        .order_by(BudgetItem.created_at.desc(), BudgetItem.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


# ── Public service functions ───────────────────────────────────────────────

def list_entries(trip_id: str, caller_id: str, session: Session) -> dict:
    """
    Returns {budget_items, summary, trip_members} for the trip.

    budget_items are newest-first, each with its splits. The summary is
    computed over every entry; per_person_amount uses the active roster.
    """
    membership_service.require_active_member(trip_id, caller_id, session)

    items = _list_items(trip_id, session)
    members = membership_service.list_active_members(trip_id, session)
    summary = summary_service.compute_summary(items, len(members))

    return {
        "budget_items": [serialize_item(i) for i in items],
        "summary": summary.to_dict(),
        "trip_members": [membership_service.serialize_member(m) for m in members],
    }


def get_entry(trip_id: str, item_id: str, caller_id: str, session: Session) -> BudgetItem:
    membership_service.require_active_member(trip_id, caller_id, session)
    return _get_item_or_404(trip_id, item_id, session)


def category_breakdown(trip_id: str, caller_id: str, session: Session) -> list[dict]:
    """Per-category count and total for the trip."""
    membership_service.require_active_member(trip_id, caller_id, session)
    return summary_service.category_breakdown(_list_items(trip_id, session))


def create_entry(
        trip_id: str,
        caller_id: str,
        data: dict,
        session: Session,
) -> tuple[BudgetItem, list[dict]]:
    """
    Records a new ledger entry and its splits.

    Args:
        trip_id:   The trip the entry belongs to.
        caller_id: The authenticated user creating the entry (from flask.g).
        data:      Validated dict from CreateBudgetItemSchema.

    Returns:
        (BudgetItem, warnings). warnings holds SPLITS_NOT_PERSISTED when the
        entry was stored but its splits were not.
    """
    membership_service.require_active_member(trip_id, caller_id, session)

    member_ids = membership_service.active_member_ids(trip_id, session)
    paid_by = data.get("paid_by") or caller_id
    _validate_payer_is_member(paid_by, member_ids)

    split_type = SplitType(data.get("split_type", SplitType.EQUAL))
    amount: Decimal = data["amount"]
    shares = _shares_from_payload(split_type, data.get("splits"))

    # Splits are fully computed before any write.
    splits_data = compute_splits(amount, split_type, member_ids, shares, payer_id=paid_by)

    now = _utcnow()
    item = BudgetItem(
        trip_id=trip_id,
        title=data["title"],
        description=data.get("description"),
        amount=amount,
        currency=data.get("currency", "USD"),
        category=data["category"],
        paid_by=paid_by,
        split_type=split_type,
        is_paid=data.get("is_paid", False),
        created_by=caller_id,
        created_at=now,
        updated_at=now,
    )
    session.add(item)
    session.flush()  # populate item.id before creating splits

    warnings: list[dict] = []
    split_rows: list[BudgetSplit] = []
    try:
        with session.begin_nested():
            split_rows = _create_split_rows(item, splits_data, session)
    except SQLAlchemyError as exc:
        logger.warning(
            "Budget item %s in trip %s stored without splits: %s",
            item.id, trip_id, exc,
        )
        split_rows = []
        warnings.append({
            "code": WarningCode.SPLITS_NOT_PERSISTED,
            "message": (
                "The budget item was saved, but its splits could not be stored. "
                "Edit the item to regenerate them."
            ),
        })

    session.refresh(item)

    record_change(session, trip_id, "budget_items", "insert", serialize_item(item, include_splits=False))
    _record_split_changes(session, trip_id, "insert", [serialize_split(s) for s in split_rows])

    logger.info(
        "Created budget item %s in trip %s (%s %s, %s split)",
        item.id, trip_id, item.amount, item.currency, item.split_type.value,
    )
    return item, warnings


def update_entry(
        trip_id: str,
        item_id: str,
        caller_id: str,
        data: dict,
        session: Session,
) -> BudgetItem:
    """
    Partially updates an entry. Only keys present in `data` are applied.

    Splits are regenerated when amount, split_type or splits is supplied:
      - equal:              recomputed over the current active roster.
      - custom/percentage:  a fresh splits array is required (SPLITS_REQUIRED).
    updated_at advances on every successful call.

    Raises:
        AppError(TRIP_NOT_FOUND, 404)  — caller is not an active member
        AppError(ENTRY_NOT_FOUND, 404) — entry not in this trip
        AppError(FORBIDDEN, 403)       — caller is neither creator nor admin
    """
    membership = membership_service.require_active_member(trip_id, caller_id, session)
    item = _get_item_or_404(trip_id, item_id, session)
    _require_creator_or_admin(item, membership, "edit")

    for key in ("title", "description", "currency", "category", "is_paid"):
        if key in data:
            setattr(item, key, data[key])

    member_ids: list[str] | None = None
    if "paid_by" in data:
        if data["paid_by"] is None:
            item.paid_by = item.created_by
        else:
            member_ids = membership_service.active_member_ids(trip_id, session)
            _validate_payer_is_member(data["paid_by"], member_ids)
            item.paid_by = data["paid_by"]

    regenerate = any(key in data for key in ("amount", "split_type", "splits"))
    removed: list[dict] = []
    added: list[BudgetSplit] = []
    if regenerate:
        split_type = SplitType(data.get("split_type", item.split_type))
        amount: Decimal = data.get("amount", item.amount)
        shares = _shares_from_payload(split_type, data.get("splits"))
        if member_ids is None:
            member_ids = membership_service.active_member_ids(trip_id, session)
        splits_data = compute_splits(amount, split_type, member_ids, shares, payer_id=item.paid_by)

        item.amount = amount
        item.split_type = split_type
        removed = _delete_splits(item, session)
        added = _create_split_rows(item, splits_data, session)

    _touch(item)
    session.flush()
    session.refresh(item)

    record_change(session, trip_id, "budget_items", "update", serialize_item(item, include_splits=False))
    _record_split_changes(session, trip_id, "delete", removed)
    _record_split_changes(session, trip_id, "insert", [serialize_split(s) for s in added])
    return item


def toggle_entry_paid(
        trip_id: str,
        item_id: str,
        caller_id: str,
        is_paid: bool,
        session: Session,
) -> BudgetItem:
    """Sets is_paid. Calling it twice with the same value leaves the same state."""
    return update_entry(trip_id, item_id, caller_id, {"is_paid": bool(is_paid)}, session)


def delete_entry(
        trip_id: str,
        item_id: str,
        caller_id: str,
        session: Session,
) -> None:
    """
    Hard-deletes an entry: splits first, then the entry itself.

    Raises:
        AppError(TRIP_NOT_FOUND, 404)   — caller is not an active member
        AppError(ENTRY_NOT_FOUND, 404)  — entry not in this trip
        AppError(FORBIDDEN, 403)        — caller is neither creator nor admin
        AppError(UPSTREAM_FAILURE, 500) — splits could not be deleted; entry kept
    """
    membership = membership_service.require_active_member(trip_id, caller_id, session)
    item = _get_item_or_404(trip_id, item_id, session)
    _require_creator_or_admin(item, membership, "delete")

    try:
        removed = _delete_splits(item, session)
    except SQLAlchemyError as exc:
        logger.error("Failed to delete splits of budget item %s: %s", item_id, exc)
        raise AppError(
            ErrorCode.UPSTREAM_FAILURE,
            "Failed to delete budget splits. The budget item was not deleted.",
            500,
        ) from exc

    row = serialize_item(item, include_splits=False)
    session.delete(item)
    session.flush()

    _record_split_changes(session, trip_id, "delete", removed)
    record_change(session, trip_id, "budget_items", "delete", row)
    logger.info("Deleted budget item %s from trip %s", item_id, trip_id)
