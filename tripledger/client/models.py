"""
client/models.py — Immutable client-side records.

Built from the JSON the API returns. Amounts arrive as strings and are
turned back into Decimal here; nothing on the client does money arithmetic
with floats.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

SYNTHETIC_ID_PREFIX = "temp-"


def _decimal(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _optional_decimal(value) -> Decimal | None:
    return None if value is None else _decimal(value)


@dataclass(frozen=True)
class EntrySplit:
    user_id: str
    amount: Decimal
    percentage: Decimal | None = None
    is_paid: bool = False
    id: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "EntrySplit":
        return cls(
            id=data.get("id"),
            user_id=data["user_id"],
            amount=_decimal(data["amount"]),
            percentage=_optional_decimal(data.get("percentage")),
            is_paid=bool(data.get("is_paid", False)),
        )


@dataclass(frozen=True)
class LedgerEntry:
    """One budget item as the client sees it."""

    id: str
    trip_id: str
    title: str
    amount: Decimal
    category: str
    created_by: str
    currency: str = "USD"
    description: str | None = None
    paid_by: str | None = None
    split_type: str = "equal"
    is_paid: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    splits: tuple[EntrySplit, ...] = field(default_factory=tuple)

    @property
    def is_synthetic(self) -> bool:
        """True while the entry only exists locally (create not yet confirmed)."""
        return self.id.startswith(SYNTHETIC_ID_PREFIX)

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerEntry":
        return cls(
            id=data["id"],
            trip_id=data["trip_id"],
            title=data["title"],
            description=data.get("description"),
            amount=_decimal(data["amount"]),
            currency=data.get("currency") or "USD",
            category=data["category"],
            paid_by=data.get("paid_by"),
            split_type=data.get("split_type") or "equal",
            is_paid=bool(data.get("is_paid", False)),
            created_by=data["created_by"],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            splits=tuple(EntrySplit.from_dict(s) for s in data.get("splits") or ()),
        )


@dataclass(frozen=True)
class MemberInfo:
    user_id: str
    role: str = "guest"
    is_active: bool = True
    joined_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "MemberInfo":
        return cls(
            user_id=data["user_id"],
            role=data.get("role") or "guest",
            is_active=bool(data.get("is_active", True)),
            joined_at=data.get("joined_at"),
        )


@dataclass(frozen=True)
class LedgerListing:
    """
    Decoded body of GET /trips/:id/budget. The server's summary is not kept:
    the cache recomputes it from these entries and members.
    """

    entries: tuple[LedgerEntry, ...]
    members: tuple[MemberInfo, ...]

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerListing":
        return cls(
            entries=tuple(LedgerEntry.from_dict(e) for e in data.get("budget_items") or ()),
            members=tuple(MemberInfo.from_dict(m) for m in data.get("trip_members") or ()),
        )
