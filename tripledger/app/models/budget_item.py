"""
models/budget_item.py — Ledger entry ("budget item") table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(10, 2) — never Float.
  - `currency` is a 3-letter code, stored upper-case.
  - `paid_by` and `created_by` are identity-provider user ids (no FK).
    `paid_by` is nullable; the service defaults it to the creator.
  - `updated_at` advances on every mutation (set by ledger_service).
  - Splits are owned by their entry: ON DELETE CASCADE at the DB level, but
    ledger_service deletes them explicitly, before the entry, on every delete.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    false,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tripledger.app.extensions import db
from tripledger.app.models.trip import new_id


# ── Enum Definitions ───────────────────────────────────────────────────────
# Defined here so they can be imported by schemas, services and the split
# calculator without repeating string literals.

class SplitType(str, enum.Enum):
    EQUAL      = "equal"
    CUSTOM     = "custom"
    PERCENTAGE = "percentage"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'equal'), not names ('EQUAL')."""
    return [member.value for member in enum_cls]


# ── Model ──────────────────────────────────────────────────────────────────

class BudgetItem(db.Model):
    __tablename__ = "budget_items"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_budget_items_amount_positive"),
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_budget_items_title_nonempty",
        ),
        CheckConstraint(
            "LENGTH(currency) = 3",
            name="ck_budget_items_currency_format",
        ),
        CheckConstraint(
            "LENGTH(TRIM(category)) > 0",
            name="ck_budget_items_category_nonempty",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    trip_id: Mapped[str] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    title: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
        server_default="USD",
    )

    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    paid_by: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    split_type: Mapped[SplitType] = mapped_column(
        Enum(
            SplitType,
            name="split_type",
            native_enum=False,
            length=20,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=SplitType.EQUAL,
        server_default=SplitType.EQUAL.value,
    )

    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_by: Mapped[str] = mapped_column(String(36), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    trip: Mapped["Trip"] = relationship(  # noqa: F821
        "Trip",
        back_populates="budget_items",
    )

    splits: Mapped[list["BudgetSplit"]] = relationship(  # noqa: F821
        "BudgetSplit",
        back_populates="budget_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BudgetSplit.user_id",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<BudgetItem id={self.id} "
            f"trip_id={self.trip_id} "
            f"amount={self.amount} {self.currency} "
            f"paid={self.is_paid}>"
        )
