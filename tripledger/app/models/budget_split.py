"""
models/budget_split.py — Split table definition.

No business logic. No imports from services or routes.

Key design points:
  - `amount` uses Numeric(10, 2) — never Float. Zero is allowed: a custom
    split may leave a member with nothing to pay.
  - `percentage` is only populated for percentage-strategy entries.
  - UNIQUE(budget_item_id, user_id): one split per member per entry.

Conservation (sum of splits == entry amount) is guaranteed by
split_calculator.py, not by a DB constraint.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tripledger.app.extensions import db
from tripledger.app.models.trip import new_id


class BudgetSplit(db.Model):
    __tablename__ = "budget_splits"

    __table_args__ = (
        UniqueConstraint(
            "budget_item_id", "user_id",
            name="uq_budget_splits_item_user",
        ),
        CheckConstraint("amount >= 0", name="ck_budget_splits_amount_not_negative"),
        CheckConstraint(
            "percentage IS NULL OR (percentage >= 0 AND percentage <= 100)",
            name="ck_budget_splits_percentage_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    budget_item_id: Mapped[str] = mapped_column(
        ForeignKey("budget_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    is_paid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    budget_item: Mapped["BudgetItem"] = relationship(  # noqa: F821
        "BudgetItem",
        back_populates="splits",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<BudgetSplit id={self.id} "
            f"budget_item_id={self.budget_item_id} "
            f"user_id={self.user_id} "
            f"amount={self.amount}>"
        )
