"""
models/trip.py — Trip table definition.

No business logic. No imports from services or routes.

A trip is the container every ledger entry belongs to. For the ledger it is
immutable beyond its existence; title and capacity are read, never edited here.
Deleting a trip cascades to its budget items at the database level.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tripledger.app.extensions import db


def new_id() -> str:
    """Primary keys are UUID strings, matching the identity provider's user ids."""
    return str(uuid.uuid4())


class Trip(db.Model):
    __tablename__ = "trips"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(title)) > 0",
            name="ck_trips_title_nonempty",
        ),
        CheckConstraint(
            "max_members IS NULL OR (max_members > 0 AND max_members <= 100)",
            name="ck_trips_max_members_range",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    title: Mapped[str] = mapped_column(String(200), nullable=False)

    # NULL = no capacity limit.
    max_members: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Identity-provider user id. No FK: users live outside this database.
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    members: Mapped[list["TripMember"]] = relationship(  # noqa: F821
        "TripMember",
        back_populates="trip",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    budget_items: Mapped[list["BudgetItem"]] = relationship(  # noqa: F821
        "BudgetItem",
        back_populates="trip",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Trip id={self.id} title={self.title!r}>"
