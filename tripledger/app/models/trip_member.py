"""
models/trip_member.py — Trip membership table definition.

No business logic. No imports from services or routes.

A membership is never hard-deleted while history references it: leaving a
trip clears `is_active`, and re-joining flips it back on the same row.
Only active memberships grant access to the ledger.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    String,
    UniqueConstraint,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tripledger.app.extensions import db
from tripledger.app.models.trip import new_id


class MemberRole(str, enum.Enum):
    ADMIN = "admin"
    GUEST = "guest"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'admin'), not names ('ADMIN')."""
    return [member.value for member in enum_cls]


class TripMember(db.Model):
    __tablename__ = "trip_members"

    __table_args__ = (
        # A user holds at most one membership row per trip.
        UniqueConstraint("trip_id", "user_id", name="uq_trip_members_trip_user"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    trip_id: Mapped[str] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Identity-provider user id.
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    role: Mapped[MemberRole] = mapped_column(
        Enum(
            MemberRole,
            name="member_role",
            native_enum=False,
            length=10,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=MemberRole.GUEST,
        server_default=MemberRole.GUEST.value,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    trip: Mapped["Trip"] = relationship(  # noqa: F821
        "Trip",
        back_populates="members",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == MemberRole.ADMIN

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<TripMember trip_id={self.trip_id} "
            f"user_id={self.user_id} "
            f"role={self.role.value} "
            f"active={self.is_active}>"
        )
