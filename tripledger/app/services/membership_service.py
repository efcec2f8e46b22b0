"""
services/membership_service.py — Trip and membership lookups.

This is the enforcement point for ledger authorization. Policy itself
(who may join a trip) belongs to the identity/trip layer; the ledger only
asks two questions, answered here:
  - is the caller an ACTIVE member of the trip?
  - what is the caller's role in the trip?

Authorization rules:
  - Non-members and inactive members get TRIP_NOT_FOUND (404), never 403,
    so that trip ids cannot be probed.
  - Adding a member:       trip admin only.
  - Deactivating a member: trip admin may deactivate anyone; a member may
    deactivate themselves. Rows are never deleted.

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session parameter.
  - Commits are the route's responsibility — only flush here.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tripledger.app.errors import AppError, ErrorCode
from tripledger.app.models.trip import Trip
from tripledger.app.models.trip_member import MemberRole, TripMember


# ── Lookups ────────────────────────────────────────────────────────────────

def get_active_membership(trip_id: str, user_id: str, session: Session) -> TripMember | None:
    """Returns the caller's active membership row, or None."""
    return session.execute(
        select(TripMember).where(
            TripMember.trip_id == trip_id,
            TripMember.user_id == user_id,
            TripMember.is_active.is_(True),
        )
    ).scalar_one_or_none()


def is_active_member(trip_id: str, user_id: str, session: Session) -> bool:
    return get_active_membership(trip_id, user_id, session) is not None


def get_role(trip_id: str, user_id: str, session: Session) -> MemberRole | None:
    """Role of an active member, or None for non-members."""
    membership = get_active_membership(trip_id, user_id, session)
    return membership.role if membership is not None else None


def require_active_member(trip_id: str, user_id: str, session: Session) -> TripMember:
    """
    Raises TRIP_NOT_FOUND (404) unless user_id is an active member of trip_id.
    Used for both "trip does not exist" and "you are not in it".
    """
    membership = get_active_membership(trip_id, user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.TRIP_NOT_FOUND,
            "Trip not found or access denied.",
            404,
        )
    return membership


def list_active_members(trip_id: str, session: Session) -> list[TripMember]:
    """Active roster, oldest membership first."""
    stmt = (
        select(TripMember)
        .where(
            TripMember.trip_id == trip_id,
            TripMember.is_active.is_(True),
        )
        .order_by(TripMember.joined_at.asc(), TripMember.user_id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def active_member_ids(trip_id: str, session: Session) -> list[str]:
    stmt = (
        select(TripMember.user_id)
        .where(
            TripMember.trip_id == trip_id,
            TripMember.is_active.is_(True),
        )
        .order_by(TripMember.user_id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def serialize_member(member: TripMember) -> dict:
    return {
        "user_id": member.user_id,
        "role": member.role.value,
        "is_active": member.is_active,
        "joined_at": member.joined_at.isoformat() if member.joined_at else None,
    }


# ── Trip lifecycle (minimal collaborator surface) ──────────────────────────

def _build_trip_dict(trip: Trip, members: list[TripMember]) -> dict:
    return {
        "id": trip.id,
        "title": trip.title,
        "max_members": trip.max_members,
        "created_by": trip.created_by,
        "created_at": trip.created_at.isoformat() if trip.created_at else None,
        "members": [serialize_member(m) for m in members],
    }


def create_trip(
        title: str,
        creator_id: str,
        session: Session,
        max_members: int | None = None,
) -> dict:
    """
    Creates a trip. The creator becomes its first member, with the admin role.
    """
    trip = Trip(title=title, created_by=creator_id, max_members=max_members)
    session.add(trip)
    session.flush()  # populate trip.id before creating membership

    membership = TripMember(trip_id=trip.id, user_id=creator_id, role=MemberRole.ADMIN)
    session.add(membership)
    session.flush()
    session.refresh(trip)

    return _build_trip_dict(trip, [membership])


def get_trip(trip_id: str, caller_id: str, session: Session) -> dict:
    """Trip details with the active roster. Caller must be an active member."""
    require_active_member(trip_id, caller_id, session)
    trip = session.get(Trip, trip_id)
    return _build_trip_dict(trip, list_active_members(trip_id, session))


def add_member(
        trip_id: str,
        caller_id: str,
        target_user_id: str,
        session: Session,
        role: MemberRole = MemberRole.GUEST,
) -> dict:
    """
    Adds (or re-activates) a member. Only a trip admin may call this.

    Raises:
      AppError(TRIP_NOT_FOUND, 404)  — caller is not an active member
      AppError(FORBIDDEN, 403)       — caller is not an admin
      AppError(ALREADY_MEMBER, 409)  — target is already active
      AppError(TRIP_FULL, 422)       — max_members reached
    """
    caller = require_active_member(trip_id, caller_id, session)
    if not caller.is_admin:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only a trip admin may add members.",
            403,
        )

    existing = session.execute(
        select(TripMember).where(
            TripMember.trip_id == trip_id,
            TripMember.user_id == target_user_id,
        )
    ).scalar_one_or_none()

    if existing is not None and existing.is_active:
        raise AppError(
            ErrorCode.ALREADY_MEMBER,
            f"User {target_user_id} is already a member of this trip.",
            409,
        )

    trip = session.get(Trip, trip_id)
    if trip.max_members is not None:
        active_count = session.execute(
            select(func.count(TripMember.id)).where(
                TripMember.trip_id == trip_id,
                TripMember.is_active.is_(True),
            )
        ).scalar_one()
        if active_count >= trip.max_members:
            raise AppError(
                ErrorCode.TRIP_FULL,
                f"Trip already has the maximum of {trip.max_members} members.",
                422,
            )

    if existing is not None:
        existing.is_active = True
        existing.role = role
        membership = existing
    else:
        membership = TripMember(trip_id=trip_id, user_id=target_user_id, role=role)
        session.add(membership)
    session.flush()
    session.refresh(membership)

    return serialize_member(membership)


def deactivate_member(
        trip_id: str,
        caller_id: str,
        target_user_id: str,
        session: Session,
) -> None:
    """
    Clears is_active on a membership. Admins may remove anyone; members may
    remove themselves. Existing splits keep referencing the user.

    Raises:
      AppError(TRIP_NOT_FOUND, 404)  — caller is not an active member
      AppError(FORBIDDEN, 403)       — caller is neither admin nor the target
      AppError(USER_NOT_FOUND, 404)  — target has no active membership
    """
    caller = require_active_member(trip_id, caller_id, session)

    if not (caller.is_admin or caller_id == target_user_id):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You may only remove yourself from a trip unless you are an admin.",
            403,
        )

    membership = get_active_membership(trip_id, target_user_id, session)
    if membership is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {target_user_id} is not an active member of this trip.",
            404,
        )

    membership.is_active = False
    session.flush()
