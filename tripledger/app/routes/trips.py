"""
routes/trips.py — Trip and membership route handlers.

The minimal collaborator surface the ledger needs: a trip to hang entries
on, and a roster to split them across.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/trips):
  POST   /trips                        → 201  create trip (caller becomes admin)
  GET    /trips/:id                    → 200  trip + active members
  POST   /trips/:id/members            → 201  add member (admin only)
  DELETE /trips/:id/members/:userId    → 200  deactivate member (admin or self)
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from tripledger.app.extensions import db
from tripledger.app.middleware.auth_middleware import require_auth
from tripledger.app.schemas.trip_schema import AddMemberSchema, CreateTripSchema
from tripledger.app.services import membership_service

trips_bp = Blueprint("trips", __name__)


@trips_bp.route("", methods=["POST"])
@require_auth
def create_trip():
    """POST /trips — Create a trip. Caller becomes its admin and first member."""
    data = CreateTripSchema().load(request.get_json(force=True, silent=True) or {})
    result = membership_service.create_trip(
        title=data["title"],
        creator_id=g.user_id,
        session=db.session,
        max_members=data["max_members"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@trips_bp.route("/<trip_id>", methods=["GET"])
@require_auth
def get_trip(trip_id: str):
    result = membership_service.get_trip(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@trips_bp.route("/<trip_id>/members", methods=["POST"])
@require_auth
def add_member(trip_id: str):
    """POST /trips/:id/members — Add or re-activate a member. Admin only."""
    data = AddMemberSchema().load(request.get_json(force=True, silent=True) or {})
    result = membership_service.add_member(
        trip_id=trip_id,
        caller_id=g.user_id,
        target_user_id=data["user_id"].strip(),
        session=db.session,
        role=data["role"],
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@trips_bp.route("/<trip_id>/members/<user_id>", methods=["DELETE"])
@require_auth
def remove_member(trip_id: str, user_id: str):
    """DELETE /trips/:id/members/:userId — Clears is_active. Admin removes anyone; member removes self."""
    membership_service.deactivate_member(
        trip_id=trip_id,
        caller_id=g.user_id,
        target_user_id=user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {
            "removed": True,
            "trip_id": trip_id,
            "user_id": user_id,
        },
        "warnings": [],
    }), 200
