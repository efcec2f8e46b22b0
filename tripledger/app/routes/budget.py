"""
routes/budget.py — Ledger route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Membership is checked BEFORE the body is validated, so a non-member always
gets TRIP_NOT_FOUND (404), whatever the payload looks like. The service
checks it again.

Endpoints (base url_prefix=/api/v1/trips):
  GET    /trips/:id/budget                 → 200  entries + summary + roster
  POST   /trips/:id/budget                 → 201  create entry
  GET    /trips/:id/budget/categories      → 200  per-category totals
  GET    /trips/:id/budget/:itemId         → 200  entry + splits
  PUT    /trips/:id/budget/:itemId         → 200  partial update (PATCH alias)
  DELETE /trips/:id/budget/:itemId         → 200  hard delete
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from tripledger.app.extensions import db
from tripledger.app.middleware.auth_middleware import require_auth
from tripledger.app.schemas.budget_schema import CreateBudgetItemSchema, UpdateBudgetItemSchema
from tripledger.app.services import ledger_service, membership_service

budget_bp = Blueprint("budget", __name__)


@budget_bp.route("/<trip_id>/budget", methods=["GET"])
@require_auth
def list_budget(trip_id: str):
    """GET /trips/:id/budget — Entries newest-first, the summary and the active roster."""
    result = ledger_service.list_entries(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@budget_bp.route("/<trip_id>/budget", methods=["POST"])
@require_auth
def create_budget_item(trip_id: str):
    """
    POST /trips/:id/budget — Record a new entry.
    A 201 may carry a SPLITS_NOT_PERSISTED warning.
    """
    membership_service.require_active_member(trip_id, g.user_id, db.session)
    data = CreateBudgetItemSchema().load(request.get_json(force=True, silent=True) or {})
    item, warnings = ledger_service.create_entry(
        trip_id=trip_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": ledger_service.serialize_item(item), "warnings": warnings}), 201


@budget_bp.route("/<trip_id>/budget/categories", methods=["GET"])
@require_auth
def budget_categories(trip_id: str):
    result = ledger_service.category_breakdown(
        trip_id=trip_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@budget_bp.route("/<trip_id>/budget/<item_id>", methods=["GET"])
@require_auth
def get_budget_item(trip_id: str, item_id: str):
    item = ledger_service.get_entry(
        trip_id=trip_id,
        item_id=item_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": ledger_service.serialize_item(item), "warnings": []}), 200


@budget_bp.route("/<trip_id>/budget/<item_id>", methods=["PUT", "PATCH"])
@require_auth
def update_budget_item(trip_id: str, item_id: str):
    """
    PUT /trips/:id/budget/:itemId — Partial update, creator or admin only.
    Toggling paid status is an update carrying only {"is_paid": bool}.
    """
    membership_service.require_active_member(trip_id, g.user_id, db.session)
    data = UpdateBudgetItemSchema().load(request.get_json(force=True, silent=True) or {})
    item = ledger_service.update_entry(
        trip_id=trip_id,
        item_id=item_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": ledger_service.serialize_item(item), "warnings": []}), 200


@budget_bp.route("/<trip_id>/budget/<item_id>", methods=["DELETE"])
@require_auth
def delete_budget_item(trip_id: str, item_id: str):
    """DELETE /trips/:id/budget/:itemId — Splits first, then the entry."""
    ledger_service.delete_entry(
        trip_id=trip_id,
        item_id=item_id,
        caller_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"message": "Budget item deleted successfully"},
        "warnings": [],
    }), 200
