"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at in-memory SQLite unless TEST_DATABASE_URL is set.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.
  - Users live in the identity provider, so there is no registration step:
    tests mint HS256 tokens with PyJWT for whatever user id they need.

Helper functions (not fixtures) are provided for common operations:
  - make_token(user_id, ...)      → signed JWT
  - auth_headers(user_id)         → {"Authorization": "Bearer <token>"}
  - make_trip(client, user_id)    → trip dict (caller is admin)
  - add_member(...)               → HTTP response
  - make_item(...)                → HTTP response
  - list_budget(...)              → HTTP response

These are plain functions (not pytest fixtures) so they can be called with
arbitrary arguments in any test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import text

from tripledger.app import create_app
from tripledger.app.extensions import change_feed
from tripledger.app.extensions import db as _db
from tripledger.config import TestingConfig

ALICE = "user-alice"
BOB   = "user-bob"
CAROL = "user-carol"
DAVE  = "user-dave"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after EVERY test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        with _db.engine.connect() as conn:
            conn.execute(text("DELETE FROM budget_splits"))
            conn.execute(text("DELETE FROM budget_items"))
            conn.execute(text("DELETE FROM trip_members"))
            conn.execute(text("DELETE FROM trips"))
            conn.commit()


@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def feed_events():
    """
    Records every ChangeEvent published during the test.
    Usage: events = feed_events(trip_id) → live list.
    """
    subscriptions = []

    def _watch(trip_id: str) -> list:
        events: list = []
        subscriptions.append(change_feed.subscribe(trip_id, events.append))
        return events

    yield _watch

    for subscription in subscriptions:
        subscription.unsubscribe()


# ═══════════════════════════════════════════════════════════════════════════
# Shared helper functions (not fixtures)
# ═══════════════════════════════════════════════════════════════════════════

def make_token(
    user_id: str,
    secret: str = TestingConfig.JWT_SECRET_KEY,
    expires_in: timedelta = timedelta(minutes=15),
    **claims,
) -> str:
    """Signs a token the way the identity provider would."""
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in, **claims}
    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def make_trip(client, user_id: str = ALICE, title: str = "Lisbon", max_members: int | None = None) -> dict:
    """Creates a trip and returns its data dict. The caller becomes admin."""
    payload: dict = {"title": title}
    if max_members is not None:
        payload["max_members"] = max_members
    resp = client.post("/api/v1/trips", json=payload, headers=auth_headers(user_id))
    assert resp.status_code == 201, f"make_trip failed: {resp.get_json()}"
    return resp.get_json()["data"]


def add_member(client, admin_id: str, trip_id: str, user_id: str, role: str = "guest"):
    return client.post(
        f"/api/v1/trips/{trip_id}/members",
        json={"user_id": user_id, "role": role},
        headers=auth_headers(admin_id),
    )


def make_trip_with_members(client, *guests: str, admin: str = ALICE) -> dict:
    trip = make_trip(client, admin)
    for guest in guests:
        resp = add_member(client, admin, trip["id"], guest)
        assert resp.status_code == 201, f"add_member failed: {resp.get_json()}"
    return trip


def make_item(
    client,
    user_id: str,
    trip_id: str,
    amount: str = "90.00",
    title: str = "Dinner",
    category: str = "food",
    split_type: str | None = None,
    splits: list[dict] | None = None,
    **extra,
):
    """
    Creates a budget item and returns the HTTP response.
    For split_type='equal' (the default), do not pass splits.
    """
    payload: dict = {
        "title": title,
        "amount": amount,
        "currency": "USD",
        "category": category,
        **extra,
    }
    if split_type is not None:
        payload["split_type"] = split_type
    if splits is not None:
        payload["splits"] = splits
    return client.post(
        f"/api/v1/trips/{trip_id}/budget",
        json=payload,
        headers=auth_headers(user_id),
    )


def list_budget(client, user_id: str, trip_id: str):
    return client.get(f"/api/v1/trips/{trip_id}/budget", headers=auth_headers(user_id))


def update_item(client, user_id: str, trip_id: str, item_id: str, patch: dict):
    return client.put(
        f"/api/v1/trips/{trip_id}/budget/{item_id}",
        json=patch,
        headers=auth_headers(user_id),
    )


def delete_item(client, user_id: str, trip_id: str, item_id: str):
    return client.delete(
        f"/api/v1/trips/{trip_id}/budget/{item_id}",
        headers=auth_headers(user_id),
    )
