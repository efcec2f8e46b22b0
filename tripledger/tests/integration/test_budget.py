"""
tests/integration/test_budget.py — Ledger entry creation, listing, retrieval and categories.

Endpoints covered:
  POST /trips/:id/budget              → 201 (create, all three split strategies)
  GET  /trips/:id/budget              → 200 (entries newest-first + summary + roster)
  GET  /trips/:id/budget/:itemId      → 200 (entry with splits)
  GET  /trips/:id/budget/categories   → 200 (per-category totals)

Rules verified:
  SPLIT_SUM_MISMATCH (422)        — custom totals must match the amount (1 cent tolerance)
  SPLIT_PERCENTAGE_MISMATCH (422) — percentages must total 100
  PAYER_NOT_MEMBER (422)          — paid_by must be an active member
  SPLIT_USER_NOT_MEMBER (422)     — every split user must be an active member
  INVALID_AMOUNT_PRECISION (400)  — max 2 decimal places, no rounding
  TRIP_NOT_FOUND (404)            — non-members cannot see the trip, whatever they send
  SPLITS_NOT_PERSISTED (warning)  — entry kept when its splits cannot be written

Amounts appear as strings in JSON, never numbers.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy.exc import OperationalError

from tripledger.app.services import ledger_service

from .conftest import (
    ALICE,
    BOB,
    CAROL,
    DAVE,
    auth_headers,
    list_budget,
    make_item,
    make_trip,
    make_trip_with_members,
)


def _split_amounts(item: dict) -> dict[str, str]:
    return {s["user_id"]: s["amount"] for s in item["splits"]}


# ═══════════════════════════════════════════════════════════════════════════
# POST /trips/:id/budget — equal split
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateBudgetItemEqualMode:

    def test_dinner_split_three_ways(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(client, ALICE, trip["id"], amount="90.00", title="Dinner")

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        data = body["data"]
        assert data["amount"] == "90.00"
        assert data["split_type"] == "equal"
        assert data["paid_by"] == ALICE
        assert data["created_by"] == ALICE
        assert data["is_paid"] is False
        assert _split_amounts(data) == {ALICE: "30.00", BOB: "30.00", CAROL: "30.00"}
        for split in data["splits"]:
            assert isinstance(split["amount"], str)
            assert split["percentage"] is None

    def test_residue_cent_goes_to_payer(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(client, ALICE, trip["id"], amount="100.00", paid_by=CAROL)

        assert resp.status_code == 201
        amounts = _split_amounts(resp.get_json()["data"])
        assert amounts == {ALICE: "33.33", BOB: "33.33", CAROL: "33.34"}

    def test_residue_cents_go_to_payer_then_by_ascending_id(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(client, ALICE, trip["id"], amount="0.05")

        # 0.01 base each; 2 residue cents → alice (payer), then bob.
        amounts = _split_amounts(resp.get_json()["data"])
        assert amounts == {ALICE: "0.03", BOB: "0.01", CAROL: "0.01"}

    def test_split_sum_equals_amount(self, client):
        trip = make_trip_with_members(client, BOB, CAROL, DAVE)
        resp = make_item(client, ALICE, trip["id"], amount="77.77")

        total = sum(Decimal(a) for a in _split_amounts(resp.get_json()["data"]).values())
        assert total == Decimal("77.77")

    def test_sole_member_owes_everything(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(client, ALICE, trip["id"], amount="12.34")

        assert _split_amounts(resp.get_json()["data"]) == {ALICE: "12.34"}

    def test_inputs_are_normalised(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(
            client, ALICE, trip["id"],
            title="  Taxi  ", category=" transport ", currency="eur",
        )

        data = resp.get_json()["data"]
        assert data["title"] == "Taxi"
        assert data["category"] == "transport"
        assert data["currency"] == "EUR"

    def test_splits_array_with_equal_mode_is_rejected(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(
            client, ALICE, trip["id"],
            split_type="equal",
            splits=[{"user_id": ALICE, "amount": "90.00"}],
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "SPLITS_SENT_FOR_EQUAL_MODE"
        assert error["field"] == "splits"


# ═══════════════════════════════════════════════════════════════════════════
# POST /trips/:id/budget — custom and percentage splits
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateBudgetItemCustomMode:

    def test_custom_amounts_stored_as_supplied(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="100.00",
            split_type="custom",
            splits=[
                {"user_id": ALICE, "amount": "60.00"},
                {"user_id": BOB, "amount": "40.00"},
            ],
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert data["split_type"] == "custom"
        assert _split_amounts(data) == {ALICE: "60.00", BOB: "40.00", CAROL: "0.00"}

    def test_custom_total_within_one_cent_is_accepted(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="100.00",
            split_type="custom",
            splits=[
                {"user_id": ALICE, "amount": "60.00"},
                {"user_id": BOB, "amount": "39.99"},
            ],
        )
        assert resp.status_code == 201

    def test_custom_total_mismatch_returns_422(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="100.00",
            split_type="custom",
            splits=[
                {"user_id": ALICE, "amount": "60.00"},
                {"user_id": BOB, "amount": "30.00"},
            ],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_SUM_MISMATCH"

    def test_custom_without_splits_returns_400(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(client, ALICE, trip["id"], split_type="custom")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "SPLITS_REQUIRED"

    def test_duplicate_split_user_returns_400(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="100.00",
            split_type="custom",
            splits=[
                {"user_id": BOB, "amount": "50.00"},
                {"user_id": BOB, "amount": "50.00"},
            ],
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "DUPLICATE_SPLIT_USER"

    def test_split_user_not_member_returns_422(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="100.00",
            split_type="custom",
            splits=[
                {"user_id": ALICE, "amount": "50.00"},
                {"user_id": DAVE, "amount": "50.00"},
            ],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_USER_NOT_MEMBER"


class TestCreateBudgetItemPercentageMode:

    def test_percentages_become_amounts(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="200.00",
            split_type="percentage",
            splits=[
                {"user_id": ALICE, "percentage": "50"},
                {"user_id": BOB, "percentage": "30"},
                {"user_id": CAROL, "percentage": "20"},
            ],
        )

        assert resp.status_code == 201
        data = resp.get_json()["data"]
        assert _split_amounts(data) == {ALICE: "100.00", BOB: "60.00", CAROL: "40.00"}
        percentages = {s["user_id"]: s["percentage"] for s in data["splits"]}
        assert percentages == {ALICE: "50.00", BOB: "30.00", CAROL: "20.00"}

    def test_percentage_rounding_keeps_the_total(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="10.00",
            split_type="percentage",
            splits=[
                {"user_id": ALICE, "percentage": "33.33"},
                {"user_id": BOB, "percentage": "33.33"},
                {"user_id": CAROL, "percentage": "33.34"},
            ],
        )

        assert resp.status_code == 201
        total = sum(Decimal(a) for a in _split_amounts(resp.get_json()["data"]).values())
        assert total == Decimal("10.00")

    def test_percentages_not_totalling_100_return_422(self, client):
        trip = make_trip_with_members(client, BOB)
        resp = make_item(
            client, ALICE, trip["id"],
            split_type="percentage",
            splits=[
                {"user_id": ALICE, "percentage": "50"},
                {"user_id": BOB, "percentage": "40"},
            ],
        )

        assert resp.status_code == 422
        assert resp.get_json()["error"]["code"] == "SPLIT_PERCENTAGE_MISMATCH"

    def test_percentage_finer_than_two_decimals_is_rejected(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="999999.99",
            split_type="percentage",
            splits=[
                {"user_id": ALICE, "percentage": "60.005"},
                {"user_id": BOB, "percentage": "40.004"},
                {"user_id": CAROL, "percentage": "0.001"},
            ],
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "splits"
        assert list_budget(client, ALICE, trip["id"]).get_json()["data"]["budget_items"] == []

    def test_percentages_over_100_never_go_negative(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        resp = make_item(
            client, ALICE, trip["id"],
            amount="999999.99",
            split_type="percentage",
            splits=[
                {"user_id": ALICE, "percentage": "60.01"},
                {"user_id": BOB, "percentage": "39.99"},
                {"user_id": CAROL, "percentage": "0.01"},
            ],
        )

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["warnings"] == []
        assert _split_amounts(body["data"]) == {
            ALICE: "600000.01",
            BOB: "399899.99",
            CAROL: "99.99",
        }


# ═══════════════════════════════════════════════════════════════════════════
# POST /trips/:id/budget — request validation and authorization
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateBudgetItemValidation:

    def test_missing_title_returns_missing_field(self, client):
        trip = make_trip(client, ALICE)
        resp = client.post(
            f"/api/v1/trips/{trip['id']}/budget",
            json={"amount": "10.00", "category": "food"},
            headers=auth_headers(ALICE),
        )

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "MISSING_FIELD"
        assert error["field"] == "title"

    def test_three_decimal_places_are_rejected(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(client, ALICE, trip["id"], amount="10.001")

        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_AMOUNT_PRECISION"
        assert error["field"] == "amount"

    def test_zero_amount_is_rejected(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(client, ALICE, trip["id"], amount="0")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_FIELD"

    def test_blank_category_is_rejected(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(client, ALICE, trip["id"], category="   ")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "category"

    def test_unknown_split_type_is_rejected(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(client, ALICE, trip["id"], split_type="by_weight")

        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_SPLIT_TYPE"

    def test_payer_not_member_returns_422(self, client):
        trip = make_trip(client, ALICE)
        resp = make_item(client, ALICE, trip["id"], paid_by=DAVE)

        assert resp.status_code == 422
        error = resp.get_json()["error"]
        assert error["code"] == "PAYER_NOT_MEMBER"
        assert error["field"] == "paid_by"

    def test_non_member_gets_404_even_with_invalid_payload(self, client):
        trip = make_trip(client, ALICE)
        resp = client.post(
            f"/api/v1/trips/{trip['id']}/budget",
            json={"amount": "not-a-number"},
            headers=auth_headers(DAVE),
        )

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "TRIP_NOT_FOUND"

    def test_unknown_trip_returns_404(self, client):
        resp = make_item(client, ALICE, "00000000-0000-0000-0000-000000000000")
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "TRIP_NOT_FOUND"

    def test_missing_token_returns_401(self, client):
        trip = make_trip(client, ALICE)
        resp = client.post(f"/api/v1/trips/{trip['id']}/budget", json={})

        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "TOKEN_MISSING"


# ═══════════════════════════════════════════════════════════════════════════
# POST /trips/:id/budget — splits that cannot be written
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateBudgetItemPartialFailure:

    def test_entry_kept_with_warning_when_splits_fail(self, client, monkeypatch):
        trip = make_trip_with_members(client, BOB)

        def _failing_split_rows(item, splits_data, session):
            raise OperationalError("INSERT INTO budget_splits", {}, Exception("disk full"))

        monkeypatch.setattr(ledger_service, "_create_split_rows", _failing_split_rows)
        resp = make_item(client, ALICE, trip["id"], amount="50.00")

        assert resp.status_code == 201
        body = resp.get_json()
        assert [w["code"] for w in body["warnings"]] == ["SPLITS_NOT_PERSISTED"]
        assert body["data"]["splits"] == []

        monkeypatch.undo()
        listing = list_budget(client, ALICE, trip["id"]).get_json()["data"]
        assert len(listing["budget_items"]) == 1
        assert listing["budget_items"][0]["splits"] == []
        # The summary ignores splits, so the entry still counts.
        assert listing["summary"]["total_budget"] == "50.00"


# ═══════════════════════════════════════════════════════════════════════════
# GET /trips/:id/budget
# ═══════════════════════════════════════════════════════════════════════════

class TestListBudget:

    def test_empty_trip_has_zero_summary(self, client):
        trip = make_trip(client, ALICE)
        resp = list_budget(client, ALICE, trip["id"])

        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["budget_items"] == []
        assert data["summary"] == {
            "total_budget": "0.00",
            "paid_amount": "0.00",
            "unpaid_amount": "0.00",
            "per_person_amount": "0.00",
            "member_count": 1,
            "currency": "USD",
        }
        assert [m["user_id"] for m in data["trip_members"]] == [ALICE]

    def test_summary_reflects_entries_and_roster(self, client):
        trip = make_trip_with_members(client, BOB, CAROL)
        make_item(client, ALICE, trip["id"], amount="90.00")
        make_item(client, BOB, trip["id"], amount="30.00", is_paid=True)

        summary = list_budget(client, CAROL, trip["id"]).get_json()["data"]["summary"]
        assert summary["total_budget"] == "120.00"
        assert summary["paid_amount"] == "30.00"
        assert summary["unpaid_amount"] == "90.00"
        assert summary["per_person_amount"] == "40.00"
        assert summary["member_count"] == 3

    def test_entries_are_newest_first(self, client):
        trip = make_trip(client, ALICE)
        for title in ("Breakfast", "Lunch", "Dinner"):
            make_item(client, ALICE, trip["id"], title=title)

        items = list_budget(client, ALICE, trip["id"]).get_json()["data"]["budget_items"]
        assert [i["title"] for i in items] == ["Dinner", "Lunch", "Breakfast"]

    def test_entries_of_other_trips_are_not_listed(self, client):
        lisbon = make_trip(client, ALICE, title="Lisbon")
        porto = make_trip(client, ALICE, title="Porto")
        make_item(client, ALICE, lisbon["id"], title="Tram")

        items = list_budget(client, ALICE, porto["id"]).get_json()["data"]["budget_items"]
        assert items == []

    def test_non_member_gets_404(self, client):
        trip = make_trip(client, ALICE)
        resp = list_budget(client, BOB, trip["id"])

        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "TRIP_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# GET /trips/:id/budget/:itemId and /categories
# ═══════════════════════════════════════════════════════════════════════════

class TestGetBudgetItem:

    def test_get_returns_entry_with_splits(self, client):
        trip = make_trip_with_members(client, BOB)
        item = make_item(client, ALICE, trip["id"], amount="20.00").get_json()["data"]

        resp = client.get(
            f"/api/v1/trips/{trip['id']}/budget/{item['id']}",
            headers=auth_headers(BOB),
        )
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["id"] == item["id"]
        assert _split_amounts(data) == {ALICE: "10.00", BOB: "10.00"}

    def test_entry_from_another_trip_is_not_found(self, client):
        lisbon = make_trip(client, ALICE, title="Lisbon")
        porto = make_trip(client, ALICE, title="Porto")
        item = make_item(client, ALICE, lisbon["id"]).get_json()["data"]

        resp = client.get(
            f"/api/v1/trips/{porto['id']}/budget/{item['id']}",
            headers=auth_headers(ALICE),
        )
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "ENTRY_NOT_FOUND"


class TestBudgetCategories:

    def test_breakdown_groups_by_category(self, client):
        trip = make_trip(client, ALICE)
        make_item(client, ALICE, trip["id"], amount="10.00", category="food")
        make_item(client, ALICE, trip["id"], amount="15.50", category="food")
        make_item(client, ALICE, trip["id"], amount="40.00", category="lodging")

        resp = client.get(
            f"/api/v1/trips/{trip['id']}/budget/categories",
            headers=auth_headers(ALICE),
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"] == [
            {"category": "food", "count": 2, "total": "25.50"},
            {"category": "lodging", "count": 1, "total": "40.00"},
        ]
