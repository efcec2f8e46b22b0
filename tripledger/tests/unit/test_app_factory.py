"""
tests/unit/test_app_factory.py — App-level helpers that need no database.

  - Decimal values serialise as JSON strings
  - Nested marshmallow errors collapse to (top-level field, first message)
  - Production config refuses placeholder secrets
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace

import pytest

from tripledger.app import _first_validation_error, create_app
from tripledger.config import validate_production_config


def test_decimal_serialised_as_string():
    app = create_app("testing")
    assert app.json.dumps({"amount": Decimal("10.50")}) == '{"amount": "10.50"}'


def test_first_validation_error_flat():
    assert _first_validation_error({"title": ["Missing data for required field."]}) == (
        "title",
        "Missing data for required field.",
    )


def test_first_validation_error_nested_list_index():
    messages = {"splits": {0: {"amount": ["INVALID_AMOUNT_PRECISION"]}}}
    assert _first_validation_error(messages) == ("splits", "INVALID_AMOUNT_PRECISION")


def test_first_validation_error_schema_level():
    assert _first_validation_error({"_schema": ["Invalid input type."]}) == (None, "Invalid input type.")


def test_first_validation_error_empty():
    assert _first_validation_error({}) == (None, "Invalid input.")


def _app_with(**config):
    return SimpleNamespace(config=config)


def test_production_requires_database_url():
    with pytest.raises(ValueError, match="DATABASE_URL"):
        validate_production_config(_app_with(
            SQLALCHEMY_DATABASE_URI="", SECRET_KEY="x", JWT_SECRET_KEY="y",
        ))


def test_production_rejects_placeholder_jwt_secret():
    with pytest.raises(ValueError, match="JWT_SECRET_KEY"):
        validate_production_config(_app_with(
            SQLALCHEMY_DATABASE_URI="postgresql://db/ledger",
            SECRET_KEY="strong",
            JWT_SECRET_KEY="change-me-in-production",
        ))


def test_production_accepts_real_settings():
    validate_production_config(_app_with(
        SQLALCHEMY_DATABASE_URI="postgresql://db/ledger",
        SECRET_KEY="strong",
        JWT_SECRET_KEY="also-strong",
    ))
