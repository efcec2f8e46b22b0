"""
schemas/budget_schema.py — Marshmallow schemas for ledger endpoints.

Validation responsibility:
  - This file (request shape, 400):
      - Field types, lengths, enum values, decimal precision
      - amount in (0, 999999.99], currency exactly 3 letters
      - SPLITS_SENT_FOR_EQUAL_MODE — splits array with split_type='equal'
      - SPLITS_REQUIRED            — custom/percentage without splits
      - DUPLICATE_SPLIT_USER       — same user_id twice in splits
      - Non-empty-after-trim for title and category
  - services/ledger_service.py and split_calculator.py (need DB / roster):
      - PAYER_NOT_MEMBER, SPLIT_USER_NOT_MEMBER (422)
      - SPLIT_SUM_MISMATCH, SPLIT_PERCENTAGE_MISMATCH (422)
      - FORBIDDEN (403), ENTRY_NOT_FOUND (404)

Unknown keys are dropped rather than rejected, so older and newer clients
can talk to the same server.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import (
    EXCLUDE,
    Schema,
    ValidationError,
    fields,
    post_load,
    validate,
    validates_schema,
)

from tripledger.app.errors import ErrorCode
from tripledger.app.models.budget_item import SplitType

MAX_AMOUNT = Decimal("999999.99")


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly positive, at most MAX_AMOUNT, at most 2 decimal places.
    Input with more precision is REJECTED, never rounded.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value > MAX_AMOUNT:
        raise ValidationError("Amount must not exceed 999999.99.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_share_amount(value: Decimal) -> None:
    """Split shares may be zero, but never negative or finer than a cent."""
    if value < Decimal("0"):
        raise ValidationError("Share amount must not be negative.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_share_percentage(value: Decimal) -> None:
    """0 to 100 inclusive, at most 2 decimal places so it is stored exactly."""
    if value < Decimal("0") or value > Decimal("100"):
        raise ValidationError("percentage must be between 0 and 100.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """validate.Length(min=1) alone accepts '   '; strip first."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _validate_currency(value: str) -> None:
    if len(value) != 3 or not value.isalpha():
        raise ValidationError(ErrorCode.INVALID_CURRENCY)


def _check_splits_shape(split_type: SplitType | None, splits: list[dict] | None) -> None:
    """
    Cross-field rules shared by create and update.
    `split_type` is None on an update that leaves the strategy unchanged.
    """
    if split_type == SplitType.EQUAL:
        if splits is not None:
            raise ValidationError({"splits": [ErrorCode.SPLITS_SENT_FOR_EQUAL_MODE]})
        return

    if splits is None:
        if split_type is not None:
            raise ValidationError({"splits": [ErrorCode.SPLITS_REQUIRED]})
        return

    user_ids = [s["user_id"] for s in splits]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError({"splits": [ErrorCode.DUPLICATE_SPLIT_USER]})

    if split_type == SplitType.CUSTOM and any(s.get("amount") is None for s in splits):
        raise ValidationError({"splits": ["Every custom split needs an amount."]})
    if split_type == SplitType.PERCENTAGE and any(s.get("percentage") is None for s in splits):
        raise ValidationError({"splits": ["Every percentage split needs a percentage."]})


# ── Sub-schema: one entry in the `splits` array ───────────────────────────

class SplitShareSchema(Schema):
    """
    One member's share for custom (amount) or percentage (percentage) entries.
    Whether user_id is on the roster is checked by split_calculator.py.
    """

    class Meta:
        unknown = EXCLUDE

    user_id = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=36),
    )

    amount = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_share_amount,
    )

    percentage = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_share_percentage,
    )

    @validates_schema
    def validate_one_share_kind(self, data: dict, **kwargs) -> None:
        if (data.get("amount") is None) == (data.get("percentage") is None):
            raise ValidationError(
                {"amount": ["Provide exactly one of amount or percentage."]}
            )


# ── Create entry ───────────────────────────────────────────────────────────

class CreateBudgetItemSchema(Schema):
    """
    POST /trips/:id/budget

    split_type behaviour:
      - 'equal'      → client must NOT send splits; the server divides the
                       amount across the active roster.
      - 'custom'     → splits required, each with an amount.
      - 'percentage' → splits required, each with a percentage.
    """

    class Meta:
        unknown = EXCLUDE

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Title must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500, error="Description must be under 500 characters."),
    )

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    currency = fields.Str(
        load_default="USD",
        validate=_validate_currency,
    )

    category = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=50,
                error="Category must be between 1 and 50 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # Defaults to the creator in ledger_service.py.
    paid_by = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(min=1, max=36),
    )

    split_type = fields.Enum(
        SplitType,
        load_default=SplitType.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    is_paid = fields.Bool(load_default=False)

    splits = fields.List(
        fields.Nested(SplitShareSchema),
        load_default=None,
    )

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        _check_splits_shape(data.get("split_type", SplitType.EQUAL), data.get("splits"))

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        data["title"] = data["title"].strip()
        data["category"] = data["category"].strip()
        data["currency"] = data["currency"].upper()
        if data.get("description") is not None:
            data["description"] = data["description"].strip() or None
        return data


# ── Update entry ───────────────────────────────────────────────────────────

class UpdateBudgetItemSchema(Schema):
    """
    PUT /trips/:id/budget/:itemId — partial update, every field optional.

    Only the keys present in the request are applied. Splits are regenerated
    by the service when amount, split_type or splits change; whether a
    custom/percentage entry needs a fresh splits array depends on the stored
    strategy and is therefore checked in ledger_service.py.
    """

    class Meta:
        unknown = EXCLUDE

    title = fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Title must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    description = fields.Str(
        allow_none=True,
        validate=validate.Length(max=500, error="Description must be under 500 characters."),
    )

    amount = fields.Decimal(validate=_validate_monetary_amount)

    currency = fields.Str(validate=_validate_currency)

    category = fields.Str(
        validate=[
            validate.Length(
                min=1,
                max=50,
                error="Category must be between 1 and 50 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # null clears the payer (the service falls back to the creator).
    paid_by = fields.Str(allow_none=True, validate=validate.Length(min=1, max=36))

    split_type = fields.Enum(
        SplitType,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_TYPE},
    )

    is_paid = fields.Bool()

    splits = fields.List(fields.Nested(SplitShareSchema))

    @validates_schema
    def validate_splits_coherence(self, data: dict, **kwargs) -> None:
        _check_splits_shape(data.get("split_type"), data.get("splits"))

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        for key in ("title", "category"):
            if key in data:
                data[key] = data[key].strip()
        if "currency" in data:
            data["currency"] = data["currency"].upper()
        if data.get("description") is not None:
            data["description"] = data["description"].strip() or None
        return data

