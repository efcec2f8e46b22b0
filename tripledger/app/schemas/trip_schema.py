"""
schemas/trip_schema.py — Marshmallow schemas for trip and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/membership_service.py:
      - TRIP_NOT_FOUND (caller must be an active member)
      - FORBIDDEN      (only admins add members)
      - ALREADY_MEMBER, TRIP_FULL (need the current roster)

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, post_load, validate

from tripledger.app.models.trip_member import MemberRole


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateTripSchema(Schema):
    """POST /trips"""

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=200,
                error="Trip title must be between 1 and 200 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    # Omitted or null means no capacity limit.
    max_members = fields.Int(
        load_default=None,
        allow_none=True,
        strict=True,
        validate=validate.Range(
            min=1,
            max=100,
            error="max_members must be between 1 and 100.",
        ),
    )

    @post_load
    def normalise(self, data: dict, **kwargs) -> dict:
        data["title"] = data["title"].strip()
        return data


class AddMemberSchema(Schema):
    """
    POST /trips/:id/members

    Whether the caller may add members is a service concern.
    """

    # Identity-provider user id.
    user_id = fields.Str(
        required=True,
        validate=[validate.Length(min=1, max=36), _validate_non_empty_after_trim],
    )

    role = fields.Enum(
        MemberRole,
        by_value=True,
        load_default=MemberRole.GUEST,
    )
