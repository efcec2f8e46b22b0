"""
errors.py — AppError base class and error code registry.

Every error returned by the TripLedger API uses a code defined here, and the
client raises the same AppError when it decodes an error envelope, so both
sides of the wire share one vocabulary.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - A caller who is not an active member of a trip gets TRIP_NOT_FOUND (404),
    never FORBIDDEN: the existence of the trip is not leaked.
  - FORBIDDEN (403) is reserved for members whose role is insufficient.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    @classmethod
    def from_dict(cls, body: dict | None, http_status: int) -> "AppError":
        """Rebuilds an AppError from a decoded error envelope."""
        error = (body or {}).get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        return cls(
            error.get("code") or ErrorCode.UPSTREAM_FAILURE,
            error.get("message") or f"Request failed with status {http_status}.",
            http_status,
            field=error.get("field"),
        )

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# IMPORTANT: these are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_TYPE         = "INVALID_SPLIT_TYPE"
    INVALID_CURRENCY           = "INVALID_CURRENCY"
    SPLITS_SENT_FOR_EQUAL_MODE = "SPLITS_SENT_FOR_EQUAL_MODE"
    SPLITS_REQUIRED            = "SPLITS_REQUIRED"
    DUPLICATE_SPLIT_USER       = "DUPLICATE_SPLIT_USER"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_MEMBER             = "ALREADY_MEMBER"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    # TRIP_NOT_FOUND doubles as "not an active member" so that non-members
    # cannot probe which trip ids exist.
    TRIP_NOT_FOUND             = "TRIP_NOT_FOUND"
    ENTRY_NOT_FOUND            = "ENTRY_NOT_FOUND"
    USER_NOT_FOUND             = "USER_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    SPLIT_USER_NOT_MEMBER      = "SPLIT_USER_NOT_MEMBER"
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    SPLIT_PERCENTAGE_MISMATCH  = "SPLIT_PERCENTAGE_MISMATCH"
    NO_ACTIVE_MEMBERS          = "NO_ACTIVE_MEMBERS"
    TRIP_FULL                  = "TRIP_FULL"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but your role does not allow it
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    UPSTREAM_FAILURE           = "UPSTREAM_FAILURE"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # The entry was stored but its splits were not; the entry stays with zero
    # splits rather than being rolled back.
    SPLITS_NOT_PERSISTED = "SPLITS_NOT_PERSISTED"
