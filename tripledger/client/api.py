"""
client/api.py — Async HTTP client for the ledger API.

Wraps httpx.AsyncClient. Every call either returns decoded data or raises
AppError:
  - error envelopes are rebuilt into AppError with the server's code;
  - transport failures (connection refused, timeouts, broken responses)
    and success bodies that do not decode into records become
    UPSTREAM_FAILURE (502).

Usage:
    async with LedgerApiClient(token) as api:
        listing = await api.list_entries(trip_id)
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum

import httpx

from tripledger import config
from tripledger.app.errors import AppError, ErrorCode
from tripledger.client.models import LedgerEntry, LedgerListing

logger = logging.getLogger(__name__)


def _jsonable(value):
    """Decimals go over the wire as strings, like the server sends them."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


class LedgerApiClient:

    def __init__(
            self,
            token: str,
            base_url: str | None = None,
            timeout: float | None = None,
            client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url or config.LEDGER_API_URL,
            timeout=timeout if timeout is not None else config.LEDGER_API_TIMEOUT,
        )
        self._headers = {"Authorization": f"Bearer {token}"}

    async def __aenter__(self) -> "LedgerApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Transport ──────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, payload: dict | None = None) -> tuple:
        """Returns (data, warnings) from the success envelope."""
        try:
            response = await self._client.request(
                method,
                path,
                json=_jsonable(payload) if payload is not None else None,
                headers=self._headers,
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise AppError(
                ErrorCode.UPSTREAM_FAILURE,
                f"Could not reach the ledger service: {exc}",
                502,
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            raise AppError.from_dict(body if isinstance(body, dict) else None, response.status_code)

        if not isinstance(body, dict) or "data" not in body:
            raise AppError(
                ErrorCode.UPSTREAM_FAILURE,
                f"Malformed response from {method} {path}.",
                502,
            )
        return body["data"], body.get("warnings") or []

    def _decode(self, decoder, data, method: str, path: str):
        """Runs `decoder` on a success payload; a body that does not decode is an upstream failure."""
        try:
            return decoder(data)
        except (KeyError, TypeError, AttributeError, ValueError, ArithmeticError) as exc:
            logger.warning("Undecodable response from %s %s: %r", method, path, exc)
            raise AppError(
                ErrorCode.UPSTREAM_FAILURE,
                f"Malformed response from {method} {path}.",
                502,
            ) from exc

    # ── Ledger operations ──────────────────────────────────────────────────

    async def list_entries(self, trip_id: str) -> LedgerListing:
        path = f"/trips/{trip_id}/budget"
        data, _ = await self._request("GET", path)
        return self._decode(LedgerListing.from_dict, data, "GET", path)

    async def get_entry(self, trip_id: str, entry_id: str) -> LedgerEntry:
        path = f"/trips/{trip_id}/budget/{entry_id}"
        data, _ = await self._request("GET", path)
        return self._decode(LedgerEntry.from_dict, data, "GET", path)

    async def create_entry(self, trip_id: str, payload: dict) -> tuple[LedgerEntry, list[dict]]:
        path = f"/trips/{trip_id}/budget"
        data, warnings = await self._request("POST", path, payload)
        entry = self._decode(LedgerEntry.from_dict, data, "POST", path)
        for warning in warnings:
            logger.warning("Create in trip %s: %s", trip_id, warning.get("code"))
        return entry, warnings

    async def update_entry(self, trip_id: str, entry_id: str, patch: dict) -> LedgerEntry:
        path = f"/trips/{trip_id}/budget/{entry_id}"
        data, _ = await self._request("PUT", path, patch)
        return self._decode(LedgerEntry.from_dict, data, "PUT", path)

    async def toggle_paid(self, trip_id: str, entry_id: str, is_paid: bool) -> LedgerEntry:
        return await self.update_entry(trip_id, entry_id, {"is_paid": bool(is_paid)})

    async def delete_entry(self, trip_id: str, entry_id: str) -> None:
        await self._request("DELETE", f"/trips/{trip_id}/budget/{entry_id}")

    async def categories(self, trip_id: str) -> list[dict]:
        path = f"/trips/{trip_id}/budget/categories"
        data, _ = await self._request("GET", path)
        return self._decode(
            lambda rows: [{**row, "total": Decimal(str(row["total"]))} for row in rows],
            data, "GET", path,
        )
