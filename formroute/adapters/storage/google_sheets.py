"""Google Sheets append-only storage adapter.

Each submission becomes one appended row via the Sheets REST API
(``spreadsheets.values.append``). Requests are signed with a bearer token
minted from service-account credentials and refreshed before it expires.
A fixed ``access_token`` may be configured instead; it is used as-is.
"""

from __future__ import annotations

import asyncio
from datetime import timezone
from typing import Any, Mapping
from urllib.parse import quote

import httpx
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from formroute.adapters.storage.base import AbstractStorageAdapter, new_submission_id
from formroute.core.errors import StorageFailureError
from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import ClientMetadata, Payload, Scalar

META_COLUMNS = ("submission_id", "submitted_at", "ip_address")
SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)


def service_account_credentials(info: Mapping[str, Any]) -> service_account.Credentials:
    """Build scoped credentials from a service-account key (the JSON key file's contents).

    Raises:
        ValueError: If the key material is malformed.
    """
    return service_account.Credentials.from_service_account_info(dict(info), scopes=list(SHEETS_SCOPES))


def _cell(value: Scalar) -> str | int | float | bool:
    return "" if value is None else value


class GoogleSheetsStorageAdapter(AbstractStorageAdapter):
    """Appends each submission as a row to a spreadsheet."""

    storage_type = "google_sheets"

    def __init__(
        self,
        sheet_id: str,
        access_token: str | None = None,
        *,
        credentials: Any | None = None,
        range_: str = "Sheet1",
        columns: list[str] | None = None,
        api_base: str = "https://sheets.googleapis.com/v4",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if access_token is None and credentials is None:
            raise ValueError("Either access_token or credentials is required")
        self.sheet_id = sheet_id
        self.range = range_
        self.columns = list(columns) if columns else None
        self._access_token = access_token
        self._credentials = credentials
        self._refresh_lock = asyncio.Lock()
        self._api_base = api_base.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None

    async def bearer_token(self) -> str:
        """Return a usable token, refreshing service-account credentials when stale.

        Raises:
            StorageFailureError: If the token could not be minted.
        """
        if self._access_token is not None:
            return self._access_token

        async with self._refresh_lock:
            if not self._credentials.valid:
                try:
                    # google-auth refreshes over a blocking transport.
                    await asyncio.to_thread(self._credentials.refresh, GoogleAuthRequest())
                except google_auth_exceptions.GoogleAuthError as exc:
                    raise StorageFailureError(
                        code="storage_failure",
                        message="Failed to save submission",
                        details={
                            "adapter": self.storage_type,
                            "context": {"error": f"Google auth error: {type(exc).__name__}: {exc}"},
                        },
                    ) from exc
            return self._credentials.token

    @property
    def append_url(self) -> str:
        return (
            f"{self._api_base}/spreadsheets/{quote(self.sheet_id, safe='')}"
            f"/values/{quote(self.range, safe='')}:append"
        )

    def build_row(self, submission_id: str, payload: Payload, metadata: ClientMetadata) -> list:
        """Lay out one row.

        With ``columns`` configured, each column is looked up in the meta
        columns first, then in the payload. Otherwise the row is the meta
        columns followed by payload values in field order.
        """
        meta = {
            "submission_id": submission_id,
            "submitted_at": metadata.received_at.astimezone(timezone.utc).isoformat(),
            "ip_address": metadata.ip,
        }
        if self.columns:
            return [_cell(meta[c]) if c in meta else _cell(payload.get(c)) for c in self.columns]
        return [meta[c] for c in META_COLUMNS] + [_cell(v) for v in payload.values()]

    async def save(self, form: FormDefinition, payload: Payload, metadata: ClientMetadata) -> str:
        submission_id = new_submission_id()
        row = self.build_row(submission_id, payload, metadata)
        token = await self.bearer_token()
        try:
            response = await self._client.post(
                self.append_url,
                params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
                json={"values": [row]},
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise StorageFailureError(
                code="storage_failure",
                message="Failed to save submission",
                details={
                    "adapter": self.storage_type,
                    "context": {"error": f"Google Sheets error: {type(exc).__name__}: {exc}"},
                },
            ) from exc
        return submission_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
