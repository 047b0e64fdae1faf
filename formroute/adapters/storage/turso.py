"""Remote libSQL (Turso) storage adapter.

Talks to the database over the libSQL HTTP pipeline API
(``POST {url}/v2/pipeline``), so no native driver is needed. Each insert is a
single autocommitted statement; the schema is created idempotently before the
first statement.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from formroute.adapters.storage.base import (
    AbstractStorageAdapter,
    StorageCapability,
    new_submission_id,
)
from formroute.core.errors import StorageFailureError
from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import ClientMetadata, Payload, Submission

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id TEXT PRIMARY KEY,
        form_id TEXT NOT NULL,
        data TEXT NOT NULL,
        ip_address TEXT,
        user_agent TEXT,
        submitted_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_submissions_form_submitted ON submissions (form_id, submitted_at)",
)

INSERT_SQL = (
    "INSERT INTO submissions (id, form_id, data, ip_address, user_agent, submitted_at) "
    "VALUES (?, ?, ?, ?, ?, ?)"
)
SELECT_SQL = (
    "SELECT id, form_id, data, ip_address, user_agent, submitted_at FROM submissions "
    "WHERE form_id = ? ORDER BY submitted_at DESC, rowid DESC"
)


class LibSQLError(Exception):
    """Raised when the libSQL server reports a statement error."""


def to_http_url(url: str) -> str:
    """Map ``libsql://`` URLs to the HTTPS endpoint serving the pipeline API."""
    if url.startswith("libsql://"):
        return "https://" + url[len("libsql://"):]
    return url


def _arg(value: Any) -> dict[str, Any]:
    if value is None:
        return {"type": "null"}
    return {"type": "text", "value": str(value)}


def _cell(value: dict[str, Any]) -> Any:
    if value.get("type") == "null":
        return None
    return value.get("value")


class TursoStorageAdapter(AbstractStorageAdapter):
    """Stores submissions in a remote libSQL database."""

    storage_type = "turso"
    capabilities = frozenset({StorageCapability.SAVE, StorageCapability.LIST})

    def __init__(
        self,
        url: str,
        auth_token: str | None = None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = to_http_url(url).rstrip("/")
        self._auth_token = auth_token
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    async def _pipeline(self, statements: list[tuple[str, list[Any]]]) -> list[dict[str, Any]]:
        requests: list[dict[str, Any]] = [
            {"type": "execute", "stmt": {"sql": sql, "args": [_arg(a) for a in args]}}
            for sql, args in statements
        ]
        requests.append({"type": "close"})

        headers = {"Authorization": f"Bearer {self._auth_token}"} if self._auth_token else {}
        response = await self._client.post(
            f"{self.url}/v2/pipeline",
            json={"requests": requests},
            headers=headers,
        )
        response.raise_for_status()

        results = response.json().get("results", [])
        execute_results = []
        for result in results[: len(statements)]:
            if result.get("type") != "ok":
                message = (result.get("error") or {}).get("message", "unknown libSQL error")
                raise LibSQLError(message)
            execute_results.append(result["response"]["result"])
        if len(execute_results) != len(statements):
            raise LibSQLError("incomplete pipeline response")
        return execute_results

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            await self._pipeline([(sql, []) for sql in SCHEMA_STATEMENTS])
            self._schema_ready = True
            logger.info("storage.turso_initialized", extra={"url": self.url})

    def _failure(self, message: str, exc: Exception) -> StorageFailureError:
        return StorageFailureError(
            code="storage_failure",
            message=message,
            details={"adapter": self.storage_type, "context": {"error": f"{type(exc).__name__}: {exc}"}},
        )

    async def save(self, form: FormDefinition, payload: Payload, metadata: ClientMetadata) -> str:
        try:
            await self._ensure_schema()
            submission_id = new_submission_id()
            await self._pipeline([
                (
                    INSERT_SQL,
                    [
                        submission_id,
                        form.id,
                        json.dumps(payload),
                        metadata.ip,
                        metadata.user_agent,
                        metadata.received_at.astimezone(timezone.utc).isoformat(timespec="microseconds"),
                    ],
                )
            ])
        except (httpx.HTTPError, LibSQLError, ValueError, KeyError) as exc:
            raise self._failure("Failed to save submission", exc) from exc
        return submission_id

    async def list_submissions(self, form_id: str) -> list[Submission]:
        try:
            await self._ensure_schema()
            (result,) = await self._pipeline([(SELECT_SQL, [form_id])])
            columns = [col["name"] for col in result["cols"]]
            submissions = []
            for raw_row in result["rows"]:
                row = dict(zip(columns, (_cell(v) for v in raw_row)))
                submissions.append(
                    Submission(
                        id=row["id"],
                        form_id=row["form_id"],
                        payload=json.loads(row["data"]),
                        client_metadata=ClientMetadata(
                            ip=row["ip_address"] or "",
                            user_agent=row["user_agent"] or "",
                            received_at=datetime.fromisoformat(row["submitted_at"]),
                        ),
                    )
                )
        except (httpx.HTTPError, LibSQLError, ValueError, KeyError) as exc:
            raise self._failure("Failed to fetch submissions", exc) from exc
        return submissions

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
