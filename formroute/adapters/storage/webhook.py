"""Generic webhook forwarder (also used for Make.com scenarios).

One POST per submission, no retry. Anything but a 2xx answer is a storage
failure. The receiver owns the data afterwards, so listing is unsupported.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from formroute.adapters.storage.base import AbstractStorageAdapter, new_submission_id
from formroute.core.errors import StorageFailureError
from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import ClientMetadata, Payload

logger = logging.getLogger(__name__)


class WebhookStorageAdapter(AbstractStorageAdapter):
    """Forwards each submission as JSON to a configured URL."""

    storage_type = "webhook"

    def __init__(
        self,
        webhook_url: str,
        headers: dict[str, str] | None = None,
        *,
        storage_type: str = "webhook",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.headers = dict(headers or {})
        self.storage_type = storage_type
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None

    async def save(self, form: FormDefinition, payload: Payload, metadata: ClientMetadata) -> str:
        body = {
            "formId": form.id,
            "data": payload,
            "metadata": {
                "ip": metadata.ip,
                "userAgent": metadata.user_agent,
                "receivedAt": metadata.received_at.isoformat(),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        headers = {"Content-Type": "application/json", **self.headers}

        try:
            response = await self._client.post(self.webhook_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise StorageFailureError(
                code="storage_failure",
                message="Failed to save submission",
                details={
                    "adapter": self.storage_type,
                    "context": {"error": f"{type(exc).__name__}: {exc}"},
                },
            ) from exc

        if not response.is_success:
            raise StorageFailureError(
                code="storage_failure",
                message="Failed to save submission",
                details={
                    "adapter": self.storage_type,
                    "context": {"error": f"Webhook failed: {response.status_code}"},
                },
            )

        return new_submission_id()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
