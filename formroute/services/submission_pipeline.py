"""Submission intake pipeline.

Every submission passes the same ordered stages, and the first failing stage
short-circuits with its own error:

1. rate limit (per client identity)
2. per-form authentication (API key, then origin allowlist)
3. payload shape validation
4. spam verification (honeypot, then CAPTCHA)
5. persistence through the form's storage adapter
6. best-effort notification

Nothing is retried. Once stage 5 succeeds the submission is final: the save
runs as a shielded task so a client disconnect cannot cancel it, and a
notifier failure is only logged.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Union

from formroute.adapters.notifier.base import AbstractNotifier
from formroute.adapters.rate_limit.base import AbstractRateLimiter
from formroute.adapters.storage.base import AbstractStorageAdapter
from formroute.adapters.storage.factory import StorageRegistry
from formroute.core.auth import Credentials, authenticate
from formroute.core.config import AppSettings
from formroute.core.errors import AppError, RateLimitedError, StorageFailureError, ValidationAppError
from formroute.core.rate_limit import hash_client_key
from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import ClientMetadata, Payload, Submission
from formroute.services.spam_guard import SpamGuard, strip_control_fields

logger = logging.getLogger(__name__)

SCALAR_TYPES = (str, int, float, bool)

# A parsed body, or a coroutine function producing one. Loading lazily keeps
# malformed-body errors in the validation stage.
SubmissionBody = Union[Any, Callable[[], Awaitable[Any]]]


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of a stored submission, before response negotiation."""

    submission_id: str
    message: str
    redirect_url: str | None = None


def _parse_accept(accept: str) -> list[tuple[str, float]]:
    ranges: list[tuple[str, float]] = []
    for part in accept.split(","):
        media, *params = [p.strip() for p in part.split(";")]
        if not media:
            continue
        q = 1.0
        for param in params:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    q = float(value)
                except ValueError:
                    q = 0.0
        ranges.append((media.lower(), q))
    return ranges


def prefers_html(accept: str | None) -> bool:
    """Return True when the Accept header favors an HTML page over JSON.

    ``text/html`` must be listed explicitly with a quality at least that of
    the best range matching ``application/json`` (including wildcards).
    """
    if not accept:
        return False
    ranges = _parse_accept(accept)
    html_q = max((q for media, q in ranges if media == "text/html"), default=0.0)
    if html_q <= 0:
        return False
    json_q = max(
        (q for media, q in ranges if media in ("application/json", "application/*", "*/*")),
        default=0.0,
    )
    return html_q >= json_q


def _log_detached_save(form_id: str, save: asyncio.Future) -> None:
    """Record how a save finished after its request was cancelled."""
    if save.cancelled():
        return
    exc = save.exception()
    if exc is not None:
        logger.error(
            "storage.detached_save_failed",
            exc_info=exc,
            extra={"form_id": form_id, "error": f"{type(exc).__name__}: {exc}"},
        )
        return
    logger.info("storage.detached_save_completed", extra={"form_id": form_id, "submission_id": save.result()})


def wants_redirect(form: FormDefinition, accept: str | None) -> bool:
    return bool(form.redirect_url) and prefers_html(accept)


def validate_payload(data: Any, *, max_fields: int) -> Payload:
    """Check that a submission is a non-empty mapping of scalar values.

    Raises:
        ValidationAppError: On an empty body, too many fields, or nested values.
    """
    if not isinstance(data, Mapping) or not data:
        raise ValidationAppError(code="empty_submission", message="No form data provided")

    if len(data) > max_fields:
        raise ValidationAppError(
            code="too_many_fields",
            message="Too many fields in submission",
            details={"hint": f"At most {max_fields} fields are accepted"},
        )

    invalid = sorted(
        str(key) for key, value in data.items() if value is not None and not isinstance(value, SCALAR_TYPES)
    )
    if invalid:
        raise ValidationAppError(
            code="invalid_field_value",
            message="Field values must be strings, numbers, booleans or null",
            details={"hint": f"Invalid fields: {', '.join(invalid)}"},
        )

    return {str(key): value for key, value in data.items()}


class SubmissionPipeline:
    """Runs a submission through every intake stage."""

    def __init__(
        self,
        *,
        rate_limiter: AbstractRateLimiter,
        spam_guard: SpamGuard,
        storage: StorageRegistry,
        notifier: AbstractNotifier,
        app_settings: AppSettings,
        storage_timeout_seconds: float = 10.0,
        notifier_timeout_seconds: float = 10.0,
    ) -> None:
        self._rate_limiter = rate_limiter
        self._spam_guard = spam_guard
        self._storage = storage
        self._notifier = notifier
        self._app_settings = app_settings
        self._storage_timeout = storage_timeout_seconds
        self._notifier_timeout = notifier_timeout_seconds

    async def submit(
        self,
        form: FormDefinition,
        data: SubmissionBody,
        credentials: Credentials,
        metadata: ClientMetadata,
    ) -> SubmissionOutcome:
        """Accept one submission for a form.

        Args:
            form: Snapshot of the target form.
            data: Parsed request body, or an async loader for it.
            credentials: API key and origin presented by the caller.
            metadata: Client identity and arrival time.

        Returns:
            SubmissionOutcome carrying the generated submission id.

        Raises:
            RateLimitedError: Client exceeded its budget.
            AuthDeniedError: Missing/invalid key or disallowed origin.
            ValidationAppError: Empty or malformed payload.
            SpamRejectedError: Honeypot or CAPTCHA rejection.
            StorageFailureError: Persistence failed or timed out.
        """
        await self._check_rate_limit(metadata.ip, form)

        authenticate(credentials, form.auth_policy).raise_for_denial()

        if callable(data):
            data = await data()
        payload = validate_payload(data, max_fields=self._app_settings.max_fields)

        verdict = await self._spam_guard.verify(payload, form.spam_policy)
        if not verdict.accepted:
            logger.warning("spam.rejected", extra={"form_id": form.id, "reason": verdict.reason})
        verdict.raise_for_rejection()
        payload = strip_control_fields(payload, form.spam_policy)

        adapter = self._storage.get(form.storage_policy)
        save = asyncio.ensure_future(self._save(adapter, form, payload, metadata))
        # The write must finish even if this request is cancelled.
        try:
            submission_id = await asyncio.shield(save)
        except asyncio.CancelledError:
            save.add_done_callback(functools.partial(_log_detached_save, form.id))
            raise

        await self._notify(payload, form, submission_id)

        return SubmissionOutcome(
            submission_id=submission_id,
            message=form.success_message,
            redirect_url=form.redirect_url,
        )

    async def list_submissions(self, form: FormDefinition, credentials: Credentials) -> list[Submission]:
        """Return stored submissions for a form, most recent first.

        Raises:
            AuthDeniedError: Missing/invalid key or disallowed origin.
            UnsupportedOperationError: The form's adapter cannot list.
            StorageFailureError: The read failed or timed out.
        """
        authenticate(credentials, form.auth_policy).raise_for_denial()
        adapter = self._storage.get(form.storage_policy)
        try:
            return await asyncio.wait_for(adapter.list_submissions(form.id), timeout=self._storage_timeout)
        except asyncio.TimeoutError as exc:
            raise StorageFailureError(
                code="storage_timeout",
                message="Failed to fetch submissions",
                details={"adapter": adapter.storage_type, "context": {"timeout_s": self._storage_timeout}},
            ) from exc

    async def _check_rate_limit(self, client_ip: str, form: FormDefinition) -> None:
        if not self._app_settings.rate_limit_enabled:
            return
        result = await self._rate_limiter.check(client_ip)
        if result.allowed:
            return
        retry_after = result.retry_after_seconds or 1
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "client_key_hash": hash_client_key(client_ip),
                "form_id": form.id,
                "limit": result.limit,
                "retry_after_s": retry_after,
            },
        )
        raise RateLimitedError(
            code="rate_limited",
            message="Too many requests",
            details={"retryAfter": retry_after},
        )

    async def _save(
        self,
        adapter: AbstractStorageAdapter,
        form: FormDefinition,
        payload: Payload,
        metadata: ClientMetadata,
    ) -> str:
        try:
            submission_id = await asyncio.wait_for(
                adapter.save(form, payload, metadata),
                timeout=self._storage_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StorageFailureError(
                code="storage_timeout",
                message="Failed to save submission",
                details={"adapter": adapter.storage_type, "context": {"timeout_s": self._storage_timeout}},
            ) from exc
        except AppError:
            raise
        except Exception as exc:
            raise StorageFailureError(
                code="storage_failure",
                message="Failed to save submission",
                details={"adapter": adapter.storage_type, "context": {"error": f"{type(exc).__name__}: {exc}"}},
            ) from exc

        logger.info(
            "storage.saved",
            extra={
                "form_id": form.id,
                "submission_id": submission_id,
                "storage_type": adapter.storage_type,
                "field_count": len(payload),
            },
        )
        return submission_id

    async def _notify(self, payload: Payload, form: FormDefinition, submission_id: str) -> None:
        try:
            await asyncio.wait_for(
                self._notifier.notify(payload, form, submission_id),
                timeout=self._notifier_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "notifier.failed",
                extra={"form_id": form.id, "submission_id": submission_id, "error": "timeout"},
            )
        except Exception as exc:
            logger.warning(
                "notifier.failed",
                extra={
                    "form_id": form.id,
                    "submission_id": submission_id,
                    "error": f"{type(exc).__name__}: {exc}",
                },
            )
