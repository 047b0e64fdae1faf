"""Unit tests for the submission intake pipeline (no HTTP layer)."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from formroute.adapters.captcha.base import CaptchaResult
from formroute.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from formroute.adapters.storage.base import AbstractStorageAdapter
from formroute.core.auth import Credentials
from formroute.core.config import AppSettings
from formroute.core.errors import (
    AuthDeniedError,
    NotifierFailureError,
    RateLimitedError,
    SpamRejectedError,
    StorageFailureError,
    UnsupportedOperationError,
    ValidationAppError,
)
from formroute.schemas.forms import (
    AuthPolicy,
    CaptchaPolicy,
    CaptchaProvider,
    CaptchaSpamPolicy,
    HoneypotSpamPolicy,
    StoragePolicy,
)
from formroute.services.spam_guard import SpamGuard
from formroute.services.submission_pipeline import (
    SubmissionPipeline,
    prefers_html,
    validate_payload,
    wants_redirect,
)
from tests.factories import RecordingNotifier, make_form, make_metadata


class MemoryAdapter(AbstractStorageAdapter):
    storage_type = "memory"

    def __init__(self, delay: float = 0.0, error: Exception | None = None) -> None:
        self.saved: list[dict] = []
        self.delay = delay
        self.error = error

    async def save(self, form, payload, metadata) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.saved.append(dict(payload))
        return f"sub-{len(self.saved)}"


class FixedRegistry:
    """Storage registry double returning one adapter for every policy."""

    def __init__(self, adapter: AbstractStorageAdapter) -> None:
        self.adapter = adapter

    def get(self, policy: StoragePolicy) -> AbstractStorageAdapter:
        return self.adapter


def build_pipeline(
    *,
    adapter: AbstractStorageAdapter | None = None,
    notifier=None,
    limit: int = 100,
    verifier_result: CaptchaResult | None = None,
    storage_timeout: float = 1.0,
    notifier_timeout: float = 1.0,
    **app_overrides,
):
    verifier = AsyncMock()
    verifier.verify.return_value = verifier_result or CaptchaResult(success=True)
    adapter = adapter or MemoryAdapter()
    notifier = notifier or RecordingNotifier()
    pipeline = SubmissionPipeline(
        rate_limiter=InMemorySlidingWindowRateLimiter(limit=limit, window_seconds=60),
        spam_guard=SpamGuard({CaptchaProvider.TURNSTILE: verifier}),
        storage=FixedRegistry(adapter),
        notifier=notifier,
        app_settings=AppSettings(**app_overrides),
        storage_timeout_seconds=storage_timeout,
        notifier_timeout_seconds=notifier_timeout,
    )
    return pipeline, adapter, notifier, verifier


class TestStages:
    @pytest.mark.asyncio
    async def test_happy_path_saves_and_notifies(self) -> None:
        pipeline, adapter, notifier, _ = build_pipeline()
        form = make_form()

        outcome = await pipeline.submit(form, {"name": "Ada"}, Credentials(), make_metadata())

        assert outcome.submission_id == "sub-1"
        assert outcome.message == "Thanks!"
        assert adapter.saved == [{"name": "Ada"}]
        assert notifier.calls == [({"name": "Ada"}, "form-1", "sub-1")]

    @pytest.mark.asyncio
    async def test_rate_limit_is_checked_before_auth(self) -> None:
        pipeline, adapter, _, _ = build_pipeline(limit=1)
        form = make_form(auth_policy=AuthPolicy(api_key="k1"))

        with pytest.raises(AuthDeniedError):
            await pipeline.submit(form, {"a": 1}, Credentials(), make_metadata())
        with pytest.raises(RateLimitedError) as exc_info:
            await pipeline.submit(form, {"a": 1}, Credentials(), make_metadata())

        assert exc_info.value.retry_after >= 1
        assert adapter.saved == []

    @pytest.mark.asyncio
    async def test_rate_limit_can_be_disabled(self) -> None:
        pipeline, adapter, _, _ = build_pipeline(limit=1, rate_limit_enabled=False)

        for _ in range(3):
            await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata())

        assert len(adapter.saved) == 3

    @pytest.mark.asyncio
    async def test_clients_are_limited_independently(self) -> None:
        pipeline, _, _, _ = build_pipeline(limit=1)

        await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata("198.51.100.1"))
        await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata("198.51.100.2"))

        with pytest.raises(RateLimitedError):
            await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata("198.51.100.1"))

    @pytest.mark.asyncio
    async def test_auth_runs_before_payload_validation(self) -> None:
        pipeline, _, _, _ = build_pipeline()
        form = make_form(auth_policy=AuthPolicy(api_key="k1"))

        with pytest.raises(AuthDeniedError) as exc_info:
            await pipeline.submit(form, {}, Credentials(api_key="wrong"), make_metadata())

        assert exc_info.value.http_status == 403

    @pytest.mark.asyncio
    async def test_body_loader_is_only_called_after_auth(self) -> None:
        pipeline, _, _, _ = build_pipeline()
        form = make_form(auth_policy=AuthPolicy(api_key="k1"))
        loader = AsyncMock(return_value={"a": 1})

        with pytest.raises(AuthDeniedError):
            await pipeline.submit(form, loader, Credentials(), make_metadata())
        loader.assert_not_called()

        await pipeline.submit(form, loader, Credentials(api_key="k1"), make_metadata())
        loader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_payload_rejected(self) -> None:
        pipeline, adapter, _, _ = build_pipeline()

        with pytest.raises(ValidationAppError) as exc_info:
            await pipeline.submit(make_form(), {}, Credentials(), make_metadata())

        assert exc_info.value.message == "No form data provided"
        assert adapter.saved == []

    @pytest.mark.asyncio
    async def test_spam_rejection_skips_storage(self) -> None:
        pipeline, adapter, notifier, _ = build_pipeline()
        form = make_form(spam_policy=HoneypotSpamPolicy())

        with pytest.raises(SpamRejectedError) as exc_info:
            await pipeline.submit(form, {"name": "bot", "_gotcha": "x"}, Credentials(), make_metadata())

        assert exc_info.value.details["reason"] == "Honeypot triggered"
        assert adapter.saved == []
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_control_fields_are_not_persisted(self) -> None:
        pipeline, adapter, _, verifier = build_pipeline()
        form = make_form(
            spam_policy=CaptchaSpamPolicy(
                captcha=CaptchaPolicy(provider=CaptchaProvider.TURNSTILE, secret="s"),
            )
        )

        await pipeline.submit(
            form,
            {"name": "Ada", "_gotcha": "", "captcha_token": "tok"},
            Credentials(),
            make_metadata(),
        )

        verifier.verify.assert_awaited_once()
        assert adapter.saved == [{"name": "Ada"}]

    @pytest.mark.asyncio
    async def test_storage_failure_propagates_and_skips_notify(self) -> None:
        error = StorageFailureError(code="storage_failure", message="Failed to save submission")
        pipeline, _, notifier, _ = build_pipeline(adapter=MemoryAdapter(error=error))

        with pytest.raises(StorageFailureError):
            await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata())

        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_adapter_error_becomes_storage_failure(self) -> None:
        pipeline, _, _, _ = build_pipeline(adapter=MemoryAdapter(error=RuntimeError("disk on fire")))

        with pytest.raises(StorageFailureError) as exc_info:
            await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata())

        assert exc_info.value.details["adapter"] == "memory"

    @pytest.mark.asyncio
    async def test_save_timeout_is_storage_failure(self) -> None:
        pipeline, _, _, _ = build_pipeline(adapter=MemoryAdapter(delay=1.0), storage_timeout=0.01)

        with pytest.raises(StorageFailureError) as exc_info:
            await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata())

        assert exc_info.value.code == "storage_timeout"


class TestDurability:
    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_change_outcome(self, caplog) -> None:
        notifier = RecordingNotifier(error=NotifierFailureError(code="notifier_failure", message="smtp down"))
        pipeline, adapter, _, _ = build_pipeline(notifier=notifier)

        with caplog.at_level(logging.WARNING):
            outcome = await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata())

        assert outcome.submission_id == "sub-1"
        assert adapter.saved == [{"a": 1}]
        assert any(r.getMessage() == "notifier.failed" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_slow_notifier_is_bounded(self) -> None:
        slow = AsyncMock()

        async def never_done(*args):
            await asyncio.sleep(10)

        slow.notify.side_effect = never_done
        pipeline, _, _, _ = build_pipeline(notifier=slow, notifier_timeout=0.01)

        outcome = await pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata())

        assert outcome.submission_id == "sub-1"

    @pytest.mark.asyncio
    async def test_cancelling_request_does_not_cancel_save(self) -> None:
        adapter = MemoryAdapter(delay=0.05)
        pipeline, _, _, _ = build_pipeline(adapter=adapter)

        task = asyncio.create_task(pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await asyncio.sleep(0.1)
        assert adapter.saved == [{"a": 1}]

    @pytest.mark.asyncio
    async def test_save_finishing_after_cancel_is_logged(self, caplog) -> None:
        caplog.set_level(logging.INFO, logger="formroute.services.submission_pipeline")
        adapter = MemoryAdapter(delay=0.05)
        pipeline, _, _, _ = build_pipeline(adapter=adapter)

        task = asyncio.create_task(pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.1)

        (record,) = [r for r in caplog.records if r.getMessage() == "storage.detached_save_completed"]
        assert record.submission_id == "sub-1"
        assert record.form_id == "form-1"

    @pytest.mark.asyncio
    async def test_save_failing_after_cancel_is_logged(self, caplog) -> None:
        caplog.set_level(logging.INFO, logger="formroute.services.submission_pipeline")
        adapter = MemoryAdapter(delay=0.05, error=RuntimeError("disk full"))
        pipeline, _, _, _ = build_pipeline(adapter=adapter)

        task = asyncio.create_task(pipeline.submit(make_form(), {"a": 1}, Credentials(), make_metadata()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0.1)

        (record,) = [r for r in caplog.records if r.getMessage() == "storage.detached_save_failed"]
        assert record.levelno == logging.ERROR
        assert isinstance(record.exc_info[1], StorageFailureError)
        assert str(record.exc_info[1].__cause__) == "disk full"


class TestListing:
    @pytest.mark.asyncio
    async def test_listing_requires_form_credentials(self) -> None:
        pipeline, _, _, _ = build_pipeline()
        form = make_form(auth_policy=AuthPolicy(api_key="k1"))

        with pytest.raises(AuthDeniedError):
            await pipeline.list_submissions(form, Credentials())

    @pytest.mark.asyncio
    async def test_listing_unsupported_adapter(self) -> None:
        pipeline, _, _, _ = build_pipeline()

        with pytest.raises(UnsupportedOperationError):
            await pipeline.list_submissions(make_form(), Credentials())


class TestValidatePayload:
    def test_accepts_scalars(self) -> None:
        payload = {"s": "x", "i": 1, "f": 1.5, "b": False, "n": None}
        assert validate_payload(payload, max_fields=10) == payload

    @pytest.mark.parametrize("value", [{"nested": 1}, [1, 2]])
    def test_rejects_nested_values(self, value) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            validate_payload({"ok": "x", "bad": value}, max_fields=10)
        assert "bad" in exc_info.value.details["hint"]

    def test_rejects_too_many_fields(self) -> None:
        with pytest.raises(ValidationAppError) as exc_info:
            validate_payload({str(i): i for i in range(3)}, max_fields=2)
        assert exc_info.value.code == "too_many_fields"


class TestNegotiation:
    @pytest.mark.parametrize(
        ("accept", "expected"),
        [
            (None, False),
            ("", False),
            ("application/json", False),
            ("*/*", False),
            ("text/html", True),
            ("text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8", True),
            ("application/json, text/html;q=0.5", False),
            ("text/html;q=0.9, application/json;q=0.9", True),
            ("text/html;q=0", False),
        ],
    )
    def test_prefers_html(self, accept, expected) -> None:
        assert prefers_html(accept) is expected

    def test_redirect_requires_redirect_url(self) -> None:
        assert wants_redirect(make_form(), "text/html") is False
        assert wants_redirect(make_form(redirect_url="https://example.com/thanks"), "text/html") is True
