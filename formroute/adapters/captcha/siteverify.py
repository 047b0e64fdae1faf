"""CAPTCHA verifiers for providers exposing a ``siteverify`` endpoint.

reCAPTCHA, hCaptcha and Turnstile share the same protocol: a form-encoded POST
of ``secret`` and ``response`` answered by JSON with a ``success`` flag.
reCAPTCHA v3 additionally returns a ``score`` in [0, 1].
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from formroute.adapters.captcha.base import AbstractCaptchaVerifier, CaptchaResult

logger = logging.getLogger(__name__)


class SiteVerifyClient(AbstractCaptchaVerifier):
    """Boolean verifier: the provider's ``success`` flag is the verdict."""

    def __init__(
        self,
        verify_url: str,
        *,
        provider_name: str = "siteverify",
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            verify_url: Provider verification endpoint.
            provider_name: Tag used in logs.
            timeout_seconds: Bound for the whole verification call.
            client: Shared async HTTP client; one is created per call if omitted.
        """
        self.verify_url = verify_url
        self.provider_name = provider_name
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _post(self, token: str, secret: str) -> dict[str, Any]:
        data = {"secret": secret, "response": token}
        timeout = httpx.Timeout(self.timeout_seconds)
        if self._client is not None:
            response = await self._client.post(self.verify_url, data=data, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(self.verify_url, data=data)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError("verification response is not a JSON object")
        return body

    def _interpret(self, body: dict[str, Any], min_score: float | None) -> CaptchaResult:
        return CaptchaResult(success=body.get("success") is True)

    async def verify(self, token: str, secret: str, *, min_score: float | None = None) -> CaptchaResult:
        try:
            body = await self._post(token, secret)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "captcha.verify_error",
                extra={
                    "provider": self.provider_name,
                    "error_type": type(exc).__name__,
                },
            )
            return CaptchaResult(success=False, error=type(exc).__name__)

        result = self._interpret(body, min_score)
        if not result.success:
            logger.info(
                "captcha.rejected",
                extra={
                    "provider": self.provider_name,
                    "score": result.score,
                    "error_codes": body.get("error-codes"),
                },
            )
        return result


class ScoredSiteVerifyClient(SiteVerifyClient):
    """Verifier for score-based providers (reCAPTCHA v3).

    Success requires both the provider flag and ``score >= min_score``. A
    response without a numeric score never succeeds.
    """

    default_min_score = 0.5

    def _interpret(self, body: dict[str, Any], min_score: float | None) -> CaptchaResult:
        raw_score = body.get("score")
        score = float(raw_score) if isinstance(raw_score, (int, float)) and not isinstance(raw_score, bool) else None
        threshold = self.default_min_score if min_score is None else min_score
        success = body.get("success") is True and score is not None and score >= threshold
        return CaptchaResult(success=success, score=score)
