"""Spam verification for incoming submissions.

The guard dispatches on the form's spam policy variant:

- ``disabled``: everything is accepted.
- ``honeypot``: a hidden field must be absent or blank.
- ``honeypot_captcha``: honeypot first, then a CAPTCHA token verified with the
  configured provider.

CAPTCHA verification is fail-closed: a provider that cannot be reached, times
out or answers garbage rejects the submission, unless the form explicitly
opts into ``fail_open``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Mapping

from formroute.adapters.captcha.base import AbstractCaptchaVerifier, CaptchaResult
from formroute.core.errors import SpamRejectedError
from formroute.schemas.forms import (
    CaptchaProvider,
    CaptchaSpamPolicy,
    DisabledSpamPolicy,
    HoneypotSpamPolicy,
    SpamPolicy,
)
from formroute.schemas.submissions import Payload

logger = logging.getLogger(__name__)

HONEYPOT_TRIGGERED = "Honeypot triggered"
CAPTCHA_MISSING = "CAPTCHA token missing"
CAPTCHA_FAILED = "CAPTCHA verification failed"


@dataclass(frozen=True)
class SpamVerdict:
    accepted: bool
    reason: str | None = None
    score: float | None = None

    def raise_for_rejection(self) -> None:
        if self.accepted:
            return
        details = {"reason": self.reason or CAPTCHA_FAILED}
        if self.score is not None:
            details["score"] = self.score
        raise SpamRejectedError(
            code="spam_rejected",
            message="Spam protection failed",
            details=details,
        )


ACCEPTED = SpamVerdict(accepted=True)


def check_honeypot(payload: Mapping[str, object], field: str) -> bool:
    """Return True when the honeypot field is absent or whitespace-only."""
    value = payload.get(field)
    if value is None:
        return True
    return str(value).strip() == ""


def control_fields(policy: SpamPolicy) -> set[str]:
    """Fields consumed by the spam policy that must not be persisted."""
    if isinstance(policy, CaptchaSpamPolicy):
        return {policy.honeypot_field, policy.captcha.token_field}
    if isinstance(policy, HoneypotSpamPolicy):
        return {policy.honeypot_field}
    return set()


def strip_control_fields(payload: Payload, policy: SpamPolicy) -> Payload:
    fields = control_fields(policy)
    return {k: v for k, v in payload.items() if k not in fields}


def _format_failure(score: float | None) -> str:
    if score is None:
        return CAPTCHA_FAILED
    return f"{CAPTCHA_FAILED} (score: {score})"


class SpamGuard:
    """Verifies submissions against a form's spam policy."""

    def __init__(
        self,
        verifiers: Mapping[CaptchaProvider, AbstractCaptchaVerifier],
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._verifiers = dict(verifiers)
        self._timeout_seconds = timeout_seconds

    async def verify(self, payload: Payload, policy: SpamPolicy) -> SpamVerdict:
        """Run the checks the policy asks for.

        Args:
            payload: Submitted fields.
            policy: The form's spam policy.

        Returns:
            SpamVerdict; never raises for provider failures.
        """
        if isinstance(policy, DisabledSpamPolicy):
            return ACCEPTED

        if not check_honeypot(payload, policy.honeypot_field):
            return SpamVerdict(accepted=False, reason=HONEYPOT_TRIGGERED)

        if isinstance(policy, CaptchaSpamPolicy):
            return await self._verify_captcha(payload, policy)

        return ACCEPTED

    async def _verify_captcha(self, payload: Payload, policy: CaptchaSpamPolicy) -> SpamVerdict:
        captcha = policy.captcha
        token = payload.get(captcha.token_field)
        if token is None or not str(token).strip():
            return SpamVerdict(accepted=False, reason=CAPTCHA_MISSING)

        verifier = self._verifiers.get(captcha.provider)
        if verifier is None:
            return SpamVerdict(accepted=False, reason="Unknown CAPTCHA type")

        try:
            result = await asyncio.wait_for(
                verifier.verify(str(token), captcha.secret, min_score=captcha.min_score),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            result = CaptchaResult(success=False, error="timeout")

        if result.success:
            return SpamVerdict(accepted=True, score=result.score)

        if result.indeterminate and captcha.fail_open:
            logger.warning(
                "spam.captcha_fail_open",
                extra={"provider": captcha.provider.value, "error": result.error},
            )
            return SpamVerdict(accepted=True)

        return SpamVerdict(
            accepted=False,
            reason=_format_failure(result.score),
            score=result.score,
        )
