from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class CaptchaResult:
    """Outcome of one CAPTCHA verification call.

    Attributes:
        success: Whether the provider vouched for the token (and the score,
            if any, met the threshold).
        score: Confidence score for score-based providers.
        error: Set when the outcome is indeterminate (network failure,
            timeout, malformed response) rather than a provider verdict.
    """

    success: bool
    score: float | None = None
    error: str | None = None

    @property
    def indeterminate(self) -> bool:
        return self.error is not None


class AbstractCaptchaVerifier(ABC):
    """Interface for CAPTCHA providers."""

    @abstractmethod
    async def verify(self, token: str, secret: str, *, min_score: float | None = None) -> CaptchaResult:
        """Verify a client token with the provider.

        Args:
            token: Token produced by the client-side widget.
            secret: Provider secret key configured for the form.
            min_score: Threshold for score-based providers; ignored otherwise.

        Returns:
            CaptchaResult. Implementations never raise for transport errors;
            they report them through ``error``.
        """
        ...
