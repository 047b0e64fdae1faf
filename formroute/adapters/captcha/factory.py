"""Registry mapping CAPTCHA provider tags to verifier instances."""

from __future__ import annotations

import httpx

from formroute.adapters.captcha.base import AbstractCaptchaVerifier
from formroute.adapters.captcha.siteverify import ScoredSiteVerifyClient, SiteVerifyClient
from formroute.core.config import CaptchaSettings
from formroute.schemas.forms import CaptchaProvider

# provider -> (verifier class, settings attribute holding its endpoint)
CAPTCHA_VERIFIERS: dict[CaptchaProvider, tuple[type[SiteVerifyClient], str]] = {
    CaptchaProvider.RECAPTCHA_V2: (SiteVerifyClient, "recaptcha_verify_url"),
    CaptchaProvider.RECAPTCHA_V3: (ScoredSiteVerifyClient, "recaptcha_verify_url"),
    CaptchaProvider.HCAPTCHA: (SiteVerifyClient, "hcaptcha_verify_url"),
    CaptchaProvider.TURNSTILE: (SiteVerifyClient, "turnstile_verify_url"),
}


def create_captcha_verifiers(
    captcha_settings: CaptchaSettings,
    client: httpx.AsyncClient | None = None,
) -> dict[CaptchaProvider, AbstractCaptchaVerifier]:
    """Build one verifier per supported provider.

    Args:
        captcha_settings: Endpoints and timeout.
        client: Optional shared HTTP client (tests pass one backed by
            ``httpx.MockTransport``).

    Returns:
        Mapping from provider tag to verifier.
    """
    return {
        provider: verifier_cls(
            getattr(captcha_settings, url_attr),
            provider_name=provider.value,
            timeout_seconds=captcha_settings.timeout_seconds,
            client=client,
        )
        for provider, (verifier_cls, url_attr) in CAPTCHA_VERIFIERS.items()
    }
