"""CAPTCHA adapter layer - abstracts over verification providers."""

from formroute.adapters.captcha.base import AbstractCaptchaVerifier, CaptchaResult
from formroute.adapters.captcha.factory import create_captcha_verifiers
from formroute.adapters.captcha.siteverify import ScoredSiteVerifyClient, SiteVerifyClient

__all__ = [
    "AbstractCaptchaVerifier",
    "CaptchaResult",
    "ScoredSiteVerifyClient",
    "SiteVerifyClient",
    "create_captcha_verifiers",
]
