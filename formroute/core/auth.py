"""Authentication for form submissions and form management.

Two independent concerns live here:

- ``authenticate``: the per-form capability check run by the intake pipeline.
  It is pure: it evaluates credentials against a form's ``AuthPolicy`` and
  returns a decision without raising or logging.
- ``verify_admin_api_key``: FastAPI dependency guarding the form-management
  endpoints with process-wide admin keys from configuration.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Annotated
from urllib.parse import urlsplit

from fastapi import Header, Request

from formroute.core.errors import AuthDeniedError
from formroute.schemas.forms import AuthPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Caller-presented credentials extracted from a request."""

    api_key: str | None = None
    origin: str | None = None
    referer: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> "Credentials":
        """Read the API key (header, then ``api_key`` query param) and origin headers."""
        api_key = request.headers.get("x-api-key") or request.query_params.get("api_key")
        return cls(
            api_key=api_key or None,
            origin=request.headers.get("origin") or None,
            referer=request.headers.get("referer") or None,
        )


@dataclass(frozen=True)
class AuthResult:
    """Outcome of an authentication check."""

    allowed: bool
    status: int = 200
    reason: str | None = None

    def raise_for_denial(self) -> None:
        """Raise ``AuthDeniedError`` if the check failed."""
        if self.allowed:
            return
        raise AuthDeniedError(
            code="unauthorized" if self.status == 401 else "forbidden",
            message=self.reason or "Access denied",
            status=self.status,
        )


ALLOWED = AuthResult(allowed=True)


def _keys_match(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


def _hostname(url: str) -> str | None:
    try:
        hostname = urlsplit(url.strip()).hostname
    except ValueError:
        return None
    return hostname.lower() if hostname else None


def check_api_key(credentials: Credentials, policy: AuthPolicy) -> AuthResult:
    """API-key gate: passes when the form has no key configured."""
    if not policy.api_key:
        return ALLOWED
    if not credentials.api_key:
        return AuthResult(allowed=False, status=401, reason="API key required")
    if not _keys_match(credentials.api_key, policy.api_key):
        return AuthResult(allowed=False, status=403, reason="Invalid API key")
    return ALLOWED


def check_domain(credentials: Credentials, policy: AuthPolicy) -> AuthResult:
    """Domain gate: passes when the form has an empty allowlist."""
    if not policy.allowed_domains:
        return ALLOWED
    source = credentials.origin or credentials.referer
    if not source:
        return AuthResult(allowed=False, status=403, reason="Origin header required")
    hostname = _hostname(source)
    if hostname is None or hostname not in policy.allowed_domains:
        return AuthResult(allowed=False, status=403, reason="Domain not allowed")
    return ALLOWED


def authenticate(credentials: Credentials, policy: AuthPolicy) -> AuthResult:
    """Evaluate both gates in order; the first failure wins.

    Args:
        credentials: What the caller presented.
        policy: The form's auth policy.

    Returns:
        AuthResult with ``allowed``, the HTTP ``status`` and a ``reason``.

    Examples:
        >>> authenticate(Credentials(), AuthPolicy()).allowed
        True
        >>> authenticate(Credentials(), AuthPolicy(api_key="k1")).status
        401
    """
    result = check_api_key(credentials, policy)
    if not result.allowed:
        return result
    return check_domain(credentials, policy)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ") == {"key1", "key2", "key3"}
        True
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_admin_api_key(provided_key: str | None, *, required: bool, configured_keys: str | None) -> None:
    """Validate an admin key against the configured admin keys.

    Raises:
        AuthDeniedError: 401 when the key is missing, 403 when it is invalid or
            no admin keys are configured.
    """
    if not required:
        return

    valid_keys = parse_api_keys(configured_keys)
    if not valid_keys:
        logger.error(
            "admin_auth.failed",
            extra={"reason": "admin_api_keys_not_configured"},
        )
        raise AuthDeniedError(
            code="admin_api_keys_not_configured",
            message="Admin authentication is enabled but no admin keys are configured",
            details={"hint": "Set APP_ADMIN_API_KEYS or disable with APP_ADMIN_API_KEY_REQUIRED=false"},
            status=403,
        )

    if not provided_key:
        logger.warning("admin_auth.missing_key")
        raise AuthDeniedError(
            code="unauthorized",
            message="Missing API key. Provide X-API-Key header.",
            status=401,
        )

    if not any(_keys_match(provided_key, key) for key in valid_keys):
        logger.warning(
            "admin_auth.failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hashlib.sha256(provided_key.encode()).hexdigest()[:16],
            },
        )
        raise AuthDeniedError(code="forbidden", message="Invalid API key", status=403)


async def verify_admin_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency protecting form-management endpoints.

    Usage:
        @router.post("/forms", dependencies=[Depends(verify_admin_api_key)])
    """
    app_settings = request.app.state.settings.app
    validate_admin_api_key(
        x_api_key,
        required=app_settings.admin_api_key_required,
        configured_keys=app_settings.admin_api_keys,
    )
