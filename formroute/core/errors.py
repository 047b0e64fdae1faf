"""Application-level exception types.

This module defines domain errors raised by the intake pipeline and its
collaborators, enabling consistent error handling, logging, and API responses.
Each subclass carries the HTTP status it maps to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Keys listed here are merged into the JSON error body (``retryAfter``,
    ``reason``, ``suggestion``, ``score``). Anything under ``context`` is
    logged but never returned to the caller.
    """

    hint: str
    reason: str
    suggestion: str
    score: float
    retryAfter: int
    adapter: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for clients/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    status_code: ClassVar[int] = 400

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    @property
    def http_status(self) -> int:
        return self.status_code


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class SpamRejectedError(AppError):
    """Raised when the honeypot or CAPTCHA check rejects a submission."""


class UnsupportedOperationError(AppError):
    """Raised when a storage adapter lacks the requested capability."""


class NotFoundError(AppError):
    """Raised when a form does not exist."""

    status_code: ClassVar[int] = 404


class RateLimitedError(AppError):
    """Raised when a client exceeded its submission budget."""

    status_code: ClassVar[int] = 429

    @property
    def retry_after(self) -> int:
        return int((self.details or {}).get("retryAfter", 0))


@dataclass
class AuthDeniedError(AppError):
    """Raised when authentication/authorization fails.

    ``status`` distinguishes a missing credential (401) from an invalid
    credential or a disallowed origin (403).
    """

    status: int = 403

    @property
    def http_status(self) -> int:
        return self.status


class StorageFailureError(AppError):
    """Raised when a storage backend write/read failed or timed out."""

    status_code: ClassVar[int] = 500


class NotifierFailureError(AppError):
    """Raised by notifiers. Absorbed by the pipeline, never surfaced."""

    status_code: ClassVar[int] = 500
