"""Global exception handlers for consistent error responses.

This module provides FastAPI exception handlers that intercept all errors
(domain and unexpected) and return consistent JSON responses with proper
HTTP status codes and traceability.

Design:
- AppError subclasses → the status they carry (400, 401/403, 404, 429, 500)
- Unexpected Exception → generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from formroute.core.errors import AppError, RateLimitedError, StorageFailureError
from formroute.core.logging import get_request_id

logger = logging.getLogger(__name__)

# Detail keys that are safe to echo back to the caller.
_PUBLIC_DETAIL_KEYS = ("reason", "suggestion", "score", "retryAfter", "hint")


def build_error_body(exc: AppError) -> dict:
    """Build the JSON error body for a domain error.

    Shape: ``{"error": message, "code": code, "request_id": ..., **details}``
    where only public detail keys are merged in.
    """
    body: dict = {
        "error": exc.message,
        "code": exc.code,
        "request_id": get_request_id(),
    }
    for key in _PUBLIC_DETAIL_KEYS:
        if exc.details and key in exc.details:
            body[key] = exc.details[key]
    return body


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the status the error carries.
    """
    status_code = exc.http_status

    log = logger.error if isinstance(exc, StorageFailureError) else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "request_path": request.url.path,
            "context": (exc.details or {}).get("context"),
            "request_id": get_request_id(),
        },
    )

    headers: dict[str, str] | None = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}

    return JSONResponse(
        status_code=status_code,
        content=build_error_body(exc),
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the full exception server-side while returning a generic message.
    Prevents information leakage (no stack traces to client).
    """
    logger.error(
        "unhandled_exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "code": "internal_server_error",
            "request_id": get_request_id(),
        },
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map request schema violations (e.g. malformed form policies) to 400."""
    errors = exc.errors()
    hint = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in errors
    )
    logger.warning(
        "request_validation_failed",
        extra={
            "request_path": request.url.path,
            "error_count": len(errors),
            "request_id": get_request_id(),
        },
    )
    return JSONResponse(
        status_code=400,
        content={
            "error": "Invalid request",
            "code": "invalid_request",
            "request_id": get_request_id(),
            "hint": hint,
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(request_validation_handler)
    app.exception_handler(Exception)(general_exception_handler)
