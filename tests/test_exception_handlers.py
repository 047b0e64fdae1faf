"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from formroute.core.errors import (
    AppError,
    AuthDeniedError,
    NotFoundError,
    RateLimitedError,
    SpamRejectedError,
    StorageFailureError,
    UnsupportedOperationError,
    ValidationAppError,
)
from formroute.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        ("exc", "status"),
        [
            (ValidationAppError(code="empty_submission", message="No form data provided"), 400),
            (SpamRejectedError(code="spam_rejected", message="Spam protection failed"), 400),
            (UnsupportedOperationError(code="unsupported_operation", message="nope"), 400),
            (AuthDeniedError(code="unauthorized", message="API key required", status=401), 401),
            (AuthDeniedError(code="forbidden", message="Domain not allowed"), 403),
            (NotFoundError(code="form_not_found", message="Form not found"), 404),
            (RateLimitedError(code="rate_limited", message="Too many requests", details={"retryAfter": 7}), 429),
            (StorageFailureError(code="storage_failure", message="Failed to save submission"), 500),
        ],
    )
    def test_status_codes(self, client: TestClient, app_with_handlers: FastAPI, exc: AppError, status: int):
        """Each error type maps to the status it carries."""

        @app_with_handlers.get("/boom")
        async def boom():
            raise exc

        response = client.get("/boom")

        assert response.status_code == status
        data = response.json()
        assert data["error"] == exc.message
        assert data["code"] == exc.code
        assert "request_id" in data

    def test_public_details_are_merged(self, client: TestClient, app_with_handlers: FastAPI):
        """reason/score/suggestion are returned; context is not."""

        @app_with_handlers.get("/spam")
        async def spam():
            raise SpamRejectedError(
                code="spam_rejected",
                message="Spam protection failed",
                details={
                    "reason": "CAPTCHA verification failed (score: 0.2)",
                    "score": 0.2,
                    "context": {"secret": "do-not-leak"},
                },
            )

        response = client.get("/spam")
        data = response.json()

        assert data["reason"] == "CAPTCHA verification failed (score: 0.2)"
        assert data["score"] == 0.2
        assert "context" not in data
        assert "do-not-leak" not in response.text

    def test_rate_limited_sets_retry_after_header(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/limited")
        async def limited():
            raise RateLimitedError(code="rate_limited", message="Too many requests", details={"retryAfter": 42})

        response = client.get("/limited")

        assert response.headers["Retry-After"] == "42"
        assert response.json()["retryAfter"] == 42

    def test_request_validation_is_400(self, client: TestClient, app_with_handlers: FastAPI):
        class Body(BaseModel):
            name: str

        @app_with_handlers.post("/validate")
        async def validate(body: Body):
            return body

        response = client.post("/validate", json={})

        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "invalid_request"
        assert "name" in data["hint"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: database connection failed")
        response = asyncio.run(general_exception_handler(request, exc))

        data = json.loads(bytes(response.body).decode())
        assert response.status_code == 500
        assert data["code"] == "internal_server_error"
        assert data["error"] == "Internal server error"
        assert "database connection" not in json.dumps(data)
        assert "request_id" in data

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_text = bytes(response.body).decode()
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text

    def test_unhandled_error_in_route_is_500(self, app_with_handlers: FastAPI):
        @app_with_handlers.get("/crash")
        async def crash():
            raise RuntimeError("secret internals")

        client = TestClient(app_with_handlers, raise_server_exceptions=False)
        response = client.get("/crash")

        assert response.status_code == 500
        assert "secret internals" not in response.text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
