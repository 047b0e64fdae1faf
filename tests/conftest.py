"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It ensures that the TESTING environment variable is set to prevent
loading the .env file during tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
# This prevents Pydantic from loading the .env file in tests
os.environ["TESTING"] = "true"
os.environ.setdefault("APP_ENV", "testing")

import httpx
import pytest
from fastapi.testclient import TestClient

from formroute.core.app_factory import create_app
from formroute.core.config import AppSettings, LogSettings, Settings, StorageSettings
from tests.factories import RecordingNotifier

ADMIN_KEY = "admin-key-123"


@pytest.fixture
def sqlite_path(tmp_path) -> str:
    return str(tmp_path / "submissions.db")


@pytest.fixture
def test_settings(sqlite_path) -> Settings:
    return Settings(
        log=LogSettings(level="WARNING"),
        app=AppSettings(
            admin_api_key_required=True,
            admin_api_keys=ADMIN_KEY,
            rate_limit_requests=5,
            rate_limit_window_seconds=60,
        ),
        storage=StorageSettings(sqlite_path=sqlite_path),
    )


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def outbound_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def http_client(outbound_requests) -> httpx.AsyncClient:
    """Shared client whose outbound calls never leave the process.

    CAPTCHA siteverify calls succeed for the token ``good-token``; webhook
    URLs under ``hooks.test`` answer 200 except ``/fail`` which answers 500.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        outbound_requests.append(request)
        if request.url.path.endswith("siteverify"):
            token = dict(httpx.QueryParams(request.content.decode())).get("response")
            return httpx.Response(200, json={"success": token == "good-token"})
        if request.url.host == "hooks.test":
            return httpx.Response(500 if request.url.path == "/fail" else 200, json={})
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def app(test_settings, notifier, http_client):
    return create_app(test_settings, notifier=notifier, http_client=http_client)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-API-Key": ADMIN_KEY}


@pytest.fixture
def create_form(client, admin_headers):
    """Create a form through the admin API and return its id."""

    def _create(**body) -> str:
        body.setdefault("name", "Contact Form")
        resp = client.post("/forms", json=body, headers=admin_headers)
        assert resp.status_code == 200, resp.text
        return resp.json()["formId"]

    return _create
