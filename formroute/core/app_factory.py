"""Application factory for the FastAPI app.

Centralizes app construction (services, middleware, handlers, routers) so
tests can build isolated apps from explicit settings. Long-lived services are
created here and exposed on ``app.state``; the lifespan only runs the
rate-limit sweeper and closes network clients and storage adapters.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from formroute.adapters.captcha.factory import create_captcha_verifiers
from formroute.adapters.notifier.base import AbstractNotifier
from formroute.adapters.notifier.email import EmailNotifier
from formroute.adapters.storage.factory import StorageRegistry
from formroute.api.routes import forms_router, health_router, submissions_router, submit_router
from formroute.core.config import Settings, settings as default_settings
from formroute.core.exception_handlers import setup_exception_handlers
from formroute.core.logging import configure_logging
from formroute.core.middleware import request_id_middleware
from formroute.core.openapi import apply_openapi_customizations
from formroute.core.rate_limit import build_rate_limiter, run_rate_limit_sweeper
from formroute.services.form_registry import FormRepository, FormService, InMemoryFormRepository
from formroute.services.spam_guard import SpamGuard
from formroute.services.submission_pipeline import SubmissionPipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    sweeper = asyncio.create_task(
        run_rate_limit_sweeper(
            state.rate_limiter,
            state.settings.app.rate_limit_sweep_interval_seconds,
        )
    )
    logger.info("app.started", extra={"app_env": state.settings.app_env})
    try:
        yield
    finally:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
        await state.storage.aclose()
        if state.owns_http_client:
            await state.http_client.aclose()
        logger.info("app.stopped")


def create_app(
    settings: Settings | None = None,
    *,
    form_repository: FormRepository | None = None,
    notifier: AbstractNotifier | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Configuration to build from (defaults to the environment).
        form_repository: Form store (defaults to an in-memory one).
        notifier: Notification adapter (defaults to SMTP email).
        http_client: Shared client for CAPTCHA, webhook, Sheets and libSQL
            calls. A caller-provided client is not closed on shutdown.

    Returns:
        Configured FastAPI app with services, middleware, handlers and routers.
    """
    settings = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    owns_http_client = http_client is None
    http_client = http_client or httpx.AsyncClient()

    rate_limiter = build_rate_limiter(settings.app)
    storage = StorageRegistry(settings.storage, http_client=http_client)
    spam_guard = SpamGuard(
        create_captcha_verifiers(settings.captcha, client=http_client),
        timeout_seconds=settings.captcha.timeout_seconds,
    )
    pipeline = SubmissionPipeline(
        rate_limiter=rate_limiter,
        spam_guard=spam_guard,
        storage=storage,
        notifier=notifier or EmailNotifier(settings.notifier),
        app_settings=settings.app,
        storage_timeout_seconds=settings.storage.timeout_seconds,
        notifier_timeout_seconds=settings.notifier.timeout_seconds,
    )
    forms = FormService(
        form_repository or InMemoryFormRepository(),
        settings.app,
        validate_storage=storage.validate,
    )

    app = FastAPI(
        title="FormRoute API",
        description=(
            "Form backend: accepts submissions for configured forms, applies rate "
            "limiting, per-form API key and origin checks, honeypot and CAPTCHA "
            "spam protection, and stores each submission in SQLite, libSQL/Turso, "
            "Google Sheets or a webhook."
        ),
        version="0.1.0",
        debug=settings.app.debug,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.http_client = http_client
    app.state.owns_http_client = owns_http_client
    app.state.rate_limiter = rate_limiter
    app.state.storage = storage
    app.state.pipeline = pipeline
    app.state.forms = forms

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(submit_router)
    app.include_router(submissions_router)
    app.include_router(forms_router)
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, exemptions)
    apply_openapi_customizations(app)

    return app
