"""Request-scoped accessors for the services wired in ``create_app``."""

from __future__ import annotations

from fastapi import Request

from formroute.core.config import Settings
from formroute.services.form_registry import FormService
from formroute.services.submission_pipeline import SubmissionPipeline


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_form_service(request: Request) -> FormService:
    return request.app.state.forms


def get_pipeline(request: Request) -> SubmissionPipeline:
    return request.app.state.pipeline
