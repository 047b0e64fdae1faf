from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from formroute.api.deps import get_form_service, get_pipeline
from formroute.core.auth import Credentials
from formroute.core.errors import ValidationAppError
from formroute.core.rate_limit import get_client_ip
from formroute.schemas.submissions import ClientMetadata, SubmitSuccessResponse
from formroute.services.form_registry import FormService
from formroute.services.submission_pipeline import SubmissionPipeline, wants_redirect

router = APIRouter(tags=["Submissions"])

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def read_submission_body(request: Request) -> Any:
    """Parse a JSON or form-encoded submission body.

    Raises:
        ValidationAppError: If the body is malformed or of an unsupported type.
    """
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if content_type in FORM_CONTENT_TYPES:
        form = await request.form()
        return {key: value for key, value in form.items()}

    raw = await request.body()
    if not raw.strip():
        return {}

    if content_type and content_type != "application/json" and not content_type.endswith("+json"):
        raise ValidationAppError(
            code="unsupported_media_type",
            message="Submissions must be JSON or form-encoded",
            details={"hint": f"Unsupported content type: {content_type}"},
        )

    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationAppError(code="invalid_body", message="Request body is not valid JSON") from exc

    if not isinstance(data, dict):
        raise ValidationAppError(code="invalid_body", message="Request body must be a JSON object")
    return data


@router.post(
    "/submit/{form_id}",
    response_model=SubmitSuccessResponse,
    responses={302: {"description": "Redirect to the form's redirect URL (browser clients)"}},
)
async def submit_form(
    form_id: str,
    request: Request,
    forms: FormService = Depends(get_form_service),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
):
    """Accept a submission for a form.

    The body is an arbitrary field-to-value mapping, sent as JSON or as a
    regular HTML form post. Browser posts to forms with a ``redirect_url``
    are answered with a 302 redirect; everything else gets a JSON body.

    Returns:
        SubmitSuccessResponse or a redirect.

    Raises:
        NotFoundError: Unknown form (404).
        RateLimitedError: Too many submissions from this client (429).
        AuthDeniedError: Missing/invalid key or origin (401/403).
        ValidationAppError | SpamRejectedError: Rejected payload (400).
        StorageFailureError: Submission could not be stored (500).
    """
    form = forms.get(form_id)
    metadata = ClientMetadata(
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        received_at=datetime.now(timezone.utc),
    )

    outcome = await pipeline.submit(
        form,
        lambda: read_submission_body(request),
        Credentials.from_request(request),
        metadata,
    )

    if wants_redirect(form, request.headers.get("accept")):
        return RedirectResponse(outcome.redirect_url, status_code=302)
    return SubmitSuccessResponse(message=outcome.message, submissionId=outcome.submission_id)
