from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from formroute.api.deps import get_form_service, get_pipeline
from formroute.core.auth import Credentials
from formroute.schemas.submissions import SubmissionListResponse
from formroute.services.form_registry import FormService
from formroute.services.submission_pipeline import SubmissionPipeline

router = APIRouter(tags=["Submissions"])


@router.get("/forms/{form_id}/submissions", response_model=SubmissionListResponse)
async def list_submissions(
    form_id: str,
    request: Request,
    forms: FormService = Depends(get_form_service),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
) -> SubmissionListResponse:
    """List stored submissions for a form, most recent first.

    Uses the form's own access policy (its API key and allowed origins).
    Write-only storage types answer 400 with a suggestion.
    """
    form = forms.get(form_id)
    submissions = await pipeline.list_submissions(form, Credentials.from_request(request))
    return SubmissionListResponse(submissions=submissions)
