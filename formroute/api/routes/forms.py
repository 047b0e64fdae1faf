from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from formroute.api.deps import get_form_service, get_settings
from formroute.core.auth import verify_admin_api_key
from formroute.core.config import Settings
from formroute.core.rate_limit import get_client_ip
from formroute.schemas.forms import (
    FormCreate,
    FormCreatedResponse,
    FormListResponse,
    FormSummary,
    FormUpdate,
)
from formroute.services.form_registry import FormService

router = APIRouter(tags=["Forms"], dependencies=[Depends(verify_admin_api_key)])


def build_submit_url(request: Request, settings: Settings, form_id: str) -> str:
    base = settings.app.public_base_url or str(request.base_url)
    return f"{base.rstrip('/')}/submit/{form_id}"


@router.post("/forms", response_model=FormCreatedResponse)
def create_form(
    body: FormCreate,
    request: Request,
    forms: FormService = Depends(get_form_service),
    settings: Settings = Depends(get_settings),
) -> FormCreatedResponse:
    """Create a form.

    Consent metadata (timestamp, client address, terms and privacy versions)
    is recorded for the creating client. Secrets in the policies are stored
    but never returned.
    """
    form = forms.create(body, client_ip=get_client_ip(request))
    return FormCreatedResponse(
        formId=form.id,
        submitUrl=build_submit_url(request, settings, form.id),
        form=FormSummary.from_definition(form),
    )


@router.get("/forms", response_model=FormListResponse)
def list_forms(forms: FormService = Depends(get_form_service)) -> FormListResponse:
    return FormListResponse(forms=[FormSummary.from_definition(f) for f in forms.list()])


@router.get("/forms/{form_id}", response_model=FormSummary)
def get_form(form_id: str, forms: FormService = Depends(get_form_service)) -> FormSummary:
    return FormSummary.from_definition(forms.get(form_id))


@router.patch("/forms/{form_id}", response_model=FormSummary)
def update_form(
    form_id: str,
    body: FormUpdate,
    forms: FormService = Depends(get_form_service),
) -> FormSummary:
    """Partially update a form. Omitted fields keep their current values."""
    return FormSummary.from_definition(forms.update(form_id, body))


@router.delete("/forms/{form_id}", status_code=204, response_class=Response)
def delete_form(form_id: str, forms: FormService = Depends(get_form_service)) -> Response:
    forms.delete(form_id)
    return Response(status_code=204)
