"""Pydantic schemas for submissions and intake responses."""

from __future__ import annotations

from datetime import datetime
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

# Field values accepted in a submission payload.
Scalar = Union[str, int, float, bool, None]
Payload = dict[str, Scalar]


class ClientMetadata(BaseModel):
    """Who sent a submission and when it arrived."""

    model_config = ConfigDict(frozen=True)

    ip: str
    user_agent: str = ""
    received_at: datetime


class Submission(BaseModel):
    """One persisted intake event."""

    id: str
    form_id: str
    payload: Payload
    client_metadata: ClientMetadata


class SubmitSuccessResponse(BaseModel):
    success: bool = True
    message: str
    submissionId: str = Field(..., min_length=1)


class SubmissionListResponse(BaseModel):
    submissions: list[Submission]
