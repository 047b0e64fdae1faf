"""Pydantic schemas for form definitions and their policies."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CaptchaProvider(str, Enum):
    """Supported CAPTCHA verification providers."""

    RECAPTCHA_V2 = "recaptcha_v2"
    RECAPTCHA_V3 = "recaptcha_v3"
    HCAPTCHA = "hcaptcha"
    TURNSTILE = "turnstile"


class StorageType(str, Enum):
    """Closed set of storage adapter variants."""

    SQLITE = "sqlite"
    TURSO = "turso"
    GOOGLE_SHEETS = "google_sheets"
    WEBHOOK = "webhook"
    MAKE_WEBHOOK = "make_webhook"


class AuthPolicy(BaseModel):
    """Per-form access policy: optional API key and origin allowlist."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = Field(
        default=None,
        description="Exact key callers must send in X-API-Key or ?api_key=.",
    )
    allowed_domains: frozenset[str] = Field(
        default_factory=frozenset,
        description="Hostnames allowed in the Origin/Referer header (empty allows all).",
    )

    @field_validator("api_key", mode="before")
    @classmethod
    def _blank_key_is_unset(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("allowed_domains", mode="before")
    @classmethod
    def _normalize_domains(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        return frozenset(str(d).strip().lower() for d in value if str(d).strip())


class CaptchaPolicy(BaseModel):
    """CAPTCHA verification settings for one form."""

    model_config = ConfigDict(frozen=True)

    provider: CaptchaProvider
    secret: str = Field(..., min_length=1, description="Provider secret key.")
    min_score: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum score for score-based providers (recaptcha_v3).",
    )
    token_field: str = Field(default="captcha_token", min_length=1)
    fail_open: bool = Field(
        default=False,
        description="Accept submissions when the provider cannot be reached.",
    )


class DisabledSpamPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["disabled"] = "disabled"


class HoneypotSpamPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    mode: Literal["honeypot"] = "honeypot"
    honeypot_field: str = Field(default="_gotcha", min_length=1)


class CaptchaSpamPolicy(BaseModel):
    """Honeypot check followed by CAPTCHA verification."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["honeypot_captcha"] = "honeypot_captcha"
    honeypot_field: str = Field(default="_gotcha", min_length=1)
    captcha: CaptchaPolicy


SpamPolicy = Annotated[
    Union[DisabledSpamPolicy, HoneypotSpamPolicy, CaptchaSpamPolicy],
    Field(discriminator="mode"),
]


class StoragePolicy(BaseModel):
    """Selects one storage adapter and carries its adapter-specific config.

    ``type`` is kept as a plain string so unknown values can fall back to the
    embedded store instead of failing validation.
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(default=StorageType.SQLITE.value)
    config: dict[str, Any] = Field(default_factory=dict)


class NotifierPolicy(BaseModel):
    """Per-form notification overrides layered over process defaults."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    to_email: str | None = None
    from_email: str | None = None
    subject: str | None = None
    email_template: str | None = None


class ConsentMetadata(BaseModel):
    """Consent captured once when the form is created."""

    model_config = ConfigDict(frozen=True)

    consent_timestamp: datetime
    consent_ip: str
    terms_version: str
    privacy_version: str


class FormDefinition(BaseModel):
    """Identity and policy for one form.

    Instances are immutable snapshots; the repository replaces them on update.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    success_message: str
    redirect_url: str | None = None
    auth_policy: AuthPolicy = Field(default_factory=AuthPolicy)
    spam_policy: SpamPolicy = Field(default_factory=DisabledSpamPolicy)
    storage_policy: StoragePolicy = Field(default_factory=StoragePolicy)
    notifier_policy: NotifierPolicy | None = None
    consent: ConsentMetadata
    created_at: datetime


class FormCreate(BaseModel):
    """Request body for creating a form."""

    name: str = Field(..., min_length=1, max_length=200)
    success_message: str | None = None
    redirect_url: str | None = None
    auth_policy: AuthPolicy = Field(default_factory=AuthPolicy)
    spam_policy: SpamPolicy = Field(default_factory=DisabledSpamPolicy)
    storage_policy: StoragePolicy = Field(default_factory=StoragePolicy)
    notifier_policy: NotifierPolicy | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Form name is required")
        return value


class FormUpdate(BaseModel):
    """Partial update; only provided fields are changed."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    success_message: str | None = None
    redirect_url: str | None = None
    auth_policy: AuthPolicy | None = None
    spam_policy: SpamPolicy | None = None
    storage_policy: StoragePolicy | None = None
    notifier_policy: NotifierPolicy | None = None


class FormSummary(BaseModel):
    """Public view of a form. Secrets are never included."""

    id: str
    name: str
    success_message: str
    redirect_url: str | None
    storage_type: str
    spam_mode: str
    requires_api_key: bool
    allowed_domains: list[str]
    notifications_enabled: bool
    created_at: datetime
    consent: ConsentMetadata

    @classmethod
    def from_definition(cls, form: FormDefinition) -> "FormSummary":
        return cls(
            id=form.id,
            name=form.name,
            success_message=form.success_message,
            redirect_url=form.redirect_url,
            storage_type=form.storage_policy.type,
            spam_mode=form.spam_policy.mode,
            requires_api_key=form.auth_policy.api_key is not None,
            allowed_domains=sorted(form.auth_policy.allowed_domains),
            notifications_enabled=bool(form.notifier_policy and form.notifier_policy.enabled),
            created_at=form.created_at,
            consent=form.consent,
        )


class FormCreatedResponse(BaseModel):
    success: bool = True
    formId: str
    submitUrl: str
    form: FormSummary


class FormListResponse(BaseModel):
    forms: list[FormSummary]
