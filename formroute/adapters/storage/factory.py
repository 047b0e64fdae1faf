"""Storage variant registry.

Maps a form's ``storage_policy.type`` tag to a settings model and an adapter
builder. Per-form ``config`` is layered over process-wide ``StorageSettings``
and validated once, then the adapter is cached so connections/sessions are
reused across submissions.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from formroute.adapters.storage.base import AbstractStorageAdapter
from formroute.adapters.storage.google_sheets import GoogleSheetsStorageAdapter, service_account_credentials
from formroute.adapters.storage.sqlite import SQLiteStorageAdapter
from formroute.adapters.storage.turso import TursoStorageAdapter
from formroute.adapters.storage.webhook import WebhookStorageAdapter
from formroute.core.config import StorageSettings
from formroute.core.errors import StorageFailureError, ValidationAppError
from formroute.schemas.forms import StoragePolicy, StorageType

logger = logging.getLogger(__name__)


class SQLiteConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    path: str = Field(..., min_length=1)


class TursoConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(..., min_length=1)
    auth_token: str | None = None


class GoogleSheetsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sheet_id: str = Field(..., min_length=1)
    credentials: dict[str, Any] | None = Field(
        default=None,
        description="Service-account key (contents of the JSON key file).",
    )
    access_token: str | None = Field(default=None, min_length=1, description="Fixed token; skips credentials.")
    range: str = "Sheet1"
    columns: list[str] | None = None

    @field_validator("credentials")
    @classmethod
    def _check_service_account(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return value
        if value.get("type", "service_account") != "service_account":
            raise ValueError("only service_account credentials are supported")
        missing = [k for k in ("client_email", "private_key") if not value.get(k)]
        if missing:
            raise ValueError(f"missing {', '.join(missing)}")
        return value

    @model_validator(mode="after")
    def _require_auth(self) -> "GoogleSheetsConfig":
        if self.credentials is None and self.access_token is None:
            raise ValueError("credentials or access_token is required")
        return self


class WebhookConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    webhook_url: str = Field(..., pattern=r"^https?://")
    headers: dict[str, str] = Field(default_factory=dict)


AdapterBuilder = Callable[[Any, StorageType, StorageSettings, "httpx.AsyncClient | None"], AbstractStorageAdapter]


@dataclass(frozen=True)
class StorageVariant:
    config_model: type[BaseModel]
    defaults: Callable[[StorageSettings], dict[str, Any]]
    build: AdapterBuilder


STORAGE_VARIANTS: dict[StorageType, StorageVariant] = {
    StorageType.SQLITE: StorageVariant(
        config_model=SQLiteConfig,
        defaults=lambda s: {"path": s.sqlite_path},
        build=lambda cfg, _t, s, _c: SQLiteStorageAdapter(cfg.path, busy_timeout_seconds=s.timeout_seconds),
    ),
    StorageType.TURSO: StorageVariant(
        config_model=TursoConfig,
        defaults=lambda s: {"url": s.turso_url, "auth_token": s.turso_auth_token},
        build=lambda cfg, _t, s, client: TursoStorageAdapter(
            cfg.url,
            cfg.auth_token,
            timeout_seconds=s.timeout_seconds,
            client=client,
        ),
    ),
    StorageType.GOOGLE_SHEETS: StorageVariant(
        config_model=GoogleSheetsConfig,
        defaults=lambda s: {},
        build=lambda cfg, _t, s, client: GoogleSheetsStorageAdapter(
            cfg.sheet_id,
            cfg.access_token,
            credentials=(
                service_account_credentials(cfg.credentials) if cfg.access_token is None else None
            ),
            range_=cfg.range,
            columns=cfg.columns,
            api_base=s.sheets_api_base,
            timeout_seconds=s.timeout_seconds,
            client=client,
        ),
    ),
    StorageType.WEBHOOK: StorageVariant(
        config_model=WebhookConfig,
        defaults=lambda s: {},
        build=lambda cfg, storage_type, s, client: WebhookStorageAdapter(
            cfg.webhook_url,
            cfg.headers,
            storage_type=storage_type.value,
            timeout_seconds=s.timeout_seconds,
            client=client,
        ),
    ),
}
# Make.com scenarios are plain webhooks.
STORAGE_VARIANTS[StorageType.MAKE_WEBHOOK] = STORAGE_VARIANTS[StorageType.WEBHOOK]


def resolve_storage_type(policy: StoragePolicy) -> StorageType:
    """Map the policy tag to a known variant, falling back to SQLite."""
    try:
        return StorageType(policy.type)
    except ValueError:
        logger.warning(
            "storage.unknown_type_fallback",
            extra={"storage_type": policy.type, "fallback": StorageType.SQLITE.value},
        )
        return StorageType.SQLITE


def resolve_storage_config(policy: StoragePolicy, storage_settings: StorageSettings) -> tuple[StorageType, BaseModel]:
    """Layer the form's config over process defaults and validate it.

    Raises:
        ValidationAppError: If the merged config is invalid for the variant.
    """
    storage_type = resolve_storage_type(policy)
    variant = STORAGE_VARIANTS[storage_type]
    defaults = {k: v for k, v in variant.defaults(storage_settings).items() if v is not None}
    # An unknown tag falls back to SQLite with default settings only.
    overrides = policy.config if storage_type.value == policy.type else {}
    try:
        config = variant.config_model.model_validate({**defaults, **overrides})
    except ValidationError as exc:
        raise ValidationAppError(
            code="invalid_storage_config",
            message=f"Invalid configuration for storage type '{storage_type.value}'",
            details={
                "hint": "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
                ),
            },
        ) from exc
    return storage_type, config


class StorageRegistry:
    """Builds and caches one adapter per distinct (type, config)."""

    def __init__(
        self,
        storage_settings: StorageSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = storage_settings
        self._http_client = http_client
        self._adapters: dict[str, AbstractStorageAdapter] = {}

    def validate(self, policy: StoragePolicy) -> None:
        """Fail fast on an invalid config (used when forms are created/updated)."""
        resolve_storage_config(policy, self._settings)

    def get(self, policy: StoragePolicy) -> AbstractStorageAdapter:
        """Return the adapter for a policy.

        Raises:
            StorageFailureError: If the stored policy cannot produce an adapter.
        """
        try:
            storage_type, config = resolve_storage_config(policy, self._settings)
        except ValidationAppError as exc:
            raise StorageFailureError(
                code="storage_misconfigured",
                message="Failed to save submission",
                details={"adapter": policy.type, "context": {"error": exc.message}},
            ) from exc

        cache_key = f"{storage_type.value}:{json.dumps(config.model_dump(), sort_keys=True)}"
        adapter = self._adapters.get(cache_key)
        if adapter is None:
            variant = STORAGE_VARIANTS[storage_type]
            try:
                adapter = variant.build(config, storage_type, self._settings, self._http_client)
            except ValueError as exc:
                # e.g. an unparseable service-account private key
                raise StorageFailureError(
                    code="storage_misconfigured",
                    message="Failed to save submission",
                    details={"adapter": storage_type.value, "context": {"error": str(exc)}},
                ) from exc
            self._adapters[cache_key] = adapter
        return adapter

    async def aclose(self) -> None:
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            try:
                await adapter.aclose()
            except Exception:
                logger.exception("storage.close_failed", extra={"adapter": adapter.storage_type})
