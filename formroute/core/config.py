"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Settings are resolved once at startup. Per-form policies (storage config,
notifier policy) are layered over these process-wide defaults once per
submission; nothing on the intake path reads the environment directly.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log output: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file after this size (0 disables)")
    backup_count: int = Field(5, description="Number of rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    public_base_url: str | None = Field(
        None,
        description="Base URL used to build submit URLs (falls back to the request origin)",
    )
    admin_api_key_required: bool = Field(
        True,
        description="Whether form-management endpoints require an admin API key",
    )
    admin_api_keys: str | None = Field(
        None,
        description="Comma-separated list of admin API keys for form management",
    )
    default_success_message: str = Field(
        "Thank you for your submission!",
        description="Success message used when a form does not define one",
    )
    max_fields: int = Field(
        200,
        description="Maximum number of fields accepted in one submission",
        ge=1,
    )
    terms_version: str = Field(
        "v1.0-2025-08-25",
        description="Terms of service version recorded as consent metadata",
    )
    privacy_version: str = Field(
        "v1.0-2025-08-25",
        description="Privacy policy version recorded as consent metadata",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable per-client sliding-window rate limiting on submissions",
    )
    rate_limit_requests: int = Field(
        10,
        description="Maximum number of submissions allowed per window (per client)",
        ge=1,
    )
    rate_limit_window_seconds: int = Field(
        900,
        description="Sliding window length in seconds",
        ge=1,
    )
    rate_limit_retention_seconds: int = Field(
        3600,
        description="Idle buckets older than this are dropped by the sweeper",
        ge=1,
    )
    rate_limit_sweep_interval_seconds: int = Field(
        600,
        description="How often the sweeper runs",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class CaptchaSettings(BaseSettings):
    """CAPTCHA provider endpoints and verification timeout."""

    timeout_seconds: float = Field(5.0, description="Verification call timeout in seconds", gt=0)
    recaptcha_verify_url: str = Field("https://www.google.com/recaptcha/api/siteverify")
    hcaptcha_verify_url: str = Field("https://hcaptcha.com/siteverify")
    turnstile_verify_url: str = Field(
        "https://challenges.cloudflare.com/turnstile/v0/siteverify"
    )

    model_config = SettingsConfigDict(
        env_prefix="CAPTCHA_",
        case_sensitive=False,
    )


class StorageSettings(BaseSettings):
    """Process-wide defaults for storage adapters."""

    sqlite_path: str = Field("formroute.db", description="Embedded SQLite database file")
    turso_url: str | None = Field(None, description="Default libSQL database URL")
    turso_auth_token: str | None = Field(None, description="Default libSQL auth token")
    sheets_api_base: str = Field("https://sheets.googleapis.com/v4")
    timeout_seconds: float = Field(10.0, description="Timeout for a single storage operation", gt=0)

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        case_sensitive=False,
    )


class NotifierSettings(BaseSettings):
    """SMTP notification defaults. Per-form notifier policies override these."""

    smtp_host: str | None = Field(None, description="SMTP server host (unset disables email)")
    smtp_port: int = Field(587)
    smtp_user: str | None = Field(None)
    smtp_password: str | None = Field(None)
    smtp_starttls: bool = Field(True, description="Upgrade the connection with STARTTLS")
    smtp_ssl: bool = Field(False, description="Implicit TLS from connect (usually port 465); STARTTLS is then skipped")
    from_email: str | None = Field(None)
    to_email: str | None = Field(None)
    subject: str | None = Field(None, description="Subject override; defaults to 'New submission from <form>'")
    email_template: str | None = Field(None)
    timeout_seconds: float = Field(10.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="NOTIFIER_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are invalid.
    """

    app_env: str = APP_ENV
    log: LogSettings = Field(default_factory=LogSettings)
    app: AppSettings = Field(default_factory=AppSettings)
    captcha: CaptchaSettings = Field(default_factory=CaptchaSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifier: NotifierSettings = Field(default_factory=NotifierSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance used by the default app. Tests build their own and
# pass it to create_app().
settings = Settings()
