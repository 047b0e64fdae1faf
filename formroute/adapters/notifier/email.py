"""SMTP email notifier.

Per-form ``NotifierPolicy`` values are layered over the process-wide
``NotifierSettings``. smtplib is blocking, so delivery runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from formroute.adapters.notifier.base import AbstractNotifier
from formroute.core.config import NotifierSettings
from formroute.core.errors import NotifierFailureError
from formroute.schemas.forms import FormDefinition, NotifierPolicy
from formroute.schemas.submissions import Payload, Scalar

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"{{\s*([^{}\s]+)\s*}}")


def resolve_notifier_settings(
    policy: NotifierPolicy | None,
    defaults: NotifierSettings,
) -> NotifierSettings:
    """Return process defaults overridden by the form's non-empty policy values."""
    if policy is None:
        return defaults
    overrides = policy.model_dump(exclude={"enabled"}, exclude_none=True)
    return defaults.model_copy(update=overrides)


def _text(value: Scalar) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(template: str, payload: Payload, form: FormDefinition, submission_id: str) -> str:
    """Substitute ``{{field}}``, ``{{submissionId}}`` and ``{{formName}}``.

    Values are HTML-escaped. Placeholders with no matching field render empty.
    """
    values = {key: _text(value) for key, value in payload.items()}
    values["submissionId"] = submission_id
    values["formName"] = form.name
    return _PLACEHOLDER.sub(lambda m: html.escape(values.get(m.group(1), "")), template)


def render_default_body(
    payload: Payload,
    form: FormDefinition,
    submission_id: str,
    submitted_at: datetime | None = None,
) -> str:
    submitted_at = submitted_at or datetime.now(timezone.utc)
    rows = "".join(
        '<tr style="border: 1px solid #ddd;">'
        f'<td style="padding: 8px; font-weight: bold; background-color: #f5f5f5;">{html.escape(key)}</td>'
        f'<td style="padding: 8px;">{html.escape(_text(value))}</td>'
        "</tr>"
        for key, value in payload.items()
    )
    return (
        "<h2>New Form Submission</h2>"
        f"<p><strong>Form:</strong> {html.escape(form.name)}</p>"
        f"<p><strong>Submission ID:</strong> {html.escape(submission_id)}</p>"
        "<h3>Data:</h3>"
        f'<table style="border-collapse: collapse; width: 100%;">{rows}</table>'
        f"<p><small>Submitted at: {submitted_at.isoformat()}</small></p>"
    )


def build_message(
    payload: Payload,
    form: FormDefinition,
    submission_id: str,
    cfg: NotifierSettings,
) -> MIMEMultipart:
    if cfg.email_template:
        body = render_template(cfg.email_template, payload, form, submission_id)
    else:
        body = render_default_body(payload, form, submission_id)

    msg = MIMEMultipart("alternative")
    msg["From"] = cfg.from_email or cfg.smtp_user or ""
    msg["To"] = cfg.to_email or ""
    msg["Subject"] = cfg.subject or f"New submission from {form.name}"
    reply_to = payload.get("email")
    if isinstance(reply_to, str) and reply_to.strip():
        msg["Reply-To"] = reply_to.strip()
    msg.attach(MIMEText(body, "html"))
    return msg


class EmailNotifier(AbstractNotifier):
    """Sends one HTML email per stored submission over SMTP."""

    def __init__(self, defaults: NotifierSettings) -> None:
        self._defaults = defaults

    def _send(self, msg: MIMEMultipart, cfg: NotifierSettings) -> None:
        smtp_cls = smtplib.SMTP_SSL if cfg.smtp_ssl else smtplib.SMTP
        with smtp_cls(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout_seconds) as server:
            if cfg.smtp_starttls and not cfg.smtp_ssl:
                server.starttls()
            if cfg.smtp_user and cfg.smtp_password:
                server.login(cfg.smtp_user, cfg.smtp_password)
            server.send_message(msg)

    async def notify(self, payload: Payload, form: FormDefinition, submission_id: str) -> bool:
        if form.notifier_policy is not None and not form.notifier_policy.enabled:
            return False

        cfg = resolve_notifier_settings(form.notifier_policy, self._defaults)
        if not cfg.smtp_host or not cfg.to_email:
            logger.debug("notifier.not_configured", extra={"form_id": form.id})
            return False

        msg = build_message(payload, form, submission_id, cfg)
        try:
            await asyncio.to_thread(self._send, msg, cfg)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotifierFailureError(
                code="notifier_failure",
                message="Failed to send notification email",
                details={"context": {"error": f"{type(exc).__name__}: {exc}", "form_id": form.id}},
            ) from exc

        logger.info("notifier.sent", extra={"form_id": form.id, "submission_id": submission_id})
        return True
