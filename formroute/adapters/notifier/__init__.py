"""Notification adapters."""

from formroute.adapters.notifier.base import AbstractNotifier, NullNotifier
from formroute.adapters.notifier.email import EmailNotifier, resolve_notifier_settings

__all__ = [
    "AbstractNotifier",
    "EmailNotifier",
    "NullNotifier",
    "resolve_notifier_settings",
]
