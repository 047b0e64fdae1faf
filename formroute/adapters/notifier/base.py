"""Notifier interface."""

from __future__ import annotations

from abc import ABC, abstractmethod

from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import Payload


class AbstractNotifier(ABC):
    """Interface for best-effort submission notifications."""

    @abstractmethod
    async def notify(self, payload: Payload, form: FormDefinition, submission_id: str) -> bool:
        """Announce a stored submission.

        Returns:
            True if a notification was sent, False if notifications are not
            configured for this form.

        Raises:
            NotifierFailureError: If delivery was attempted and failed.
        """
        ...


class NullNotifier(AbstractNotifier):
    """Notifier that never sends anything."""

    async def notify(self, payload: Payload, form: FormDefinition, submission_id: str) -> bool:
        return False
