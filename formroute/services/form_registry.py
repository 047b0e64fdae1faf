"""Form registry: the only owner of form definitions.

The in-memory repository is the single-process default and is easy to swap
for a persistent one behind the same interface. Definitions are immutable
snapshots; an update stores a new snapshot under the same id.
"""

from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable

from formroute.core.config import AppSettings
from formroute.core.errors import NotFoundError
from formroute.schemas.forms import ConsentMetadata, FormCreate, FormDefinition, FormUpdate, StoragePolicy

logger = logging.getLogger(__name__)

StorageValidator = Callable[[StoragePolicy], None]


def form_not_found(form_id: str) -> NotFoundError:
    return NotFoundError(
        code="form_not_found",
        message="Form not found",
        details={"context": {"form_id": form_id}},
    )


class FormRepository(ABC):
    """Interface for form definition storage."""

    @abstractmethod
    def get(self, form_id: str) -> FormDefinition | None: ...

    @abstractmethod
    def list(self) -> list[FormDefinition]: ...

    @abstractmethod
    def add(self, form: FormDefinition) -> FormDefinition: ...

    @abstractmethod
    def replace(self, form: FormDefinition) -> FormDefinition:
        """Store a new snapshot for an existing id.

        Raises:
            NotFoundError: If no form with that id exists.
        """
        ...

    @abstractmethod
    def delete(self, form_id: str) -> bool: ...

    def require(self, form_id: str) -> FormDefinition:
        """Like ``get`` but raises ``NotFoundError`` for unknown ids."""
        form = self.get(form_id)
        if form is None:
            raise form_not_found(form_id)
        return form


class InMemoryFormRepository(FormRepository):
    """Thread-safe, insertion-ordered in-memory form store."""

    def __init__(self) -> None:
        self._forms: OrderedDict[str, FormDefinition] = OrderedDict()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._forms)

    def get(self, form_id: str) -> FormDefinition | None:
        with self._lock:
            return self._forms.get(form_id)

    def list(self) -> list[FormDefinition]:
        with self._lock:
            return list(self._forms.values())

    def add(self, form: FormDefinition) -> FormDefinition:
        with self._lock:
            if form.id in self._forms:
                raise ValueError(f"Form {form.id} already exists")
            self._forms[form.id] = form
        return form

    def replace(self, form: FormDefinition) -> FormDefinition:
        with self._lock:
            if form.id not in self._forms:
                raise form_not_found(form.id)
            self._forms[form.id] = form
        return form

    def delete(self, form_id: str) -> bool:
        with self._lock:
            return self._forms.pop(form_id, None) is not None


class FormService:
    """Creates, updates and removes forms on top of a repository.

    Attributes:
        repository: Backing form store.
    """

    def __init__(
        self,
        repository: FormRepository,
        app_settings: AppSettings,
        *,
        validate_storage: StorageValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self._app_settings = app_settings
        self._validate_storage = validate_storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get(self, form_id: str) -> FormDefinition:
        return self.repository.require(form_id)

    def list(self) -> list[FormDefinition]:
        return self.repository.list()

    def create(self, data: FormCreate, *, client_ip: str) -> FormDefinition:
        """Create a form, recording consent metadata for the creating client.

        Raises:
            ValidationAppError: If the storage policy config is invalid.
        """
        if self._validate_storage is not None:
            self._validate_storage(data.storage_policy)

        now = self._clock()
        form = FormDefinition(
            id=str(uuid.uuid4()),
            name=data.name,
            success_message=data.success_message or self._app_settings.default_success_message,
            redirect_url=data.redirect_url,
            auth_policy=data.auth_policy,
            spam_policy=data.spam_policy,
            storage_policy=data.storage_policy,
            notifier_policy=data.notifier_policy,
            consent=ConsentMetadata(
                consent_timestamp=now,
                consent_ip=client_ip,
                terms_version=self._app_settings.terms_version,
                privacy_version=self._app_settings.privacy_version,
            ),
            created_at=now,
        )
        self.repository.add(form)
        logger.info(
            "form.created",
            extra={
                "form_id": form.id,
                "storage_type": form.storage_policy.type,
                "spam_mode": form.spam_policy.mode,
            },
        )
        return form

    def update(self, form_id: str, data: FormUpdate) -> FormDefinition:
        """Apply a partial update. Consent and creation time are preserved.

        Raises:
            NotFoundError: If the form does not exist.
            ValidationAppError: If a new storage policy config is invalid.
        """
        current = self.repository.require(form_id)
        changes = {field: getattr(data, field) for field in data.model_fields_set}
        changes = {k: v for k, v in changes.items() if v is not None or k == "redirect_url"}
        if "storage_policy" in changes and self._validate_storage is not None:
            self._validate_storage(changes["storage_policy"])
        if "success_message" in changes and not changes["success_message"]:
            changes["success_message"] = self._app_settings.default_success_message

        updated = FormDefinition.model_validate({**current.model_dump(), **_dump_changes(changes)})
        self.repository.replace(updated)
        logger.info("form.updated", extra={"form_id": form_id, "fields": sorted(changes)})
        return updated

    def delete(self, form_id: str) -> None:
        if not self.repository.delete(form_id):
            raise form_not_found(form_id)
        logger.info("form.deleted", extra={"form_id": form_id})


def _dump_changes(changes: dict) -> dict:
    return {k: v.model_dump() if hasattr(v, "model_dump") else v for k, v in changes.items()}
