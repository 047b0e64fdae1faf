"""Storage adapter interface.

Every adapter persists one submission per ``save`` call and declares whether
it can enumerate what it stored. The pipeline never branches on the concrete
adapter; it only consults ``capabilities``.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from enum import Enum

from formroute.core.errors import UnsupportedOperationError
from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import ClientMetadata, Payload, Submission

LIST_SUGGESTION = "Use the sqlite or turso storage type to view submissions via the API"


class StorageCapability(str, Enum):
    SAVE = "save"
    LIST = "list"


def new_submission_id() -> str:
    return str(uuid.uuid4())


class AbstractStorageAdapter(ABC):
    """Interface for submission storage backends."""

    storage_type: str = "abstract"
    capabilities: frozenset[StorageCapability] = frozenset({StorageCapability.SAVE})

    @property
    def supports_listing(self) -> bool:
        return StorageCapability.LIST in self.capabilities

    @abstractmethod
    async def save(self, form: FormDefinition, payload: Payload, metadata: ClientMetadata) -> str:
        """Persist one submission.

        Args:
            form: Form the submission belongs to.
            payload: Submitted fields.
            metadata: Client identity and arrival time.

        Returns:
            The submission id, assigned only once the write succeeded.

        Raises:
            StorageFailureError: If the backend rejected or failed the write.
        """
        ...

    async def list_submissions(self, form_id: str) -> list[Submission]:
        """Return stored submissions for a form, most recent first.

        Raises:
            UnsupportedOperationError: For write-only adapters.
            StorageFailureError: If the read failed.
        """
        raise UnsupportedOperationError(
            code="unsupported_operation",
            message="This storage adapter does not support reading submissions",
            details={"suggestion": LIST_SUGGESTION, "adapter": self.storage_type},
        )

    async def aclose(self) -> None:
        """Release connections/sessions owned by the adapter."""
        return None
