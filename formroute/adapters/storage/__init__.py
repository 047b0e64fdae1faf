"""Storage adapter layer - abstracts over where submissions land."""

from formroute.adapters.storage.base import (
    AbstractStorageAdapter,
    StorageCapability,
    LIST_SUGGESTION,
)
from formroute.adapters.storage.factory import (
    STORAGE_VARIANTS,
    StorageRegistry,
    resolve_storage_type,
)
from formroute.adapters.storage.google_sheets import GoogleSheetsStorageAdapter
from formroute.adapters.storage.sqlite import SQLiteStorageAdapter
from formroute.adapters.storage.turso import TursoStorageAdapter
from formroute.adapters.storage.webhook import WebhookStorageAdapter

__all__ = [
    "AbstractStorageAdapter",
    "GoogleSheetsStorageAdapter",
    "LIST_SUGGESTION",
    "SQLiteStorageAdapter",
    "STORAGE_VARIANTS",
    "StorageCapability",
    "StorageRegistry",
    "TursoStorageAdapter",
    "WebhookStorageAdapter",
    "resolve_storage_type",
]
