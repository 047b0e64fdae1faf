"""Embedded SQLite storage adapter backed by SQLAlchemy Core.

The engine is created lazily and the schema is created on first use. SQLite
calls are blocking, so they run in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from datetime import timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    literal_column,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from formroute.adapters.storage.base import (
    AbstractStorageAdapter,
    StorageCapability,
    new_submission_id,
)
from formroute.core.errors import StorageFailureError
from formroute.schemas.forms import FormDefinition
from formroute.schemas.submissions import ClientMetadata, Payload, Submission

logger = logging.getLogger(__name__)

metadata_obj = MetaData()

submissions_table = Table(
    "submissions",
    metadata_obj,
    Column("id", String, primary_key=True),
    Column("form_id", String, nullable=False),
    Column("data", Text, nullable=False),
    Column("ip_address", String),
    Column("user_agent", String),
    Column("submitted_at", DateTime, nullable=False),
    Index("idx_submissions_form_submitted", "form_id", "submitted_at"),
)


def row_to_submission(row) -> Submission:
    submitted_at = row.submitted_at
    if submitted_at.tzinfo is None:
        submitted_at = submitted_at.replace(tzinfo=timezone.utc)
    return Submission(
        id=row.id,
        form_id=row.form_id,
        payload=json.loads(row.data),
        client_metadata=ClientMetadata(
            ip=row.ip_address or "",
            user_agent=row.user_agent or "",
            received_at=submitted_at,
        ),
    )


class SQLiteStorageAdapter(AbstractStorageAdapter):
    """Stores submissions in a local SQLite database file."""

    storage_type = "sqlite"
    capabilities = frozenset({StorageCapability.SAVE, StorageCapability.LIST})

    def __init__(self, path: str, *, busy_timeout_seconds: float = 10.0) -> None:
        self.path = path
        self._busy_timeout_seconds = busy_timeout_seconds
        self._engine: Engine | None = None
        self._init_lock = threading.Lock()

    def _get_engine(self) -> Engine:
        with self._init_lock:
            if self._engine is None:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                engine = create_engine(
                    f"sqlite:///{self.path}",
                    connect_args={
                        "check_same_thread": False,
                        "timeout": self._busy_timeout_seconds,
                    },
                )
                metadata_obj.create_all(engine)
                self._engine = engine
                logger.info("storage.sqlite_initialized", extra={"path": self.path})
            return self._engine

    def _insert(self, form_id: str, payload: Payload, metadata: ClientMetadata) -> str:
        submission_id = new_submission_id()
        received_at = metadata.received_at.astimezone(timezone.utc).replace(tzinfo=None)
        with self._get_engine().begin() as conn:
            conn.execute(
                insert(submissions_table).values(
                    id=submission_id,
                    form_id=form_id,
                    data=json.dumps(payload),
                    ip_address=metadata.ip,
                    user_agent=metadata.user_agent,
                    submitted_at=received_at,
                )
            )
        return submission_id

    def _select(self, form_id: str) -> list[Submission]:
        query = (
            select(submissions_table)
            .where(submissions_table.c.form_id == form_id)
            .order_by(
                submissions_table.c.submitted_at.desc(),
                literal_column("rowid").desc(),
            )
        )
        with self._get_engine().connect() as conn:
            rows = conn.execute(query).all()
        return [row_to_submission(row) for row in rows]

    async def save(self, form: FormDefinition, payload: Payload, metadata: ClientMetadata) -> str:
        try:
            return await asyncio.to_thread(self._insert, form.id, payload, metadata)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageFailureError(
                code="storage_failure",
                message="Failed to save submission",
                details={"adapter": self.storage_type, "context": {"error": str(exc)}},
            ) from exc

    async def list_submissions(self, form_id: str) -> list[Submission]:
        try:
            return await asyncio.to_thread(self._select, form_id)
        except (SQLAlchemyError, OSError) as exc:
            raise StorageFailureError(
                code="storage_failure",
                message="Failed to fetch submissions",
                details={"adapter": self.storage_type, "context": {"error": str(exc)}},
            ) from exc

    async def aclose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
