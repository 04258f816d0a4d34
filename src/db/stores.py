"""Store interfaces the domain services depend on.

Services work on pydantic records only. The SQLAlchemy implementations
live in src.db.repositories; tests use in-memory fakes.
"""

from __future__ import annotations

import uuid
from collections.abc import Collection
from datetime import datetime
from typing import Any, Protocol

from src.models.enums import ArchiveStatus, DocumentStatus, HoldStatus
from src.schemas.archive import ArchiveRecord
from src.schemas.compliance import LegalHold
from src.schemas.documents import Document


class DocumentStore(Protocol):
    async def get(self, document_id: uuid.UUID) -> Document | None: ...

    async def add(self, document: Document) -> Document: ...

    async def delete(self, document_id: uuid.UUID) -> None:
        """Remove a document that never became visible, e.g. a failed restore."""
        ...

    async def update_status(
        self,
        document_id: uuid.UUID,
        expected: DocumentStatus,
        new: DocumentStatus,
        **fields: Any,
    ) -> Document | None:
        """Compare-and-swap on status. None if the row is gone or status moved on."""
        ...

    async def update_fields(self, document_id: uuid.UUID, **fields: Any) -> Document | None: ...

    async def list_by_status(
        self,
        statuses: Collection[DocumentStatus] | None = None,
        *,
        created_before: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Document]:
        """Oldest first, ties broken by id so offset paging is stable."""
        ...

    async def count_by_status(self) -> dict[DocumentStatus, int]: ...


class LegalHoldStore(Protocol):
    async def get(self, hold_id: uuid.UUID) -> LegalHold | None: ...

    async def add(self, hold: LegalHold) -> LegalHold: ...

    async def release(
        self,
        hold_id: uuid.UUID,
        *,
        released_by: str,
        released_at: datetime,
        release_reason: str,
    ) -> LegalHold | None:
        """ACTIVE -> RELEASED. None if the hold is not ACTIVE."""
        ...

    async def list_for_document(self, document_id: uuid.UUID) -> list[LegalHold]:
        """Newest first."""
        ...

    async def list_holds(
        self,
        status: HoldStatus | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LegalHold]: ...

    async def list_expired(self, now: datetime) -> list[LegalHold]:
        """ACTIVE holds whose expires_at has passed."""
        ...

    async def count_by_status(self) -> dict[HoldStatus, int]: ...


class ArchiveStore(Protocol):
    async def get(self, archive_id: uuid.UUID) -> ArchiveRecord | None: ...

    async def add(self, record: ArchiveRecord) -> ArchiveRecord: ...

    async def delete(self, archive_id: uuid.UUID) -> None: ...

    async def mark_restored(
        self,
        archive_id: uuid.UUID,
        *,
        restore_location: str,
        restored_at: datetime,
        restored_by: str,
        restored_document_id: uuid.UUID,
    ) -> ArchiveRecord | None:
        """ARCHIVED -> RESTORED. None if the record is not ARCHIVED."""
        ...

    async def list_records(
        self,
        status: ArchiveStatus | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ArchiveRecord]:
        """Newest first."""
        ...

    async def totals(self) -> tuple[dict[ArchiveStatus, int], int]:
        """Record count per status and total size in bytes of ARCHIVED bundles."""
        ...
