"""SQLAlchemy implementations of the document, legal hold and archive stores.

Each repository wraps an AsyncSession owned by the caller (FastAPI
dependency or session_scope()); repositories flush but never commit.
Status changes use UPDATE ... WHERE status = :expected RETURNING so a
concurrent writer that got there first turns into a None result instead
of a lost update.

Connection-level failures (database down, dropped connection, pool
timeout) leave every method as ExternalIOError. Constraint violations and
programming errors propagate unchanged.
"""

from __future__ import annotations

import functools
import logging
import uuid
from collections.abc import Awaitable, Callable, Collection
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.errors import ExternalIOError
from src.models import ArchiveRecord as ArchiveRow
from src.models import Document as DocumentRow
from src.models import LegalHold as HoldRow
from src.models.enums import ArchiveStatus, DocumentStatus, HoldStatus
from src.schemas.archive import ArchiveRecord
from src.schemas.compliance import LegalHold
from src.schemas.documents import Document

logger = logging.getLogger(__name__)

_UNREACHABLE = (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError, OSError)


def _backing_store(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Turn connection-level database failures into ExternalIOError."""

    @functools.wraps(method)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await method(self, *args, **kwargs)
        except _UNREACHABLE as exc:
            operation = f"{type(self).__name__}.{method.__name__}"
            target = args[0] if args else None
            entity_id = target if isinstance(target, uuid.UUID) else getattr(target, "id", None)
            logger.error("Database unreachable in %s: %s", operation, exc)
            raise ExternalIOError(
                f"Database unreachable: {exc}",
                entity_id=entity_id,
                operation=operation,
            ) from exc

    return wrapper


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
    """Domain field names and enums to ORM attribute values."""
    values: dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, Enum):
            value = value.value
        values["meta" if key == "metadata" else key] = value
    return values


# ── Row <-> record conversion ────────────────────────────────────────


def document_to_schema(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        content_hash=row.content_hash,
        status=DocumentStatus(row.status),
        classification_confidence=row.classification_confidence,
        extraction_confidence=row.extraction_confidence,
        supplier=row.supplier,
        job_ref=row.job_ref,
        vehicle_reg=row.vehicle_reg,
        mime_type=row.mime_type,
        storage_key=row.storage_key,
        pre_delete_status=DocumentStatus(row.pre_delete_status) if row.pre_delete_status else None,
        restored_from_archive_id=row.restored_from_archive_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        metadata=dict(row.meta or {}),
    )


def hold_to_schema(row: HoldRow) -> LegalHold:
    return LegalHold(
        id=row.id,
        document_id=row.document_id,
        status=HoldStatus(row.status),
        reason=row.reason,
        created_by=row.created_by,
        created_at=row.created_at,
        expires_at=row.expires_at,
        notes=row.notes,
        released_by=row.released_by,
        released_at=row.released_at,
        release_reason=row.release_reason,
    )


def archive_to_schema(row: ArchiveRow) -> ArchiveRecord:
    return ArchiveRecord(
        id=row.id,
        original_document_id=row.original_document_id,
        archive_location=row.archive_location,
        archive_size=row.archive_size,
        checksum=row.checksum,
        status=ArchiveStatus(row.status),
        archived_at=row.archived_at,
        archived_by=row.archived_by,
        manifest=dict(row.manifest or {}),
        restore_location=row.restore_location,
        restored_at=row.restored_at,
        restored_by=row.restored_by,
        restored_document_id=row.restored_document_id,
    )


# ── Documents ────────────────────────────────────────────────────────


class SqlDocumentStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @_backing_store
    async def get(self, document_id: uuid.UUID) -> Document | None:
        row = await self._db.get(DocumentRow, document_id)
        return document_to_schema(row) if row is not None else None

    @_backing_store
    async def add(self, document: Document) -> Document:
        row = DocumentRow(
            id=document.id,
            content_hash=document.content_hash,
            status=document.status.value,
            classification_confidence=document.classification_confidence,
            extraction_confidence=document.extraction_confidence,
            supplier=document.supplier,
            job_ref=document.job_ref,
            vehicle_reg=document.vehicle_reg,
            mime_type=document.mime_type,
            storage_key=document.storage_key,
            pre_delete_status=document.pre_delete_status.value if document.pre_delete_status else None,
            restored_from_archive_id=document.restored_from_archive_id,
            created_at=document.created_at,
            meta=dict(document.metadata),
        )
        self._db.add(row)
        await self._db.flush()
        return document

    @_backing_store
    async def delete(self, document_id: uuid.UUID) -> None:
        row = await self._db.get(DocumentRow, document_id)
        if row is not None:
            await self._db.delete(row)
            await self._db.flush()

    @_backing_store
    async def update_status(
        self,
        document_id: uuid.UUID,
        expected: DocumentStatus,
        new: DocumentStatus,
        **fields: Any,
    ) -> Document | None:
        result = await self._db.execute(
            update(DocumentRow)
            .where(DocumentRow.id == document_id, DocumentRow.status == expected.value)
            .values(status=new.value, status_changed_at=func.now(), **_column_values(fields))
            .returning(DocumentRow)
        )
        row = result.scalar_one_or_none()
        return document_to_schema(row) if row is not None else None

    @_backing_store
    async def update_fields(self, document_id: uuid.UUID, **fields: Any) -> Document | None:
        if "status" in fields:
            raise ValueError("status changes go through update_status")
        result = await self._db.execute(
            update(DocumentRow)
            .where(DocumentRow.id == document_id)
            .values(**_column_values(fields))
            .returning(DocumentRow)
        )
        row = result.scalar_one_or_none()
        return document_to_schema(row) if row is not None else None

    @_backing_store
    async def list_by_status(
        self,
        statuses: Collection[DocumentStatus] | None = None,
        *,
        created_before: datetime | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Document]:
        stmt = select(DocumentRow)
        if statuses is not None:
            stmt = stmt.where(DocumentRow.status.in_([s.value for s in statuses]))
        if created_before is not None:
            stmt = stmt.where(DocumentRow.created_at < created_before)
        stmt = stmt.order_by(DocumentRow.created_at.asc(), DocumentRow.id.asc()).offset(offset).limit(limit)
        result = await self._db.execute(stmt)
        return [document_to_schema(row) for row in result.scalars().all()]

    @_backing_store
    async def count_by_status(self) -> dict[DocumentStatus, int]:
        result = await self._db.execute(
            select(DocumentRow.status, func.count()).group_by(DocumentRow.status)
        )
        return {DocumentStatus(status): count for status, count in result.all()}


# ── Legal holds ──────────────────────────────────────────────────────


class SqlLegalHoldStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @_backing_store
    async def get(self, hold_id: uuid.UUID) -> LegalHold | None:
        row = await self._db.get(HoldRow, hold_id)
        return hold_to_schema(row) if row is not None else None

    @_backing_store
    async def add(self, hold: LegalHold) -> LegalHold:
        self._db.add(HoldRow(
            id=hold.id,
            document_id=hold.document_id,
            status=hold.status.value,
            reason=hold.reason,
            created_by=hold.created_by,
            created_at=hold.created_at,
            expires_at=hold.expires_at,
            notes=hold.notes,
        ))
        await self._db.flush()
        return hold

    @_backing_store
    async def release(
        self,
        hold_id: uuid.UUID,
        *,
        released_by: str,
        released_at: datetime,
        release_reason: str,
    ) -> LegalHold | None:
        result = await self._db.execute(
            update(HoldRow)
            .where(HoldRow.id == hold_id, HoldRow.status == HoldStatus.ACTIVE.value)
            .values(
                status=HoldStatus.RELEASED.value,
                released_by=released_by,
                released_at=released_at,
                release_reason=release_reason,
            )
            .returning(HoldRow)
        )
        row = result.scalar_one_or_none()
        return hold_to_schema(row) if row is not None else None

    @_backing_store
    async def list_for_document(self, document_id: uuid.UUID) -> list[LegalHold]:
        result = await self._db.execute(
            select(HoldRow)
            .where(HoldRow.document_id == document_id)
            .order_by(HoldRow.created_at.desc())
        )
        return [hold_to_schema(row) for row in result.scalars().all()]

    @_backing_store
    async def list_holds(
        self,
        status: HoldStatus | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LegalHold]:
        stmt = select(HoldRow)
        if status is not None:
            stmt = stmt.where(HoldRow.status == status.value)
        stmt = stmt.order_by(HoldRow.created_at.desc()).limit(limit).offset(offset)
        result = await self._db.execute(stmt)
        return [hold_to_schema(row) for row in result.scalars().all()]

    @_backing_store
    async def list_expired(self, now: datetime) -> list[LegalHold]:
        result = await self._db.execute(
            select(HoldRow)
            .where(
                HoldRow.status == HoldStatus.ACTIVE.value,
                HoldRow.expires_at.is_not(None),
                HoldRow.expires_at <= now,
            )
            .order_by(HoldRow.expires_at.asc())
        )
        return [hold_to_schema(row) for row in result.scalars().all()]

    @_backing_store
    async def count_by_status(self) -> dict[HoldStatus, int]:
        result = await self._db.execute(select(HoldRow.status, func.count()).group_by(HoldRow.status))
        return {HoldStatus(status): count for status, count in result.all()}


# ── Archive records ──────────────────────────────────────────────────


class SqlArchiveStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @_backing_store
    async def get(self, archive_id: uuid.UUID) -> ArchiveRecord | None:
        row = await self._db.get(ArchiveRow, archive_id)
        return archive_to_schema(row) if row is not None else None

    @_backing_store
    async def add(self, record: ArchiveRecord) -> ArchiveRecord:
        self._db.add(ArchiveRow(
            id=record.id,
            original_document_id=record.original_document_id,
            archive_location=record.archive_location,
            archive_size=record.archive_size,
            checksum=record.checksum,
            status=record.status.value,
            archived_at=record.archived_at,
            archived_by=record.archived_by,
            manifest=dict(record.manifest),
        ))
        await self._db.flush()
        return record

    @_backing_store
    async def delete(self, archive_id: uuid.UUID) -> None:
        row = await self._db.get(ArchiveRow, archive_id)
        if row is not None:
            await self._db.delete(row)
            await self._db.flush()

    @_backing_store
    async def mark_restored(
        self,
        archive_id: uuid.UUID,
        *,
        restore_location: str,
        restored_at: datetime,
        restored_by: str,
        restored_document_id: uuid.UUID,
    ) -> ArchiveRecord | None:
        result = await self._db.execute(
            update(ArchiveRow)
            .where(ArchiveRow.id == archive_id, ArchiveRow.status == ArchiveStatus.ARCHIVED.value)
            .values(
                status=ArchiveStatus.RESTORED.value,
                restore_location=restore_location,
                restored_at=restored_at,
                restored_by=restored_by,
                restored_document_id=restored_document_id,
            )
            .returning(ArchiveRow)
        )
        row = result.scalar_one_or_none()
        return archive_to_schema(row) if row is not None else None

    @_backing_store
    async def list_records(
        self,
        status: ArchiveStatus | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ArchiveRecord]:
        stmt = select(ArchiveRow)
        if status is not None:
            stmt = stmt.where(ArchiveRow.status == status.value)
        stmt = stmt.order_by(ArchiveRow.archived_at.desc()).limit(limit).offset(offset)
        result = await self._db.execute(stmt)
        return [archive_to_schema(row) for row in result.scalars().all()]

    @_backing_store
    async def totals(self) -> tuple[dict[ArchiveStatus, int], int]:
        counts = await self._db.execute(select(ArchiveRow.status, func.count()).group_by(ArchiveRow.status))
        size = await self._db.execute(
            select(func.coalesce(func.sum(ArchiveRow.archive_size), 0)).where(
                ArchiveRow.status == ArchiveStatus.ARCHIVED.value
            )
        )
        return (
            {ArchiveStatus(status): count for status, count in counts.all()},
            int(size.scalar_one()),
        )
