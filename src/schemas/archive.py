"""Archive bundle and lifecycle outcome schemas."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from src.models.enums import ArchiveStatus, DocumentStatus


class ArchiveRecord(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    original_document_id: uuid.UUID
    archive_location: str
    archive_size: int = 0
    checksum: str
    status: ArchiveStatus = ArchiveStatus.ARCHIVED
    archived_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    archived_by: str = "system"
    manifest: dict[str, Any] = Field(default_factory=dict)
    restore_location: str | None = None
    restored_at: datetime | None = None
    restored_by: str | None = None
    restored_document_id: uuid.UUID | None = None


class ArchiveManifest(BaseModel):
    """Metadata written into every bundle as _manifest.json."""

    archive_id: uuid.UUID
    original_document_id: uuid.UUID
    content_hash: str
    content_filename: str | None = None
    content_checksum: str | None = None
    content_size: int = 0
    mime_type: str | None = None
    supplier: str | None = None
    job_ref: str | None = None
    vehicle_reg: str | None = None
    status_at_archive: DocumentStatus
    original_created_at: datetime
    archived_at: datetime
    archived_by: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ArchiveOutcome(BaseModel):
    archive_id: uuid.UUID
    document_id: uuid.UUID
    archive_location: str
    archive_size: int = 0
    checksum: str | None = None
    dry_run: bool = False


class RestoreOutcome(BaseModel):
    archive_id: uuid.UUID
    original_document_id: uuid.UUID
    restored_document_id: uuid.UUID
    restore_location: str | None
    restored_at: datetime
    restored_by: str


class VerifyOutcome(BaseModel):
    archive_id: uuid.UUID
    valid: bool
    stored_checksum: str
    calculated_checksum: str


class ArchiveStats(BaseModel):
    archived_count: int = 0
    restored_count: int = 0
    pending_delete_count: int = 0
    deleted_count: int = 0
    total_archive_size_bytes: int = 0

    @property
    def total_archive_size_mb(self) -> float:
        return round(self.total_archive_size_bytes / (1024 * 1024), 2)
