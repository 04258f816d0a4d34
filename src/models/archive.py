"""ArchiveRecord model: one bundle produced by archiving a document."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import ArchiveStatus


class ArchiveRecord(TimestampMixin, Base):
    """Archive bundle reference. The archived document id is never reactivated."""

    __tablename__ = "archive_records"

    original_document_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    archive_location: Mapped[str] = mapped_column(String(500), nullable=False)
    archive_size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    checksum: Mapped[str] = mapped_column(String(80), nullable=False, comment="sha256 over the manifest")
    status: Mapped[str] = mapped_column(
        String(20), default=ArchiveStatus.ARCHIVED.value, nullable=False, index=True
    )
    archived_at: Mapped[datetime] = mapped_column(nullable=False)
    archived_by: Mapped[str] = mapped_column(String(100), nullable=False)
    manifest: Mapped[dict[str, Any]] = mapped_column(default=dict, nullable=False)

    # Restore provenance
    restore_location: Mapped[str | None] = mapped_column(String(500))
    restored_at: Mapped[datetime | None] = mapped_column()
    restored_by: Mapped[str | None] = mapped_column(String(100))
    restored_document_id: Mapped[uuid.UUID | None] = mapped_column()

    def __repr__(self) -> str:
        return f"<ArchiveRecord id={self.id} document={self.original_document_id} status={self.status}>"
