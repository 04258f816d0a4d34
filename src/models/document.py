"""Document model: one ingested delivery-document image and its lifecycle status."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Float, String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import DocumentStatus


class Document(TimestampMixin, Base):
    """A delivery document. Status changes only through the lifecycle state machine."""

    __tablename__ = "documents"

    content_hash: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=DocumentStatus.REVIEW.value, nullable=False, index=True
    )

    # Pipeline scores
    classification_confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    extraction_confidence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Extracted / matched fields
    supplier: Mapped[str | None] = mapped_column(String(100))
    job_ref: Mapped[str | None] = mapped_column(String(100), index=True, comment="Matched job reference")
    vehicle_reg: Mapped[str | None] = mapped_column(String(20), index=True, comment="Matched vehicle plate")

    # Storage
    mime_type: Mapped[str | None] = mapped_column(String(100))
    storage_key: Mapped[str | None] = mapped_column(String(500), comment="Blob store key")

    # Lifecycle bookkeeping
    pre_delete_status: Mapped[str | None] = mapped_column(
        String(20), comment="Status captured at soft delete, restored by undelete"
    )
    restored_from_archive_id: Mapped[uuid.UUID | None] = mapped_column()
    status_changed_at: Mapped[datetime | None] = mapped_column()

    # `metadata` is reserved on declarative classes
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", default=dict, nullable=False)

    def __repr__(self) -> str:
        return f"<Document id={self.id} status={self.status} job_ref={self.job_ref}>"
