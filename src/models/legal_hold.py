"""LegalHold model: compliance flag blocking archive and deletion of a document."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin
from src.models.enums import HoldStatus


class LegalHold(TimestampMixin, Base):
    """A legal hold. Rows past expires_at stay ACTIVE until released (passive expiry)."""

    __tablename__ = "legal_holds"

    document_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("documents.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), default=HoldStatus.ACTIVE.value, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column()
    notes: Mapped[str | None] = mapped_column(Text)

    released_by: Mapped[str | None] = mapped_column(String(100))
    released_at: Mapped[datetime | None] = mapped_column()
    release_reason: Mapped[str | None] = mapped_column(String(1000))

    def __repr__(self) -> str:
        return f"<LegalHold id={self.id} document={self.document_id} status={self.status}>"
