"""AuditLog model: immutable audit trail for every engine event.

Every action emits a SystemEvent which is persisted here.
This table is append-only: no updates or deletes.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from src.models.base import Base, TimestampMixin


class AuditLog(TimestampMixin, Base):
    """Immutable audit trail entry."""

    __tablename__ = "audit_log"

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Context (all nullable, not every event relates to a single entity)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(index=True)
    correlation_id: Mapped[uuid.UUID | None] = mapped_column(index=True)
    actor: Mapped[str | None] = mapped_column(String(100), comment="Reviewer, admin, or 'system'")
    source_module: Mapped[str | None] = mapped_column(String(100))

    # Event data, flexible JSONB payload
    details: Mapped[dict[str, Any] | None] = mapped_column()

    def __repr__(self) -> str:
        return f"<AuditLog action={self.action} entity={self.entity_id}>"
