"""Lifecycle transition outcome."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from src.models.enums import DocumentStatus


class TransitionResult(BaseModel):
    document_id: uuid.UUID
    from_status: DocumentStatus
    to_status: DocumentStatus
    changed: bool = True
    reason: str | None = None
    actor: str = "system"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
