"""Document, job and extraction schemas."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from src.models.enums import DocumentStatus


class Document(BaseModel):
    """A delivery document as seen by the engine.

    Created on ingestion, mutated only through the lifecycle state machine.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    content_hash: str
    status: DocumentStatus = DocumentStatus.REVIEW
    classification_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extraction_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    supplier: str | None = None
    job_ref: str | None = None
    vehicle_reg: str | None = None
    mime_type: str | None = None
    storage_key: str | None = Field(default=None, description="Blob store key of the original content")
    pre_delete_status: DocumentStatus | None = Field(
        default=None, description="Status captured when soft-deleted; restored by undelete"
    )
    restored_from_archive_id: uuid.UUID | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class JobRecord(BaseModel):
    """Read-only job reference data from the job directory."""

    id: str
    job_ref: str = ""
    vehicle_reg: str = ""
    supplier: str | None = None
    date: str | None = None


class ExtractedFields(BaseModel):
    """Fields the extractor pulled off a document image."""

    supplier: str | None = None
    job_ref: str | None = None
    vehicle_reg: str | None = None
    date: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
