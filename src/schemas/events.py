"""SystemEvent schema: the audit event type that flows through the engine.

Every state change, decision and failure emits a SystemEvent. The audit
subscriber persists them to the append-only audit_log table.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """All audit actions emitted by the engine."""

    # Ingestion pipeline
    DOCUMENT_CLASSIFIED = "document.classified"
    FIELDS_EXTRACTED = "document.fields_extracted"
    PIPELINE_STAGE_FAILED = "pipeline.stage_failed"

    # Matching & routing
    MATCH_ATTEMPTED = "match.attempted"
    ROUTING_DECIDED = "routing.decided"
    ROUTING_OVERRIDDEN = "routing.overridden"
    ROUTING_RULES_RELOADED = "routing.rules_reloaded"

    # Lifecycle
    STATUS_CHANGED = "document.status_changed"

    # Legal holds
    LEGAL_HOLD_CREATED = "legal_hold.created"
    LEGAL_HOLD_RELEASED = "legal_hold.released"
    LEGAL_HOLD_EXPIRED = "legal_hold.expired"

    # Retention
    RETENTION_APPLIED = "retention.applied"
    RETENTION_CLEANUP_RUN = "retention.cleanup_run"

    # Archive
    ARCHIVE_ARCHIVED = "archive.archived"
    ARCHIVE_RESTORED = "archive.restored"
    ARCHIVE_VERIFIED = "archive.verified"
    ARCHIVE_SOFT_DELETED = "archive.soft_deleted"
    ARCHIVE_HARD_DELETED = "archive.hard_deleted"
    ARCHIVE_UNDELETED = "archive.undeleted"

    # Failures that must reach the audit trail before surfacing
    EXTERNAL_IO_FAILED = "system.external_io_failed"
    CONSISTENCY_FAILED = "system.consistency_failed"

    # System
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_SHUTDOWN = "system.shutdown"


class SystemEvent(BaseModel):
    """Core audit event: {action, entity, actor, timestamp, details}.

    Immutable once created.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Context (not every event relates to a single entity)
    entity_id: uuid.UUID | None = None
    correlation_id: uuid.UUID | None = None
    actor_id: str | None = None

    # Flexible payload
    data: dict[str, Any] = Field(default_factory=dict)

    # Metadata
    source_module: str | None = Field(default=None, description="Module that emitted this event")

    model_config = {"frozen": True}
