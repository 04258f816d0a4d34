"""Legal hold and retention schemas."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.models.enums import DocumentStatus, HoldStatus, RetentionAction


class LegalHold(BaseModel):
    """A compliance hold on one document.

    Expiry is passive: a hold past expires_at keeps status ACTIVE until it is
    released; it simply stops protecting the document.
    """

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    document_id: uuid.UUID
    status: HoldStatus = HoldStatus.ACTIVE
    reason: str
    created_by: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None
    notes: str | None = None
    released_by: str | None = None
    released_at: datetime | None = None
    release_reason: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_protecting(self, now: datetime) -> bool:
        return self.status == HoldStatus.ACTIVE and not self.is_expired(now)


class HoldView(LegalHold):
    """Hold plus its computed expiry flag, for listings."""

    expired: bool = False


class HoldStats(BaseModel):
    active: int = 0
    expired: int = 0
    released: int = 0
    total: int = 0


class RetentionPolicy(BaseModel):
    policy_id: str
    name: str = "Custom Policy"
    description: str = ""
    retention_days: int = Field(default=365, gt=0)
    grace_days: int = Field(default=30, ge=0)
    archive_before_delete: bool = True
    applies_to: frozenset[str] = frozenset({"documents"})
    is_active: bool = True

    @field_validator("applies_to", mode="before")
    @classmethod
    def coerce_applies_to(cls, v: Any) -> Any:
        if isinstance(v, str):
            return frozenset({v})
        return v


class RetentionExpiry(BaseModel):
    """Computed retention windows for one document under one policy."""

    policy_id: str
    created_at: datetime
    expiry_date: datetime
    grace_expiry_date: datetime
    is_expired: bool
    in_grace_period: bool
    archive_eligible: bool
    delete_eligible: bool
    days_until_expiry: int
    days_until_grace_expiry: int


class RetentionOutcome(BaseModel):
    document_id: uuid.UUID
    action: RetentionAction
    dry_run: bool = False
    previous_status: DocumentStatus
    new_status: DocumentStatus | None = None
    expiry: RetentionExpiry


class CleanupItem(BaseModel):
    document_id: uuid.UUID
    action: RetentionAction
    created_at: datetime


class CleanupFailure(BaseModel):
    document_id: uuid.UUID
    action: RetentionAction | None = None
    error: str
    detail: dict[str, Any] = Field(default_factory=dict)


class CleanupReport(BaseModel):
    """Per-item results of a retention sweep. One failure never aborts the batch."""

    dry_run: bool
    evaluated: int = 0
    archived: list[CleanupItem] = Field(default_factory=list)
    soft_deleted: list[CleanupItem] = Field(default_factory=list)
    hard_deleted: list[CleanupItem] = Field(default_factory=list)
    errors: list[CleanupFailure] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.archived) + len(self.soft_deleted) + len(self.hard_deleted)


class RetentionStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    archive_eligible: int = 0
    soft_delete_eligible: int = 0
    hard_delete_eligible: int = 0
    active_policies: int = 0
