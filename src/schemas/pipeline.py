"""Ingestion pipeline schemas: collaborator outputs and tagged stage results."""

from __future__ import annotations

import uuid
from typing import Any

from pydantic import BaseModel, Field

from src.models.enums import DocumentStatus, FailurePolicy, StageStatus
from src.schemas.lifecycle import TransitionResult
from src.schemas.matching import MatchResult
from src.schemas.routing import RoutingDecision


class ClassificationResult(BaseModel):
    """What the external classifier says about an image."""

    is_document: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class StageResult(BaseModel):
    stage: str
    status: StageStatus
    policy: FailurePolicy
    duration_ms: int = 0
    detail: dict[str, Any] = Field(default_factory=dict)
    error: dict[str, Any] | None = None

    @property
    def failed(self) -> bool:
        return self.status == StageStatus.FAIL


class PipelineResult(BaseModel):
    """Everything one pipeline run produced. Never raised: failures are recorded per stage."""

    document_id: uuid.UUID
    correlation_id: uuid.UUID
    stages: list[StageResult] = Field(default_factory=list)
    halted: bool = False
    quarantined: bool = False
    match: MatchResult | None = None
    decision: RoutingDecision | None = None
    transition: TransitionResult | None = None
    final_status: DocumentStatus | None = None
    processing_time_ms: int = 0

    def stage(self, name: str) -> StageResult | None:
        return next((s for s in self.stages if s.stage == name), None)
