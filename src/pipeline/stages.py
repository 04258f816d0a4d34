"""Ingestion pipeline stages: classify -> extract -> match -> route -> apply.

Each stage reads and writes a shared PipelineState and declares what the
runner should do if it fails:

    classify  HALT     nothing downstream makes sense without it
    extract   DEGRADE  routing still runs on empty fields (-> review)
    match     DEGRADE  routing still runs with no match (-> review)
    route     HALT
    apply     HALT

A stage that raises is a FAIL; a stage with nothing to do returns SKIP.
The classifier and extractor are external collaborators; the engine only
consumes their scores.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from src.audit.events import emit
from src.db.stores import DocumentStore
from src.lifecycle.fsm import DocumentLifecycle
from src.matching.matcher import CandidateMatcher
from src.models.enums import DocumentStatus, FailurePolicy, MatchStatus, StageStatus
from src.routing.engine import RoutingEngine
from src.schemas.context import OperationContext
from src.schemas.documents import Document, ExtractedFields
from src.schemas.events import EventType, SystemEvent
from src.schemas.lifecycle import TransitionResult
from src.schemas.matching import MatchResult, MatchSummary
from src.schemas.pipeline import ClassificationResult
from src.schemas.routing import RoutingDecision

logger = logging.getLogger(__name__)

NON_DOCUMENT_REASON = "Classifier: not a delivery document"


class Classifier(Protocol):
    async def classify(self, content: bytes, mime_type: str | None) -> ClassificationResult: ...


class Extractor(Protocol):
    async def extract(self, content: bytes) -> ExtractedFields: ...


@dataclass
class PipelineState:
    ctx: OperationContext
    document: Document
    content: bytes
    mime_type: str | None = None
    classification: ClassificationResult | None = None
    fields: ExtractedFields | None = None
    match: MatchResult | None = None
    decision: RoutingDecision | None = None
    transition: TransitionResult | None = None
    # Set when a stage ends the run early without failing (e.g. quarantine)
    finished: bool = False
    quarantined: bool = False


@dataclass
class Outcome:
    """What a stage's run() hands back to the runner."""

    status: StageStatus = StageStatus.SUCCESS
    detail: dict[str, Any] = field(default_factory=dict)


class Stage(Protocol):
    name: str
    policy: FailurePolicy

    async def run(self, state: PipelineState) -> Outcome: ...


# ── Stages ───────────────────────────────────────────────────────────


class ClassifyStage:
    """Score the image. Non-documents go straight to QUARANTINE."""

    name = "classify"
    policy = FailurePolicy.HALT

    def __init__(self, classifier: Classifier, documents: DocumentStore, lifecycle: DocumentLifecycle) -> None:
        self._classifier = classifier
        self._documents = documents
        self._lifecycle = lifecycle

    async def run(self, state: PipelineState) -> Outcome:
        result = await self._classifier.classify(state.content, state.mime_type)
        state.classification = result

        updated = await self._documents.update_fields(
            state.document.id,
            classification_confidence=result.confidence,
        )
        if updated is not None:
            state.document = updated

        await emit(SystemEvent(
            event_type=EventType.DOCUMENT_CLASSIFIED,
            entity_id=state.document.id,
            correlation_id=state.ctx.correlation_id,
            actor_id=state.ctx.actor,
            data={"is_document": result.is_document, "confidence": result.confidence},
            source_module="pipeline.stages",
        ))

        if not result.is_document:
            logger.info(
                "Document %s classified as non-document (%.2f), quarantining (correlation=%s)",
                state.document.id,
                result.confidence,
                state.ctx.correlation_id,
            )
            state.transition = await self._lifecycle.quarantine(state.ctx, state.document.id, NON_DOCUMENT_REASON)
            state.finished = True
            state.quarantined = True

        return Outcome(detail={"is_document": result.is_document, "confidence": result.confidence})


class ExtractStage:
    name = "extract"
    policy = FailurePolicy.DEGRADE

    def __init__(self, extractor: Extractor, documents: DocumentStore) -> None:
        self._extractor = extractor
        self._documents = documents

    async def run(self, state: PipelineState) -> Outcome:
        fields = await self._extractor.extract(state.content)
        state.fields = fields

        updated = await self._documents.update_fields(
            state.document.id,
            extraction_confidence=fields.confidence,
            supplier=fields.supplier,
            job_ref=fields.job_ref,
            vehicle_reg=fields.vehicle_reg,
        )
        if updated is not None:
            state.document = updated

        populated = [name for name in ("supplier", "job_ref", "vehicle_reg", "date") if getattr(fields, name)]
        await emit(SystemEvent(
            event_type=EventType.FIELDS_EXTRACTED,
            entity_id=state.document.id,
            correlation_id=state.ctx.correlation_id,
            actor_id=state.ctx.actor,
            data={"fields": populated, "confidence": fields.confidence},
            source_module="pipeline.stages",
        ))
        return Outcome(detail={"fields": populated, "confidence": fields.confidence})


class MatchStage:
    name = "match"
    policy = FailurePolicy.DEGRADE

    def __init__(self, matcher: CandidateMatcher) -> None:
        self._matcher = matcher

    async def run(self, state: PipelineState) -> Outcome:
        fields = state.fields
        if fields is None or not (fields.job_ref or fields.vehicle_reg):
            return Outcome(status=StageStatus.SKIP, detail={"reason": "no job_ref or vehicle_reg to match on"})

        result = await self._matcher.lookup(state.ctx, fields, document_id=state.document.id)
        state.match = result
        return Outcome(detail={
            "status": result.summary.status.value,
            "best_score": result.summary.best_score,
            "jobs_searched": result.summary.jobs_searched,
        })


class RouteStage:
    name = "route"
    policy = FailurePolicy.HALT

    def __init__(self, engine: RoutingEngine) -> None:
        self._engine = engine

    async def run(self, state: PipelineState) -> Outcome:
        match = state.match or MatchResult(
            summary=MatchSummary(
                status=MatchStatus.NO_MATCH,
                extracted_fields=state.fields or ExtractedFields(),
            ),
        )
        decision = await self._engine.decide(state.ctx, state.document, match)
        state.decision = decision
        return Outcome(detail={
            "decision": decision.decision.value,
            "reason_code": decision.reason_code.value,
            "next_action": decision.next_action.value,
        })


class ApplyStage:
    """Move the document per the routing decision. Only REVIEW documents are routed."""

    name = "apply"
    policy = FailurePolicy.HALT

    def __init__(self, lifecycle: DocumentLifecycle) -> None:
        self._lifecycle = lifecycle

    async def run(self, state: PipelineState) -> Outcome:
        if state.decision is None:
            return Outcome(status=StageStatus.SKIP, detail={"reason": "no routing decision"})
        if state.document.status != DocumentStatus.REVIEW:
            return Outcome(
                status=StageStatus.SKIP,
                detail={"reason": f"document is {state.document.status.value}, not REVIEW"},
            )

        result = await self._lifecycle.apply_routing(state.ctx, state.document.id, state.decision)
        state.transition = result
        return Outcome(detail={
            "from": result.from_status.value,
            "to": result.to_status.value,
            "changed": result.changed,
        })
