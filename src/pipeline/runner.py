"""Pipeline runner.

Runs the stages in order and applies each stage's failure policy:
a failed HALT stage stops the run, a failed DEGRADE stage is recorded and
the run continues without its output. Stages after a halt (or after a
stage that finished the run, such as quarantine) are recorded as SKIP.

process() never raises for stage failures; every failure is logged,
emitted as PIPELINE_STAGE_FAILED and kept in the PipelineResult.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence

from src.audit.events import emit
from src.db.stores import DocumentStore
from src.errors import NotFoundError, PodEngineError
from src.lifecycle.fsm import DocumentLifecycle
from src.matching.matcher import CandidateMatcher
from src.models.enums import FailurePolicy, StageStatus
from src.pipeline.stages import (
    ApplyStage,
    ClassifyStage,
    Classifier,
    ExtractStage,
    Extractor,
    MatchStage,
    PipelineState,
    RouteStage,
    Stage,
)
from src.routing.engine import RoutingEngine
from src.schemas.context import OperationContext
from src.schemas.events import EventType, SystemEvent
from src.schemas.pipeline import PipelineResult, StageResult

logger = logging.getLogger(__name__)


def build_stages(
    *,
    classifier: Classifier,
    extractor: Extractor,
    documents: DocumentStore,
    lifecycle: DocumentLifecycle,
    matcher: CandidateMatcher,
    engine: RoutingEngine,
) -> list[Stage]:
    """The standard classify -> extract -> match -> route -> apply chain."""
    return [
        ClassifyStage(classifier, documents, lifecycle),
        ExtractStage(extractor, documents),
        MatchStage(matcher),
        RouteStage(engine),
        ApplyStage(lifecycle),
    ]


class PipelineRunner:
    def __init__(self, documents: DocumentStore, stages: Sequence[Stage]) -> None:
        self._documents = documents
        self._stages = list(stages)

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    async def process(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        content: bytes,
        mime_type: str | None = None,
    ) -> PipelineResult:
        """Run every stage for one already-ingested document.

        Raises:
            NotFoundError: the document does not exist (nothing was run).
        """
        started = time.monotonic()
        document = await self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", entity_id=document_id, operation="pipeline")

        state = PipelineState(ctx=ctx, document=document, content=content, mime_type=mime_type)
        results: list[StageResult] = []
        halted = False

        for stage in self._stages:
            if halted or state.finished:
                results.append(StageResult(stage=stage.name, status=StageStatus.SKIP, policy=stage.policy))
                continue

            stage_started = time.monotonic()
            try:
                outcome = await stage.run(state)
            except Exception as exc:
                result = StageResult(
                    stage=stage.name,
                    status=StageStatus.FAIL,
                    policy=stage.policy,
                    duration_ms=_elapsed_ms(stage_started),
                    error=_error_payload(exc),
                )
                results.append(result)
                await self._report_failure(ctx, document_id, result, exc)
                if stage.policy == FailurePolicy.HALT:
                    halted = True
                continue

            results.append(StageResult(
                stage=stage.name,
                status=outcome.status,
                policy=stage.policy,
                duration_ms=_elapsed_ms(stage_started),
                detail=outcome.detail,
            ))

        final = await self._documents.get(document_id)
        return PipelineResult(
            document_id=document_id,
            correlation_id=ctx.correlation_id,
            stages=results,
            halted=halted,
            quarantined=state.quarantined,
            match=state.match,
            decision=state.decision,
            transition=state.transition,
            final_status=final.status if final is not None else None,
            processing_time_ms=_elapsed_ms(started),
        )

    async def _report_failure(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        result: StageResult,
        exc: Exception,
    ) -> None:
        if isinstance(exc, PodEngineError):
            logger.warning(
                "Pipeline stage %s failed for %s: %s (policy=%s, correlation=%s)",
                result.stage,
                document_id,
                exc,
                result.policy.value,
                ctx.correlation_id,
            )
        else:
            logger.exception(
                "Pipeline stage %s crashed for %s (policy=%s, correlation=%s)",
                result.stage,
                document_id,
                result.policy.value,
                ctx.correlation_id,
            )
        await emit(SystemEvent(
            event_type=EventType.PIPELINE_STAGE_FAILED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"stage": result.stage, "policy": result.policy.value, "error": result.error},
            source_module="pipeline.runner",
        ))


def _error_payload(exc: Exception) -> dict:
    if isinstance(exc, PodEngineError):
        return exc.to_dict()
    return {"error": type(exc).__name__, "message": str(exc)}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
