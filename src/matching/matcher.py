"""Candidate matcher: ranks job records against extracted document fields.

Priority order: exact job ref, exact plate, then (only if neither exact
tier hit) fuzzy job ref and fuzzy plate. A best score under the global
floor is reported as NO_MATCH. No-match outcomes are data, never errors.
"""

from __future__ import annotations

import logging
import time
import uuid

from src.audit.events import emit
from src.config import settings
from src.matching.jobs import JobDirectory, get_job_directory
from src.matching.similarity import fuzzy_match, normalize, parse_plate, plates_match, similarity
from src.models.enums import MatchConfidence, MatchStatus, MatchType, ReviewStatus
from src.schemas.context import OperationContext
from src.schemas.documents import ExtractedFields, JobRecord
from src.schemas.events import EventType, SystemEvent
from src.schemas.matching import MatchCandidate, MatchResult, MatchSummary

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_SCORE = 0.95


class CandidateMatcher:
    """Scores jobs against extracted fields using the configured thresholds."""

    def __init__(
        self,
        directory: JobDirectory | None = None,
        *,
        exact_job_ref: float | None = None,
        exact_vehicle_reg: float | None = None,
        fuzzy_job_ref: float | None = None,
        fuzzy_vehicle_reg: float | None = None,
        min_match: float | None = None,
    ) -> None:
        cfg = settings.matching
        self._directory = directory
        self.exact_job_ref = exact_job_ref if exact_job_ref is not None else cfg.exact_job_ref_threshold
        self.exact_vehicle_reg = (
            exact_vehicle_reg if exact_vehicle_reg is not None else cfg.exact_vehicle_reg_threshold
        )
        self.fuzzy_job_ref = fuzzy_job_ref if fuzzy_job_ref is not None else cfg.fuzzy_job_ref_threshold
        self.fuzzy_vehicle_reg = (
            fuzzy_vehicle_reg if fuzzy_vehicle_reg is not None else cfg.fuzzy_vehicle_reg_threshold
        )
        self.min_match = min_match if min_match is not None else cfg.min_match_threshold

    # ── Single-field tiers ───────────────────────────────────────────

    def exact_job_ref_match(self, job_ref: str | None, jobs: list[JobRecord]) -> MatchCandidate | None:
        target = normalize(job_ref)
        if not target:
            return None
        for job in jobs:
            if normalize(job.job_ref) == target:
                return MatchCandidate(
                    job_id=job.id,
                    job_ref=job.job_ref,
                    score=self.exact_job_ref,
                    match_type=MatchType.EXACT_JOB_REF,
                )
        return None

    def exact_plate_match(self, vehicle_reg: str | None, jobs: list[JobRecord]) -> MatchCandidate | None:
        if parse_plate(vehicle_reg) is None:
            return None
        for job in jobs:
            if plates_match(vehicle_reg, job.vehicle_reg):
                return MatchCandidate(
                    job_id=job.id,
                    job_ref=job.job_ref,
                    score=self.exact_vehicle_reg,
                    match_type=MatchType.EXACT_VEHICLE_REG,
                )
        return None

    def fuzzy_job_ref_match(self, job_ref: str | None, jobs: list[JobRecord]) -> MatchCandidate | None:
        if not normalize(job_ref):
            return None
        best: MatchCandidate | None = None
        for job in jobs:
            score = fuzzy_match(job_ref, job.job_ref, self.fuzzy_job_ref)
            # Strict comparison: the first job scanned wins a tie
            if score > 0 and (best is None or score > best.score):
                best = MatchCandidate(
                    job_id=job.id,
                    job_ref=job.job_ref,
                    score=score,
                    match_type=MatchType.FUZZY_JOB_REF,
                )
        return best

    def fuzzy_plate_match(self, vehicle_reg: str | None, jobs: list[JobRecord]) -> MatchCandidate | None:
        target = normalize(vehicle_reg)
        if not target:
            return None
        best: MatchCandidate | None = None
        for job in jobs:
            candidate = normalize(job.vehicle_reg)
            if not candidate:
                continue
            score = similarity(target, candidate)
            if score >= self.fuzzy_vehicle_reg and (best is None or score > best.score):
                best = MatchCandidate(
                    job_id=job.id,
                    job_ref=job.job_ref,
                    score=score,
                    match_type=MatchType.FUZZY_VEHICLE_REG,
                )
        return best

    # ── Public API ───────────────────────────────────────────────────

    def rank(self, fields: ExtractedFields, jobs: list[JobRecord]) -> list[MatchCandidate]:
        """All tier hits, best first. Equal scores keep scan order."""
        candidates: list[MatchCandidate] = []
        for hit in (
            self.exact_job_ref_match(fields.job_ref, jobs),
            self.exact_plate_match(fields.vehicle_reg, jobs),
        ):
            if hit is not None:
                candidates.append(hit)

        if not candidates:
            for hit in (
                self.fuzzy_job_ref_match(fields.job_ref, jobs),
                self.fuzzy_plate_match(fields.vehicle_reg, jobs),
            ):
                if hit is not None:
                    candidates.append(hit)

        # list.sort is stable
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    async def find_match(
        self,
        ctx: OperationContext,
        fields: ExtractedFields,
        jobs: list[JobRecord],
        *,
        document_id: uuid.UUID | None = None,
    ) -> MatchResult:
        """Best job for the extracted fields among the given candidates."""
        started = time.monotonic()

        if not jobs:
            result = MatchResult(
                summary=MatchSummary(
                    status=MatchStatus.NO_JOBS_FOUND,
                    jobs_searched=0,
                    duration_ms=_elapsed_ms(started),
                    extracted_fields=fields,
                ),
            )
            await self._audit(ctx, result, document_id)
            return result

        candidates = self.rank(fields, jobs)
        best = candidates[0] if candidates else None
        if best is not None and best.score < self.min_match:
            best = None

        result = MatchResult(
            match=best,
            candidates=candidates,
            summary=MatchSummary(
                status=MatchStatus.MATCHED if best is not None else MatchStatus.NO_MATCH,
                best_score=best.score if best is not None else 0.0,
                jobs_searched=len(jobs),
                duration_ms=_elapsed_ms(started),
                extracted_fields=fields,
            ),
        )
        await self._audit(ctx, result, document_id)
        return result

    async def lookup(
        self,
        ctx: OperationContext,
        fields: ExtractedFields,
        *,
        document_id: uuid.UUID | None = None,
    ) -> MatchResult:
        """find_match against jobs fetched from the configured directory."""
        jobs = await self._require_directory().list_jobs(
            ctx,
            job_ref=fields.job_ref,
            vehicle_reg=fields.vehicle_reg,
            date=fields.date,
        )
        return await self.find_match(ctx, fields, jobs, document_id=document_id)

    async def find_by_job_ref(self, ctx: OperationContext, job_ref: str) -> MatchCandidate:
        """Job ref only: exact first, then fuzzy. NO_MATCH candidate if nothing hits."""
        jobs = await self._require_directory().list_jobs(ctx, job_ref=job_ref)
        hit = self.exact_job_ref_match(job_ref, jobs) or self.fuzzy_job_ref_match(job_ref, jobs)
        return hit or MatchCandidate()

    async def find_by_plate(self, ctx: OperationContext, vehicle_reg: str) -> MatchCandidate:
        """Plate only: exact first, then fuzzy. NO_MATCH candidate if nothing hits."""
        jobs = await self._require_directory().list_jobs(ctx, vehicle_reg=vehicle_reg)
        hit = self.exact_plate_match(vehicle_reg, jobs) or self.fuzzy_plate_match(vehicle_reg, jobs)
        return hit or MatchCandidate()

    def match_status(self, confidence: float) -> MatchConfidence:
        if confidence >= HIGH_CONFIDENCE_SCORE:
            return MatchConfidence.HIGH_CONFIDENCE
        if confidence >= self.min_match:
            return MatchConfidence.MEDIUM_CONFIDENCE
        return MatchConfidence.LOW_CONFIDENCE

    def review_status(self, confidence: float) -> ReviewStatus:
        if confidence >= HIGH_CONFIDENCE_SCORE:
            return ReviewStatus.AUTO_APPROVE
        return ReviewStatus.REVIEW_REQUIRED

    # ── Internals ────────────────────────────────────────────────────

    def _require_directory(self) -> JobDirectory:
        if self._directory is None:
            self._directory = get_job_directory()
        return self._directory

    async def _audit(self, ctx: OperationContext, result: MatchResult, document_id: uuid.UUID | None) -> None:
        logger.info(
            "Match attempt: status=%s best=%.3f searched=%d (correlation=%s)",
            result.summary.status.value,
            result.summary.best_score,
            result.summary.jobs_searched,
            ctx.correlation_id,
        )
        await emit(SystemEvent(
            event_type=EventType.MATCH_ATTEMPTED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={
                "status": result.summary.status.value,
                "best_score": result.summary.best_score,
                "jobs_searched": result.summary.jobs_searched,
                "match_type": result.match.match_type.value if result.match else MatchType.NO_MATCH.value,
                "job_id": result.match.job_id if result.match else None,
                "job_ref": result.summary.extracted_fields.job_ref,
                "vehicle_reg": result.summary.extracted_fields.vehicle_reg,
            },
            source_module="matching.matcher",
        ))


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
