"""Retention policy evaluation, single-document enforcement and batch cleanup.

Windows for one document under one policy:

    expiry        = created_at + retention_days
    grace_expiry  = expiry + grace_days
    is_expired    = now >= expiry
    in_grace      = expiry <= now < grace_expiry
    archive_eligible = is_expired and policy.archive_before_delete
    delete_eligible  = in_grace and not policy.archive_before_delete

The asymmetry is deliberate: with archive_before_delete set, deletion is
never computed directly here. The document is archived first and reaches
PENDING_DELETE / DELETED in a later cleanup pass.
"""

from __future__ import annotations

import json
import logging
import math
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Iterable
from contextlib import aclosing
from datetime import datetime, timedelta
from typing import Any, Protocol

import pydantic

from src.audit.events import emit, reporting_failures
from src.config import settings
from src.db.stores import DocumentStore
from src.errors import NotFoundError, PodEngineError, ProtectedError, ValidationError
from src.lifecycle.fsm import ProtectionCheck
from src.lifecycle.states import RETENTION_EXEMPT
from src.models.enums import DocumentStatus, RetentionAction
from src.schemas.compliance import (
    CleanupFailure,
    CleanupItem,
    CleanupReport,
    RetentionExpiry,
    RetentionOutcome,
    RetentionPolicy,
    RetentionStats,
)
from src.schemas.context import Clock, OperationContext, utc_now
from src.schemas.documents import Document
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

# Documents read per store query while looking for due documents
CANDIDATE_PAGE_SIZE = 200

# Entity types a policy may apply to
ENTITY_DOCUMENTS = "documents"
ENTITY_EXPORTS = "exports"

DEFAULT_POLICIES: tuple[RetentionPolicy, ...] = (
    RetentionPolicy(
        policy_id="pods_1yr",
        name="PODs 1 Year",
        description="Proof of delivery documents - 1 year retention",
        retention_days=365,
        grace_days=30,
        archive_before_delete=True,
        applies_to=frozenset({ENTITY_DOCUMENTS}),
    ),
    RetentionPolicy(
        policy_id="exports_2yr",
        name="Exports 2 Years",
        description="Export records - 2 year retention",
        retention_days=730,
        grace_days=30,
        archive_before_delete=True,
        applies_to=frozenset({ENTITY_EXPORTS}),
    ),
    RetentionPolicy(
        policy_id="email_90d",
        name="Email Queue 90 Days",
        description="Email queue entries - 90 day retention",
        retention_days=90,
        grace_days=7,
        archive_before_delete=False,
        applies_to=frozenset({"email_queue"}),
    ),
    RetentionPolicy(
        policy_id="audit_7yr",
        name="Audit Logs 7 Years",
        description="Audit log entries - 7 year retention for compliance",
        retention_days=2555,
        grace_days=90,
        archive_before_delete=True,
        applies_to=frozenset({"audit_logs"}),
    ),
)


class RetentionActions(Protocol):
    """The destructive operations retention delegates to (the archive manager)."""

    async def archive(self, ctx: OperationContext, document_id: uuid.UUID) -> Any: ...

    async def soft_delete(self, ctx: OperationContext, document_id: uuid.UUID, reason: str | None = None) -> Any: ...

    async def hard_delete(self, ctx: OperationContext, document_id: uuid.UUID, reason: str | None = None) -> Any: ...


# ── Pure window arithmetic ───────────────────────────────────────────


def _days_until(target: datetime, now: datetime) -> int:
    return math.ceil((target - now).total_seconds() / SECONDS_PER_DAY)


def compute_expiry(document: Document, policy: RetentionPolicy, now: datetime) -> RetentionExpiry:
    expiry_date = document.created_at + timedelta(days=policy.retention_days)
    grace_expiry_date = expiry_date + timedelta(days=policy.grace_days)
    is_expired = now >= expiry_date
    in_grace = expiry_date <= now < grace_expiry_date

    return RetentionExpiry(
        policy_id=policy.policy_id,
        created_at=document.created_at,
        expiry_date=expiry_date,
        grace_expiry_date=grace_expiry_date,
        is_expired=is_expired,
        in_grace_period=in_grace,
        archive_eligible=is_expired and policy.archive_before_delete,
        delete_eligible=in_grace and not policy.archive_before_delete,
        days_until_expiry=_days_until(expiry_date, now),
        days_until_grace_expiry=_days_until(grace_expiry_date, now),
    )


def plan_action(document: Document, expiry: RetentionExpiry) -> RetentionAction | None:
    """The single transition retention would apply now, or None.

    Precedence: archive (if eligible and not yet archived), then soft delete
    while in grace, then hard delete once grace has run out.
    """
    if not expiry.is_expired or document.status in RETENTION_EXEMPT:
        return None

    if expiry.archive_eligible and document.status not in (
        DocumentStatus.ARCHIVED,
        DocumentStatus.PENDING_DELETE,
    ):
        return RetentionAction.ARCHIVE

    if expiry.in_grace_period:
        if document.status == DocumentStatus.PENDING_DELETE:
            return None
        return RetentionAction.SOFT_DELETE

    return RetentionAction.HARD_DELETE


# ── Policy registry ──────────────────────────────────────────────────


def load_policies(raw_json: str | None = None) -> list[RetentionPolicy]:
    """Policies from settings (a JSON list), defaults if none configured."""
    raw = raw_json if raw_json is not None else settings.retention.retention_policies_json
    if not raw:
        return list(DEFAULT_POLICIES)

    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ValidationError(f"Retention policies are not valid JSON: {exc}", operation="load_policies") from exc
    if not isinstance(payload, list):
        raise ValidationError("Retention policies must be a JSON list", operation="load_policies")

    try:
        return [RetentionPolicy.model_validate(item) for item in payload]
    except pydantic.ValidationError as exc:
        errors = "; ".join(err["msg"] for err in exc.errors())
        raise ValidationError(f"Invalid retention policy: {errors}", operation="load_policies") from exc


class PolicyRegistry:
    """In-memory retention policies keyed by policy_id, in insertion order."""

    def __init__(self, policies: Iterable[RetentionPolicy] | None = None) -> None:
        source = list(policies) if policies is not None else load_policies()
        self._policies: dict[str, RetentionPolicy] = {p.policy_id: p for p in source}

    def get_policies(self, *, include_inactive: bool = False) -> list[RetentionPolicy]:
        return [p for p in self._policies.values() if include_inactive or p.is_active]

    def get_policy(self, policy_id: str) -> RetentionPolicy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise NotFoundError(f"Retention policy {policy_id} not found", entity_id=policy_id, operation="get_policy")
        return policy

    def get_applicable_policy(self, document: Document) -> RetentionPolicy | None:
        """First active policy for the document's entity type, else a documents policy."""
        entity_type = ENTITY_EXPORTS if document.metadata.get("export_record") else ENTITY_DOCUMENTS
        active = self.get_policies()
        for policy in active:
            if entity_type in policy.applies_to:
                return policy
        for policy in active:
            if ENTITY_DOCUMENTS in policy.applies_to:
                return policy
        return None

    def set_rule(self, data: dict[str, Any]) -> RetentionPolicy:
        """Create or replace a policy. A missing policy_id gets a fresh uuid."""
        payload = {"policy_id": str(uuid.uuid4()), **data}
        try:
            policy = RetentionPolicy.model_validate(payload)
        except pydantic.ValidationError as exc:
            errors = "; ".join(err["msg"] for err in exc.errors())
            raise ValidationError(
                f"Invalid retention policy: {errors}",
                entity_id=payload["policy_id"],
                operation="set_rule",
            ) from exc
        self._policies[policy.policy_id] = policy
        logger.info("Retention policy set: %s (%d days)", policy.policy_id, policy.retention_days)
        return policy

    def min_retention_days(self) -> int | None:
        active = self.get_policies()
        return min((p.retention_days for p in active), default=None)


DuePair = tuple[Document, RetentionAction]


async def _take(pairs: AsyncGenerator[DuePair, None], limit: int) -> AsyncIterator[DuePair]:
    if limit <= 0:
        return
    async with aclosing(pairs):
        taken = 0
        async for pair in pairs:
            yield pair
            taken += 1
            if taken >= limit:
                return


# ── Evaluator ────────────────────────────────────────────────────────


class RetentionEvaluator:
    """Applies retention policies to documents, one at a time or in batches."""

    def __init__(
        self,
        documents: DocumentStore,
        holds: ProtectionCheck,
        actions: RetentionActions,
        policies: PolicyRegistry | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._documents = documents
        self._holds = holds
        self._actions = actions
        self.policies = policies or PolicyRegistry()
        self._clock = clock

    def expiry(self, document: Document, policy: RetentionPolicy | None = None) -> RetentionExpiry:
        """Retention windows as of now. Raises ValidationError if no policy applies."""
        policy = policy or self.policies.get_applicable_policy(document)
        if policy is None:
            raise ValidationError(
                "No applicable retention policy",
                entity_id=document.id,
                operation="expiry",
                current_status=document.status.value,
            )
        return compute_expiry(document, policy, self._clock())

    async def apply_retention(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        *,
        dry_run: bool = False,
    ) -> RetentionOutcome:
        """Perform exactly one retention transition on a document.

        Raises:
            NotFoundError: no such document.
            ValidationError: no policy applies, retention not yet expired, or
                nothing left to do at this point of the window.
            ProtectedError: an active legal hold protects the document.
            ExternalIOError: a backing store failed (reported to the audit trail).
        """
        async with reporting_failures(ctx, document_id, "compliance.retention"):
            return await self._apply_retention(ctx, document_id, dry_run)

    async def _apply_retention(
        self, ctx: OperationContext, document_id: uuid.UUID, dry_run: bool
    ) -> RetentionOutcome:
        document = await self._documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", entity_id=document_id, operation="apply_retention")

        expiry = self.expiry(document)
        if not expiry.is_expired:
            raise ValidationError(
                f"Retention period not yet expired ({expiry.days_until_expiry} days left)",
                entity_id=document_id,
                operation="apply_retention",
                current_status=document.status.value,
            )

        if await self._holds.is_protected(document_id):
            raise ProtectedError(
                f"Document {document_id} is under legal hold",
                entity_id=document_id,
                operation="apply_retention",
                current_status=document.status.value,
            )

        action = plan_action(document, expiry)
        if action is None:
            raise ValidationError(
                f"No retention action pending for status {document.status.value}",
                entity_id=document_id,
                operation="apply_retention",
                current_status=document.status.value,
            )

        new_status: DocumentStatus | None = None
        if not dry_run:
            reason = f"retention:{expiry.policy_id}"
            if action == RetentionAction.ARCHIVE:
                await self._actions.archive(ctx, document_id)
                new_status = DocumentStatus.ARCHIVED
            elif action == RetentionAction.SOFT_DELETE:
                await self._actions.soft_delete(ctx, document_id, reason)
                new_status = DocumentStatus.PENDING_DELETE
            else:
                await self._actions.hard_delete(ctx, document_id, reason)
                new_status = DocumentStatus.DELETED

            await emit(SystemEvent(
                event_type=EventType.RETENTION_APPLIED,
                entity_id=document_id,
                correlation_id=ctx.correlation_id,
                actor_id=ctx.actor,
                data={
                    "policy_id": expiry.policy_id,
                    "action": action.value,
                    "expiry_date": expiry.expiry_date.isoformat(),
                    "grace_expiry_date": expiry.grace_expiry_date.isoformat(),
                },
                source_module="compliance.retention",
            ))

        return RetentionOutcome(
            document_id=document_id,
            action=action,
            dry_run=dry_run,
            previous_status=document.status,
            new_status=new_status,
            expiry=expiry,
        )

    async def _due_documents(self, now: datetime) -> AsyncGenerator[DuePair, None]:
        """Unheld documents with a retention action due, oldest first.

        Pages through the store so documents that are held, or have nothing
        to do yet, never crowd due ones out of a batch.
        """
        shortest = self.policies.min_retention_days()
        if shortest is None:
            return
        cutoff = now - timedelta(days=shortest)
        statuses = [s for s in DocumentStatus if s not in RETENTION_EXEMPT]

        offset = 0
        while True:
            page = await self._documents.list_by_status(
                statuses, created_before=cutoff, limit=CANDIDATE_PAGE_SIZE, offset=offset
            )
            for document in page:
                policy = self.policies.get_applicable_policy(document)
                if policy is None:
                    continue
                action = plan_action(document, compute_expiry(document, policy, now))
                if action is None or await self._holds.is_protected(document.id):
                    continue
                yield document, action
            if len(page) < CANDIDATE_PAGE_SIZE:
                return
            offset += CANDIDATE_PAGE_SIZE

    async def run_cleanup(
        self,
        ctx: OperationContext,
        *,
        dry_run: bool = False,
        limit: int | None = None,
    ) -> CleanupReport:
        """Apply (or simulate) retention on up to limit due documents.

        Held documents and documents with nothing due are passed over
        without using up the batch. One document failing never stops the
        batch: its error is recorded in the report and the sweep moves on.
        """
        batch_limit = limit if limit is not None else settings.retention.cleanup_batch_limit
        report = CleanupReport(dry_run=dry_run)

        async with reporting_failures(ctx, None, "compliance.retention"):
            due = [pair async for pair in _take(self._due_documents(self._clock()), batch_limit)]

        for document, action in due:
            report.evaluated += 1
            try:
                if not dry_run:
                    await self.apply_retention(ctx, document.id)

            except PodEngineError as exc:
                logger.warning("Retention failed for %s: %s (correlation=%s)", document.id, exc, ctx.correlation_id)
                report.errors.append(CleanupFailure(
                    document_id=document.id,
                    action=action,
                    error=str(exc),
                    detail=exc.to_dict(),
                ))
                continue
            except Exception as exc:
                logger.exception("Unexpected retention failure for %s", document.id)
                report.errors.append(CleanupFailure(
                    document_id=document.id,
                    action=action,
                    error=str(exc),
                    detail={"error": type(exc).__name__},
                ))
                continue

            item = CleanupItem(document_id=document.id, action=action, created_at=document.created_at)
            if action == RetentionAction.ARCHIVE:
                report.archived.append(item)
            elif action == RetentionAction.SOFT_DELETE:
                report.soft_deleted.append(item)
            else:
                report.hard_deleted.append(item)

        logger.info(
            "Retention cleanup%s: evaluated=%d archived=%d soft_deleted=%d hard_deleted=%d errors=%d "
            "(correlation=%s)",
            " (dry run)" if dry_run else "",
            report.evaluated,
            len(report.archived),
            len(report.soft_deleted),
            len(report.hard_deleted),
            len(report.errors),
            ctx.correlation_id,
        )
        await emit(SystemEvent(
            event_type=EventType.RETENTION_CLEANUP_RUN,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={
                "dry_run": dry_run,
                "evaluated": report.evaluated,
                "archived": len(report.archived),
                "soft_deleted": len(report.soft_deleted),
                "hard_deleted": len(report.hard_deleted),
                "errors": len(report.errors),
            },
            source_module="compliance.retention",
        ))
        return report

    async def stats(self, *, scan_limit: int = 10000) -> RetentionStats:
        counts = await self._documents.count_by_status()
        result = RetentionStats(
            total=sum(counts.values()),
            by_status={status.value: count for status, count in counts.items()},
            active_policies=len(self.policies.get_policies()),
        )
        async for _, action in _take(self._due_documents(self._clock()), scan_limit):
            if action == RetentionAction.ARCHIVE:
                result.archive_eligible += 1
            elif action == RetentionAction.SOFT_DELETE:
                result.soft_delete_eligible += 1
            else:
                result.hard_delete_eligible += 1
        return result
