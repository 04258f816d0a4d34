"""Document lifecycle state machine.

The only code path that changes a document's status. Every change:

    1. runs under the document's lock,
    2. is checked against the transition table,
    3. consults the legal hold registry before ARCHIVED / PENDING_DELETE / DELETED,
    4. is written as a compare-and-swap on the status column,
    5. emits a STATUS_CHANGED audit event.

A refused transition changes nothing.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

from src.audit.events import emit, reporting_failures
from src.db.stores import DocumentStore
from src.errors import ConsistencyError, InvalidTransitionError, NotFoundError, ProtectedError
from src.lifecycle.locks import DocumentLocks, document_locks
from src.lifecycle.states import GUARDED, TRANSITIONS
from src.models.enums import DocumentStatus, NextAction
from src.schemas.context import Clock, OperationContext, utc_now
from src.schemas.documents import Document
from src.schemas.events import EventType, SystemEvent
from src.schemas.lifecycle import TransitionResult
from src.schemas.routing import RoutingDecision

logger = logging.getLogger(__name__)

SOURCE = "lifecycle.fsm"

# Where a routing decision sends a document sitting in REVIEW
ROUTING_TARGETS: dict[NextAction, DocumentStatus | None] = {
    NextAction.READY_FOR_EXPORT: DocumentStatus.OUT,
    NextAction.REJECTED: DocumentStatus.QUARANTINE,
    NextAction.REVIEW: None,
}


class ProtectionCheck(Protocol):
    async def is_protected(self, document_id: uuid.UUID) -> bool: ...


class DocumentLifecycle:
    """Guarded status transitions over a DocumentStore."""

    def __init__(
        self,
        documents: DocumentStore,
        holds: ProtectionCheck,
        locks: DocumentLocks | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._documents = documents
        self._holds = holds
        self._locks = locks or document_locks
        self._clock = clock

    @property
    def locks(self) -> DocumentLocks:
        return self._locks

    async def get(self, document_id: uuid.UUID, *, operation: str = "get") -> Document:
        document = await self._documents.get(document_id)
        if document is None:
            raise NotFoundError(
                f"Document {document_id} not found",
                entity_id=document_id,
                operation=operation,
            )
        return document

    async def _load(self, ctx: OperationContext, document_id: uuid.UUID, operation: str) -> Document:
        async with reporting_failures(ctx, document_id, SOURCE):
            return await self.get(document_id, operation=operation)

    # ── Core transition ──────────────────────────────────────────────

    async def transition(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        target: DocumentStatus,
        *,
        reason: str | None = None,
        **fields: Any,
    ) -> TransitionResult:
        """Acquire the document lock and apply one transition."""
        async with self._locks.acquire(document_id):
            return await self.transition_locked(ctx, document_id, target, reason=reason, **fields)

    async def transition_locked(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        target: DocumentStatus,
        *,
        reason: str | None = None,
        **fields: Any,
    ) -> TransitionResult:
        """Apply one transition. Caller must already hold the document lock.

        Raises:
            NotFoundError: no such document.
            InvalidTransitionError: edge not in the transition table.
            ProtectedError: guarded target and an active legal hold exists.
            ConsistencyError: status changed underneath us.
            ExternalIOError: the document store is unreachable.

        ConsistencyError and ExternalIOError reach the audit trail first.
        """
        async with reporting_failures(ctx, document_id, SOURCE):
            return await self._apply_transition(ctx, document_id, target, reason, fields)

    async def _apply_transition(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        target: DocumentStatus,
        reason: str | None,
        fields: dict[str, Any],
    ) -> TransitionResult:
        operation = f"transition:{target.value}"
        document = await self.get(document_id, operation=operation)
        current = document.status

        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Invalid transition {current.value} -> {target.value} for document {document_id}",
                entity_id=document_id,
                operation=operation,
                current_status=current.value,
            )

        if current == DocumentStatus.PENDING_DELETE and target != DocumentStatus.DELETED:
            captured = document.pre_delete_status or DocumentStatus.REVIEW
            if target != captured:
                raise InvalidTransitionError(
                    f"Undelete must restore {captured.value}, not {target.value}",
                    entity_id=document_id,
                    operation=operation,
                    current_status=current.value,
                )

        if target in GUARDED and await self._holds.is_protected(document_id):
            logger.warning(
                "Transition %s -> %s refused: document %s under legal hold (correlation=%s)",
                current.value,
                target.value,
                document_id,
                ctx.correlation_id,
            )
            raise ProtectedError(
                f"Document {document_id} is under legal hold",
                entity_id=document_id,
                operation=operation,
                current_status=current.value,
            )

        if target == DocumentStatus.PENDING_DELETE:
            fields["pre_delete_status"] = current
        elif current == DocumentStatus.PENDING_DELETE and target != DocumentStatus.DELETED:
            fields["pre_delete_status"] = None

        updated = await self._documents.update_status(document_id, current, target, **fields)
        if updated is None:
            raise ConsistencyError(
                f"Document {document_id} changed status concurrently (expected {current.value})",
                entity_id=document_id,
                operation=operation,
                current_status=current.value,
            )

        result = TransitionResult(
            document_id=document_id,
            from_status=current,
            to_status=target,
            reason=reason,
            actor=ctx.actor,
            timestamp=self._clock(),
        )

        logger.info(
            "Status transition: %s -> %s (document=%s correlation=%s)",
            current.value,
            target.value,
            document_id,
            ctx.correlation_id,
        )

        await emit(SystemEvent(
            event_type=EventType.STATUS_CHANGED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            timestamp=result.timestamp,
            data={"from": current.value, "to": target.value, "reason": reason},
            source_module=SOURCE,
        ))

        return result

    # ── Named transitions ────────────────────────────────────────────

    async def apply_routing(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        decision: RoutingDecision,
    ) -> TransitionResult:
        """Move a REVIEW document according to the decision's next action."""
        target = ROUTING_TARGETS[decision.next_action]
        if target is None:
            document = await self._load(ctx, document_id, "apply_routing")
            return TransitionResult(
                document_id=document_id,
                from_status=document.status,
                to_status=document.status,
                changed=False,
                reason=decision.reason,
                actor=ctx.actor,
                timestamp=self._clock(),
            )
        return await self.transition(
            ctx,
            document_id,
            target,
            reason=f"{decision.decision.value}: {decision.reason}",
        )

    async def quarantine(self, ctx: OperationContext, document_id: uuid.UUID, reason: str) -> TransitionResult:
        return await self.transition(ctx, document_id, DocumentStatus.QUARANTINE, reason=reason)

    async def soft_delete(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        reason: str | None = None,
        *,
        locked: bool = False,
    ) -> TransitionResult:
        """-> PENDING_DELETE, remembering the current status for undelete."""
        if not locked:
            async with self._locks.acquire(document_id):
                return await self.soft_delete(ctx, document_id, reason, locked=True)

        document = await self._load(ctx, document_id, "soft_delete")
        metadata = {
            **document.metadata,
            "soft_deleted_at": self._clock().isoformat(),
            "soft_deleted_by": ctx.actor,
            "delete_reason": reason,
        }
        return await self.transition_locked(
            ctx, document_id, DocumentStatus.PENDING_DELETE, reason=reason, metadata=metadata
        )

    async def undelete(self, ctx: OperationContext, document_id: uuid.UUID) -> TransitionResult:
        """PENDING_DELETE -> the status captured at soft-delete."""
        async with self._locks.acquire(document_id):
            document = await self._load(ctx, document_id, "undelete")
            if document.status != DocumentStatus.PENDING_DELETE:
                raise InvalidTransitionError(
                    f"Document {document_id} is not pending deletion",
                    entity_id=document_id,
                    operation="undelete",
                    current_status=document.status.value,
                )
            target = document.pre_delete_status or DocumentStatus.REVIEW
            metadata = {
                **document.metadata,
                "undeleted_at": self._clock().isoformat(),
                "undeleted_by": ctx.actor,
            }
            return await self.transition_locked(ctx, document_id, target, reason="undelete", metadata=metadata)

    async def hard_delete(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        reason: str | None = None,
        *,
        locked: bool = False,
    ) -> TransitionResult:
        """-> DELETED. Irreversible."""
        if not locked:
            async with self._locks.acquire(document_id):
                return await self.hard_delete(ctx, document_id, reason, locked=True)

        document = await self._load(ctx, document_id, "hard_delete")
        metadata = {
            **document.metadata,
            "hard_deleted_at": self._clock().isoformat(),
            "hard_deleted_by": ctx.actor,
            "delete_reason": reason,
        }
        return await self.transition_locked(ctx, document_id, DocumentStatus.DELETED, reason=reason, metadata=metadata)
