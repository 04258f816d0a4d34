"""Legal hold registry: the single gate every destructive operation consults.

Expiry is passive. A hold past its expires_at stays stored as ACTIVE; it
simply stops protecting the document. Nothing flips it to RELEASED in the
background. "ACTIVE" therefore does not mean "currently protecting": use
is_protected() for that. log_expired_holds() only writes audit entries.

create_hold() is the one place that tidies up: an expired-but-ACTIVE hold
on the same document is released (reason "expired") before the new hold is
stored, so a document never carries two ACTIVE rows.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from src.audit.events import emit, reporting_failures
from src.db.stores import DocumentStore, LegalHoldStore
from src.errors import AlreadyExistsError, NotFoundError, ValidationError
from src.lifecycle.locks import DocumentLocks, document_locks
from src.models.enums import HoldStatus
from src.schemas.compliance import HoldStats, HoldView, LegalHold
from src.schemas.context import Clock, OperationContext, utc_now
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EXPIRED_RELEASE_REASON = "expired"
SOURCE = "compliance.legal_hold"


class LegalHoldRegistry:
    """Create, release and query legal holds."""

    def __init__(
        self,
        holds: LegalHoldStore,
        documents: DocumentStore,
        locks: DocumentLocks | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._holds = holds
        self._documents = documents
        self._locks = locks or document_locks
        self._clock = clock

    # ── Protection predicate ─────────────────────────────────────────

    async def is_protected(self, document_id: uuid.UUID) -> bool:
        """True iff an ACTIVE hold exists whose expires_at is null or in the future."""
        now = self._clock()
        holds = await self._holds.list_for_document(document_id)
        return any(hold.is_protecting(now) for hold in holds)

    # ── Mutations ────────────────────────────────────────────────────

    async def create_hold(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        reason: str,
        *,
        expires_at: datetime | None = None,
        notes: str | None = None,
    ) -> LegalHold:
        """Place a hold on a document.

        Raises:
            ValidationError: empty reason.
            NotFoundError: the document does not exist.
            AlreadyExistsError: a protecting hold already exists.
        """
        if not reason or not reason.strip():
            raise ValidationError("Legal hold reason is required", entity_id=document_id, operation="create_hold")

        async with reporting_failures(ctx, document_id, SOURCE), self._locks.acquire(document_id):
            document = await self._documents.get(document_id)
            if document is None:
                raise NotFoundError(
                    f"Document {document_id} not found",
                    entity_id=document_id,
                    operation="create_hold",
                )

            now = self._clock()
            for existing in await self._holds.list_for_document(document_id):
                if existing.status != HoldStatus.ACTIVE:
                    continue
                if existing.is_protecting(now):
                    raise AlreadyExistsError(
                        f"Document {document_id} already has an active legal hold ({existing.id})",
                        entity_id=document_id,
                        operation="create_hold",
                        current_status=document.status.value,
                    )
                await self._release_expired(ctx, existing, now)

            hold = LegalHold(
                document_id=document_id,
                reason=reason,
                created_by=ctx.actor,
                created_at=now,
                expires_at=expires_at,
                notes=notes,
            )
            await self._holds.add(hold)

        logger.info(
            "Legal hold created: hold=%s document=%s by=%s (correlation=%s)",
            hold.id,
            document_id,
            ctx.actor,
            ctx.correlation_id,
        )
        await emit(SystemEvent(
            event_type=EventType.LEGAL_HOLD_CREATED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={
                "hold_id": str(hold.id),
                "reason": reason,
                "expires_at": expires_at.isoformat() if expires_at else None,
                "notes": notes,
            },
            source_module=SOURCE,
        ))
        return hold

    async def release_hold(self, ctx: OperationContext, hold_id: uuid.UUID, reason: str) -> LegalHold:
        """ACTIVE -> RELEASED with release metadata.

        Raises:
            NotFoundError: no such hold.
            ValidationError: the hold is not ACTIVE.
        """
        async with reporting_failures(ctx, hold_id, SOURCE):
            hold = await self._holds.get(hold_id)
            if hold is None:
                raise NotFoundError(f"Legal hold {hold_id} not found", entity_id=hold_id, operation="release_hold")

            async with self._locks.acquire(hold.document_id):
                released = await self._holds.release(
                    hold_id,
                    released_by=ctx.actor,
                    released_at=self._clock(),
                    release_reason=reason,
                )
                if released is None:
                    current = await self._holds.get(hold_id)
                    status = current.status.value if current else hold.status.value
                    raise ValidationError(
                        f"Legal hold {hold_id} is not active (status: {status})",
                        entity_id=hold_id,
                        operation="release_hold",
                        current_status=status,
                    )

        logger.info(
            "Legal hold released: hold=%s document=%s by=%s (correlation=%s)",
            hold_id,
            hold.document_id,
            ctx.actor,
            ctx.correlation_id,
        )
        await emit(SystemEvent(
            event_type=EventType.LEGAL_HOLD_RELEASED,
            entity_id=hold.document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"hold_id": str(hold_id), "release_reason": reason},
            source_module=SOURCE,
        ))
        return released

    async def _release_expired(self, ctx: OperationContext, hold: LegalHold, now: datetime) -> None:
        released = await self._holds.release(
            hold.id,
            released_by="system",
            released_at=now,
            release_reason=EXPIRED_RELEASE_REASON,
        )
        if released is None:
            return
        await emit(SystemEvent(
            event_type=EventType.LEGAL_HOLD_RELEASED,
            entity_id=hold.document_id,
            correlation_id=ctx.correlation_id,
            actor_id="system",
            data={
                "hold_id": str(hold.id),
                "release_reason": EXPIRED_RELEASE_REASON,
                "expired_at": hold.expires_at.isoformat() if hold.expires_at else None,
            },
            source_module=SOURCE,
        ))

    # ── Queries ──────────────────────────────────────────────────────

    def _view(self, hold: LegalHold, now: datetime) -> HoldView:
        return HoldView(**hold.model_dump(), expired=hold.is_expired(now))

    async def get_active_holds(self, *, limit: int = 100, offset: int = 0) -> list[HoldView]:
        """ACTIVE holds, newest first. Expired-but-ACTIVE rows are flagged, not hidden."""
        now = self._clock()
        holds = await self._holds.list_holds(HoldStatus.ACTIVE, limit=limit, offset=offset)
        return [self._view(hold, now) for hold in holds]

    async def get_all_holds(
        self,
        status: HoldStatus | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[HoldView]:
        now = self._clock()
        holds = await self._holds.list_holds(status, limit=limit, offset=offset)
        return [self._view(hold, now) for hold in holds]

    async def get_document_holds(self, document_id: uuid.UUID) -> list[HoldView]:
        now = self._clock()
        return [self._view(hold, now) for hold in await self._holds.list_for_document(document_id)]

    async def get_expired_holds(self) -> list[LegalHold]:
        """ACTIVE holds that no longer protect anything."""
        return await self._holds.list_expired(self._clock())

    async def log_expired_holds(self, ctx: OperationContext) -> int:
        """Audit every expired-but-ACTIVE hold. Changes no status."""
        now = self._clock()
        async with reporting_failures(ctx, None, SOURCE):
            expired = await self._holds.list_expired(now)
        for hold in expired:
            await emit(SystemEvent(
                event_type=EventType.LEGAL_HOLD_EXPIRED,
                entity_id=hold.document_id,
                correlation_id=ctx.correlation_id,
                actor_id=ctx.actor,
                data={
                    "hold_id": str(hold.id),
                    "original_expiry": hold.expires_at.isoformat() if hold.expires_at else None,
                    "logged_at": now.isoformat(),
                },
                source_module=SOURCE,
            ))
        if expired:
            logger.info("Logged %d expired legal holds (correlation=%s)", len(expired), ctx.correlation_id)
        return len(expired)

    async def stats(self) -> HoldStats:
        counts = await self._holds.count_by_status()
        expired = len(await self._holds.list_expired(self._clock()))
        active_total = counts.get(HoldStatus.ACTIVE, 0)
        released = counts.get(HoldStatus.RELEASED, 0)
        return HoldStats(
            active=active_total - expired,
            expired=expired,
            released=released,
            total=active_total + released,
        )
