"""Archive & restore manager.

archive():  bundle -> blob store -> ArchiveRecord -> document ARCHIVED.
            Any failure removes the stored bundle and the record again, and
            the scratch directory is always cleaned up.
restore():  checksum-verified unpack -> content copied under restored/ ->
            NEW document in status RESTORED -> record flipped to RESTORED.
            The archived document itself is never reactivated, and a failed
            restore removes the content and document it had already written.

soft_delete / hard_delete / undelete are thin wrappers over the lifecycle's
guarded transitions; hard_delete can also purge the stored content.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import uuid
from pathlib import Path, PurePosixPath

from src.archive.bundle import build_bundle, checksum, manifest_bytes, read_bundle
from src.audit.events import emit, reporting_failures
from src.config import settings
from src.db.stores import ArchiveStore, DocumentStore
from src.errors import (
    AlreadyExistsError,
    ConsistencyError,
    ExternalIOError,
    InvalidTransitionError,
    NotFoundError,
    ProtectedError,
    ValidationError,
)
from src.lifecycle.fsm import DocumentLifecycle, ProtectionCheck
from src.lifecycle.states import can_transition
from src.models.enums import ArchiveStatus, DocumentStatus
from src.schemas.archive import (
    ArchiveManifest,
    ArchiveOutcome,
    ArchiveRecord,
    ArchiveStats,
    RestoreOutcome,
    VerifyOutcome,
)
from src.schemas.context import Clock, OperationContext, utc_now
from src.schemas.documents import Document
from src.schemas.events import EventType, SystemEvent
from src.schemas.lifecycle import TransitionResult
from src.storage.blob import BlobStore

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "archives"
RESTORE_PREFIX = "restored"
SOURCE = "archive.manager"


class ArchiveManager:
    """Bundles documents into the blob store and restores them as new documents."""

    def __init__(
        self,
        documents: DocumentStore,
        archives: ArchiveStore,
        blobs: BlobStore,
        lifecycle: DocumentLifecycle,
        holds: ProtectionCheck,
        *,
        scratch_path: str | Path | None = None,
        purge_blob_on_hard_delete: bool | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._documents = documents
        self._archives = archives
        self._blobs = blobs
        self._lifecycle = lifecycle
        self._holds = holds
        self._scratch_root = Path(scratch_path or settings.archive.scratch_path)
        self._purge_blob = (
            purge_blob_on_hard_delete
            if purge_blob_on_hard_delete is not None
            else settings.archive.purge_blob_on_hard_delete
        )
        self._clock = clock

    # ── Scratch space ────────────────────────────────────────────────

    async def _make_scratch(self, prefix: str) -> Path:
        def _mk() -> Path:
            self._scratch_root.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(prefix=prefix, dir=self._scratch_root))

        try:
            return await asyncio.to_thread(_mk)
        except OSError as exc:
            raise ExternalIOError(f"Cannot create scratch directory: {exc}", operation="scratch") from exc

    async def _remove_scratch(self, path: Path | None) -> None:
        if path is not None:
            await asyncio.to_thread(shutil.rmtree, path, True)

    # ── Archive ──────────────────────────────────────────────────────

    async def archive(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        *,
        dry_run: bool = False,
    ) -> ArchiveOutcome:
        """Bundle a document and move it to ARCHIVED.

        Raises:
            NotFoundError: no such document.
            AlreadyExistsError: the document is ARCHIVED, or was when it was soft-deleted.
            InvalidTransitionError: the document's status cannot be archived,
                including any other PENDING_DELETE document.
            ProtectedError: an active legal hold protects the document.
            ExternalIOError: the blob store failed (nothing is left behind).
        """
        async with reporting_failures(ctx, document_id, SOURCE), self._lifecycle.locks.acquire(document_id):
            document = await self._lifecycle.get(document_id, operation="archive")

            if document.status == DocumentStatus.ARCHIVED:
                raise AlreadyExistsError(
                    f"Document {document_id} is already archived",
                    entity_id=document_id,
                    operation="archive",
                    current_status=document.status.value,
                )
            if document.status == DocumentStatus.PENDING_DELETE:
                if document.pre_delete_status == DocumentStatus.ARCHIVED:
                    raise AlreadyExistsError(
                        f"Document {document_id} was archived before it was soft-deleted",
                        entity_id=document_id,
                        operation="archive",
                        current_status=document.status.value,
                    )
                raise InvalidTransitionError(
                    f"Document {document_id} is pending deletion; undelete it before archiving",
                    entity_id=document_id,
                    operation="archive",
                    current_status=document.status.value,
                )
            if not can_transition(document.status, DocumentStatus.ARCHIVED):
                raise InvalidTransitionError(
                    f"Cannot archive a document in status {document.status.value}",
                    entity_id=document_id,
                    operation="archive",
                    current_status=document.status.value,
                )
            if await self._holds.is_protected(document_id):
                raise ProtectedError(
                    f"Document {document_id} is under legal hold and cannot be archived",
                    entity_id=document_id,
                    operation="archive",
                    current_status=document.status.value,
                )

            archive_id = uuid.uuid4()
            archived_at = self._clock()
            location = f"{ARCHIVE_PREFIX}/{archived_at:%Y/%m}/{document_id}-{archive_id}.tar.gz"

            return await self._archive_locked(ctx, document, archive_id, location, dry_run)

    async def _archive_locked(
        self,
        ctx: OperationContext,
        document: Document,
        archive_id: uuid.UUID,
        location: str,
        dry_run: bool,
    ) -> ArchiveOutcome:
        content: bytes | None = None
        content_filename: str | None = None
        if document.storage_key and await self._blobs.exists(document.storage_key):
            content = await self._blobs.get(document.storage_key)
            content_filename = PurePosixPath(document.storage_key).name or str(document.id)

        if dry_run:
            return ArchiveOutcome(
                archive_id=archive_id,
                document_id=document.id,
                archive_location=location,
                archive_size=len(content) if content is not None else 0,
                dry_run=True,
            )

        archived_at = self._clock()
        manifest = ArchiveManifest(
            archive_id=archive_id,
            original_document_id=document.id,
            content_hash=document.content_hash,
            content_filename=content_filename,
            content_checksum=checksum(content) if content is not None else None,
            content_size=len(content) if content is not None else 0,
            mime_type=document.mime_type,
            supplier=document.supplier,
            job_ref=document.job_ref,
            vehicle_reg=document.vehicle_reg,
            status_at_archive=document.status,
            original_created_at=document.created_at,
            archived_at=archived_at,
            archived_by=ctx.actor,
            metadata=document.metadata,
        )
        raw_manifest = manifest_bytes(manifest)
        bundle_checksum = checksum(raw_manifest)

        scratch: Path | None = None
        blob_stored = False
        record_added = False
        try:
            scratch = await self._make_scratch(f"archive-{archive_id}-")
            bundle = await asyncio.to_thread(build_bundle, scratch, raw_manifest, content, content_filename)

            await self._blobs.put(location, bundle)
            blob_stored = True

            record = ArchiveRecord(
                id=archive_id,
                original_document_id=document.id,
                archive_location=location,
                archive_size=len(bundle),
                checksum=bundle_checksum,
                archived_at=archived_at,
                archived_by=ctx.actor,
                manifest=manifest.model_dump(mode="json"),
            )
            await self._archives.add(record)
            record_added = True

            await self._lifecycle.transition_locked(
                ctx,
                document.id,
                DocumentStatus.ARCHIVED,
                reason=f"archive:{archive_id}",
            )
        except Exception:
            logger.warning("Archive of %s failed, rolling back (correlation=%s)", document.id, ctx.correlation_id)
            await self._rollback_archive(archive_id, location, record_added=record_added, blob_stored=blob_stored)
            raise
        finally:
            await self._remove_scratch(scratch)

        logger.info(
            "Archived document %s as %s (%d bytes, correlation=%s)",
            document.id,
            archive_id,
            len(bundle),
            ctx.correlation_id,
        )
        await emit(SystemEvent(
            event_type=EventType.ARCHIVE_ARCHIVED,
            entity_id=document.id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={
                "archive_id": str(archive_id),
                "archive_location": location,
                "archive_size": len(bundle),
                "checksum": bundle_checksum,
            },
            source_module="archive.manager",
        ))
        return ArchiveOutcome(
            archive_id=archive_id,
            document_id=document.id,
            archive_location=location,
            archive_size=len(bundle),
            checksum=bundle_checksum,
        )

    async def _rollback_archive(
        self,
        archive_id: uuid.UUID,
        location: str,
        *,
        record_added: bool,
        blob_stored: bool,
    ) -> None:
        if record_added:
            await self._archives.delete(archive_id)
        if blob_stored:
            try:
                await self._blobs.delete(location)
            except ExternalIOError:
                logger.exception("Could not remove bundle %s during rollback", location)

    # ── Restore & verify ─────────────────────────────────────────────

    async def _load_record(self, archive_id: uuid.UUID, operation: str) -> ArchiveRecord:
        record = await self._archives.get(archive_id)
        if record is None:
            raise NotFoundError(f"Archive {archive_id} not found", entity_id=archive_id, operation=operation)
        return record

    async def _unpack(self, record: ArchiveRecord, operation: str, scratch: Path):
        if not await self._blobs.exists(record.archive_location):
            raise NotFoundError(
                f"Archive bundle {record.archive_location} not found",
                entity_id=record.id,
                operation=operation,
                current_status=record.status.value,
            )
        data = await self._blobs.get(record.archive_location)
        try:
            unpacked = await asyncio.to_thread(read_bundle, data, scratch)
        except ValueError as exc:
            raise ConsistencyError(str(exc), entity_id=record.id, operation=operation) from exc

        calculated = checksum(unpacked.manifest_bytes)
        content_ok = unpacked.manifest.content_checksum is None or (
            unpacked.content is not None and checksum(unpacked.content) == unpacked.manifest.content_checksum
        )
        if calculated != record.checksum or not content_ok:
            raise ConsistencyError(
                f"Checksum mismatch for archive {record.id}: stored {record.checksum}, calculated {calculated}",
                entity_id=record.id,
                operation=operation,
                current_status=record.status.value,
            )
        return unpacked, calculated

    async def restore(
        self,
        ctx: OperationContext,
        archive_id: uuid.UUID,
        *,
        dry_run: bool = False,
    ) -> RestoreOutcome:
        """Mint a new RESTORED document from an archive bundle.

        Raises:
            NotFoundError: no such archive record, or its bundle is missing.
            ValidationError: the record is not ARCHIVED.
            ConsistencyError: the bundle fails checksum verification.
            ExternalIOError: the blob store failed.
        """
        async with reporting_failures(ctx, archive_id, SOURCE), self._lifecycle.locks.acquire(archive_id):
            record = await self._load_record(archive_id, "restore")
            if record.status != ArchiveStatus.ARCHIVED:
                raise ValidationError(
                    f"Archive {archive_id} is not in ARCHIVED status",
                    entity_id=archive_id,
                    operation="restore",
                    current_status=record.status.value,
                )

            return await self._restore_locked(ctx, record, dry_run)

    async def _restore_locked(self, ctx: OperationContext, record: ArchiveRecord, dry_run: bool) -> RestoreOutcome:
        new_id = uuid.uuid4()
        restored_at = self._clock()

        if dry_run:
            if not await self._blobs.exists(record.archive_location):
                raise NotFoundError(
                    f"Archive bundle {record.archive_location} not found",
                    entity_id=record.id,
                    operation="restore",
                    current_status=record.status.value,
                )
            return RestoreOutcome(
                archive_id=record.id,
                original_document_id=record.original_document_id,
                restored_document_id=new_id,
                restore_location=None,
                restored_at=restored_at,
                restored_by=ctx.actor,
            )

        scratch = await self._make_scratch(f"restore-{record.id}-")
        restore_location = f"{RESTORE_PREFIX}/{new_id}"
        content_stored = False
        document_added = False
        try:
            unpacked, _ = await self._unpack(record, "restore", scratch)
            manifest = unpacked.manifest

            if unpacked.content is not None:
                restore_location = f"{restore_location}/{unpacked.content_filename}"
                await self._blobs.put(restore_location, unpacked.content)
                content_stored = True

            restored = Document(
                id=new_id,
                content_hash=manifest.content_hash,
                status=DocumentStatus.RESTORED,
                supplier=manifest.supplier,
                job_ref=manifest.job_ref,
                vehicle_reg=manifest.vehicle_reg,
                mime_type=manifest.mime_type,
                storage_key=restore_location if unpacked.content is not None else None,
                restored_from_archive_id=record.id,
                created_at=restored_at,
                metadata={
                    **manifest.metadata,
                    "restored_from_archive": str(record.id),
                    "original_document_id": str(manifest.original_document_id),
                    "original_created_at": manifest.original_created_at.isoformat(),
                    "restored_at": restored_at.isoformat(),
                },
            )
            await self._documents.add(restored)
            document_added = True

            updated = await self._archives.mark_restored(
                record.id,
                restore_location=restore_location,
                restored_at=restored_at,
                restored_by=ctx.actor,
                restored_document_id=new_id,
            )
            if updated is None:
                raise ConsistencyError(
                    f"Archive {record.id} was restored concurrently",
                    entity_id=record.id,
                    operation="restore",
                )
        except Exception:
            logger.warning("Restore of archive %s failed, rolling back (correlation=%s)", record.id, ctx.correlation_id)
            await self._rollback_restore(
                new_id,
                restore_location,
                document_added=document_added,
                content_stored=content_stored,
            )
            raise
        finally:
            await self._remove_scratch(scratch)

        logger.info(
            "Restored archive %s as document %s (original %s, correlation=%s)",
            record.id,
            new_id,
            record.original_document_id,
            ctx.correlation_id,
        )
        await emit(SystemEvent(
            event_type=EventType.ARCHIVE_RESTORED,
            entity_id=new_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={
                "archive_id": str(record.id),
                "original_document_id": str(record.original_document_id),
                "restore_location": restore_location,
            },
            source_module="archive.manager",
        ))
        return RestoreOutcome(
            archive_id=record.id,
            original_document_id=record.original_document_id,
            restored_document_id=new_id,
            restore_location=restore_location,
            restored_at=restored_at,
            restored_by=ctx.actor,
        )

    async def _rollback_restore(
        self,
        document_id: uuid.UUID,
        restore_location: str,
        *,
        document_added: bool,
        content_stored: bool,
    ) -> None:
        if document_added:
            try:
                await self._documents.delete(document_id)
            except ExternalIOError:
                logger.exception("Could not remove restored document %s during rollback", document_id)
        if content_stored:
            try:
                await self._blobs.delete(restore_location)
            except ExternalIOError:
                logger.exception("Could not remove restored content %s during rollback", restore_location)

    async def verify(self, ctx: OperationContext, archive_id: uuid.UUID) -> VerifyOutcome:
        """Recompute the manifest checksum of a stored bundle.

        Raises:
            NotFoundError: no such archive or bundle.
            ConsistencyError: checksum mismatch.
        """
        async with reporting_failures(ctx, archive_id, SOURCE):
            record = await self._load_record(archive_id, "verify")
            scratch = await self._make_scratch(f"verify-{archive_id}-")
            try:
                _, calculated = await self._unpack(record, "verify", scratch)
            finally:
                await self._remove_scratch(scratch)

        await emit(SystemEvent(
            event_type=EventType.ARCHIVE_VERIFIED,
            entity_id=record.original_document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"archive_id": str(archive_id), "checksum": calculated},
            source_module="archive.manager",
        ))
        return VerifyOutcome(
            archive_id=archive_id,
            valid=True,
            stored_checksum=record.checksum,
            calculated_checksum=calculated,
        )

    # ── Deletion wrappers ────────────────────────────────────────────

    async def soft_delete(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        reason: str | None = None,
    ) -> TransitionResult:
        async with reporting_failures(ctx, document_id, SOURCE):
            result = await self._lifecycle.soft_delete(ctx, document_id, reason)
        await emit(SystemEvent(
            event_type=EventType.ARCHIVE_SOFT_DELETED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"reason": reason, "previous_status": result.from_status.value, "grace_period_applies": True},
            source_module="archive.manager",
        ))
        return result

    async def undelete(self, ctx: OperationContext, document_id: uuid.UUID) -> TransitionResult:
        async with reporting_failures(ctx, document_id, SOURCE):
            result = await self._lifecycle.undelete(ctx, document_id)
        await emit(SystemEvent(
            event_type=EventType.ARCHIVE_UNDELETED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"restored_status": result.to_status.value},
            source_module="archive.manager",
        ))
        return result

    async def hard_delete(
        self,
        ctx: OperationContext,
        document_id: uuid.UUID,
        reason: str | None = None,
        *,
        purge_blob: bool | None = None,
    ) -> TransitionResult:
        """Irreversible. Purges the stored content after the status change when configured."""
        purge = self._purge_blob if purge_blob is None else purge_blob

        async with reporting_failures(ctx, document_id, SOURCE), self._lifecycle.locks.acquire(document_id):
            document = await self._lifecycle.get(document_id, operation="hard_delete")
            result = await self._lifecycle.hard_delete(ctx, document_id, reason, locked=True)

            removed = False
            if purge and document.storage_key:
                removed = await self._blobs.delete(document.storage_key)

        await emit(SystemEvent(
            event_type=EventType.ARCHIVE_HARD_DELETED,
            entity_id=document_id,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"reason": reason, "files_removed": removed, "previous_status": result.from_status.value},
            source_module="archive.manager",
        ))
        return result

    # ── Queries ──────────────────────────────────────────────────────

    async def list_archives(
        self,
        status: ArchiveStatus | None = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ArchiveRecord]:
        return await self._archives.list_records(status, limit=limit, offset=offset)

    async def stats(self) -> ArchiveStats:
        counts, total_size = await self._archives.totals()
        documents = await self._documents.count_by_status()
        return ArchiveStats(
            archived_count=counts.get(ArchiveStatus.ARCHIVED, 0),
            restored_count=counts.get(ArchiveStatus.RESTORED, 0),
            pending_delete_count=documents.get(DocumentStatus.PENDING_DELETE, 0),
            deleted_count=documents.get(DocumentStatus.DELETED, 0),
            total_archive_size_bytes=total_size,
        )
