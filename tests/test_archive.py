"""Tests for the archive manager: archive/restore round trip, rollback, verify, deletion."""

from __future__ import annotations

import uuid
from datetime import timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from src.archive.manager import ArchiveManager
from src.compliance.legal_hold import LegalHoldRegistry
from src.compliance.retention import DEFAULT_POLICIES, PolicyRegistry, RetentionEvaluator
from src.errors import (
    AlreadyExistsError,
    ConsistencyError,
    ExternalIOError,
    InvalidTransitionError,
    NotFoundError,
    ProtectedError,
    ValidationError,
)
from src.lifecycle.fsm import DocumentLifecycle
from src.lifecycle.locks import DocumentLocks
from src.models.enums import ArchiveStatus, DocumentStatus
from src.schemas.context import OperationContext
from src.schemas.events import EventType
from tests.fakes import (
    FixedClock,
    InMemoryArchiveStore,
    InMemoryBlobStore,
    InMemoryDocumentStore,
    InMemoryLegalHoldStore,
    make_document,
)

POD_BYTES = b"%PDF-1.4 delivered to site 12, signed J. Smith"


class _Env:
    """One wired manager over in-memory stores."""

    def __init__(self, scratch: Path, *documents, archive_store=None) -> None:
        self.clock = FixedClock()
        self.documents = InMemoryDocumentStore(list(documents))
        self.archives = archive_store or InMemoryArchiveStore()
        self.blobs = InMemoryBlobStore()
        self.scratch = scratch
        locks = DocumentLocks()
        self.holds = LegalHoldRegistry(InMemoryLegalHoldStore(), self.documents, locks, self.clock)
        self.lifecycle = DocumentLifecycle(self.documents, self.holds, locks, self.clock)
        self.manager = ArchiveManager(
            self.documents,
            self.archives,
            self.blobs,
            self.lifecycle,
            self.holds,
            scratch_path=scratch,
            purge_blob_on_hard_delete=True,
            clock=self.clock,
        )


def _make_pod(**fields):
    return make_document(
        status=fields.pop("status", DocumentStatus.OUT),
        storage_key="incoming/2026/pod-0001.pdf",
        mime_type="application/pdf",
        supplier="CEMEX",
        job_ref="AB1234",
        metadata={"source": "email"},
        **fields,
    )


@pytest.fixture()
def ctx() -> OperationContext:
    return OperationContext(actor="archivist")


class _FailingArchiveStore(InMemoryArchiveStore):
    async def add(self, record):
        raise ExternalIOError("database unavailable", entity_id=record.id, operation="archive_add")


class _RacingArchiveStore(InMemoryArchiveStore):
    """Another restore flips the record first."""

    async def mark_restored(self, archive_id, **fields):
        return None


# ── Archive ──────────────────────────────────────────────────────────


class TestArchive:
    @pytest.mark.asyncio()
    async def test_archive_stores_bundle_and_record(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES

        outcome = await env.manager.archive(ctx, doc.id)

        assert env.documents.documents[doc.id].status == DocumentStatus.ARCHIVED
        assert outcome.archive_location.startswith("archives/2026/10/")
        assert outcome.archive_location.endswith(f"{doc.id}-{outcome.archive_id}.tar.gz")
        assert outcome.checksum.startswith("sha256:")
        assert outcome.archive_location in env.blobs.blobs

        record = env.archives.records[outcome.archive_id]
        assert record.status == ArchiveStatus.ARCHIVED
        assert record.archived_by == "archivist"
        assert record.manifest["job_ref"] == "AB1234"
        assert list(tmp_path.iterdir()) == []
        assert events.of_type(EventType.ARCHIVE_ARCHIVED)[0].data["archive_id"] == str(outcome.archive_id)

    @pytest.mark.asyncio()
    async def test_dry_run_stores_nothing(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES

        outcome = await env.manager.archive(ctx, doc.id, dry_run=True)

        assert outcome.dry_run
        assert outcome.archive_size == len(POD_BYTES)
        assert env.archives.records == {}
        assert set(env.blobs.blobs) == {doc.storage_key}
        assert env.documents.documents[doc.id].status == DocumentStatus.OUT

    @pytest.mark.asyncio()
    async def test_already_archived(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod(status=DocumentStatus.ARCHIVED)
        env = _Env(tmp_path, doc)

        with pytest.raises(AlreadyExistsError):
            await env.manager.archive(ctx, doc.id)

    @pytest.mark.asyncio()
    async def test_soft_deleted_archive_is_not_archived_again(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        await env.manager.archive(ctx, doc.id)
        await env.manager.soft_delete(ctx, doc.id, "retention")
        bundles = set(env.blobs.blobs)

        with pytest.raises(AlreadyExistsError) as exc_info:
            await env.manager.archive(ctx, doc.id)

        assert exc_info.value.current_status == "PENDING_DELETE"
        assert len(env.archives.records) == 1
        assert set(env.blobs.blobs) == bundles
        assert env.documents.documents[doc.id].status == DocumentStatus.PENDING_DELETE

    @pytest.mark.asyncio()
    async def test_pending_delete_must_be_undeleted_first(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        await env.manager.soft_delete(ctx, doc.id)

        with pytest.raises(InvalidTransitionError):
            await env.manager.archive(ctx, doc.id)

        assert env.archives.records == {}
        assert env.documents.documents[doc.id].status == DocumentStatus.PENDING_DELETE

    @pytest.mark.asyncio()
    async def test_deleted_cannot_be_archived(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod(status=DocumentStatus.DELETED)
        env = _Env(tmp_path, doc)

        with pytest.raises(InvalidTransitionError):
            await env.manager.archive(ctx, doc.id)

    @pytest.mark.asyncio()
    async def test_protected_document(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        await env.holds.create_hold(ctx, doc.id, "litigation")

        with pytest.raises(ProtectedError):
            await env.manager.archive(ctx, doc.id)

        assert env.documents.documents[doc.id].status == DocumentStatus.OUT
        assert env.archives.records == {}

    @pytest.mark.asyncio()
    async def test_missing_document(self, tmp_path: Path, ctx: OperationContext) -> None:
        env = _Env(tmp_path)
        with pytest.raises(NotFoundError):
            await env.manager.archive(ctx, uuid.uuid4())


class TestArchiveRollback:
    @pytest.mark.asyncio()
    async def test_blob_put_failure(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        env.blobs.fail_put = True

        with pytest.raises(ExternalIOError):
            await env.manager.archive(ctx, doc.id)

        assert env.documents.documents[doc.id].status == DocumentStatus.OUT
        assert env.archives.records == {}
        assert list(tmp_path.iterdir()) == []
        failed = events.of_type(EventType.EXTERNAL_IO_FAILED)
        assert failed[0].entity_id == doc.id
        assert failed[0].data["operation"] == "blob_put"

    @pytest.mark.asyncio()
    async def test_record_failure_removes_stored_bundle(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc, archive_store=_FailingArchiveStore())
        env.blobs.blobs[doc.storage_key] = POD_BYTES

        with pytest.raises(ExternalIOError):
            await env.manager.archive(ctx, doc.id)

        assert set(env.blobs.blobs) == {doc.storage_key}
        assert env.documents.documents[doc.id].status == DocumentStatus.OUT


# ── Restore & verify ─────────────────────────────────────────────────


class TestRestore:
    @pytest.mark.asyncio()
    async def test_round_trip_mints_new_document(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        env.clock.advance(days=3)

        outcome = await env.manager.restore(ctx, archived.archive_id)

        assert outcome.restored_document_id != doc.id
        assert outcome.original_document_id == doc.id
        assert outcome.restore_location == f"restored/{outcome.restored_document_id}/pod-0001.pdf"
        assert env.blobs.blobs[outcome.restore_location] == POD_BYTES

        restored = env.documents.documents[outcome.restored_document_id]
        assert restored.status == DocumentStatus.RESTORED
        assert restored.content_hash == doc.content_hash
        assert restored.job_ref == "AB1234"
        assert restored.restored_from_archive_id == archived.archive_id
        assert restored.metadata["source"] == "email"
        assert restored.metadata["original_document_id"] == str(doc.id)
        assert restored.metadata["restored_at"] == (env.clock.now).isoformat()

        assert env.documents.documents[doc.id].status == DocumentStatus.ARCHIVED
        record = env.archives.records[archived.archive_id]
        assert record.status == ArchiveStatus.RESTORED
        assert record.restored_document_id == outcome.restored_document_id
        assert record.restored_by == "archivist"
        assert list(tmp_path.iterdir()) == []
        assert events.of_type(EventType.ARCHIVE_RESTORED)[0].entity_id == outcome.restored_document_id

    @pytest.mark.asyncio()
    async def test_content_named_like_the_manifest_survives(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = make_document(status=DocumentStatus.OUT, storage_key="incoming/_manifest.json")
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = b'{"delivered": true}'
        archived = await env.manager.archive(ctx, doc.id)
        assert (await env.manager.verify(ctx, archived.archive_id)).valid

        outcome = await env.manager.restore(ctx, archived.archive_id)

        assert outcome.restore_location == f"restored/{outcome.restored_document_id}/_manifest.json"
        assert env.blobs.blobs[outcome.restore_location] == b'{"delivered": true}'

    @pytest.mark.asyncio()
    async def test_document_without_content(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = make_document(status=DocumentStatus.OUT)
        env = _Env(tmp_path, doc)
        archived = await env.manager.archive(ctx, doc.id)

        outcome = await env.manager.restore(ctx, archived.archive_id)

        restored = env.documents.documents[outcome.restored_document_id]
        assert restored.storage_key is None
        assert outcome.restore_location == f"restored/{outcome.restored_document_id}"

    @pytest.mark.asyncio()
    async def test_second_restore_refused(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        await env.manager.restore(ctx, archived.archive_id)

        with pytest.raises(ValidationError) as exc_info:
            await env.manager.restore(ctx, archived.archive_id)
        assert exc_info.value.current_status == "RESTORED"

    @pytest.mark.asyncio()
    async def test_tampered_checksum(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        record = env.archives.records[archived.archive_id]
        env.archives.records[record.id] = record.model_copy(update={"checksum": "sha256:" + "0" * 64})

        with pytest.raises(ConsistencyError):
            await env.manager.restore(ctx, archived.archive_id)

        assert len(env.documents.documents) == 1
        assert env.archives.records[record.id].status == ArchiveStatus.ARCHIVED
        assert len(events.of_type(EventType.CONSISTENCY_FAILED)) == 1

    @pytest.mark.asyncio()
    async def test_lost_record_race_leaves_nothing_behind(
        self, tmp_path: Path, ctx: OperationContext, events
    ) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc, archive_store=_RacingArchiveStore())
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        stored = set(env.blobs.blobs)

        with pytest.raises(ConsistencyError):
            await env.manager.restore(ctx, archived.archive_id)

        assert set(env.blobs.blobs) == stored
        assert list(env.documents.documents) == [doc.id]
        assert list(tmp_path.iterdir()) == []
        failures = events.of_type(EventType.CONSISTENCY_FAILED)
        assert len(failures) == 1
        assert failures[0].entity_id == archived.archive_id

    @pytest.mark.asyncio()
    async def test_document_write_failure_removes_restored_content(
        self, tmp_path: Path, ctx: OperationContext, events
    ) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        stored = set(env.blobs.blobs)
        env.documents.add = AsyncMock(
            side_effect=ExternalIOError("Database unreachable", operation="SqlDocumentStore.add")
        )

        with pytest.raises(ExternalIOError):
            await env.manager.restore(ctx, archived.archive_id)

        assert set(env.blobs.blobs) == stored
        assert env.archives.records[archived.archive_id].status == ArchiveStatus.ARCHIVED
        assert len(events.of_type(EventType.EXTERNAL_IO_FAILED)) == 1

    @pytest.mark.asyncio()
    async def test_corrupt_bundle(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        env.blobs.blobs[archived.archive_location] = b"not a tarball"

        with pytest.raises(ConsistencyError):
            await env.manager.restore(ctx, archived.archive_id)

    @pytest.mark.asyncio()
    async def test_missing_bundle(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        del env.blobs.blobs[archived.archive_location]

        with pytest.raises(NotFoundError):
            await env.manager.restore(ctx, archived.archive_id)

    @pytest.mark.asyncio()
    async def test_unknown_archive(self, tmp_path: Path, ctx: OperationContext) -> None:
        env = _Env(tmp_path)
        with pytest.raises(NotFoundError):
            await env.manager.restore(ctx, uuid.uuid4())


class TestVerify:
    @pytest.mark.asyncio()
    async def test_verify_intact_bundle(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)

        outcome = await env.manager.verify(ctx, archived.archive_id)

        assert outcome.valid
        assert outcome.stored_checksum == outcome.calculated_checksum == archived.checksum
        assert len(events.of_type(EventType.ARCHIVE_VERIFIED)) == 1

    @pytest.mark.asyncio()
    async def test_verify_mismatch(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        archived = await env.manager.archive(ctx, doc.id)
        record = env.archives.records[archived.archive_id]
        env.archives.records[record.id] = record.model_copy(update={"checksum": "sha256:deadbeef"})

        with pytest.raises(ConsistencyError):
            await env.manager.verify(ctx, archived.archive_id)


# ── Deletion wrappers ────────────────────────────────────────────────


class TestDeletion:
    @pytest.mark.asyncio()
    async def test_soft_delete_and_undelete(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod()
        env = _Env(tmp_path, doc)

        await env.manager.soft_delete(ctx, doc.id, "duplicate")
        assert env.documents.documents[doc.id].status == DocumentStatus.PENDING_DELETE

        result = await env.manager.undelete(ctx, doc.id)
        assert result.to_status == DocumentStatus.OUT
        assert events.of_type(EventType.ARCHIVE_SOFT_DELETED)[0].data["previous_status"] == "OUT"
        assert events.of_type(EventType.ARCHIVE_UNDELETED)[0].data["restored_status"] == "OUT"

    @pytest.mark.asyncio()
    async def test_hard_delete_purges_content(self, tmp_path: Path, ctx: OperationContext, events) -> None:
        doc = _make_pod(status=DocumentStatus.PENDING_DELETE)
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES

        await env.manager.hard_delete(ctx, doc.id, "grace expired")

        assert env.documents.documents[doc.id].status == DocumentStatus.DELETED
        assert doc.storage_key not in env.blobs.blobs
        assert events.of_type(EventType.ARCHIVE_HARD_DELETED)[0].data["files_removed"] is True

    @pytest.mark.asyncio()
    async def test_hard_delete_keeps_content_when_asked(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod(status=DocumentStatus.PENDING_DELETE)
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES

        await env.manager.hard_delete(ctx, doc.id, purge_blob=False)

        assert doc.storage_key in env.blobs.blobs

    @pytest.mark.asyncio()
    async def test_hard_delete_refused_under_hold(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod(status=DocumentStatus.PENDING_DELETE)
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        await env.holds.create_hold(ctx, doc.id, "litigation")

        with pytest.raises(ProtectedError):
            await env.manager.hard_delete(ctx, doc.id)

        assert doc.storage_key in env.blobs.blobs
        assert env.documents.documents[doc.id].status == DocumentStatus.PENDING_DELETE


# ── Queries ──────────────────────────────────────────────────────────


class TestQueries:
    @pytest.mark.asyncio()
    async def test_list_and_stats(self, tmp_path: Path, ctx: OperationContext) -> None:
        first, second = _make_pod(), _make_pod()
        pending = make_document(status=DocumentStatus.PENDING_DELETE)
        env = _Env(tmp_path, first, second, pending)
        env.blobs.blobs[first.storage_key] = POD_BYTES

        one = await env.manager.archive(ctx, first.id)
        env.clock.advance(minutes=5)
        two = await env.manager.archive(ctx, second.id)
        await env.manager.restore(ctx, one.archive_id)

        listed = await env.manager.list_archives()
        assert [r.id for r in listed] == [two.archive_id, one.archive_id]
        assert [r.id for r in await env.manager.list_archives(ArchiveStatus.RESTORED)] == [one.archive_id]

        stats = await env.manager.stats()
        assert stats.archived_count == 1
        assert stats.restored_count == 1
        assert stats.pending_delete_count == 1
        assert stats.total_archive_size_bytes == two.archive_size


# ── Retention through the manager ────────────────────────────────────


class TestRetentionIntegration:
    @pytest.mark.asyncio()
    async def test_cleanup_archives_then_soft_deletes(self, tmp_path: Path, ctx: OperationContext) -> None:
        doc = _make_pod(created_at=FixedClock().now - timedelta(days=366))
        env = _Env(tmp_path, doc)
        env.blobs.blobs[doc.storage_key] = POD_BYTES
        evaluator = RetentionEvaluator(env.documents, env.holds, env.manager, PolicyRegistry(DEFAULT_POLICIES), env.clock)

        first = await evaluator.run_cleanup(ctx)
        assert len(first.archived) == 1
        assert env.documents.documents[doc.id].status == DocumentStatus.ARCHIVED

        second = await evaluator.run_cleanup(ctx)
        assert len(second.soft_deleted) == 1
        assert env.documents.documents[doc.id].status == DocumentStatus.PENDING_DELETE

        env.clock.advance(days=30)
        third = await evaluator.run_cleanup(ctx)
        assert len(third.hard_deleted) == 1
        assert env.documents.documents[doc.id].status == DocumentStatus.DELETED
        assert doc.storage_key not in env.blobs.blobs
