"""Tests for the SQLAlchemy stores and the audit sink, against a mocked AsyncSession."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from src.audit.sink import audit_on_event, to_audit_row
from src.db.repositories import (
    SqlArchiveStore,
    SqlDocumentStore,
    SqlLegalHoldStore,
    _column_values,
    archive_to_schema,
    document_to_schema,
    hold_to_schema,
)
from src.errors import ExternalIOError
from src.models import ArchiveRecord as ArchiveRow
from src.models import Document as DocumentRow
from src.models import LegalHold as HoldRow
from src.models.enums import ArchiveStatus, DocumentStatus, HoldStatus
from src.schemas.events import EventType, SystemEvent
from tests.fakes import make_document

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=UTC)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_db():
    """Build a mock AsyncSession with common operations."""
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    return db


def _make_result(*, scalar=None, rows=None, pairs=None):
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalars.return_value.all.return_value = rows or []
    result.all.return_value = pairs or []
    return result


def _make_document_row(**overrides) -> DocumentRow:
    values = {
        "id": uuid.uuid4(),
        "content_hash": "abc123",
        "status": "OUT",
        "classification_confidence": 0.9,
        "extraction_confidence": 0.8,
        "supplier": "CEMEX",
        "job_ref": "AB1234",
        "vehicle_reg": None,
        "mime_type": "image/jpeg",
        "storage_key": "incoming/a.jpg",
        "pre_delete_status": None,
        "restored_from_archive_id": None,
        "created_at": NOW,
        "updated_at": NOW,
        "meta": {"source": "email"},
    }
    values.update(overrides)
    return DocumentRow(**values)


def _make_hold_row(**overrides) -> HoldRow:
    values = {
        "id": uuid.uuid4(),
        "document_id": uuid.uuid4(),
        "status": "ACTIVE",
        "reason": "litigation",
        "created_by": "legal",
        "created_at": NOW,
        "expires_at": None,
        "notes": None,
        "released_by": None,
        "released_at": None,
        "release_reason": None,
    }
    values.update(overrides)
    return HoldRow(**values)


def _make_archive_row(**overrides) -> ArchiveRow:
    values = {
        "id": uuid.uuid4(),
        "original_document_id": uuid.uuid4(),
        "archive_location": "archives/2026/10/x.tar.gz",
        "archive_size": 2048,
        "checksum": "sha256:abc",
        "status": "ARCHIVED",
        "archived_at": NOW,
        "archived_by": "system",
        "manifest": {"job_ref": "AB1234"},
        "restore_location": None,
        "restored_at": None,
        "restored_by": None,
        "restored_document_id": None,
    }
    values.update(overrides)
    return ArchiveRow(**values)


# ── Conversion ───────────────────────────────────────────────────────


class TestConversion:
    def test_document_row(self) -> None:
        row = _make_document_row(status="PENDING_DELETE", pre_delete_status="OUT")
        doc = document_to_schema(row)

        assert doc.id == row.id
        assert doc.status == DocumentStatus.PENDING_DELETE
        assert doc.pre_delete_status == DocumentStatus.OUT
        assert doc.metadata == {"source": "email"}

    def test_hold_row(self) -> None:
        hold = hold_to_schema(_make_hold_row(status="RELEASED", released_by="legal"))
        assert hold.status == HoldStatus.RELEASED
        assert hold.released_by == "legal"

    def test_archive_row(self) -> None:
        record = archive_to_schema(_make_archive_row())
        assert record.status == ArchiveStatus.ARCHIVED
        assert record.manifest == {"job_ref": "AB1234"}

    def test_column_values_maps_metadata_and_enums(self) -> None:
        values = _column_values({"metadata": {"a": 1}, "pre_delete_status": DocumentStatus.OUT, "supplier": "X"})
        assert values == {"meta": {"a": 1}, "pre_delete_status": "OUT", "supplier": "X"}


# ── Documents ────────────────────────────────────────────────────────


class TestSqlDocumentStore:
    @pytest.mark.asyncio()
    async def test_get(self) -> None:
        db = _make_db()
        row = _make_document_row()
        db.get = AsyncMock(return_value=row)

        doc = await SqlDocumentStore(db).get(row.id)

        assert doc.id == row.id
        db.get.assert_awaited_once_with(DocumentRow, row.id)

    @pytest.mark.asyncio()
    async def test_get_missing(self) -> None:
        db = _make_db()
        db.get = AsyncMock(return_value=None)
        assert await SqlDocumentStore(db).get(uuid.uuid4()) is None

    @pytest.mark.asyncio()
    async def test_add_flushes(self) -> None:
        db = _make_db()
        doc = make_document(status=DocumentStatus.RESTORED, metadata={"restored_at": "x"})

        await SqlDocumentStore(db).add(doc)

        row = db.add.call_args.args[0]
        assert row.id == doc.id
        assert row.status == "RESTORED"
        assert row.meta == {"restored_at": "x"}
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_update_status_lost_race_returns_none(self) -> None:
        db = _make_db()
        db.execute = AsyncMock(return_value=_make_result(scalar=None))

        result = await SqlDocumentStore(db).update_status(uuid.uuid4(), DocumentStatus.REVIEW, DocumentStatus.OUT)

        assert result is None
        params = db.execute.call_args.args[0].compile().params
        assert "REVIEW" in params.values()
        assert "OUT" in params.values()

    @pytest.mark.asyncio()
    async def test_update_status_returns_new_row(self) -> None:
        db = _make_db()
        row = _make_document_row(status="OUT")
        db.execute = AsyncMock(return_value=_make_result(scalar=row))

        result = await SqlDocumentStore(db).update_status(row.id, DocumentStatus.REVIEW, DocumentStatus.OUT)

        assert result.status == DocumentStatus.OUT

    @pytest.mark.asyncio()
    async def test_update_fields_refuses_status(self) -> None:
        with pytest.raises(ValueError):
            await SqlDocumentStore(_make_db()).update_fields(uuid.uuid4(), status=DocumentStatus.OUT)

    @pytest.mark.asyncio()
    async def test_list_by_status(self) -> None:
        db = _make_db()
        rows = [_make_document_row(), _make_document_row()]
        db.execute = AsyncMock(return_value=_make_result(rows=rows))

        docs = await SqlDocumentStore(db).list_by_status([DocumentStatus.OUT], created_before=NOW, limit=5)

        assert [d.id for d in docs] == [r.id for r in rows]

    @pytest.mark.asyncio()
    async def test_count_by_status(self) -> None:
        db = _make_db()
        db.execute = AsyncMock(return_value=_make_result(pairs=[("REVIEW", 2), ("OUT", 1)]))

        counts = await SqlDocumentStore(db).count_by_status()

        assert counts == {DocumentStatus.REVIEW: 2, DocumentStatus.OUT: 1}


# ── Legal holds ──────────────────────────────────────────────────────


class TestSqlLegalHoldStore:
    @pytest.mark.asyncio()
    async def test_release_only_active(self) -> None:
        db = _make_db()
        db.execute = AsyncMock(return_value=_make_result(scalar=None))

        released = await SqlLegalHoldStore(db).release(
            uuid.uuid4(), released_by="legal", released_at=NOW, release_reason="done",
        )

        assert released is None
        params = db.execute.call_args.args[0].compile().params
        assert "ACTIVE" in params.values()
        assert "RELEASED" in params.values()

    @pytest.mark.asyncio()
    async def test_list_expired(self) -> None:
        db = _make_db()
        row = _make_hold_row(expires_at=NOW)
        db.execute = AsyncMock(return_value=_make_result(rows=[row]))

        holds = await SqlLegalHoldStore(db).list_expired(NOW)

        assert [h.id for h in holds] == [row.id]

    @pytest.mark.asyncio()
    async def test_count_by_status(self) -> None:
        db = _make_db()
        db.execute = AsyncMock(return_value=_make_result(pairs=[("ACTIVE", 3)]))
        assert await SqlLegalHoldStore(db).count_by_status() == {HoldStatus.ACTIVE: 3}


# ── Archive records ──────────────────────────────────────────────────


class TestSqlArchiveStore:
    @pytest.mark.asyncio()
    async def test_delete_existing(self) -> None:
        db = _make_db()
        row = _make_archive_row()
        db.get = AsyncMock(return_value=row)

        await SqlArchiveStore(db).delete(row.id)

        db.delete.assert_awaited_once_with(row)
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_delete_missing_is_noop(self) -> None:
        db = _make_db()
        db.get = AsyncMock(return_value=None)

        await SqlArchiveStore(db).delete(uuid.uuid4())

        db.delete.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_mark_restored(self) -> None:
        db = _make_db()
        new_id = uuid.uuid4()
        row = _make_archive_row(status="RESTORED", restored_document_id=new_id)
        db.execute = AsyncMock(return_value=_make_result(scalar=row))

        record = await SqlArchiveStore(db).mark_restored(
            row.id,
            restore_location="restored/x",
            restored_at=NOW,
            restored_by="archivist",
            restored_document_id=new_id,
        )

        assert record.status == ArchiveStatus.RESTORED
        assert record.restored_document_id == new_id

    @pytest.mark.asyncio()
    async def test_totals(self) -> None:
        db = _make_db()
        size = MagicMock()
        size.scalar_one.return_value = 4096
        db.execute = AsyncMock(side_effect=[_make_result(pairs=[("ARCHIVED", 2), ("RESTORED", 1)]), size])

        counts, total = await SqlArchiveStore(db).totals()

        assert counts == {ArchiveStatus.ARCHIVED: 2, ArchiveStatus.RESTORED: 1}
        assert total == 4096


# ── Database outages ─────────────────────────────────────────────────


class TestDatabaseOutage:
    @pytest.mark.asyncio()
    async def test_operational_error_becomes_external_io(self) -> None:
        db = _make_db()
        document_id = uuid.uuid4()
        db.get = AsyncMock(side_effect=OperationalError("SELECT documents", {}, ConnectionRefusedError()))

        with pytest.raises(ExternalIOError) as exc_info:
            await SqlDocumentStore(db).get(document_id)

        assert exc_info.value.operation == "SqlDocumentStore.get"
        assert exc_info.value.entity_id == document_id
        assert isinstance(exc_info.value.__cause__, OperationalError)

    @pytest.mark.asyncio()
    async def test_dropped_connection_on_release(self) -> None:
        db = _make_db()
        db.execute = AsyncMock(side_effect=InterfaceError("UPDATE legal_holds", {}, Exception("connection closed")))

        with pytest.raises(ExternalIOError) as exc_info:
            await SqlLegalHoldStore(db).release(
                uuid.uuid4(), released_by="legal", released_at=NOW, release_reason="done",
            )

        assert exc_info.value.operation == "SqlLegalHoldStore.release"

    @pytest.mark.asyncio()
    async def test_add_reports_record_id(self) -> None:
        db = _make_db()
        db.flush = AsyncMock(side_effect=OSError("connection reset"))
        doc = make_document()

        with pytest.raises(ExternalIOError) as exc_info:
            await SqlDocumentStore(db).add(doc)

        assert exc_info.value.entity_id == doc.id

    @pytest.mark.asyncio()
    async def test_constraint_violation_is_not_an_outage(self) -> None:
        db = _make_db()
        db.flush = AsyncMock(side_effect=IntegrityError("INSERT archive_records", {}, Exception("duplicate key")))

        with pytest.raises(IntegrityError):
            await SqlArchiveStore(db).add(archive_to_schema(_make_archive_row()))


class TestSqlDocumentStoreDelete:
    @pytest.mark.asyncio()
    async def test_delete_existing(self) -> None:
        db = _make_db()
        row = _make_document_row(status="RESTORED")
        db.get = AsyncMock(return_value=row)

        await SqlDocumentStore(db).delete(row.id)

        db.delete.assert_awaited_once_with(row)
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio()
    async def test_list_by_status_pages_by_offset(self) -> None:
        db = _make_db()
        db.execute = AsyncMock(return_value=_make_result(rows=[]))

        await SqlDocumentStore(db).list_by_status([DocumentStatus.OUT], limit=5, offset=10)

        sql = str(db.execute.call_args.args[0].compile())
        assert "OFFSET" in sql
        assert "ORDER BY documents.created_at ASC, documents.id ASC" in sql


# ── Audit sink ───────────────────────────────────────────────────────


class TestAuditSink:
    def test_to_audit_row(self) -> None:
        event = SystemEvent(
            event_type=EventType.STATUS_CHANGED,
            entity_id=uuid.uuid4(),
            correlation_id=uuid.uuid4(),
            actor_id="reviewer",
            data={"from": "REVIEW", "to": "OUT", "at": NOW},
            source_module="lifecycle.fsm",
        )

        row = to_audit_row(event)

        assert row.id == event.id
        assert row.action == "document.status_changed"
        assert row.entity_id == event.entity_id
        assert row.actor == "reviewer"
        assert row.details["at"] == "2026-10-17T12:00:00Z"

    @pytest.mark.asyncio()
    async def test_write_failure_is_swallowed(self) -> None:
        event = SystemEvent(event_type=EventType.STATUS_CHANGED)
        with patch("src.audit.sink.async_session_factory", side_effect=RuntimeError("db down")):
            await audit_on_event(event)

    @pytest.mark.asyncio()
    async def test_writes_and_commits(self) -> None:
        db = _make_db()
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=db)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)
        event = SystemEvent(event_type=EventType.ROUTING_DECIDED, actor_id="pipeline")

        with patch("src.audit.sink.async_session_factory", factory):
            await audit_on_event(event)

        assert db.add.call_args.args[0].action == EventType.ROUTING_DECIDED.value
        db.commit.assert_awaited_once()
