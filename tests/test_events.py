"""Tests for the audit event bus: delivery modes, handler isolation, failure reporting."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from src.audit.events import (
    emit,
    report_failure,
    reporting_failures,
    start_event_system,
    stop_event_system,
    subscribe,
    unsubscribe,
)
from src.errors import ConsistencyError, ExternalIOError, NotFoundError
from src.schemas.context import OperationContext
from src.schemas.events import EventType, SystemEvent


def _make_event(**fields) -> SystemEvent:
    return SystemEvent(event_type=fields.pop("event_type", EventType.SYSTEM_STARTUP), actor_id="system", **fields)


@pytest.fixture()
def ctx() -> OperationContext:
    return OperationContext(actor="auditor")


class TestSystemEvent:
    def test_timestamp_is_timezone_aware_utc(self) -> None:
        event = _make_event()
        assert event.timestamp.tzinfo is not None
        assert event.timestamp.utcoffset() == timedelta(0)


class TestInlineDelivery:
    @pytest.mark.asyncio()
    async def test_subscribers_see_event_before_emit_returns(self, events) -> None:
        event = _make_event()
        await emit(event)
        assert list(events) == [event]

    @pytest.mark.asyncio()
    async def test_failing_subscriber_does_not_block_others(self, events) -> None:
        broken = AsyncMock(side_effect=RuntimeError("sink down"))
        subscribe(broken)

        await emit(_make_event())

        broken.assert_awaited_once()
        assert len(events) == 1

    @pytest.mark.asyncio()
    async def test_unsubscribed_handler_gets_nothing(self) -> None:
        handler = AsyncMock()
        subscribe(handler)
        unsubscribe(handler)

        await emit(_make_event())

        handler.assert_not_awaited()


class TestQueuedDelivery:
    @pytest.mark.asyncio()
    async def test_stop_drains_queue(self, events) -> None:
        await start_event_system()
        try:
            await emit(_make_event(data={"n": 1}))
            await emit(_make_event(data={"n": 2}))
        finally:
            await stop_event_system()

        assert [e.data["n"] for e in events] == [1, 2]

    @pytest.mark.asyncio()
    async def test_emit_does_not_wait_for_slow_subscriber(self) -> None:
        release = asyncio.Event()
        seen: list[SystemEvent] = []

        async def slow(event: SystemEvent) -> None:
            await release.wait()
            seen.append(event)

        subscribe(slow)
        await start_event_system()
        try:
            await emit(_make_event())
            assert seen == []
        finally:
            release.set()
            await stop_event_system()

        assert len(seen) == 1

    @pytest.mark.asyncio()
    async def test_start_is_idempotent(self, events) -> None:
        await start_event_system()
        try:
            await start_event_system()
            await emit(_make_event())
        finally:
            await stop_event_system()

        assert len(events) == 1

    @pytest.mark.asyncio()
    async def test_inline_again_after_stop(self, events) -> None:
        await start_event_system()
        await stop_event_system()

        await emit(_make_event())

        assert len(events) == 1


class TestReportFailure:
    @pytest.mark.asyncio()
    async def test_external_io_failure(self, ctx: OperationContext, events) -> None:
        document_id = uuid.uuid4()
        exc = ExternalIOError("blob store unreachable", entity_id=document_id, operation="put")

        await report_failure(ctx, exc, document_id, "archive.manager")

        (event,) = events.of_type(EventType.EXTERNAL_IO_FAILED)
        assert event.entity_id == document_id
        assert event.correlation_id == ctx.correlation_id
        assert event.actor_id == "auditor"
        assert event.source_module == "archive.manager"
        assert event.data["operation"] == "put"
        assert exc.reported

    @pytest.mark.asyncio()
    async def test_reported_once(self, ctx: OperationContext, events) -> None:
        exc = ConsistencyError("status moved")

        await report_failure(ctx, exc, None, "lifecycle.fsm")
        await report_failure(ctx, exc, None, "archive.manager")

        assert len(events.of_type(EventType.CONSISTENCY_FAILED)) == 1
        assert events[0].source_module == "lifecycle.fsm"

    @pytest.mark.asyncio()
    async def test_string_entity_is_kept_out_of_entity_id(self, ctx: OperationContext, events) -> None:
        await report_failure(ctx, ExternalIOError("gone", entity_id="blob/key"), "blob/key", "storage.blob")

        assert events[0].entity_id is None
        assert events[0].data["entity_id"] == "blob/key"


class TestReportingFailures:
    @pytest.mark.asyncio()
    async def test_reports_and_reraises(self, ctx: OperationContext, events) -> None:
        document_id = uuid.uuid4()

        with pytest.raises(ExternalIOError):
            async with reporting_failures(ctx, document_id, "compliance.retention"):
                raise ExternalIOError("database unavailable")

        assert events.of_type(EventType.EXTERNAL_IO_FAILED)[0].entity_id == document_id

    @pytest.mark.asyncio()
    async def test_nested_blocks_report_once(self, ctx: OperationContext, events) -> None:
        with pytest.raises(ConsistencyError):
            async with reporting_failures(ctx, None, "archive.manager"):
                async with reporting_failures(ctx, None, "lifecycle.fsm"):
                    raise ConsistencyError("status moved")

        assert [e.source_module for e in events] == ["lifecycle.fsm"]

    @pytest.mark.asyncio()
    async def test_other_errors_pass_through_silently(self, ctx: OperationContext, events) -> None:
        with pytest.raises(NotFoundError):
            async with reporting_failures(ctx, None, "archive.manager"):
                raise NotFoundError("missing")

        assert list(events) == []

    @pytest.mark.asyncio()
    async def test_failure_is_logged(self, ctx: OperationContext) -> None:
        with patch("src.audit.events.logger") as logger:
            with pytest.raises(ExternalIOError):
                async with reporting_failures(ctx, None, "matching.jobs"):
                    raise ExternalIOError("hrms timeout")

        logger.warning.assert_called_once()
