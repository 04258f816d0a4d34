"""In-process audit event bus.

emit() fans a SystemEvent out to every subscriber (the audit sink in
production). Before start_event_system() delivery is inline, so scripts
and tests observe events as they happen; afterwards events go through a
queue drained by one worker task and the emitter never waits on a slow
subscriber.

Failures that must reach the audit trail before they surface go through
report_failure() or the reporting_failures() block:

    async with reporting_failures(ctx, document_id, "archive.manager"):
        await blobs.put(location, bundle)

A failure is reported once however many service layers it crosses.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import asynccontextmanager
from typing import Any

from src.errors import ConsistencyError, ExternalIOError
from src.schemas.context import OperationContext
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# ── Internal state ───────────────────────────────────────────────────

_subscribers: list[EventHandler] = []
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None


# ── Subscribers ──────────────────────────────────────────────────────


def subscribe(handler: EventHandler) -> None:
    """Register an async handler that receives every event."""
    _subscribers.append(handler)
    logger.info("Registered audit subscriber: %s", getattr(handler, "__name__", handler))


def unsubscribe(handler: EventHandler) -> None:
    if handler in _subscribers:
        _subscribers.remove(handler)


def clear_subscribers() -> None:
    _subscribers.clear()


# ── Emitting ─────────────────────────────────────────────────────────


async def emit(event: SystemEvent) -> None:
    if _queue is None:
        await _dispatch(event)
        return

    await _queue.put(event)
    logger.debug(
        "Event queued: %s (entity=%s correlation=%s)",
        event.event_type.value,
        event.entity_id,
        event.correlation_id,
    )


async def report_failure(
    ctx: OperationContext,
    exc: ExternalIOError | ConsistencyError,
    entity_id: uuid.UUID | str | None,
    source_module: str,
) -> None:
    """Emit EXTERNAL_IO_FAILED or CONSISTENCY_FAILED for exc, once."""
    if exc.reported:
        return
    exc.reported = True

    event_type = (
        EventType.CONSISTENCY_FAILED if isinstance(exc, ConsistencyError) else EventType.EXTERNAL_IO_FAILED
    )
    logger.warning(
        "%s in %s: %s (entity=%s correlation=%s)",
        type(exc).__name__,
        source_module,
        exc,
        entity_id,
        ctx.correlation_id,
    )
    await emit(SystemEvent(
        event_type=event_type,
        entity_id=entity_id if isinstance(entity_id, uuid.UUID) else None,
        correlation_id=ctx.correlation_id,
        actor_id=ctx.actor,
        data=exc.to_dict(),
        source_module=source_module,
    ))


@asynccontextmanager
async def reporting_failures(
    ctx: OperationContext,
    entity_id: uuid.UUID | str | None,
    source_module: str,
) -> AsyncIterator[None]:
    """Report I/O and consistency failures raised in the block, then re-raise."""
    try:
        yield
    except (ExternalIOError, ConsistencyError) as exc:
        await report_failure(ctx, exc, entity_id, source_module)
        raise


# ── Delivery ─────────────────────────────────────────────────────────


async def _dispatch(event: SystemEvent) -> None:
    handlers = list(_subscribers)
    if not handlers:
        return
    results = await asyncio.gather(
        *[handler(event) for handler in handlers],
        return_exceptions=True,
    )
    for handler, result in zip(handlers, results):
        if isinstance(result, Exception):
            logger.error(
                "Audit subscriber %s failed for %s: %s",
                getattr(handler, "__name__", handler),
                event.event_type.value,
                result,
            )


async def _event_worker(queue: asyncio.Queue[SystemEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await _dispatch(event)
        except Exception:
            logger.exception("Event worker failed on %s", event.event_type.value)
        finally:
            queue.task_done()


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Switch emit() to queued delivery. Call during FastAPI lifespan startup."""
    global _queue, _worker_task
    if _worker_task is not None and not _worker_task.done():
        return
    _queue = asyncio.Queue()
    _worker_task = asyncio.create_task(_event_worker(_queue))
    logger.info("Event system started with %d subscribers", len(_subscribers))


async def stop_event_system() -> None:
    """Deliver what is queued, stop the worker and fall back to inline delivery."""
    global _worker_task, _queue

    if _queue is not None:
        await _queue.join()

    if _worker_task is not None and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass

    _worker_task = None
    _queue = None
    logger.info("Event system stopped")
