"""Audit log subscriber: persists every SystemEvent to the audit_log table.

Registered as a global subscriber (receives ALL events). This is the
engine's append-only audit trail: matches, routing decisions, status
changes, holds, retention and archive actions.

Never raises. Failures are logged but never propagate to the event system.
"""

from __future__ import annotations

import logging

from src.db.engine import async_session_factory
from src.models.audit import AuditLog
from src.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


def to_audit_row(event: SystemEvent) -> AuditLog:
    """{action, entity, actor, timestamp, details} row for one event."""
    return AuditLog(
        id=event.id,
        created_at=event.timestamp,
        action=event.event_type.value,
        entity_id=event.entity_id,
        correlation_id=event.correlation_id,
        actor=event.actor_id,
        source_module=event.source_module,
        details=event.model_dump(mode="json")["data"],
    )


async def audit_on_event(event: SystemEvent) -> None:
    """Write a SystemEvent to the audit_log table.

    Called by the event system for every emitted event.
    Failures are logged and swallowed; audit logging must never
    crash the main application flow.
    """
    try:
        async with async_session_factory() as db:
            db.add(to_audit_row(event))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (entity=%s correlation=%s)",
            event.event_type.value,
            event.entity_id,
            event.correlation_id,
        )
