"""Document status transition table.

Only the edges listed here are legal. Undelete leaves PENDING_DELETE for
the status captured at soft-delete time, so every status a document can be
soft-deleted from is a legal undelete target; the lifecycle additionally
checks the target against the captured status.

RESTORED is never reached by a transition: restore mints a new document
that starts in RESTORED.
"""

from __future__ import annotations

from src.models.enums import DocumentStatus

# Statuses a soft-deleted document may return to
UNDELETE_TARGETS: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.REVIEW,
    DocumentStatus.OUT,
    DocumentStatus.QUARANTINE,
    DocumentStatus.ARCHIVED,
    DocumentStatus.RESTORED,
})

TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.REVIEW: frozenset({
        DocumentStatus.OUT,
        DocumentStatus.QUARANTINE,
        DocumentStatus.ARCHIVED,
        DocumentStatus.PENDING_DELETE,
        DocumentStatus.DELETED,
    }),
    DocumentStatus.OUT: frozenset({
        DocumentStatus.ARCHIVED,
        DocumentStatus.PENDING_DELETE,
        DocumentStatus.DELETED,
    }),
    DocumentStatus.QUARANTINE: frozenset({
        DocumentStatus.ARCHIVED,
        DocumentStatus.PENDING_DELETE,
        DocumentStatus.DELETED,
    }),
    DocumentStatus.ARCHIVED: frozenset({
        DocumentStatus.PENDING_DELETE,
        DocumentStatus.DELETED,
    }),
    DocumentStatus.RESTORED: frozenset({
        DocumentStatus.ARCHIVED,
        DocumentStatus.PENDING_DELETE,
        DocumentStatus.DELETED,
    }),
    DocumentStatus.PENDING_DELETE: frozenset({DocumentStatus.DELETED}) | UNDELETE_TARGETS,
    DocumentStatus.DELETED: frozenset(),
}

# Destructive targets: refused while an active, unexpired legal hold exists
GUARDED: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.ARCHIVED,
    DocumentStatus.PENDING_DELETE,
    DocumentStatus.DELETED,
})

# Retention never touches documents already on their way out
RETENTION_EXEMPT: frozenset[DocumentStatus] = frozenset({DocumentStatus.DELETED})


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def is_terminal(status: DocumentStatus) -> bool:
    return not TRANSITIONS.get(status)
