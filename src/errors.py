"""Error taxonomy for the matching, routing and compliance engine.

Every error carries enough context for a caller to act on it: the entity
it concerns, the operation that was attempted and, where relevant, the
entity's status at the time of failure.
"""

from __future__ import annotations

from typing import Any


class PodEngineError(Exception):
    """Base class for all engine errors."""

    # Set once the failure has been written to the audit trail
    reported: bool = False

    def __init__(
        self,
        message: str,
        *,
        entity_id: Any = None,
        operation: str | None = None,
        current_status: str | None = None,
    ) -> None:
        super().__init__(message)
        self.entity_id = entity_id
        self.operation = operation
        self.current_status = current_status

    def to_dict(self) -> dict[str, Any]:
        """Serializable view for audit payloads and batch reports."""
        return {
            "error": type(self).__name__,
            "message": str(self),
            "entity_id": str(self.entity_id) if self.entity_id is not None else None,
            "operation": self.operation,
            "current_status": self.current_status,
        }


class ValidationError(PodEngineError):
    """Malformed input, bad weights or thresholds, bad policy config."""


class InvalidTransitionError(ValidationError):
    """Requested status change is not in the lifecycle transition table."""


class NotFoundError(PodEngineError):
    """Missing document, job, hold or archive."""


class ProtectedError(PodEngineError):
    """An active legal hold blocks the requested operation."""


class AlreadyExistsError(PodEngineError):
    """Duplicate active hold or already-archived document."""


class ExternalIOError(PodEngineError):
    """Blob or backing store unreachable. Transient; the caller may retry."""


class ConsistencyError(PodEngineError):
    """Checksum mismatch or concurrent modification. Never retried silently."""
