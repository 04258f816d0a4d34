"""Explicit per-operation context threaded through every engine call."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from pydantic import BaseModel, Field


class OperationContext(BaseModel):
    """Correlation id and acting principal for one logical operation.

    Passed explicitly to the matcher, routing engine, lifecycle transitions
    and compliance services so every audit event of a single ingestion or
    sweep shares the same correlation id.
    """

    correlation_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    actor: str = "system"

    model_config = {"frozen": True}

    def as_actor(self, actor: str) -> OperationContext:
        """Same correlation, different actor (e.g. a reviewer override)."""
        return self.model_copy(update={"actor": actor})


# Injectable time source for expiry and retention arithmetic
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)
