"""Shared fixtures: isolated event subscribers and a captured event list."""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from src.audit.events import clear_subscribers, subscribe
from src.schemas.events import EventType, SystemEvent


class EventLog(list):
    """SystemEvents emitted during a test, in order."""

    def of_type(self, event_type: EventType) -> list[SystemEvent]:
        return [e for e in self if e.event_type == event_type]


@pytest.fixture(autouse=True)
def _isolated_subscribers() -> Iterator[None]:
    clear_subscribers()
    yield
    clear_subscribers()


@pytest.fixture()
def events() -> EventLog:
    captured = EventLog()

    async def _collect(event: SystemEvent) -> None:
        captured.append(event)

    subscribe(_collect)
    return captured
