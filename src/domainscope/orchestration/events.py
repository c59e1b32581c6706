"""Outbound event queue drained by the host after each step.

Stages append events in the order things happen; the host calls
``drain`` to take everything emitted so far. There are no subscribers,
so emission order within a phase is simply queue order.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from domainscope.constants import EventType, Phase


@dataclass(frozen=True)
class OrchestratorEvent:
    """Typed event emitted while the pipeline runs."""

    type: EventType
    phase: Phase
    payload: dict[str, Any] = field(default_factory=lambda: dict[str, Any]())
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventQueue:
    def __init__(self) -> None:
        self._events: deque[OrchestratorEvent] = deque()

    def emit(
        self, type_: EventType, phase: Phase, **payload: Any
    ) -> OrchestratorEvent:
        event = OrchestratorEvent(type=type_, phase=phase, payload=payload)
        self._events.append(event)
        return event

    def drain(self) -> list[OrchestratorEvent]:
        events = list(self._events)
        self._events.clear()
        return events

    def __len__(self) -> int:
        return len(self._events)
