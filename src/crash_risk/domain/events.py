"""
Domain Events.

Events are immutable records of things that happened in the engine.
They are used for:
- Audit logging of state transitions
- Inter-service communication (alerts, dashboards)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from crash_risk.domain.models import RiskState


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all domain events."""

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def event_type(self) -> str:
        return self.__class__.__name__


@dataclass(frozen=True, slots=True)
class RiskStateChanged(DomainEvent):
    """Emitted when the effective (post-hysteresis) state of an instrument changes."""

    instrument: str = ""
    old_state: RiskState | None = None
    new_state: RiskState = RiskState.UNSUPPORTED
    rule: str = ""


@dataclass(frozen=True, slots=True)
class FeedStaleDetected(DomainEvent):
    """Emitted once per stale episode when the watchdog degrades the published map."""

    age_seconds: float = 0.0
    instruments: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TickCompleted(DomainEvent):
    """Emitted after a tick published a new map."""

    tick_id: int = 0
    instruments: int = 0
    failed_instruments: tuple[str, ...] = ()
    duration_seconds: float = 0.0
