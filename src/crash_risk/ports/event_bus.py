"""
Event Bus Port: Abstract interface for pub/sub of engine events.

Consumers (alerting, audit logs, dashboards) subscribe by event class.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TypeVar

from crash_risk.domain.events import DomainEvent

T = TypeVar("T", bound=DomainEvent)
EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBusPort(ABC):
    """Publish/subscribe channel for domain events."""

    @abstractmethod
    async def start(self) -> None:
        """Start background dispatch (if any)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Drain pending events and stop dispatching."""
        ...

    @abstractmethod
    def subscribe(self, event_type: type[T], handler: Callable[[T], Awaitable[None]]) -> None:
        """Register an async handler for one event class."""
        ...

    @abstractmethod
    def unsubscribe(self, event_type: type[T], handler: Callable[[T], Awaitable[None]]) -> None:
        """Remove a handler; unknown handlers are ignored."""
        ...

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Hand an event to every subscriber of its exact class."""
        ...

    @abstractmethod
    def subscriber_count(self, event_type: type[DomainEvent]) -> int:
        ...
