"""Messaging adapters."""

from crash_risk.adapters.messaging.event_bus import InMemoryEventBus

__all__ = ["InMemoryEventBus"]
