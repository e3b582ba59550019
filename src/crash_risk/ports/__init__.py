"""Ports: abstract interfaces the engine depends on."""

from crash_risk.ports.event_bus import EventBusPort
from crash_risk.ports.feed import MetricsFeedPort
from crash_risk.ports.store import HistoryStorePort

__all__ = ["EventBusPort", "HistoryStorePort", "MetricsFeedPort"]
