"""
Metrics Feed Port: Abstract interface for market data sources.

The engine polls this port once per tick per instrument. Implementations own
transport details (HTTP, WebSocket, caching); the engine only sees samples.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from crash_risk.domain.models import FundingPoint, MetricSample


class MetricsFeedPort(ABC):
    """
    Abstract interface for a perpetual-futures metrics feed.

    Implementations raise FeedError subclasses on failure; per-field
    problems must be reported as None values on the sample instead.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open sessions/connections."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close sessions/connections."""
        ...

    @abstractmethod
    async def get_instrument_metrics(self, instrument: str) -> MetricSample:
        """
        Fetch current metrics for one instrument.

        Raises:
            FeedError: The instrument could not be sampled at all.
        """
        ...

    @abstractmethod
    async def get_funding_history(self, instrument: str, since: float) -> list[FundingPoint]:
        """
        Fetch funding records with timestamp >= since (epoch seconds).

        Returns points sorted by timestamp ascending.
        """
        ...
