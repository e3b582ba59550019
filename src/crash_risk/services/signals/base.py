"""
Signal evaluator building blocks.

Each indicator wraps a pure evaluation function. The pipeline hands it a
SignalContext (the current sample plus read-only history) and applies the
confirmation layer to the returned SignalResult afterwards.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import ClassVar

from crash_risk.domain.models import (
    FundingPoint,
    IndicatorOutcome,
    IndicatorRole,
    MetricSample,
    SignalResult,
)
from crash_risk.services.statistics.prices import PriceSeries
from crash_risk.services.statistics.rolling import RollingStatisticsStore

REASON_INSUFFICIENT_HISTORY = "insufficient history"


@dataclass(frozen=True, slots=True)
class SignalContext:
    """Inputs available to an evaluator for one instrument on one tick."""

    instrument: str
    now: float
    sample: MetricSample
    statistics: RollingStatisticsStore
    prices: PriceSeries | None = None
    # Outcomes of indicators evaluated earlier in this tick, keyed by name
    upstream: Mapping[str, IndicatorOutcome] = field(default_factory=dict)
    funding_history: Sequence[FundingPoint] | None = None


class Indicator(ABC):
    """
    One configured signal.

    Attributes:
        name: Stable identifier used in configuration and traces.
        role: How the decision engine consumes the outcome.
        debounced: Whether the confirmation layer applies.
        requires_funding_history: Whether the engine must fetch funding
            history for this indicator.
    """

    name: ClassVar[str]
    role: ClassVar[IndicatorRole]
    debounced: ClassVar[bool] = True
    requires_funding_history: ClassVar[bool] = False

    def __init__(self, confirmation_unit: str = "tick"):
        if confirmation_unit not in ("tick", "bucket"):
            raise ValueError(f"Unknown confirmation unit: {confirmation_unit}")
        self.confirmation_unit = confirmation_unit

    @abstractmethod
    def evaluate(self, ctx: SignalContext) -> SignalResult:
        """Compute the raw signal. Must not mutate anything in ctx."""
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(unit={self.confirmation_unit})"
