"""
Positioning-crowding signal.

Simultaneously anomalous open interest and funding rate imply one-sided
positioning. The sign of the funding z-score gives the crowded side.
"""

from __future__ import annotations

from crash_risk.domain.models import Direction, IndicatorRole, Metric, SignalResult
from crash_risk.services.signals.base import REASON_INSUFFICIENT_HISTORY, Indicator, SignalContext

NAME = "crowding"


def evaluate_crowding(
    oi_z: float | None,
    funding_z: float | None,
    oi_threshold: float = 1.5,
    funding_threshold: float = 1.5,
) -> SignalResult:
    """
    raw = |oi_z| >= oi_threshold AND |funding_z| >= funding_threshold.

    Either z-score missing means the signal cannot be evaluated.
    """
    values = {"oi_z": oi_z, "funding_z": funding_z}
    thresholds = {"oi_z": oi_threshold, "funding_z": funding_threshold}

    if oi_z is None or funding_z is None:
        return SignalResult.not_evaluated(NAME, REASON_INSUFFICIENT_HISTORY, values=values, thresholds=thresholds)

    raw = abs(oi_z) >= oi_threshold and abs(funding_z) >= funding_threshold
    direction = Direction.LONG if funding_z > 0 else Direction.SHORT
    return SignalResult(
        name=NAME,
        evaluated=True,
        raw=raw,
        direction=direction,
        values=values,
        thresholds=thresholds,
    )


class CrowdingIndicator(Indicator):
    name = NAME
    role = IndicatorRole.GATE

    def __init__(self, oi_z_threshold: float = 1.5, funding_z_threshold: float = 1.5, confirmation_unit: str = "tick"):
        super().__init__(confirmation_unit)
        self.oi_z_threshold = oi_z_threshold
        self.funding_z_threshold = funding_z_threshold

    def evaluate(self, ctx: SignalContext) -> SignalResult:
        stats = ctx.statistics
        return evaluate_crowding(
            stats.zscore(ctx.instrument, Metric.OPEN_INTEREST, ctx.now),
            stats.zscore(ctx.instrument, Metric.FUNDING_RATE, ctx.now),
            self.oi_z_threshold,
            self.funding_z_threshold,
        )
