"""
Funding-anomaly signal.

Z-score of the current funding rate against the exchange's own funding
history (hourly records), instead of the bucketed rolling store.
"""

from __future__ import annotations

from collections.abc import Sequence

from crash_risk.domain.models import Direction, FundingPoint, IndicatorRole, SignalResult
from crash_risk.services.signals.base import REASON_INSUFFICIENT_HISTORY, Indicator, SignalContext
from crash_risk.services.statistics.rolling import zscore_against

NAME = "funding_anomaly"


def evaluate_funding_anomaly(
    current_rate: float | None,
    history: Sequence[FundingPoint] | None,
    threshold: float = 2.0,
    min_points: int = 24,
) -> SignalResult:
    """raw = |z| >= threshold; direction follows the sign of z."""
    thresholds = {"funding_z": threshold, "min_points": float(min_points)}

    if current_rate is None:
        return SignalResult.not_evaluated(NAME, "funding rate unavailable", thresholds=thresholds)
    if history is None:
        return SignalResult.not_evaluated(NAME, "funding history unavailable", thresholds=thresholds)

    rates = [p.rate for p in history]
    values: dict[str, float | int | None] = {"funding_rate": current_rate, "history_points": len(rates)}
    if len(rates) < min_points:
        return SignalResult.not_evaluated(NAME, REASON_INSUFFICIENT_HISTORY, values=values, thresholds=thresholds)

    z = zscore_against(current_rate, rates)
    values["funding_z"] = z
    if z is None:
        return SignalResult.not_evaluated(NAME, "funding history has no spread", values=values, thresholds=thresholds)

    return SignalResult(
        name=NAME,
        evaluated=True,
        raw=abs(z) >= threshold,
        direction=Direction.LONG if z > 0 else Direction.SHORT,
        values=values,
        thresholds=thresholds,
    )


class FundingAnomalyIndicator(Indicator):
    name = NAME
    role = IndicatorRole.STRESS
    requires_funding_history = True

    def __init__(
        self,
        z_threshold: float = 2.0,
        min_points: int = 24,
        lookback_hours: float = 72,
        confirmation_unit: str = "tick",
    ):
        super().__init__(confirmation_unit)
        self.z_threshold = z_threshold
        self.min_points = min_points
        self.lookback_hours = lookback_hours

    @property
    def lookback_seconds(self) -> float:
        return self.lookback_hours * 3600

    def evaluate(self, ctx: SignalContext) -> SignalResult:
        history = ctx.funding_history
        if history is not None:
            since = ctx.now - self.lookback_seconds
            history = [p for p in history if since <= p.timestamp <= ctx.now]
        return evaluate_funding_anomaly(ctx.sample.funding_rate, history, self.z_threshold, self.min_points)
