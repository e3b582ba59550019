"""
Liquidity-stress signal.

Prefers the execution (impact) cost z-score. When the feed cannot provide an
execution cost, falls back to order-book spread and near-mid depth. The
source actually used is recorded in the result for the trace.
"""

from __future__ import annotations

from crash_risk.domain.models import IndicatorRole, LiquiditySource, Metric, SignalResult
from crash_risk.services.signals.base import REASON_INSUFFICIENT_HISTORY, Indicator, SignalContext

NAME = "liquidity"

REASON_NO_DATA = "no execution cost or order book available"


def evaluate_execution_cost(cost_z: float | None, threshold: float = 1.5) -> SignalResult:
    """raw = cost_z >= threshold."""
    source = LiquiditySource.EXECUTION_COST.value
    values = {"execution_cost_z": cost_z}
    thresholds = {"execution_cost_z": threshold}
    if cost_z is None:
        return SignalResult.not_evaluated(
            NAME, REASON_INSUFFICIENT_HISTORY, source=source, values=values, thresholds=thresholds
        )
    return SignalResult(
        name=NAME,
        evaluated=True,
        raw=cost_z >= threshold,
        source=source,
        values=values,
        thresholds=thresholds,
    )


def evaluate_order_book(spread_z: float | None, depth_z: float | None, threshold: float = 1.5) -> SignalResult:
    """raw = spread_z >= threshold OR depth_z <= -threshold (either side may be missing)."""
    source = LiquiditySource.ORDER_BOOK.value
    values = {"spread_z": spread_z, "depth_z": depth_z}
    thresholds = {"spread_z": threshold, "depth_z": -threshold}
    if spread_z is None and depth_z is None:
        return SignalResult.not_evaluated(
            NAME, REASON_INSUFFICIENT_HISTORY, source=source, values=values, thresholds=thresholds
        )
    raw = (spread_z is not None and spread_z >= threshold) or (depth_z is not None and depth_z <= -threshold)
    return SignalResult(
        name=NAME,
        evaluated=True,
        raw=raw,
        source=source,
        values=values,
        thresholds=thresholds,
    )


class LiquidityIndicator(Indicator):
    name = NAME
    role = IndicatorRole.STRESS

    def __init__(self, z_threshold: float = 1.5, confirmation_unit: str = "tick"):
        super().__init__(confirmation_unit)
        self.z_threshold = z_threshold

    def evaluate(self, ctx: SignalContext) -> SignalResult:
        stats = ctx.statistics
        if ctx.sample.execution_cost_pct is not None:
            return evaluate_execution_cost(
                stats.zscore(ctx.instrument, Metric.EXECUTION_COST, ctx.now),
                self.z_threshold,
            )
        if ctx.sample.order_book is not None:
            return evaluate_order_book(
                stats.zscore(ctx.instrument, Metric.SPREAD, ctx.now),
                stats.zscore(ctx.instrument, Metric.DEPTH, ctx.now),
                self.z_threshold,
            )
        return SignalResult.not_evaluated(NAME, REASON_NO_DATA, source=LiquiditySource.NONE.value)
