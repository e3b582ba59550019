"""
Price-structure classifier.

Only meaningful once crowding is confirmed with a direction: are trailing
returns still moving with the crowded side, stalling, or breaking against it?
"""

from __future__ import annotations

from crash_risk.domain.models import Direction, IndicatorRole, SignalResult, StructureState
from crash_risk.domain.rules import CROWDING
from crash_risk.services.signals.base import Indicator, SignalContext

NAME = "structure"

REASON_CROWDING_NOT_CONFIRMED = "crowding not confirmed"
REASON_ANCHOR_MISSING = "anchor price unavailable"


def classify_structure(direction: Direction, r_short: float, r_long: float) -> StructureState:
    """
    Directional rule table.

    LONG: both returns up -> INTACT, both down -> BROKEN, otherwise WEAKENING.
    SHORT is the mirror image.
    """
    if direction == Direction.LONG:
        if r_short > 0 and r_long > 0:
            return StructureState.INTACT
        if r_short < 0 and r_long < 0:
            return StructureState.BROKEN
        return StructureState.WEAKENING

    if r_short < 0 and r_long < 0:
        return StructureState.INTACT
    if r_short > 0 and r_long > 0:
        return StructureState.BROKEN
    return StructureState.WEAKENING


def evaluate_structure(
    direction: Direction | None,
    r_short: float | None,
    r_long: float | None,
    flat_threshold: float = 0.001,
) -> SignalResult:
    values = {"return_short": r_short, "return_long": r_long}
    thresholds = {"flat_return": flat_threshold}

    if direction is None:
        return SignalResult.not_evaluated(NAME, "crowding direction unavailable", values=values, thresholds=thresholds)
    if r_short is None or r_long is None:
        return SignalResult.not_evaluated(
            NAME, REASON_ANCHOR_MISSING, direction=direction, values=values, thresholds=thresholds
        )

    values["long_return_flat"] = abs(r_long) < flat_threshold
    return SignalResult(
        name=NAME,
        evaluated=True,
        direction=direction,
        classification=classify_structure(direction, r_short, r_long),
        values=values,
        thresholds=thresholds,
    )


class StructureIndicator(Indicator):
    """Classifier; consumed as-is by the decision table (no debounce)."""

    name = NAME
    role = IndicatorRole.CLASSIFIER
    debounced = False

    def __init__(
        self,
        short_horizon_seconds: float = 900,
        long_horizon_seconds: float = 3600,
        flat_return_threshold: float = 0.001,
    ):
        super().__init__("tick")
        self.short_horizon_seconds = short_horizon_seconds
        self.long_horizon_seconds = long_horizon_seconds
        self.flat_return_threshold = flat_return_threshold

    def evaluate(self, ctx: SignalContext) -> SignalResult:
        crowding = ctx.upstream.get(CROWDING)
        if crowding is None or not crowding.confirmed or crowding.result.direction is None:
            return SignalResult.skip(NAME, REASON_CROWDING_NOT_CONFIRMED)

        r_short = r_long = None
        if ctx.prices is not None:
            price_now = ctx.sample.mark_price
            r_short = ctx.prices.trailing_return(ctx.now, self.short_horizon_seconds, price_now)
            r_long = ctx.prices.trailing_return(ctx.now, self.long_horizon_seconds, price_now)

        return evaluate_structure(crowding.result.direction, r_short, r_long, self.flat_return_threshold)
