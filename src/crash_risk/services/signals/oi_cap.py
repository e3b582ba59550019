"""
Open-interest cap signal.

An instrument pinned at its exchange OI cap cannot absorb new positioning;
the exchange itself flags it.
"""

from __future__ import annotations

from crash_risk.domain.models import IndicatorRole, SignalResult
from crash_risk.services.signals.base import Indicator, SignalContext

NAME = "oi_cap"


def evaluate_oi_cap(at_cap: bool | None) -> SignalResult:
    if at_cap is None:
        return SignalResult.not_evaluated(NAME, "open interest cap status unavailable")
    return SignalResult(name=NAME, evaluated=True, raw=at_cap, values={"at_open_interest_cap": at_cap})


class OiCapIndicator(Indicator):
    name = NAME
    role = IndicatorRole.STRESS

    def evaluate(self, ctx: SignalContext) -> SignalResult:
        return evaluate_oi_cap(ctx.sample.at_open_interest_cap)
