"""
Per-instrument evaluation pipeline.

ingest -> prune -> universe gate -> evaluate -> confirm -> decide -> hysteresis

Runs synchronously on an EngineState owned by the current tick; there are
no suspension points in here.
"""

from __future__ import annotations

from collections.abc import Sequence

from crash_risk.config.settings import Settings
from crash_risk.domain.models import (
    DebugTrace,
    FundingPoint,
    IndicatorOutcome,
    Metric,
    MetricSample,
    RiskPerInstrument,
    RiskState,
    SignalResult,
)
from crash_risk.domain.rules import REASON_UNIVERSE_FAILED, check_universe, decide_risk_state
from crash_risk.services.engine.state import EngineState
from crash_risk.services.signals.base import Indicator, SignalContext


class RiskPipeline:
    """
    Turns one MetricSample into one published RiskPerInstrument.

    Args:
        indicators: Configured indicators in evaluation order.
        mode: Decision mode ("pillars" or "consensus").
        min_day_notional_volume: Universe gate volume minimum.
        min_open_interest: Universe gate open-interest minimum.
    """

    def __init__(
        self,
        indicators: Sequence[Indicator],
        mode: str = "pillars",
        min_day_notional_volume: float = 25_000_000,
        min_open_interest: float = 10_000_000,
    ):
        self.indicators = list(indicators)
        self.mode = mode
        self.min_day_notional_volume = min_day_notional_volume
        self.min_open_interest = min_open_interest

    @classmethod
    def from_settings(cls, settings: Settings, indicators: Sequence[Indicator]) -> RiskPipeline:
        return cls(
            indicators=indicators,
            mode=settings.indicators.mode,
            min_day_notional_volume=settings.universe.min_day_notional_volume,
            min_open_interest=settings.universe.min_open_interest,
        )

    @property
    def needs_funding_history(self) -> bool:
        return any(ind.requires_funding_history for ind in self.indicators)

    # ------------------------------------------------------------------

    def ingest(self, state: EngineState, sample: MetricSample, now: float) -> None:
        """Fold the sample into rolling statistics and price history, then prune."""
        instrument = sample.instrument
        stats = state.statistics

        stats.ingest(instrument, Metric.OPEN_INTEREST, now, sample.open_interest)
        stats.ingest(instrument, Metric.FUNDING_RATE, now, sample.funding_rate)
        stats.ingest(instrument, Metric.EXECUTION_COST, now, sample.execution_cost_pct)
        if sample.order_book is not None:
            stats.ingest(instrument, Metric.SPREAD, now, sample.order_book.spread_pct)
            stats.ingest(instrument, Metric.DEPTH, now, sample.order_book.depth_notional)
        stats.prune(instrument, now)

        prices = state.price_series(instrument)
        if sample.mark_price is not None:
            prices.add(now, sample.mark_price)
        prices.prune(now, state.price_retention_seconds)

    def process(
        self,
        state: EngineState,
        sample: MetricSample,
        now: float,
        funding_history: Sequence[FundingPoint] | None = None,
    ) -> RiskPerInstrument:
        """
        Evaluate one instrument and update its state in place.

        Samples are stamped with the tick time `now`; the feed's own
        timestamp is kept in the published metrics.
        """
        instrument = sample.instrument
        self.ingest(state, sample, now)

        universe = check_universe(sample, self.min_day_notional_volume, self.min_open_interest)

        if universe.eligible:
            outcomes = self._evaluate(state, sample, now, funding_history)
        else:
            # Gate failed: skip evaluators, leave confirmation counters untouched
            outcomes = tuple(self._skipped(state, instrument, ind, REASON_UNIVERSE_FAILED) for ind in self.indicators)

        decision = decide_risk_state(universe, outcomes, self.mode)
        hysteresis = state.hysteresis.apply(
            instrument,
            decision.computed_state,
            now,
            bypass=decision.computed_state == RiskState.UNSUPPORTED,
        )

        trace = DebugTrace(
            instrument=instrument,
            evaluated_at=now,
            universe=universe,
            indicators=outcomes,
            decision=decision,
            hysteresis=hysteresis,
        )
        metrics = sample.raw_snapshot()
        metrics["sampled_at"] = sample.timestamp
        return RiskPerInstrument(
            instrument=instrument,
            state=hysteresis.effective_state,
            message=hysteresis.effective_state.message,
            metrics=metrics,
            trace=trace,
            updated_at=now,
        )

    # ------------------------------------------------------------------

    def _evaluate(
        self,
        state: EngineState,
        sample: MetricSample,
        now: float,
        funding_history: Sequence[FundingPoint] | None,
    ) -> tuple[IndicatorOutcome, ...]:
        instrument = sample.instrument
        upstream: dict[str, IndicatorOutcome] = {}
        event_key = int(state.statistics.bucket_start(now) // state.statistics.bucket_seconds)

        for indicator in self.indicators:
            ctx = SignalContext(
                instrument=instrument,
                now=now,
                sample=sample,
                statistics=state.statistics,
                prices=state.prices.get(instrument),
                upstream=dict(upstream),
                funding_history=funding_history,
            )
            result = indicator.evaluate(ctx)

            if indicator.debounced:
                confirmation = state.confirmation.observe(
                    instrument,
                    indicator.name,
                    result.evaluated and result.raw,
                    event_key if indicator.confirmation_unit == "bucket" else None,
                )
                outcome = IndicatorOutcome(
                    result=result,
                    role=indicator.role,
                    confirmed=confirmation.confirmed,
                    consecutive_hits=confirmation.consecutive_hits,
                    required_hits=confirmation.required_hits,
                )
            else:
                outcome = IndicatorOutcome(
                    result=result,
                    role=indicator.role,
                    confirmed=result.evaluated,
                    debounced=False,
                )
            upstream[indicator.name] = outcome

        return tuple(upstream.values())

    @staticmethod
    def _skipped(state: EngineState, instrument: str, indicator: Indicator, reason: str) -> IndicatorOutcome:
        if not indicator.debounced:
            return IndicatorOutcome(
                result=SignalResult.skip(indicator.name, reason),
                role=indicator.role,
                confirmed=False,
                debounced=False,
            )
        current = state.confirmation.peek(instrument, indicator.name)
        return IndicatorOutcome(
            result=SignalResult.skip(indicator.name, reason),
            role=indicator.role,
            confirmed=False,
            consecutive_hits=current.consecutive_hits,
            required_hits=current.required_hits,
        )
