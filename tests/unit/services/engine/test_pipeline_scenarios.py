"""
Pipeline scenario tests.

Each scenario seeds three prior 15-minute buckets so that the current bucket
produces known z-scores:
- open interest: prior 90M/100M/110M (mean 100M, std 10M), current 120M -> z = 2.0
- funding: prior 0.9/1.0/1.1 bp (mean 1.0, std 0.1), current 1.18 bp -> z = 1.8
- execution cost: prior 0.09/0.10/0.11 % (std 0.01 %), current 0.10 % -> z = 0, 0.13 % -> z = 3.0
"""

from __future__ import annotations

import pytest

from crash_risk.config.settings import Settings
from crash_risk.domain.models import (
    Direction,
    IndicatorStatus,
    Metric,
    MetricSample,
    RiskState,
    StructureState,
)
from crash_risk.domain.rules import (
    REASON_UNIVERSE_FAILED,
    RULE_CROWDING_NOT_CONFIRMED,
    RULE_STRUCTURE_BROKEN,
    RULE_STRUCTURE_INTACT,
    RULE_STRUCTURE_WEAKENING,
    RULE_UNIVERSE_FAILED,
)
from crash_risk.services.engine import EngineState, RiskPipeline
from crash_risk.services.signals import build_indicators

NOW = 1_700_000_100.0  # bucket aligned
BUCKET = 900.0
MIN = 60.0

OI_PRIOR = [90e6, 100e6, 110e6]
FUNDING_PRIOR = [0.9e-4, 1.0e-4, 1.1e-4]
COST_PRIOR = [0.0009, 0.0010, 0.0011]


@pytest.fixture
def settings(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("RISK_"):
            monkeypatch.delenv(key, raising=False)
    return Settings()


@pytest.fixture
def pipeline(settings):
    return RiskPipeline.from_settings(settings, build_indicators(settings))


@pytest.fixture
def state(settings):
    state = EngineState.from_settings(settings)
    stats = state.statistics
    for k, (oi, funding, cost) in enumerate(zip(OI_PRIOR, FUNDING_PRIOR, COST_PRIOR, strict=True)):
        ts = NOW - (3 - k) * BUCKET
        stats.ingest("BTC", Metric.OPEN_INTEREST, ts, oi)
        stats.ingest("BTC", Metric.FUNDING_RATE, ts, funding)
        stats.ingest("BTC", Metric.EXECUTION_COST, ts, cost)
    return state


def seed_prices(state: EngineState, p1h: float, p15m: float) -> None:
    prices = state.price_series("BTC")
    prices.add(NOW - 3610, p1h)
    prices.add(NOW - 910, p15m)


def sample(
    ts: float,
    mark: float,
    *,
    oi: float = 120e6,
    funding: float = 1.18e-4,
    cost: float = 0.0010,
    volume: float = 100e6,
) -> MetricSample:
    return MetricSample(
        instrument="BTC",
        timestamp=ts,
        mark_price=mark,
        funding_rate=funding,
        open_interest=oi,
        day_notional_volume=volume,
        execution_cost_pct=cost,
    )


class TestScenarioA:
    """Below the volume minimum -> UNSUPPORTED, evaluators skipped."""

    def test_low_volume_is_unsupported(self, pipeline, state):
        record = pipeline.process(state, sample(NOW, 100.0, volume=5_000_000), NOW)

        assert record.state == RiskState.UNSUPPORTED
        assert record.trace.universe.eligible is False
        assert record.trace.decision.rule == RULE_UNIVERSE_FAILED
        for outcome in record.trace.indicators:
            assert outcome.result.status == IndicatorStatus.SKIPPED
            assert outcome.result.reason == REASON_UNIVERSE_FAILED

    def test_universe_failure_leaves_counters_untouched(self, pipeline, state):
        pipeline.process(state, sample(NOW, 100.0), NOW)
        assert state.confirmation.peek("BTC", "crowding").consecutive_hits == 1

        pipeline.process(state, sample(NOW + 15, 100.0, volume=1.0), NOW + 15)
        assert state.confirmation.peek("BTC", "crowding").consecutive_hits == 1

    def test_unsupported_regardless_of_other_signals(self, pipeline, state):
        seed_prices(state, 100.0, 99.0)
        for i in range(3):
            record = pipeline.process(state, sample(NOW + 15 * i, 98.0, cost=0.0013, volume=1.0), NOW + 15 * i)
            assert record.state == RiskState.UNSUPPORTED


class TestScenarioB:
    """Crowding confirmed LONG, both returns up -> INTACT -> GREEN."""

    def test_intact_is_green(self, pipeline, state):
        seed_prices(state, p1h=100.0, p15m=101.2 / 1.005)

        first = pipeline.process(state, sample(NOW, 101.2), NOW)
        crowding = first.trace.indicator("crowding")
        assert crowding.result.raw is True
        assert crowding.confirmed is False
        assert first.trace.indicator("structure").result.status == IndicatorStatus.SKIPPED
        assert first.trace.decision.rule == RULE_CROWDING_NOT_CONFIRMED

        second = pipeline.process(state, sample(NOW + 15, 101.2), NOW + 15)
        crowding = second.trace.indicator("crowding")
        structure = second.trace.indicator("structure")
        assert crowding.confirmed is True
        assert crowding.result.direction == Direction.LONG
        assert crowding.result.values["oi_z"] == pytest.approx(2.0)
        assert crowding.result.values["funding_z"] == pytest.approx(1.8)
        assert structure.result.classification == StructureState.INTACT
        assert structure.result.values["return_short"] == pytest.approx(0.005)
        assert structure.result.values["return_long"] == pytest.approx(0.012)
        assert second.state == RiskState.GREEN
        assert second.trace.decision.rule == RULE_STRUCTURE_INTACT


class TestScenarioC:
    """Crowding confirmed LONG, 15m down and 1h flat -> WEAKENING -> ORANGE."""

    def test_weakening_is_orange(self, pipeline, state):
        mark = 100.05
        seed_prices(state, p1h=mark / 1.0005, p15m=mark / 0.997)

        pipeline.process(state, sample(NOW, mark), NOW)
        record = pipeline.process(state, sample(NOW + 15, mark), NOW + 15)

        structure = record.trace.indicator("structure")
        assert structure.result.classification == StructureState.WEAKENING
        assert structure.result.values["long_return_flat"] is True
        assert record.trace.indicator("liquidity").confirmed is False
        assert record.state == RiskState.ORANGE
        assert record.trace.decision.rule == RULE_STRUCTURE_WEAKENING


class TestScenarioD:
    """BROKEN plus confirmed liquidity stress -> RED, held for 30 minutes."""

    def test_red_then_hold(self, pipeline, state):
        seed_prices(state, p1h=100.0, p15m=99.0)

        first = pipeline.process(state, sample(NOW, 98.0, cost=0.0013), NOW)
        assert first.state == RiskState.GREEN

        red = pipeline.process(state, sample(NOW + 15, 98.0, cost=0.0013), NOW + 15)
        assert red.trace.indicator("structure").result.classification == StructureState.BROKEN
        assert red.trace.indicator("liquidity").confirmed is True
        assert red.trace.indicator("liquidity").result.source == "execution_cost"
        assert red.state == RiskState.RED
        assert red.trace.decision.rule == RULE_STRUCTURE_BROKEN
        entered = red.trace.hysteresis.entered_at
        assert entered == NOW + 15

        # Metrics revert: crowding breaks its streak, computed state drops to GREEN
        calm = pipeline.process(state, sample(NOW + 30, 98.0, oi=100e6, funding=1.0e-4), NOW + 30)
        assert calm.trace.decision.computed_state == RiskState.GREEN
        assert calm.state == RiskState.RED
        assert calm.trace.hysteresis.state_change_blocked is True
        assert calm.trace.hysteresis.cooldown_remaining_seconds == pytest.approx(30 * MIN - 15)

        held = pipeline.process(state, sample(entered + 30 * MIN - 1, 98.0, oi=100e6), entered + 30 * MIN - 1)
        assert held.state == RiskState.RED

        released = pipeline.process(state, sample(entered + 30 * MIN, 98.0, oi=100e6), entered + 30 * MIN)
        assert released.state == RiskState.GREEN
        assert released.trace.hysteresis.state_change_blocked is False


class TestMissingLiquidityData:
    """Missing liquidity data never produces RED."""

    def test_unevaluated_liquidity_breaks_fragility(self, pipeline, state):
        seed_prices(state, p1h=100.0, p15m=99.0)
        pipeline.process(state, sample(NOW, 98.0, cost=0.0013), NOW)
        assert pipeline.process(state, sample(NOW + 15, 98.0, cost=0.0013), NOW + 15).state == RiskState.RED
        # Start from a clean record so hysteresis does not hold the RED
        state.hysteresis.restore("BTC", None)

        no_cost = MetricSample(
            instrument="BTC",
            timestamp=NOW + 30,
            mark_price=98.0,
            funding_rate=1.18e-4,
            open_interest=120e6,
            day_notional_volume=100e6,
        )
        record = pipeline.process(state, no_cost, NOW + 30)
        liquidity = record.trace.indicator("liquidity")
        assert liquidity.result.evaluated is False
        assert liquidity.confirmed is False
        assert record.trace.indicator("structure").result.classification == StructureState.BROKEN
        assert record.state == RiskState.GREEN


class TestTrace:
    """The published trace is structured and serializable."""

    def test_trace_to_dict(self, pipeline, state):
        import json

        record = pipeline.process(state, sample(NOW, 100.0), NOW)
        data = record.to_dict()
        json.dumps(data)
        assert data["trace"]["universe"]["eligible"] is True
        assert data["trace"]["indicators"]["crowding"]["confirmation"] == {
            "debounced": True,
            "count": 1,
            "required": 2,
        }
        assert data["trace"]["decision"]["rule"] == RULE_CROWDING_NOT_CONFIRMED
        assert data["metrics"]["sampled_at"] == NOW

    def test_bucket_unit_counts_buckets_not_ticks(self, settings, state):
        settings = settings.model_copy(
            update={"crowding": settings.crowding.model_copy(update={"confirmation_unit": "bucket"})}
        )
        pipeline = RiskPipeline.from_settings(settings, build_indicators(settings))

        for i in range(4):
            record = pipeline.process(state, sample(NOW + 15 * i, 100.0), NOW + 15 * i)
        assert record.trace.indicator("crowding").confirmed is False
        assert record.trace.indicator("crowding").consecutive_hits == 1
