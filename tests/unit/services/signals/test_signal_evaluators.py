"""
Unit tests for the signal evaluators.

Pure evaluation functions are tested directly; indicator classes are tested
through a SignalContext built on a real statistics store.
"""

from __future__ import annotations

import pytest

from crash_risk.domain.models import (
    Direction,
    FundingPoint,
    IndicatorOutcome,
    IndicatorRole,
    IndicatorStatus,
    LiquiditySource,
    Metric,
    MetricSample,
    OrderBookSnapshot,
    SignalResult,
    StructureState,
)
from crash_risk.services.signals import (
    CrowdingIndicator,
    FundingAnomalyIndicator,
    LiquidityIndicator,
    OiCapIndicator,
    StructureIndicator,
)
from crash_risk.services.signals.base import REASON_INSUFFICIENT_HISTORY, SignalContext
from crash_risk.services.signals.crowding import evaluate_crowding
from crash_risk.services.signals.funding_anomaly import evaluate_funding_anomaly
from crash_risk.services.signals.liquidity import REASON_NO_DATA, evaluate_execution_cost, evaluate_order_book
from crash_risk.services.signals.oi_cap import evaluate_oi_cap
from crash_risk.services.signals.structure import (
    REASON_ANCHOR_MISSING,
    REASON_CROWDING_NOT_CONFIRMED,
    classify_structure,
    evaluate_structure,
)
from crash_risk.services.statistics.prices import PriceSeries
from crash_risk.services.statistics.rolling import RollingStatisticsStore

NOW = 1_700_000_100.0
BUCKET = 900.0


def _store(series: dict[Metric, list[float]]) -> RollingStatisticsStore:
    store = RollingStatisticsStore()
    for metric, values in series.items():
        n = len(values)
        for i, value in enumerate(values):
            store.ingest("BTC", metric, NOW - (n - 1 - i) * BUCKET, value)
    return store


def _ctx(store=None, sample=None, prices=None, upstream=None, funding=None) -> SignalContext:
    return SignalContext(
        instrument="BTC",
        now=NOW,
        sample=sample or MetricSample(instrument="BTC", timestamp=NOW, mark_price=100.0),
        statistics=store or RollingStatisticsStore(),
        prices=prices,
        upstream=upstream or {},
        funding_history=funding,
    )


def _confirmed_crowding(direction: Direction) -> dict[str, IndicatorOutcome]:
    result = SignalResult(name="crowding", evaluated=True, raw=True, direction=direction)
    return {"crowding": IndicatorOutcome(result=result, role=IndicatorRole.GATE, confirmed=True)}


class TestCrowding:
    """|oi_z| and |funding_z| both at or above threshold."""

    def test_raw_and_long(self):
        result = evaluate_crowding(2.0, 1.8)
        assert result.evaluated is True
        assert result.raw is True
        assert result.direction == Direction.LONG

    def test_short_on_negative_funding(self):
        result = evaluate_crowding(-2.0, -1.6)
        assert result.raw is True
        assert result.direction == Direction.SHORT

    def test_threshold_is_inclusive(self):
        assert evaluate_crowding(1.5, 1.5).raw is True
        assert evaluate_crowding(1.49, 3.0).raw is False

    def test_missing_zscore_not_evaluated(self):
        result = evaluate_crowding(None, 2.0)
        assert result.evaluated is False
        assert result.raw is False
        assert result.reason == REASON_INSUFFICIENT_HISTORY
        assert result.status == IndicatorStatus.NOT_EVALUATED

    def test_indicator_reads_bucket_zscores(self):
        store = _store(
            {
                Metric.OPEN_INTEREST: [90e6, 100e6, 110e6, 120e6],
                Metric.FUNDING_RATE: [0.9e-4, 1.0e-4, 1.1e-4, 1.18e-4],
            }
        )
        result = CrowdingIndicator().evaluate(_ctx(store))
        assert result.raw is True
        assert result.values["oi_z"] == pytest.approx(2.0)
        assert result.values["funding_z"] == pytest.approx(1.8)

    def test_indicator_cold_start(self):
        assert CrowdingIndicator().evaluate(_ctx()).evaluated is False

    def test_invalid_confirmation_unit(self):
        with pytest.raises(ValueError):
            CrowdingIndicator(confirmation_unit="minute")


class TestStructure:
    """Directional classification of trailing returns."""

    @pytest.mark.parametrize(
        "direction,r15,r1h,expected",
        [
            (Direction.LONG, 0.005, 0.012, StructureState.INTACT),
            (Direction.LONG, -0.003, 0.0005, StructureState.WEAKENING),
            (Direction.LONG, 0.0, 0.01, StructureState.WEAKENING),
            (Direction.LONG, -0.01, -0.02, StructureState.BROKEN),
            (Direction.SHORT, -0.005, -0.012, StructureState.INTACT),
            (Direction.SHORT, 0.01, 0.02, StructureState.BROKEN),
            (Direction.SHORT, 0.003, -0.01, StructureState.WEAKENING),
        ],
    )
    def test_rule_table(self, direction, r15, r1h, expected):
        assert classify_structure(direction, r15, r1h) == expected

    def test_missing_anchor_is_not_evaluated(self):
        result = evaluate_structure(Direction.LONG, 0.01, None)
        assert result.evaluated is False
        assert result.classification is None
        assert result.reason == REASON_ANCHOR_MISSING

    def test_flat_long_return_recorded(self):
        result = evaluate_structure(Direction.LONG, -0.003, 0.0005)
        assert result.values["long_return_flat"] is True

    def test_skipped_without_confirmed_crowding(self):
        result = StructureIndicator().evaluate(_ctx())
        assert result.status == IndicatorStatus.SKIPPED
        assert result.reason == REASON_CROWDING_NOT_CONFIRMED

    def test_indicator_uses_anchors_at_or_before(self):
        prices = PriceSeries([(NOW - 3610, 100.0), (NOW - 910, 100.6965), (NOW - 850, 50.0)])
        sample = MetricSample(instrument="BTC", timestamp=NOW, mark_price=101.2)
        result = StructureIndicator().evaluate(
            _ctx(sample=sample, prices=prices, upstream=_confirmed_crowding(Direction.LONG))
        )
        assert result.classification == StructureState.INTACT
        assert result.values["return_short"] == pytest.approx(0.005, rel=1e-3)
        assert result.values["return_long"] == pytest.approx(0.012)

    def test_indicator_without_price_history(self):
        result = StructureIndicator().evaluate(_ctx(upstream=_confirmed_crowding(Direction.SHORT)))
        assert result.evaluated is False
        assert result.direction == Direction.SHORT


class TestLiquidity:
    """Execution cost preferred, order book as fallback."""

    def test_execution_cost(self):
        assert evaluate_execution_cost(1.5).raw is True
        assert evaluate_execution_cost(1.4).raw is False
        assert evaluate_execution_cost(None).evaluated is False

    def test_order_book_either_side(self):
        assert evaluate_order_book(2.0, None).raw is True
        assert evaluate_order_book(None, -1.6).raw is True
        assert evaluate_order_book(0.5, -0.5).raw is False
        assert evaluate_order_book(None, None).evaluated is False

    def test_indicator_prefers_execution_cost(self):
        store = _store({Metric.EXECUTION_COST: [0.0009, 0.001, 0.0011, 0.0013]})
        sample = MetricSample(
            instrument="BTC",
            timestamp=NOW,
            execution_cost_pct=0.0013,
            order_book=OrderBookSnapshot(spread_pct=0.01),
        )
        result = LiquidityIndicator().evaluate(_ctx(store, sample))
        assert result.source == LiquiditySource.EXECUTION_COST.value
        assert result.raw is True

    def test_indicator_falls_back_to_order_book(self):
        store = _store(
            {
                Metric.SPREAD: [0.0009, 0.001, 0.0011, 0.001],
                Metric.DEPTH: [1.1e6, 1.0e6, 0.9e6, 0.7e6],
            }
        )
        sample = MetricSample(instrument="BTC", timestamp=NOW, order_book=OrderBookSnapshot(spread_pct=0.001))
        result = LiquidityIndicator().evaluate(_ctx(store, sample))
        assert result.source == LiquiditySource.ORDER_BOOK.value
        assert result.values["depth_z"] == pytest.approx(-3.0)
        assert result.raw is True

    def test_indicator_without_any_source(self):
        result = LiquidityIndicator().evaluate(_ctx())
        assert result.evaluated is False
        assert result.source == LiquiditySource.NONE.value
        assert result.reason == REASON_NO_DATA


class TestFundingAnomaly:
    """Current funding against the exchange funding history."""

    @staticmethod
    def _history(rates):
        return [FundingPoint(timestamp=NOW - 3600 * (len(rates) - i), rate=r) for i, r in enumerate(rates)]

    def test_anomaly_detected(self):
        history = self._history([0.9e-4, 1.0e-4, 1.1e-4] * 10)
        result = evaluate_funding_anomaly(3.0e-4, history, threshold=2.0, min_points=24)
        assert result.raw is True
        assert result.direction == Direction.LONG

    def test_too_few_points(self):
        result = evaluate_funding_anomaly(3.0e-4, self._history([1e-4, 2e-4]), min_points=24)
        assert result.evaluated is False
        assert result.reason == REASON_INSUFFICIENT_HISTORY

    def test_missing_inputs(self):
        assert evaluate_funding_anomaly(None, []).evaluated is False
        assert evaluate_funding_anomaly(1e-4, None).evaluated is False

    def test_flat_history(self):
        assert evaluate_funding_anomaly(1e-4, self._history([1e-4] * 30)).evaluated is False

    def test_indicator_filters_lookback(self):
        old = [FundingPoint(timestamp=NOW - 100 * 3600 - i, rate=1e-4 * (i % 3)) for i in range(30)]
        sample = MetricSample(instrument="BTC", timestamp=NOW, funding_rate=3e-4)
        indicator = FundingAnomalyIndicator(lookback_hours=72, min_points=24)
        assert indicator.requires_funding_history is True
        result = indicator.evaluate(_ctx(sample=sample, funding=old))
        assert result.evaluated is False
        assert result.values["history_points"] == 0


class TestOiCap:
    def test_flags(self):
        assert evaluate_oi_cap(True).raw is True
        assert evaluate_oi_cap(False).raw is False
        assert evaluate_oi_cap(None).evaluated is False

    def test_indicator(self):
        sample = MetricSample(instrument="BTC", timestamp=NOW, at_open_interest_cap=True)
        indicator = OiCapIndicator()
        assert indicator.role == IndicatorRole.STRESS
        assert indicator.evaluate(_ctx(sample=sample)).raw is True
