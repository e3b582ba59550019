"""
Unit tests for the universe gate and the decision table.
"""

from __future__ import annotations

import pytest

from crash_risk.domain.models import (
    Direction,
    IndicatorOutcome,
    IndicatorRole,
    MetricSample,
    RiskState,
    SignalResult,
    StructureState,
)
from crash_risk.domain.rules import (
    MODE_CONSENSUS,
    MODE_PILLARS,
    RULE_ALL_ACTIVE,
    RULE_CROWDING_NOT_CONFIRMED,
    RULE_FALLBACK,
    RULE_NONE_ACTIVE,
    RULE_SOME_ACTIVE,
    RULE_STRUCTURE_BROKEN,
    RULE_STRUCTURE_INTACT,
    RULE_STRUCTURE_WEAKENING,
    RULE_UNIVERSE_FAILED,
    check_universe,
    decide_risk_state,
    is_fragile,
)

MIN_VOL = 25_000_000
MIN_OI = 10_000_000


def _sample(volume=100_000_000.0, oi=50_000_000.0) -> MetricSample:
    return MetricSample(instrument="BTC", timestamp=0.0, day_notional_volume=volume, open_interest=oi)


def _eligible():
    return check_universe(_sample(), MIN_VOL, MIN_OI)


def crowding(confirmed=True, direction=Direction.LONG) -> IndicatorOutcome:
    return IndicatorOutcome(
        result=SignalResult(name="crowding", evaluated=True, raw=confirmed, direction=direction),
        role=IndicatorRole.GATE,
        confirmed=confirmed,
    )


def structure(classification: StructureState | None) -> IndicatorOutcome:
    if classification is None:
        result = SignalResult.not_evaluated("structure", "anchor price unavailable")
    else:
        result = SignalResult(name="structure", evaluated=True, classification=classification)
    return IndicatorOutcome(result=result, role=IndicatorRole.CLASSIFIER, confirmed=result.evaluated, debounced=False)


def stress(name="liquidity", confirmed=True, evaluated=True) -> IndicatorOutcome:
    if evaluated:
        result = SignalResult(name=name, evaluated=True, raw=confirmed)
    else:
        result = SignalResult.not_evaluated(name, "insufficient history")
    return IndicatorOutcome(result=result, role=IndicatorRole.STRESS, confirmed=confirmed and evaluated)


class TestUniverseGate:
    """Strictly above both minimums."""

    def test_passes(self):
        check = _eligible()
        assert check.eligible is True
        assert check.reason is None

    def test_low_volume_fails(self):
        check = check_universe(_sample(volume=5_000_000), MIN_VOL, MIN_OI)
        assert check.eligible is False
        assert "volume" in check.reason

    def test_threshold_is_strict(self):
        assert check_universe(_sample(volume=MIN_VOL), MIN_VOL, MIN_OI).eligible is False
        assert check_universe(_sample(oi=MIN_OI), MIN_VOL, MIN_OI).eligible is False

    def test_missing_values_fail(self):
        assert check_universe(_sample(volume=None), MIN_VOL, MIN_OI).eligible is False
        assert check_universe(_sample(oi=None), MIN_VOL, MIN_OI).eligible is False


class TestPillarsTable:
    """The pillars decision table, row by row."""

    def test_universe_failed_is_unsupported_regardless(self):
        failed = check_universe(_sample(volume=1), MIN_VOL, MIN_OI)
        decision = decide_risk_state(failed, [crowding(), structure(StructureState.BROKEN), stress()])
        assert decision.computed_state == RiskState.UNSUPPORTED
        assert decision.rule == RULE_UNIVERSE_FAILED

    def test_crowding_not_confirmed_is_green(self):
        decision = decide_risk_state(_eligible(), [crowding(False), structure(None), stress()])
        assert decision.computed_state == RiskState.GREEN
        assert decision.rule == RULE_CROWDING_NOT_CONFIRMED

    def test_intact_is_green(self):
        decision = decide_risk_state(_eligible(), [crowding(), structure(StructureState.INTACT), stress()])
        assert decision.computed_state == RiskState.GREEN
        assert decision.rule == RULE_STRUCTURE_INTACT

    def test_weakening_not_fragile_is_orange(self):
        decision = decide_risk_state(
            _eligible(), [crowding(), structure(StructureState.WEAKENING), stress(confirmed=False)]
        )
        assert decision.computed_state == RiskState.ORANGE
        assert decision.rule == RULE_STRUCTURE_WEAKENING

    def test_weakening_and_fragile_falls_back_to_green(self):
        decision = decide_risk_state(_eligible(), [crowding(), structure(StructureState.WEAKENING), stress()])
        assert decision.computed_state == RiskState.GREEN
        assert decision.rule == RULE_FALLBACK

    def test_broken_and_fragile_is_red(self):
        decision = decide_risk_state(_eligible(), [crowding(), structure(StructureState.BROKEN), stress()])
        assert decision.computed_state == RiskState.RED
        assert decision.rule == RULE_STRUCTURE_BROKEN
        assert decision.clamped is False

    def test_broken_not_fragile_falls_back_to_green(self):
        decision = decide_risk_state(
            _eligible(), [crowding(), structure(StructureState.BROKEN), stress(confirmed=False)]
        )
        assert decision.computed_state == RiskState.GREEN
        assert decision.rule == RULE_FALLBACK

    def test_structure_unavailable_is_fallback(self):
        decision = decide_risk_state(_eligible(), [crowding(), structure(None), stress()])
        assert decision.computed_state == RiskState.GREEN
        assert decision.rule == RULE_FALLBACK

    def test_all_stress_indicators_must_be_confirmed(self):
        outcomes = [
            crowding(),
            structure(StructureState.BROKEN),
            stress("liquidity"),
            stress("oi_cap", confirmed=False),
        ]
        assert is_fragile(outcomes) is False
        assert decide_risk_state(_eligible(), outcomes).computed_state == RiskState.GREEN

    def test_no_stress_indicators_is_not_fragile(self):
        assert is_fragile([crowding(), structure(StructureState.BROKEN)]) is False

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            decide_risk_state(_eligible(), [], mode="vote")


class TestSafetyClamp:
    """Missing data never manufactures RED."""

    def test_red_clamped_when_a_stress_indicator_was_not_evaluated(self):
        outcomes = [
            crowding(),
            structure(StructureState.BROKEN),
            stress("liquidity"),
            # confirmed from earlier ticks, but not evaluated now
            IndicatorOutcome(
                result=SignalResult.not_evaluated("oi_cap", "open interest cap status unavailable"),
                role=IndicatorRole.STRESS,
                confirmed=True,
            ),
        ]
        decision = decide_risk_state(_eligible(), outcomes)
        assert decision.computed_state == RiskState.GREEN
        assert decision.clamped is True
        assert "oi_cap" in decision.clamp_reason

    def test_consensus_red_clamped_on_missing_stress_data(self):
        outcomes = [
            crowding(),
            IndicatorOutcome(
                result=SignalResult.not_evaluated("liquidity", "insufficient history"),
                role=IndicatorRole.STRESS,
                confirmed=True,
            ),
        ]
        decision = decide_risk_state(_eligible(), outcomes, mode=MODE_CONSENSUS)
        assert decision.computed_state == RiskState.GREEN
        assert decision.clamped is True


class TestConsensus:
    """Share of confirmed debounced indicators."""

    def test_none_active(self):
        decision = decide_risk_state(_eligible(), [crowding(False), stress(confirmed=False)], MODE_CONSENSUS)
        assert decision.computed_state == RiskState.GREEN
        assert decision.rule == RULE_NONE_ACTIVE

    def test_some_active(self):
        decision = decide_risk_state(_eligible(), [crowding(), stress(confirmed=False)], MODE_CONSENSUS)
        assert decision.computed_state == RiskState.ORANGE
        assert decision.rule == RULE_SOME_ACTIVE

    def test_all_active(self):
        outcomes = [stress("funding_anomaly"), stress("oi_cap"), stress("liquidity")]
        decision = decide_risk_state(_eligible(), outcomes, MODE_CONSENSUS)
        assert decision.computed_state == RiskState.RED
        assert decision.rule == RULE_ALL_ACTIVE

    def test_no_indicators(self):
        assert decide_risk_state(_eligible(), [], MODE_CONSENSUS).computed_state == RiskState.GREEN

    def test_pillars_is_default(self):
        assert decide_risk_state(_eligible(), [crowding(False)]).mode == MODE_PILLARS
