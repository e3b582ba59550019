"""
Domain Rules: universe gate and risk-state decision.

Pure functions that map eligibility and confirmed indicators to a computed
risk state. Hysteresis is applied afterwards by the engine.
"""

from __future__ import annotations

from collections.abc import Sequence

from crash_risk.domain.models import (
    Decision,
    IndicatorOutcome,
    IndicatorRole,
    MetricSample,
    RiskState,
    StructureState,
    UniverseCheck,
)

# =============================================================================
# Names
# =============================================================================
MODE_PILLARS = "pillars"
MODE_CONSENSUS = "consensus"
DECISION_MODES = (MODE_PILLARS, MODE_CONSENSUS)

CROWDING = "crowding"
STRUCTURE = "structure"

RULE_UNIVERSE_FAILED = "universe_filter_failed"
RULE_CROWDING_NOT_CONFIRMED = "crowding_not_confirmed"
RULE_STRUCTURE_INTACT = "structure_intact"
RULE_STRUCTURE_WEAKENING = "structure_weakening"
RULE_STRUCTURE_BROKEN = "structure_broken_liquidity_fragile"
RULE_FALLBACK = "fallback"
RULE_NONE_ACTIVE = "no_indicators_active"
RULE_SOME_ACTIVE = "some_indicators_active"
RULE_ALL_ACTIVE = "all_indicators_active"

REASON_UNIVERSE_FAILED = "universe filter failed"


# =============================================================================
# Universe Gate
# =============================================================================


def check_universe(
    sample: MetricSample,
    min_day_notional_volume: float,
    min_open_interest: float,
) -> UniverseCheck:
    """
    Eligibility gate: strictly above both minimums.

    A missing volume or open interest fails the gate; an instrument we cannot
    size is not an instrument we can score.
    """
    volume = sample.day_notional_volume
    oi = sample.open_interest

    reason: str | None = None
    if volume is None:
        reason = "day notional volume unavailable"
    elif oi is None:
        reason = "open interest unavailable"
    elif volume <= min_day_notional_volume:
        reason = f"day notional volume {volume:,.0f} <= {min_day_notional_volume:,.0f}"
    elif oi <= min_open_interest:
        reason = f"open interest {oi:,.0f} <= {min_open_interest:,.0f}"

    return UniverseCheck(
        eligible=reason is None,
        day_notional_volume=volume,
        open_interest=oi,
        min_day_notional_volume=min_day_notional_volume,
        min_open_interest=min_open_interest,
        reason=reason,
    )


# =============================================================================
# Decision
# =============================================================================


def _by_name(outcomes: Sequence[IndicatorOutcome], name: str) -> IndicatorOutcome | None:
    for outcome in outcomes:
        if outcome.name == name:
            return outcome
    return None


def _stress(outcomes: Sequence[IndicatorOutcome]) -> list[IndicatorOutcome]:
    return [o for o in outcomes if o.role == IndicatorRole.STRESS]


def is_fragile(outcomes: Sequence[IndicatorOutcome]) -> bool:
    """Every configured stress indicator is confirmed (False when none configured)."""
    stress = _stress(outcomes)
    return bool(stress) and all(o.confirmed for o in stress)


def _decide_pillars(outcomes: Sequence[IndicatorOutcome]) -> tuple[RiskState, str]:
    crowding = _by_name(outcomes, CROWDING)
    if crowding is None or not crowding.confirmed:
        return RiskState.GREEN, RULE_CROWDING_NOT_CONFIRMED

    structure = _by_name(outcomes, STRUCTURE)
    classification = structure.result.classification if structure else None
    fragile = is_fragile(outcomes)

    if classification == StructureState.INTACT:
        return RiskState.GREEN, RULE_STRUCTURE_INTACT
    if classification == StructureState.WEAKENING and not fragile:
        return RiskState.ORANGE, RULE_STRUCTURE_WEAKENING
    if classification == StructureState.BROKEN and fragile:
        return RiskState.RED, RULE_STRUCTURE_BROKEN
    return RiskState.GREEN, RULE_FALLBACK


def _decide_consensus(outcomes: Sequence[IndicatorOutcome]) -> tuple[RiskState, str]:
    voters = [o for o in outcomes if o.debounced]
    active = sum(1 for o in voters if o.confirmed)
    if not voters or active == 0:
        return RiskState.GREEN, RULE_NONE_ACTIVE
    if active == len(voters):
        return RiskState.RED, RULE_ALL_ACTIVE
    return RiskState.ORANGE, RULE_SOME_ACTIVE


def _clamp_reason(outcomes: Sequence[IndicatorOutcome], mode: str) -> str | None:
    """Reason a RED must be forced down, or None when RED is fully supported."""
    if mode == MODE_PILLARS:
        structure = _by_name(outcomes, STRUCTURE)
        if structure is None or structure.result.classification is None:
            return "structure classification unavailable"
    missing = [o.name for o in _stress(outcomes) if not o.result.evaluated]
    if missing:
        return f"stress indicators not evaluated: {', '.join(missing)}"
    return None


def decide_risk_state(
    universe: UniverseCheck,
    outcomes: Sequence[IndicatorOutcome],
    mode: str = MODE_PILLARS,
) -> Decision:
    """
    Map universe eligibility and confirmed indicators to a computed state.

    Args:
        universe: Result of the eligibility gate.
        outcomes: Indicator outcomes after confirmation.
        mode: "pillars" (crowding -> structure -> stress table) or
              "consensus" (share of confirmed debounced indicators).

    Returns:
        Decision with the matching rule; a RED lacking supporting data is
        clamped to GREEN.
    """
    if mode not in DECISION_MODES:
        raise ValueError(f"Unknown decision mode: {mode}")

    if not universe.eligible:
        return Decision(mode=mode, computed_state=RiskState.UNSUPPORTED, rule=RULE_UNIVERSE_FAILED)

    if mode == MODE_PILLARS:
        state, rule = _decide_pillars(outcomes)
    else:
        state, rule = _decide_consensus(outcomes)

    if state == RiskState.RED:
        reason = _clamp_reason(outcomes, mode)
        if reason is not None:
            return Decision(
                mode=mode,
                computed_state=RiskState.GREEN,
                rule=rule,
                clamped=True,
                clamp_reason=reason,
            )

    return Decision(mode=mode, computed_state=state, rule=rule)
