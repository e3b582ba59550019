"""
Canonical Domain Models.

Market observations, indicator outcomes, and the published risk records.
Statistics run on floats (means and deviations, not money); all timestamps
are epoch seconds.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from crash_risk.utils.numbers import safe_float

# =============================================================================
# ENUMS
# =============================================================================


class RiskState(str, Enum):
    """Discrete risk signal per instrument."""

    GREEN = "GREEN"
    ORANGE = "ORANGE"
    RED = "RED"
    UNSUPPORTED = "UNSUPPORTED"

    @property
    def rank(self) -> int:
        """Severity rank used by the hysteresis controller."""
        return _STATE_RANK[self]

    @property
    def message(self) -> str:
        return STATE_MESSAGES[self]


_STATE_RANK = {
    RiskState.RED: 3,
    RiskState.ORANGE: 2,
    RiskState.GREEN: 1,
    RiskState.UNSUPPORTED: 0,
}

STATE_MESSAGES = {
    RiskState.GREEN: "Market is stable. Trade as planned.",
    RiskState.ORANGE: "Risk is rising. Consider reducing size or tightening your stop.",
    RiskState.RED: "High crash risk. Protect capital or exit.",
    RiskState.UNSUPPORTED: "Market too unstable for reliable risk signals.",
}

STALE_MESSAGE = "Risk data unavailable: feed stale."


class Direction(str, Enum):
    """Side the market is crowded on."""

    LONG = "LONG"
    SHORT = "SHORT"


class StructureState(str, Enum):
    """Short-horizon price structure relative to the crowded side."""

    INTACT = "INTACT"
    WEAKENING = "WEAKENING"
    BROKEN = "BROKEN"


class IndicatorRole(str, Enum):
    """How the decision engine consumes an indicator."""

    GATE = "gate"  # must be confirmed before anything else matters
    CLASSIFIER = "classifier"  # produces a classification, not a boolean
    STRESS = "stress"  # boolean fragility signal


class IndicatorStatus(str, Enum):
    EVALUATED = "evaluated"
    NOT_EVALUATED = "not_evaluated"
    SKIPPED = "skipped"


class LiquiditySource(str, Enum):
    EXECUTION_COST = "execution_cost"
    ORDER_BOOK = "order_book"
    NONE = "none"


class Metric(str, Enum):
    """Bucketed metrics kept by the rolling statistics store."""

    OPEN_INTEREST = "open_interest"
    FUNDING_RATE = "funding_rate"
    EXECUTION_COST = "execution_cost"
    SPREAD = "spread"
    DEPTH = "depth"


# =============================================================================
# OBSERVATIONS
# =============================================================================


@dataclass(frozen=True, slots=True)
class OrderBookSnapshot:
    """Top-of-book summary with near-mid notional depth."""

    best_bid: float | None = None
    best_ask: float | None = None
    mid_price: float | None = None
    spread_pct: float | None = None
    depth_notional: float | None = None

    def __post_init__(self) -> None:
        for f in fields(self):
            object.__setattr__(self, f.name, safe_float(getattr(self, f.name)))

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True, slots=True)
class MetricSample:
    """
    One observation of an instrument.

    Malformed values (non-numeric, NaN, Infinity) are normalized to None so
    that downstream evaluators treat them as absent instead of as zero.
    """

    instrument: str
    timestamp: float
    mark_price: float | None = None
    funding_rate: float | None = None
    open_interest: float | None = None
    day_notional_volume: float | None = None
    execution_cost_pct: float | None = None
    order_book: OrderBookSnapshot | None = None
    at_open_interest_cap: bool | None = None

    def __post_init__(self) -> None:
        for name in (
            "mark_price",
            "funding_rate",
            "open_interest",
            "day_notional_volume",
            "execution_cost_pct",
        ):
            object.__setattr__(self, name, safe_float(getattr(self, name)))
        if self.order_book is not None and not isinstance(self.order_book, OrderBookSnapshot):
            object.__setattr__(self, "order_book", None)
        if self.at_open_interest_cap is not None and not isinstance(self.at_open_interest_cap, bool):
            object.__setattr__(self, "at_open_interest_cap", None)

    @classmethod
    def empty(cls, instrument: str, timestamp: float) -> MetricSample:
        return cls(instrument=instrument, timestamp=timestamp)

    def raw_snapshot(self) -> dict[str, Any]:
        """Raw metrics as published next to the risk state."""
        return {
            "mark_price": self.mark_price,
            "funding_rate": self.funding_rate,
            "open_interest": self.open_interest,
            "day_notional_volume": self.day_notional_volume,
            "execution_cost_pct": self.execution_cost_pct,
            "order_book": self.order_book.to_dict() if self.order_book else None,
            "at_open_interest_cap": self.at_open_interest_cap,
        }


@dataclass(frozen=True, slots=True)
class FundingPoint:
    """Funding history record."""

    timestamp: float
    rate: float


# =============================================================================
# INDICATORS & DECISIONS
# =============================================================================


@dataclass(frozen=True, slots=True)
class SignalResult:
    """Raw output of one signal evaluator."""

    name: str
    evaluated: bool
    raw: bool = False
    direction: Direction | None = None
    classification: StructureState | None = None
    source: str | None = None
    reason: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    thresholds: dict[str, float] = field(default_factory=dict)
    skipped: bool = False

    @classmethod
    def not_evaluated(cls, name: str, reason: str, **kwargs: Any) -> SignalResult:
        return cls(name=name, evaluated=False, raw=False, reason=reason, **kwargs)

    @classmethod
    def skip(cls, name: str, reason: str) -> SignalResult:
        return cls(name=name, evaluated=False, raw=False, reason=reason, skipped=True)

    @property
    def status(self) -> IndicatorStatus:
        if self.skipped:
            return IndicatorStatus.SKIPPED
        if self.evaluated:
            return IndicatorStatus.EVALUATED
        return IndicatorStatus.NOT_EVALUATED


@dataclass(frozen=True, slots=True)
class IndicatorOutcome:
    """Signal result after the confirmation layer."""

    result: SignalResult
    role: IndicatorRole
    confirmed: bool
    consecutive_hits: int = 0
    required_hits: int = 0
    debounced: bool = True

    @property
    def name(self) -> str:
        return self.result.name

    def to_dict(self) -> dict[str, Any]:
        r = self.result
        return {
            "role": self.role.value,
            "status": r.status.value,
            "raw": r.raw,
            "confirmed": self.confirmed,
            "confirmation": {
                "debounced": self.debounced,
                "count": self.consecutive_hits,
                "required": self.required_hits,
            },
            "reason": r.reason,
            "direction": r.direction.value if r.direction else None,
            "classification": r.classification.value if r.classification else None,
            "source": r.source,
            "values": dict(r.values),
            "thresholds": dict(r.thresholds),
        }


@dataclass(frozen=True, slots=True)
class UniverseCheck:
    """Eligibility gate result (minimum traded volume and open interest)."""

    eligible: bool
    day_notional_volume: float | None
    open_interest: float | None
    min_day_notional_volume: float
    min_open_interest: float
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible": self.eligible,
            "day_notional_volume": self.day_notional_volume,
            "open_interest": self.open_interest,
            "min_day_notional_volume": self.min_day_notional_volume,
            "min_open_interest": self.min_open_interest,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class Decision:
    """Output of the decision engine before hysteresis."""

    mode: str
    computed_state: RiskState
    rule: str
    clamped: bool = False
    clamp_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "computed_state": self.computed_state.value,
            "rule": self.rule,
            "clamped": self.clamped,
            "clamp_reason": self.clamp_reason,
        }


@dataclass(slots=True)
class RiskStateRecord:
    """Cross-tick memory gating state transitions."""

    effective_state: RiskState
    entered_at: float

    def to_dict(self) -> dict[str, Any]:
        return {"effective_state": self.effective_state.value, "entered_at": self.entered_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskStateRecord:
        return cls(
            effective_state=RiskState(data["effective_state"]),
            entered_at=float(data["entered_at"]),
        )


@dataclass(frozen=True, slots=True)
class HysteresisOutcome:
    """Result of applying minimum dwell times to a computed state."""

    previous_state: RiskState | None
    computed_state: RiskState
    effective_state: RiskState
    entered_at: float
    state_change_blocked: bool = False
    cooldown_remaining_seconds: float = 0.0
    bypassed: bool = False

    @property
    def changed(self) -> bool:
        return self.previous_state != self.effective_state

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_state": self.previous_state.value if self.previous_state else None,
            "computed_state": self.computed_state.value,
            "effective_state": self.effective_state.value,
            "entered_at": self.entered_at,
            "state_change_blocked": self.state_change_blocked,
            "cooldown_remaining_seconds": round(self.cooldown_remaining_seconds, 3),
            "bypassed": self.bypassed,
        }


@dataclass(frozen=True, slots=True)
class DebugTrace:
    """Structured justification of a published state."""

    instrument: str
    evaluated_at: float
    universe: UniverseCheck | None = None
    indicators: tuple[IndicatorOutcome, ...] = ()
    decision: Decision | None = None
    hysteresis: HysteresisOutcome | None = None
    stale: bool = False
    stale_info: dict[str, Any] | None = None

    def indicator(self, name: str) -> IndicatorOutcome | None:
        for outcome in self.indicators:
            if outcome.name == name:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "evaluated_at": self.evaluated_at,
            "universe": self.universe.to_dict() if self.universe else None,
            "indicators": {o.name: o.to_dict() for o in self.indicators},
            "decision": self.decision.to_dict() if self.decision else None,
            "hysteresis": self.hysteresis.to_dict() if self.hysteresis else None,
            "stale": self.stale,
            "stale_info": dict(self.stale_info) if self.stale_info else None,
        }


@dataclass(frozen=True, slots=True)
class RiskPerInstrument:
    """Published, immutable risk record for one instrument."""

    instrument: str
    state: RiskState
    message: str
    metrics: dict[str, Any]
    trace: DebugTrace
    updated_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "state": self.state.value,
            "message": self.message,
            "metrics": dict(self.metrics),
            "trace": self.trace.to_dict(),
            "updated_at": self.updated_at,
        }
