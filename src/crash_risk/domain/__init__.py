"""Domain layer: models, events, errors and pure decision rules."""

from crash_risk.domain.errors import (
    ConfigurationError,
    DomainError,
    FeedError,
    FeedUnavailableError,
    MalformedPayloadError,
    StoreError,
    ValidationError,
)
from crash_risk.domain.events import (
    DomainEvent,
    FeedStaleDetected,
    RiskStateChanged,
    TickCompleted,
)
from crash_risk.domain.models import (
    STALE_MESSAGE,
    DebugTrace,
    Decision,
    Direction,
    FundingPoint,
    HysteresisOutcome,
    IndicatorOutcome,
    IndicatorRole,
    IndicatorStatus,
    LiquiditySource,
    Metric,
    MetricSample,
    OrderBookSnapshot,
    RiskPerInstrument,
    RiskState,
    RiskStateRecord,
    SignalResult,
    StructureState,
    UniverseCheck,
)

__all__ = [
    # Errors
    "DomainError",
    "ValidationError",
    "ConfigurationError",
    "FeedError",
    "FeedUnavailableError",
    "MalformedPayloadError",
    "StoreError",
    # Events
    "DomainEvent",
    "RiskStateChanged",
    "FeedStaleDetected",
    "TickCompleted",
    # Models
    "STALE_MESSAGE",
    "DebugTrace",
    "Decision",
    "Direction",
    "FundingPoint",
    "HysteresisOutcome",
    "IndicatorOutcome",
    "IndicatorRole",
    "IndicatorStatus",
    "LiquiditySource",
    "Metric",
    "MetricSample",
    "OrderBookSnapshot",
    "RiskPerInstrument",
    "RiskState",
    "RiskStateRecord",
    "SignalResult",
    "StructureState",
    "UniverseCheck",
]
