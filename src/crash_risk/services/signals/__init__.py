"""Signal evaluators: pure functions wrapped by configurable indicators."""

from crash_risk.services.signals.base import Indicator, SignalContext
from crash_risk.services.signals.crowding import CrowdingIndicator, evaluate_crowding
from crash_risk.services.signals.funding_anomaly import FundingAnomalyIndicator, evaluate_funding_anomaly
from crash_risk.services.signals.liquidity import (
    LiquidityIndicator,
    evaluate_execution_cost,
    evaluate_order_book,
)
from crash_risk.services.signals.oi_cap import OiCapIndicator, evaluate_oi_cap
from crash_risk.services.signals.registry import build_indicators
from crash_risk.services.signals.structure import StructureIndicator, classify_structure, evaluate_structure

__all__ = [
    "Indicator",
    "SignalContext",
    "CrowdingIndicator",
    "StructureIndicator",
    "LiquidityIndicator",
    "FundingAnomalyIndicator",
    "OiCapIndicator",
    "build_indicators",
    "classify_structure",
    "evaluate_crowding",
    "evaluate_structure",
    "evaluate_execution_cost",
    "evaluate_order_book",
    "evaluate_funding_anomaly",
    "evaluate_oi_cap",
]
