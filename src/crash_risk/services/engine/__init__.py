"""Engine orchestration: state, per-instrument pipeline, scheduler."""

from crash_risk.services.engine.engine import RiskEngine
from crash_risk.services.engine.pipeline import RiskPipeline
from crash_risk.services.engine.state import EngineState

__all__ = ["EngineState", "RiskEngine", "RiskPipeline"]
