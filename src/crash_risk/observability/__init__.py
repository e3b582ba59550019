"""Observability: logging, metrics."""

from crash_risk.observability.logging import (
    LOG_TAG_HEALTH,
    LOG_TAG_STALE,
    LOG_TAG_STATE,
    LOG_TAG_TICK,
    get_logger,
    setup_logging,
)
from crash_risk.observability.metrics import (
    record_feed_error,
    record_stale_override,
    record_state_change,
    record_tick,
    start_metrics_server,
    update_risk_states,
)

__all__ = [
    # Logging
    "setup_logging",
    "get_logger",
    "LOG_TAG_TICK",
    "LOG_TAG_STATE",
    "LOG_TAG_STALE",
    "LOG_TAG_HEALTH",
    # Metrics helpers
    "record_tick",
    "record_feed_error",
    "record_stale_override",
    "record_state_change",
    "start_metrics_server",
    "update_risk_states",
]
