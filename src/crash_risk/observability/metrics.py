"""
Prometheus metrics for observability.

Provides metrics for tick outcomes, feed health and the published risk map.

Usage:
    from crash_risk.observability.metrics import record_tick, update_risk_states

    record_tick(outcome="published", duration_seconds=0.42)
    update_risk_states({"BTC": RiskState.GREEN})
"""

from __future__ import annotations

from collections.abc import Mapping

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from crash_risk.domain.models import RiskState

# =============================================================================
# Metric Definitions
# =============================================================================

ticks_total = Counter(
    "crash_risk_ticks_total",
    "Total engine ticks by outcome",
    ["outcome"],  # outcome: published, abandoned, skipped_overlap, cancelled, failed
)

tick_duration_seconds = Histogram(
    "crash_risk_tick_duration_seconds",
    "Duration of engine ticks in seconds (fetch + evaluation)",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0, 30.0),
)

feed_errors_total = Counter(
    "crash_risk_feed_errors_total",
    "Feed failures per instrument",
    ["instrument"],
)

risk_state = Gauge(
    "crash_risk_state",
    "Published risk state (1 for the current state, 0 otherwise)",
    ["instrument", "state"],
)

stale_overrides_total = Counter(
    "crash_risk_stale_overrides_total",
    "Number of stale episodes in which the watchdog degraded the published map",
)

state_changes_total = Counter(
    "crash_risk_state_changes_total",
    "Effective state transitions",
    ["from_state", "to_state"],
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_tick(outcome: str, duration_seconds: float | None = None) -> None:
    """
    Record one tick.

    Args:
        outcome: "published", "abandoned", "skipped_overlap", "cancelled" or "failed"
        duration_seconds: Wall time of the tick (omitted for skipped ticks)
    """
    ticks_total.labels(outcome=outcome).inc()
    if duration_seconds is not None:
        tick_duration_seconds.observe(duration_seconds)


def record_feed_error(instrument: str) -> None:
    feed_errors_total.labels(instrument=instrument).inc()


def update_risk_states(states: Mapping[str, RiskState]) -> None:
    """Set the one-hot state gauge for every published instrument."""
    for instrument, current in states.items():
        for state in RiskState:
            risk_state.labels(instrument=instrument, state=state.value).set(1 if state == current else 0)


def record_state_change(from_state: RiskState | None, to_state: RiskState) -> None:
    state_changes_total.labels(
        from_state=from_state.value if from_state else "NONE",
        to_state=to_state.value,
    ).inc()


def record_stale_override() -> None:
    stale_overrides_total.inc()


def start_metrics_server(port: int, addr: str = "0.0.0.0") -> None:
    """Expose /metrics over HTTP (prometheus_client exporter thread)."""
    start_http_server(port, addr=addr)
