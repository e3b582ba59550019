"""
Unit tests for EngineState copy-on-write and persistence payloads.
"""

from __future__ import annotations

import pytest

from crash_risk.domain.models import Metric, RiskState
from crash_risk.services.engine.state import PAYLOAD_VERSION, EngineState
from crash_risk.services.statistics.rolling import RollingStatisticsStore
from crash_risk.services.confirmation import ConfirmationTracker
from crash_risk.services.hysteresis import HysteresisController

NOW = 1_700_000_100.0


def _state() -> EngineState:
    state = EngineState(RollingStatisticsStore(), ConfirmationTracker(2), HysteresisController())
    for k, value in enumerate([9.0, 10.0, 11.0, 12.0]):
        state.statistics.ingest("BTC", Metric.OPEN_INTEREST, NOW - (3 - k) * 900, value)
    state.price_series("BTC").add(NOW, 100.0)
    state.confirmation.observe("BTC", "crowding", True)
    state.hysteresis.apply("BTC", RiskState.ORANGE, NOW)
    return state


class TestEngineState:
    """Clone isolation and payload round trip."""

    def test_clone_is_deep(self):
        state = _state()
        working = state.clone()
        working.statistics.ingest("BTC", Metric.OPEN_INTEREST, NOW, 1_000.0)
        working.price_series("BTC").add(NOW + 1, 1.0)
        working.confirmation.observe("BTC", "crowding", False)
        working.hysteresis.apply("BTC", RiskState.RED, NOW + 1)

        assert state.statistics.current_average("BTC", Metric.OPEN_INTEREST) == pytest.approx(12.0)
        assert len(state.prices["BTC"]) == 1
        assert state.confirmation.peek("BTC", "crowding").consecutive_hits == 1
        assert state.hysteresis.record("BTC").effective_state == RiskState.ORANGE

    def test_payload_round_trip(self):
        state = _state()
        payload = state.to_payload("BTC")
        assert payload["version"] == PAYLOAD_VERSION

        restored = EngineState(RollingStatisticsStore(), ConfirmationTracker(2), HysteresisController())
        restored.restore("BTC", payload)

        assert restored.statistics.zscore("BTC", Metric.OPEN_INTEREST, NOW) == pytest.approx(2.0)
        assert restored.prices["BTC"].latest() == (NOW, 100.0)
        assert restored.confirmation.peek("BTC", "crowding").consecutive_hits == 1
        assert restored.hysteresis.record("BTC").effective_state == RiskState.ORANGE
        assert restored.instruments() == ["BTC"]

    def test_restore_rejects_unknown_version(self):
        state = EngineState(RollingStatisticsStore(), ConfirmationTracker(2), HysteresisController())
        with pytest.raises(ValueError):
            state.restore("BTC", {"version": 99})
        with pytest.raises(ValueError):
            state.restore("BTC", ["not", "a", "dict"])

    def test_bad_section_leaves_state_untouched(self):
        state = _state()
        payload = state.to_payload("BTC")
        payload["risk_state"] = {"effective_state": "PURPLE", "entered_at": 0}

        with pytest.raises(ValueError):
            state.restore("BTC", payload | {"buckets": {}})
        # buckets were not wiped by the failed restore
        assert state.statistics.zscore("BTC", Metric.OPEN_INTEREST, NOW) == pytest.approx(2.0)

    @pytest.mark.parametrize(
        "section, value",
        [
            ("buckets", ["not", "a", "mapping"]),
            ("confirmation", "crowding"),
            ("risk_state", ["ORANGE"]),
            ("prices", {"ts": 1.0}),
        ],
    )
    def test_wrongly_shaped_section_rejected(self, section, value):
        state = _state()
        payload = state.to_payload("BTC") | {section: value}

        with pytest.raises(ValueError, match=section):
            state.restore("BTC", payload)
        assert state.statistics.zscore("BTC", Metric.OPEN_INTEREST, NOW) == pytest.approx(2.0)

    @pytest.mark.parametrize(
        "section, value",
        [
            ("buckets", {"open_interest": [[NOW]]}),
            ("confirmation", {"crowding": "hit"}),
            ("prices", [[NOW]]),
        ],
    )
    def test_malformed_rows_rejected(self, section, value):
        state = EngineState(RollingStatisticsStore(), ConfirmationTracker(2), HysteresisController())

        with pytest.raises(ValueError, match="malformed"):
            state.restore("BTC", {"version": PAYLOAD_VERSION, section: value})
        assert state.instruments() == []
