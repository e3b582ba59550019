"""
Unit tests for the confirmation (debounce) layer.
"""

from __future__ import annotations

import pytest

from crash_risk.services.confirmation import ConfirmationState, ConfirmationTracker


class TestTickUnit:
    """Every observation counts."""

    def test_two_consecutive_hits_confirm(self):
        tracker = ConfirmationTracker(required_hits=2)
        assert tracker.observe("BTC", "crowding", True).confirmed is False
        result = tracker.observe("BTC", "crowding", True)
        assert result.confirmed is True
        assert result.consecutive_hits == 2

    def test_true_then_false_never_confirms(self):
        tracker = ConfirmationTracker(required_hits=2)
        assert tracker.observe("BTC", "crowding", True).confirmed is False
        result = tracker.observe("BTC", "crowding", False)
        assert result.confirmed is False
        assert result.consecutive_hits == 0

    def test_false_resets_a_confirmed_streak(self):
        tracker = ConfirmationTracker(required_hits=2)
        for _ in range(3):
            tracker.observe("BTC", "liquidity", True)
        assert tracker.observe("BTC", "liquidity", False).confirmed is False
        assert tracker.observe("BTC", "liquidity", True).confirmed is False

    def test_count_saturates(self):
        tracker = ConfirmationTracker(required_hits=2)
        for _ in range(5):
            result = tracker.observe("BTC", "crowding", True)
        assert result.consecutive_hits == 2

    def test_instruments_and_indicators_are_independent(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True)
        tracker.observe("ETH", "crowding", True)
        tracker.observe("BTC", "liquidity", False)
        assert tracker.observe("BTC", "crowding", True).confirmed is True
        assert tracker.peek("BTC", "liquidity").consecutive_hits == 0

    def test_invalid_required_hits(self):
        with pytest.raises(ValueError):
            ConfirmationTracker(required_hits=0)


class TestEventUnit:
    """Observations keyed by sampling event (bucket index)."""

    def test_same_event_replaces_reading(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True, event_key=10)
        # Many ticks inside the same bucket do not add up
        assert tracker.observe("BTC", "crowding", True, event_key=10).confirmed is False
        assert tracker.observe("BTC", "crowding", True, event_key=11).confirmed is True

    def test_same_event_false_then_true_again(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True, event_key=10)
        tracker.observe("BTC", "crowding", True, event_key=11)
        # Re-reading event 11 as false drops confirmation, reading it true again restores it
        assert tracker.observe("BTC", "crowding", False, event_key=11).confirmed is False
        assert tracker.observe("BTC", "crowding", True, event_key=11).confirmed is True

    def test_gap_between_events_resets(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True, event_key=10)
        assert tracker.observe("BTC", "crowding", True, event_key=12).confirmed is False


class TestPersistence:
    """Tests for clone/payload/restore."""

    def test_peek_does_not_mutate(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True)
        tracker.peek("BTC", "crowding")
        assert tracker.state("BTC", "crowding").consecutive_hits == 1

    def test_clone_is_independent(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True)
        copy = tracker.clone()
        copy.observe("BTC", "crowding", False)
        assert tracker.peek("BTC", "crowding").consecutive_hits == 1

    def test_payload_round_trip(self):
        tracker = ConfirmationTracker(required_hits=2)
        tracker.observe("BTC", "crowding", True, event_key=7)
        restored = ConfirmationTracker(required_hits=2)
        restored.restore("BTC", tracker.to_payload("BTC"))

        assert restored.observe("BTC", "crowding", True, event_key=8).confirmed is True

    def test_state_from_dict_defaults(self):
        state = ConfirmationState.from_dict({})
        assert state.consecutive_hits == 0
        assert state.last_event_key is None
