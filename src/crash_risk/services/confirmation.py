"""
Confirmation Layer.

Generic N-consecutive-hits debounce applied to each raw indicator, per
instrument. Suppresses single-sample noise before it reaches the decision
engine.

Two counting units are supported:
- tick: every observation counts.
- event: observations carry an integer event key (e.g. the 15-minute bucket
  index). Repeated observations of the same event replace the previous
  reading; a gap between keys breaks the streak.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class ConfirmationState:
    """Per instrument, per indicator streak."""

    consecutive_hits: int = 0
    last_raw: bool = False
    last_event_key: int | None = None
    # Streak as it stood before the current event (event unit only)
    hits_before_event: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "consecutive_hits": self.consecutive_hits,
            "last_raw": self.last_raw,
            "last_event_key": self.last_event_key,
            "hits_before_event": self.hits_before_event,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfirmationState:
        key = data.get("last_event_key")
        return cls(
            consecutive_hits=int(data.get("consecutive_hits", 0)),
            last_raw=bool(data.get("last_raw", False)),
            last_event_key=int(key) if key is not None else None,
            hits_before_event=int(data.get("hits_before_event", 0)),
        )


@dataclass(frozen=True, slots=True)
class ConfirmationResult:
    confirmed: bool
    consecutive_hits: int
    required_hits: int


class ConfirmationTracker:
    """
    Debounce counters for every (instrument, indicator) pair.

    Invariants: the count resets to 0 on any false reading and saturates at
    `required_hits`.
    """

    def __init__(self, required_hits: int = 2):
        if required_hits < 1:
            raise ValueError("required_hits must be >= 1")
        self.required_hits = required_hits
        self._states: dict[str, dict[str, ConfirmationState]] = {}

    def state(self, instrument: str, indicator: str) -> ConfirmationState | None:
        return self._states.get(instrument, {}).get(indicator)

    def peek(self, instrument: str, indicator: str) -> ConfirmationResult:
        """Current confirmation without observing anything."""
        st = self.state(instrument, indicator)
        hits = st.consecutive_hits if st else 0
        return ConfirmationResult(hits >= self.required_hits, hits, self.required_hits)

    def observe(
        self,
        instrument: str,
        indicator: str,
        raw: bool,
        event_key: int | None = None,
    ) -> ConfirmationResult:
        """Feed one raw reading; returns the confirmed value after it."""
        st = self._states.setdefault(instrument, {}).setdefault(indicator, ConfirmationState())

        if event_key is None:
            base = st.consecutive_hits
        elif st.last_event_key == event_key:
            # Same sampling event observed again: replace its reading
            base = st.hits_before_event
        elif st.last_event_key is not None and event_key == st.last_event_key + 1:
            base = st.consecutive_hits
            st.hits_before_event = base
        else:
            base = 0
            st.hits_before_event = 0

        st.consecutive_hits = min(base + 1, self.required_hits) if raw else 0
        st.last_raw = raw
        if event_key is not None:
            st.last_event_key = event_key

        return ConfirmationResult(
            confirmed=st.consecutive_hits >= self.required_hits,
            consecutive_hits=st.consecutive_hits,
            required_hits=self.required_hits,
        )

    def clone(self) -> ConfirmationTracker:
        copy = ConfirmationTracker(self.required_hits)
        copy._states = {
            instrument: {
                name: ConfirmationState(s.consecutive_hits, s.last_raw, s.last_event_key, s.hits_before_event)
                for name, s in per.items()
            }
            for instrument, per in self._states.items()
        }
        return copy

    def to_payload(self, instrument: str) -> dict[str, dict[str, Any]]:
        return {name: s.to_dict() for name, s in self._states.get(instrument, {}).items()}

    def restore(self, instrument: str, payload: dict[str, Any]) -> None:
        self._states[instrument] = {
            name: ConfirmationState.from_dict(data) for name, data in (payload or {}).items()
        }
