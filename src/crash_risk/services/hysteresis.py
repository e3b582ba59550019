"""
Hysteresis Controller.

Enforces a minimum dwell time before the effective state may downgrade in
severity. Upgrades and same-state readings always apply immediately.
"""

from __future__ import annotations

from typing import Any

from crash_risk.domain.models import HysteresisOutcome, RiskState, RiskStateRecord


class HysteresisController:
    """
    Per-instrument RiskStateRecord keeper.

    Args:
        red_hold_seconds: Minimum time in RED before any downgrade.
        orange_hold_seconds: Minimum time in ORANGE before any downgrade.
    """

    def __init__(self, red_hold_seconds: float = 1800, orange_hold_seconds: float = 900):
        self.hold_seconds = {
            RiskState.RED: red_hold_seconds,
            RiskState.ORANGE: orange_hold_seconds,
        }
        self._records: dict[str, RiskStateRecord] = {}

    def min_hold(self, state: RiskState) -> float:
        return self.hold_seconds.get(state, 0.0)

    def record(self, instrument: str) -> RiskStateRecord | None:
        return self._records.get(instrument)

    def apply(self, instrument: str, computed: RiskState, now: float, bypass: bool = False) -> HysteresisOutcome:
        """
        Resolve the effective state for this tick.

        `bypass` forces the computed state through without a cooldown (used
        for universe-filter UNSUPPORTED, which must hold regardless).
        """
        current = self._records.get(instrument)
        previous = current.effective_state if current else None

        if current is None or bypass or computed.rank >= current.effective_state.rank:
            return self._transition(instrument, previous, computed, now, bypassed=bypass and current is not None)

        elapsed = now - current.entered_at
        hold = self.min_hold(current.effective_state)
        if elapsed >= hold:
            return self._transition(instrument, previous, computed, now)

        return HysteresisOutcome(
            previous_state=previous,
            computed_state=computed,
            effective_state=current.effective_state,
            entered_at=current.entered_at,
            state_change_blocked=True,
            cooldown_remaining_seconds=hold - elapsed,
        )

    def _transition(
        self,
        instrument: str,
        previous: RiskState | None,
        computed: RiskState,
        now: float,
        bypassed: bool = False,
    ) -> HysteresisOutcome:
        current = self._records.get(instrument)
        if current is None or current.effective_state != computed:
            # entered_at only moves on an actual change
            current = RiskStateRecord(effective_state=computed, entered_at=now)
            self._records[instrument] = current
        return HysteresisOutcome(
            previous_state=previous,
            computed_state=computed,
            effective_state=computed,
            entered_at=current.entered_at,
            bypassed=bypassed,
        )

    def clone(self) -> HysteresisController:
        copy = HysteresisController(
            red_hold_seconds=self.hold_seconds[RiskState.RED],
            orange_hold_seconds=self.hold_seconds[RiskState.ORANGE],
        )
        copy._records = {
            instrument: RiskStateRecord(r.effective_state, r.entered_at) for instrument, r in self._records.items()
        }
        return copy

    def to_payload(self, instrument: str) -> dict[str, Any] | None:
        record = self._records.get(instrument)
        return record.to_dict() if record else None

    def restore(self, instrument: str, payload: dict[str, Any] | None) -> None:
        if payload:
            self._records[instrument] = RiskStateRecord.from_dict(payload)
        else:
            self._records.pop(instrument, None)
