"""
Staleness Watchdog.

Tracks the last successful tick. When the feed has been silent longer than
the timeout, the engine replaces every published record with UNSUPPORTED
("feed stale"). Only the published map is touched; rolling statistics are
left intact so evaluation resumes seamlessly when the feed recovers.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from crash_risk.domain.models import STALE_MESSAGE, DebugTrace, RiskPerInstrument, RiskState

REASON_FEED_STALE = "feed stale"


@dataclass(frozen=True, slots=True)
class StaleEpisode:
    """Start of a stale period, reported once."""

    detected_at: float
    last_success_at: float
    age_seconds: float


class StalenessWatchdog:
    """
    Args:
        stale_after_seconds: Silence tolerated before degrading (strictly greater).
        started_at: Reference for `last_success` before the first successful
            tick, normally the engine start time.
    """

    def __init__(self, stale_after_seconds: float = 60, started_at: float = 0.0):
        self.stale_after_seconds = stale_after_seconds
        self.last_success = started_at
        self._episode: StaleEpisode | None = None

    @property
    def in_stale_episode(self) -> bool:
        return self._episode is not None

    def age(self, now: float) -> float:
        return now - self.last_success

    def is_stale(self, now: float) -> bool:
        return self.age(now) > self.stale_after_seconds

    def mark_success(self, now: float) -> bool:
        """Record a successful tick. Returns True if this ends a stale episode."""
        self.last_success = max(self.last_success, now)
        recovered = self._episode is not None
        self._episode = None
        return recovered

    def check(self, now: float) -> StaleEpisode | None:
        """Return a new episode the first time staleness is observed, else None."""
        if not self.is_stale(now) or self._episode is not None:
            return None
        self._episode = StaleEpisode(detected_at=now, last_success_at=self.last_success, age_seconds=self.age(now))
        return self._episode


def build_stale_records(
    instruments: Iterable[str],
    published: Mapping[str, RiskPerInstrument],
    episode: StaleEpisode,
) -> dict[str, RiskPerInstrument]:
    """UNSUPPORTED "feed stale" records for every tracked or published instrument."""
    names = list(dict.fromkeys([*instruments, *published]))
    records: dict[str, RiskPerInstrument] = {}
    for instrument in names:
        previous = published.get(instrument)
        trace = DebugTrace(
            instrument=instrument,
            evaluated_at=episode.detected_at,
            stale=True,
            stale_info={
                "reason": REASON_FEED_STALE,
                "last_success_at": episode.last_success_at,
                "age_seconds": round(episode.age_seconds, 3),
                "previous_state": previous.state.value if previous else None,
            },
        )
        records[instrument] = RiskPerInstrument(
            instrument=instrument,
            state=RiskState.UNSUPPORTED,
            message=STALE_MESSAGE,
            metrics={},
            trace=trace,
            updated_at=episode.detected_at,
        )
    return records
