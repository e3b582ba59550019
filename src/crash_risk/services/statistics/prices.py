"""
Short price history for trailing returns.

A per-instrument, time-ordered series of (timestamp, price) points kept for
a couple of hours. Anchors are always the nearest point at or before the
requested time, never a later one.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable, Sequence
from typing import Any

from crash_risk.utils.numbers import pct_change, safe_float


class PriceSeries:
    """Ordered price points with a retention window."""

    __slots__ = ("_timestamps", "_prices")

    def __init__(self, points: Iterable[tuple[float, float]] = ()):
        ordered = sorted(points)
        self._timestamps: list[float] = [p[0] for p in ordered]
        self._prices: list[float] = [p[1] for p in ordered]

    def __len__(self) -> int:
        return len(self._timestamps)

    @property
    def points(self) -> list[tuple[float, float]]:
        return list(zip(self._timestamps, self._prices, strict=True))

    def add(self, timestamp: float, price: Any) -> bool:
        """Record a price. Non-positive or malformed prices are ignored."""
        clean = safe_float(price)
        if clean is None or clean <= 0:
            return False
        idx = bisect.bisect_right(self._timestamps, timestamp)
        if idx and self._timestamps[idx - 1] == timestamp:
            # Same timestamp replays overwrite instead of duplicating
            self._prices[idx - 1] = clean
            return True
        self._timestamps.insert(idx, timestamp)
        self._prices.insert(idx, clean)
        return True

    def prune(self, now: float, retention_seconds: float) -> int:
        idx = bisect.bisect_left(self._timestamps, now - retention_seconds)
        if idx:
            del self._timestamps[:idx]
            del self._prices[:idx]
        return idx

    def at_or_before(self, target: float) -> tuple[float, float] | None:
        """Nearest point with timestamp <= target."""
        idx = bisect.bisect_right(self._timestamps, target)
        if idx == 0:
            return None
        return self._timestamps[idx - 1], self._prices[idx - 1]

    def latest(self) -> tuple[float, float] | None:
        if not self._timestamps:
            return None
        return self._timestamps[-1], self._prices[-1]

    def trailing_return(self, now: float, horizon_seconds: float, price_now: float | None = None) -> float | None:
        """
        Return over `horizon_seconds` ending at `now`.

        `price_now` defaults to the latest point at or before `now`.
        None when either end is unavailable.
        """
        if price_now is None:
            current = self.at_or_before(now)
            if current is None:
                return None
            price_now = current[1]
        anchor = self.at_or_before(now - horizon_seconds)
        if anchor is None:
            return None
        return pct_change(price_now, anchor[1])

    def clone(self) -> PriceSeries:
        copy = PriceSeries.__new__(PriceSeries)
        copy._timestamps = list(self._timestamps)
        copy._prices = list(self._prices)
        return copy

    def to_payload(self) -> list[list[float]]:
        return [[t, p] for t, p in zip(self._timestamps, self._prices, strict=True)]

    @classmethod
    def from_payload(cls, rows: Iterable[Sequence[Any]]) -> PriceSeries:
        series = cls()
        for row in rows or ():
            ts = safe_float(row[0])
            if ts is not None:
                series.add(ts, row[1])
        return series
