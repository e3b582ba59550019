"""
Rolling Statistics Store.

Per instrument and per metric, a bounded history of fixed-width buckets
(15 minutes by default) holding a running average. The z-score query
compares the in-progress bucket against the buckets before it.

All mutation goes through ingest()/prune(); buckets themselves are frozen
and replaced on update, so clone() only needs to copy the bucket lists.
"""

from __future__ import annotations

import bisect
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from crash_risk.domain.models import Metric
from crash_risk.utils.numbers import safe_float

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True, slots=True)
class RollingBucket:
    """Fixed-width aggregation window for one metric of one instrument."""

    bucket_start: float
    average: float
    count: int

    def add(self, value: float) -> RollingBucket:
        """Incremental mean: avg += (value - avg) / n."""
        n = self.count + 1
        return RollingBucket(self.bucket_start, self.average + (value - self.average) / n, n)


def sample_mean_std(values: Sequence[float]) -> tuple[float, float] | None:
    """Mean and sample standard deviation (n - 1). None for fewer than 2 values."""
    n = len(values)
    if n < 2:
        return None
    mean = math.fsum(values) / n
    variance = math.fsum((v - mean) ** 2 for v in values) / (n - 1)
    return mean, math.sqrt(variance)


def zscore_against(current: float, baseline: Sequence[float]) -> float | None:
    """
    Standardized deviation of `current` from `baseline`.

    None when the baseline has fewer than 2 values, zero spread, or the
    result is not finite. None means "cannot be evaluated", never zero.
    """
    stats = sample_mean_std(baseline)
    if stats is None:
        return None
    mean, std = stats
    if std == 0 or not math.isfinite(std):
        return None
    z = (current - mean) / std
    return z if math.isfinite(z) else None


class MetricSeries:
    """Time-ordered buckets for one metric."""

    __slots__ = ("_buckets", "_starts")

    def __init__(self, buckets: Iterable[RollingBucket] = ()):
        self._buckets: list[RollingBucket] = sorted(buckets, key=lambda b: b.bucket_start)
        self._starts: list[float] = [b.bucket_start for b in self._buckets]

    def __len__(self) -> int:
        return len(self._buckets)

    @property
    def buckets(self) -> tuple[RollingBucket, ...]:
        return tuple(self._buckets)

    @property
    def current(self) -> RollingBucket | None:
        return self._buckets[-1] if self._buckets else None

    @property
    def oldest(self) -> RollingBucket | None:
        return self._buckets[0] if self._buckets else None

    def add(self, bucket_start: float, value: float) -> RollingBucket:
        """Fold a value into the bucket starting at `bucket_start` (created if needed)."""
        # Fast path: same or newer bucket than the last one
        if not self._buckets or bucket_start > self._starts[-1]:
            bucket = RollingBucket(bucket_start, value, 1)
            self._buckets.append(bucket)
            self._starts.append(bucket_start)
            return bucket

        idx = bisect.bisect_left(self._starts, bucket_start)
        if idx < len(self._starts) and self._starts[idx] == bucket_start:
            bucket = self._buckets[idx].add(value)
            self._buckets[idx] = bucket
        else:
            # Late sample for a bucket we never saw; keep order
            bucket = RollingBucket(bucket_start, value, 1)
            self._buckets.insert(idx, bucket)
            self._starts.insert(idx, bucket_start)
        return bucket

    def prune(self, cutoff: float) -> int:
        """Drop buckets starting before `cutoff`. Returns the number dropped."""
        idx = bisect.bisect_left(self._starts, cutoff)
        if idx:
            del self._buckets[:idx]
            del self._starts[:idx]
        return idx

    def clone(self) -> MetricSeries:
        copy = MetricSeries.__new__(MetricSeries)
        copy._buckets = list(self._buckets)
        copy._starts = list(self._starts)
        return copy

    def to_payload(self) -> list[list[float]]:
        return [[b.bucket_start, b.average, b.count] for b in self._buckets]

    @classmethod
    def from_payload(cls, rows: Iterable[Sequence[Any]]) -> MetricSeries:
        buckets = []
        for row in rows:
            start, avg = safe_float(row[0]), safe_float(row[1])
            count = int(row[2])
            if start is None or avg is None or count < 1:
                continue
            buckets.append(RollingBucket(start, avg, count))
        return cls(buckets)


class RollingStatisticsStore:
    """
    Bucketed metric history for every tracked instrument.

    Args:
        bucket_seconds: Bucket width (900 = 15 minutes).
        lookback_seconds: Trailing horizon kept after pruning (7 days).
        require_full_coverage: When True, z-scores are only valid once the
            oldest retained bucket reaches back a full lookback.
    """

    def __init__(
        self,
        bucket_seconds: float = 900,
        lookback_seconds: float = 7 * SECONDS_PER_DAY,
        require_full_coverage: bool = False,
    ):
        if bucket_seconds <= 0:
            raise ValueError("bucket_seconds must be positive")
        self.bucket_seconds = bucket_seconds
        self.lookback_seconds = lookback_seconds
        self.require_full_coverage = require_full_coverage
        self._series: dict[str, dict[Metric, MetricSeries]] = {}

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def bucket_start(self, timestamp: float) -> float:
        return math.floor(timestamp / self.bucket_seconds) * self.bucket_seconds

    def ingest(self, instrument: str, metric: Metric | str, timestamp: float, value: Any) -> bool:
        """
        Fold a sample into its bucket.

        None and non-finite values are ignored (returns False); the metric is
        simply absent for this sample.
        """
        clean = safe_float(value)
        if clean is None:
            return False
        per_instrument = self._series.setdefault(instrument, {})
        series = per_instrument.setdefault(Metric(metric), MetricSeries())
        series.add(self.bucket_start(timestamp), clean)
        return True

    def prune(self, instrument: str, now: float) -> int:
        """Drop buckets older than now - lookback - bucket width."""
        cutoff = now - self.lookback_seconds - self.bucket_seconds
        return sum(series.prune(cutoff) for series in self._series.get(instrument, {}).values())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def series(self, instrument: str, metric: Metric | str) -> MetricSeries | None:
        return self._series.get(instrument, {}).get(Metric(metric))

    def instruments(self) -> list[str]:
        return list(self._series)

    def current_average(self, instrument: str, metric: Metric | str, now: float | None = None) -> float | None:
        series = self.series(instrument, metric)
        if series is None or series.current is None:
            return None
        if now is not None and series.current.bucket_start != self.bucket_start(now):
            return None
        return series.current.average

    def has_full_coverage(self, instrument: str, metric: Metric | str, now: float) -> bool:
        series = self.series(instrument, metric)
        if series is None or series.oldest is None:
            return False
        return series.oldest.bucket_start <= now - self.lookback_seconds

    def zscore(self, instrument: str, metric: Metric | str, now: float | None = None) -> float | None:
        """
        (current bucket average - mean(prior)) / sample_std(prior).

        With `now`, the current bucket must be the one containing `now`;
        a stale last bucket is not "current". Returns None whenever the
        signal cannot be evaluated.
        """
        series = self.series(instrument, metric)
        if series is None or len(series) < 3:
            return None

        current = series.current
        if now is not None and current.bucket_start != self.bucket_start(now):
            return None

        if self.require_full_coverage:
            reference = now if now is not None else current.bucket_start
            if not self.has_full_coverage(instrument, metric, reference):
                return None

        prior = [b.average for b in series.buckets[:-1]]
        return zscore_against(current.average, prior)

    # ------------------------------------------------------------------
    # Copy-on-write & persistence
    # ------------------------------------------------------------------

    def clone(self) -> RollingStatisticsStore:
        copy = RollingStatisticsStore(self.bucket_seconds, self.lookback_seconds, self.require_full_coverage)
        copy._series = {
            instrument: {metric: series.clone() for metric, series in metrics.items()}
            for instrument, metrics in self._series.items()
        }
        return copy

    def to_payload(self, instrument: str) -> dict[str, list[list[float]]]:
        return {metric.value: series.to_payload() for metric, series in self._series.get(instrument, {}).items()}

    def restore(self, instrument: str, payload: dict[str, Any]) -> None:
        """Replace an instrument's history from a stored payload. Unknown metrics are skipped."""
        restored: dict[Metric, MetricSeries] = {}
        for key, rows in (payload or {}).items():
            try:
                metric = Metric(key)
            except ValueError:
                continue
            restored[metric] = MetricSeries.from_payload(rows)
        self._series[instrument] = restored
