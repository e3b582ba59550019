"""Online statistics: bucketed rolling z-scores and short price history."""

from crash_risk.services.statistics.prices import PriceSeries
from crash_risk.services.statistics.rolling import (
    MetricSeries,
    RollingBucket,
    RollingStatisticsStore,
    sample_mean_std,
    zscore_against,
)

__all__ = [
    "MetricSeries",
    "PriceSeries",
    "RollingBucket",
    "RollingStatisticsStore",
    "sample_mean_std",
    "zscore_against",
]
