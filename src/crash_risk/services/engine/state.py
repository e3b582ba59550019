"""
Engine state container.

Everything with cross-tick memory lives here: rolling statistics, price
points, confirmation counters and hysteresis records. A tick works on a
clone() and the engine swaps it in only when the whole tick succeeds.
"""

from __future__ import annotations

from typing import Any

from crash_risk.config.settings import Settings
from crash_risk.services.confirmation import ConfirmationTracker
from crash_risk.services.hysteresis import HysteresisController
from crash_risk.services.statistics.prices import PriceSeries
from crash_risk.services.statistics.rolling import RollingStatisticsStore

PAYLOAD_VERSION = 1


class EngineState:
    """Per-instrument history owned by a single engine instance."""

    def __init__(
        self,
        statistics: RollingStatisticsStore,
        confirmation: ConfirmationTracker,
        hysteresis: HysteresisController,
        prices: dict[str, PriceSeries] | None = None,
        price_retention_seconds: float = 7200,
    ):
        self.statistics = statistics
        self.confirmation = confirmation
        self.hysteresis = hysteresis
        self.prices: dict[str, PriceSeries] = prices if prices is not None else {}
        self.price_retention_seconds = price_retention_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineState:
        stats_cfg = settings.statistics
        return cls(
            statistics=RollingStatisticsStore(
                bucket_seconds=stats_cfg.bucket_seconds,
                lookback_seconds=stats_cfg.lookback_seconds,
                require_full_coverage=stats_cfg.require_full_coverage,
            ),
            confirmation=ConfirmationTracker(settings.confirmation.required_hits),
            hysteresis=HysteresisController(
                red_hold_seconds=settings.hysteresis.red_hold_seconds,
                orange_hold_seconds=settings.hysteresis.orange_hold_seconds,
            ),
            price_retention_seconds=stats_cfg.price_retention_seconds,
        )

    def price_series(self, instrument: str) -> PriceSeries:
        """Lazily created price series."""
        series = self.prices.get(instrument)
        if series is None:
            series = self.prices[instrument] = PriceSeries()
        return series

    def clone(self) -> EngineState:
        return EngineState(
            statistics=self.statistics.clone(),
            confirmation=self.confirmation.clone(),
            hysteresis=self.hysteresis.clone(),
            prices={instrument: series.clone() for instrument, series in self.prices.items()},
            price_retention_seconds=self.price_retention_seconds,
        )

    def instruments(self) -> list[str]:
        names = [*self.statistics.instruments(), *self.prices]
        return list(dict.fromkeys(names))

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_payload(self, instrument: str) -> dict[str, Any]:
        prices = self.prices.get(instrument)
        return {
            "version": PAYLOAD_VERSION,
            "buckets": self.statistics.to_payload(instrument),
            "prices": prices.to_payload() if prices else [],
            "confirmation": self.confirmation.to_payload(instrument),
            "risk_state": self.hysteresis.to_payload(instrument),
        }

    def restore(self, instrument: str, payload: dict[str, Any]) -> None:
        """
        Load one instrument from a stored payload.

        Raises:
            ValueError: The payload has an unsupported version or shape.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"payload for {instrument} is not a mapping")
        version = payload.get("version")
        if version != PAYLOAD_VERSION:
            raise ValueError(f"unsupported payload version {version!r} for {instrument}")

        buckets = _section(payload, "buckets", dict, instrument) or {}
        confirmation = _section(payload, "confirmation", dict, instrument) or {}
        risk_state = _section(payload, "risk_state", dict, instrument)
        prices = _section(payload, "prices", list, instrument) or []

        # Apply to a copy first so a bad section leaves this state untouched
        candidate = self.clone()
        try:
            candidate.statistics.restore(instrument, buckets)
            candidate.confirmation.restore(instrument, confirmation)
            candidate.hysteresis.restore(instrument, risk_state)
            candidate.prices[instrument] = PriceSeries.from_payload(prices)
        except (AttributeError, IndexError) as e:
            raise ValueError(f"malformed payload for {instrument}: {e}") from e

        self.statistics = candidate.statistics
        self.confirmation = candidate.confirmation
        self.hysteresis = candidate.hysteresis
        self.prices = candidate.prices


def _section(payload: dict[str, Any], key: str, kind: type, instrument: str) -> Any:
    """A payload section, which must be `kind` or absent/null."""
    value = payload.get(key)
    if value is not None and not isinstance(value, kind):
        raise ValueError(f"{key} for {instrument} must be a {kind.__name__}, got {type(value).__name__}")
    return value
