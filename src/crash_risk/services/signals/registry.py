"""
Indicator registry.

Builds the configured indicator set from settings. Indicators are always
returned in dependency order (crowding before structure) regardless of the
order they are listed in configuration.
"""

from __future__ import annotations

from collections.abc import Callable

from crash_risk.config.settings import Settings
from crash_risk.domain.errors import ConfigurationError
from crash_risk.services.signals.base import Indicator
from crash_risk.services.signals.crowding import CrowdingIndicator
from crash_risk.services.signals.funding_anomaly import FundingAnomalyIndicator
from crash_risk.services.signals.liquidity import LiquidityIndicator
from crash_risk.services.signals.oi_cap import OiCapIndicator
from crash_risk.services.signals.structure import StructureIndicator

_FACTORIES: dict[str, Callable[[Settings], Indicator]] = {
    "crowding": lambda s: CrowdingIndicator(
        oi_z_threshold=s.crowding.oi_z_threshold,
        funding_z_threshold=s.crowding.funding_z_threshold,
        confirmation_unit=s.crowding.confirmation_unit,
    ),
    "structure": lambda s: StructureIndicator(
        short_horizon_seconds=s.structure.short_horizon_seconds,
        long_horizon_seconds=s.structure.long_horizon_seconds,
        flat_return_threshold=s.structure.flat_return_threshold,
    ),
    "liquidity": lambda s: LiquidityIndicator(
        z_threshold=s.liquidity.z_threshold,
        confirmation_unit=s.liquidity.confirmation_unit,
    ),
    "funding_anomaly": lambda s: FundingAnomalyIndicator(
        z_threshold=s.funding_anomaly.z_threshold,
        min_points=s.funding_anomaly.min_points,
        lookback_hours=s.funding_anomaly.lookback_hours,
        confirmation_unit=s.funding_anomaly.confirmation_unit,
    ),
    "oi_cap": lambda s: OiCapIndicator(confirmation_unit=s.oi_cap.confirmation_unit),
}


def build_indicators(settings: Settings) -> list[Indicator]:
    """
    Instantiate the enabled indicators.

    Raises:
        ConfigurationError: The indicator set cannot drive the configured
            decision mode (unknown names, missing pillars, ...).
    """
    errors = settings.validate_indicators()
    if errors:
        raise ConfigurationError("Invalid indicator configuration", errors=errors)

    enabled = set(settings.indicators.enabled)
    return [factory(settings) for name, factory in _FACTORIES.items() if name in enabled]
