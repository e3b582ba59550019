"""
Settings management using Pydantic.

Loads configuration from YAML files and environment variables.
Environment variables (RISK_ prefix, "__" for nesting) override YAML values.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

KNOWN_INDICATORS = ("crowding", "structure", "liquidity", "funding_anomaly", "oi_cap")

ConfirmationUnit = Literal["tick", "bucket"]


class UniverseSettings(BaseModel):
    """Eligibility gate. Both minimums are strict (value must exceed them)."""

    min_day_notional_volume: float = Field(default=25_000_000, ge=0)
    min_open_interest: float = Field(default=10_000_000, ge=0)


class StatisticsSettings(BaseModel):
    """Rolling statistics store."""

    bucket_seconds: int = Field(default=900, gt=0)
    lookback_days: float = Field(default=7, gt=0)
    # Off: >= 2 prior buckets suffice. On: oldest bucket must reach back a full lookback.
    require_full_coverage: bool = False
    price_retention_seconds: int = Field(default=7200, gt=0)

    @property
    def lookback_seconds(self) -> float:
        return self.lookback_days * 86_400


class CrowdingSettings(BaseModel):
    oi_z_threshold: float = Field(default=1.5, gt=0)
    funding_z_threshold: float = Field(default=1.5, gt=0)
    confirmation_unit: ConfirmationUnit = "tick"


class StructureSettings(BaseModel):
    short_horizon_seconds: int = Field(default=900, gt=0)
    long_horizon_seconds: int = Field(default=3600, gt=0)
    # |1h return| below this counts as flat (0.1%)
    flat_return_threshold: float = Field(default=0.001, ge=0)


class LiquiditySettings(BaseModel):
    z_threshold: float = Field(default=1.5, gt=0)
    confirmation_unit: ConfirmationUnit = "tick"


class FundingAnomalySettings(BaseModel):
    """Funding z-score against the funding history endpoint."""

    z_threshold: float = Field(default=2.0, gt=0)
    lookback_hours: float = Field(default=72, gt=0)
    min_points: int = Field(default=24, ge=2)
    refresh_seconds: float = Field(default=300, gt=0)
    confirmation_unit: ConfirmationUnit = "tick"


class OiCapSettings(BaseModel):
    confirmation_unit: ConfirmationUnit = "tick"


class ConfirmationSettings(BaseModel):
    required_hits: int = Field(default=2, ge=1)


class HysteresisSettings(BaseModel):
    """Minimum dwell time before a downgrade is allowed."""

    red_hold_seconds: float = Field(default=1800, ge=0)
    orange_hold_seconds: float = Field(default=900, ge=0)


class SchedulerSettings(BaseModel):
    tick_interval_seconds: float = Field(default=15, gt=0)
    watchdog_interval_seconds: float = Field(default=10, gt=0)
    stale_after_seconds: float = Field(default=60, gt=0)
    fetch_timeout_seconds: float = Field(default=10, gt=0)
    shutdown_timeout_seconds: float = Field(default=10, gt=0)


class IndicatorSettings(BaseModel):
    """Configured indicator set and decision mode."""

    enabled: list[str] = Field(default_factory=lambda: ["crowding", "structure", "liquidity"])
    mode: Literal["pillars", "consensus"] = "pillars"


class FeedSettings(BaseModel):
    """Hyperliquid info endpoint."""

    base_url: str = "https://api.hyperliquid.xyz"
    request_timeout_seconds: float = Field(default=10, gt=0)
    book_refresh_seconds: float = Field(default=30, ge=0)
    depth_band_pct: float = Field(default=0.002, gt=0)
    context_ttl_seconds: float = Field(default=2, ge=0)
    dex: str | None = None


class DatabaseSettings(BaseModel):
    """History persistence settings."""

    backend: Literal["sqlite", "memory"] = "sqlite"
    path: str = "data/risk_history.db"
    wal_mode: bool = True


class LoggingSettings(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    colors: bool = True
    file_enabled: bool = True
    directory: str = "logs"
    json_enabled: bool = False
    json_file: str = "logs/crash_risk.jsonl"
    # Set either to 0 to disable rotation.
    json_max_bytes: int = 50_000_000
    json_backup_count: int = 3


class MetricsSettings(BaseModel):
    enabled: bool = False
    port: int = Field(default=9108, gt=0, lt=65536)
    addr: str = "0.0.0.0"


class Settings(BaseSettings):
    """
    Main settings container.

    Loads from YAML (packaged defaults, optional env overlay, optional
    RISK_CONFIG_FILE), then applies env var overrides.
    """

    env: str = "development"
    instruments: list[str] = Field(default_factory=lambda: ["BTC", "ETH"])

    # Sub-settings
    universe: UniverseSettings = Field(default_factory=UniverseSettings)
    statistics: StatisticsSettings = Field(default_factory=StatisticsSettings)
    crowding: CrowdingSettings = Field(default_factory=CrowdingSettings)
    structure: StructureSettings = Field(default_factory=StructureSettings)
    liquidity: LiquiditySettings = Field(default_factory=LiquiditySettings)
    funding_anomaly: FundingAnomalySettings = Field(default_factory=FundingAnomalySettings)
    oi_cap: OiCapSettings = Field(default_factory=OiCapSettings)
    confirmation: ConfirmationSettings = Field(default_factory=ConfirmationSettings)
    hysteresis: HysteresisSettings = Field(default_factory=HysteresisSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    indicators: IndicatorSettings = Field(default_factory=IndicatorSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    model_config = {
        "env_prefix": "RISK_",
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over YAML values passed as init kwargs
        return env_settings, init_settings, file_secret_settings

    def validate_indicators(self) -> list[str]:
        """
        Validate that the configured indicator set can drive the decision engine.

        Returns a list of validation errors. Empty list means validation passed.
        """
        errors: list[str] = []
        enabled = self.indicators.enabled

        unknown = [name for name in enabled if name not in KNOWN_INDICATORS]
        if unknown:
            errors.append(f"indicators.enabled: unknown indicators {unknown} (known: {list(KNOWN_INDICATORS)})")

        if len(set(enabled)) != len(enabled):
            errors.append("indicators.enabled: duplicate entries")

        if self.indicators.mode == "pillars":
            for required in ("crowding", "structure"):
                if required not in enabled:
                    errors.append(f"indicators.mode=pillars requires '{required}' to be enabled")
        elif "structure" in enabled:
            errors.append("indicators.mode=consensus cannot use 'structure' (it classifies, it does not vote)")

        if not self.instruments:
            errors.append("instruments: at least one instrument is required")

        if self.scheduler.watchdog_interval_seconds >= self.scheduler.stale_after_seconds:
            errors.append("scheduler.watchdog_interval_seconds must be shorter than stale_after_seconds")

        if self.structure.short_horizon_seconds >= self.structure.long_horizon_seconds:
            errors.append("structure.short_horizon_seconds must be shorter than long_horizon_seconds")

        if self.statistics.price_retention_seconds < self.structure.long_horizon_seconds:
            errors.append("statistics.price_retention_seconds must cover structure.long_horizon_seconds")

        return errors

    @classmethod
    def from_yaml(cls, env: str = "development", config_file: str | Path | None = None) -> Settings:
        """
        Load settings from the packaged config.yaml.

        Overlays, in order: config/<env>.yaml next to the packaged file (if it
        exists), then `config_file` or the file named by RISK_CONFIG_FILE.
        """
        config_dir = Path(__file__).parent
        data = _load_yaml(config_dir / "config.yaml")

        env_file = config_dir / f"{env}.yaml"
        if env_file.exists():
            data = _deep_merge(data, _load_yaml(env_file))

        override = config_file or os.getenv("RISK_CONFIG_FILE")
        if override:
            override_path = Path(override)
            if not override_path.exists():
                logger.warning(f"Config file {override_path} not found, using packaged defaults")
            else:
                data = _deep_merge(data, _load_yaml(override_path))

        data["env"] = env

        # Warn about unknown keys before creating model (helps catch typos in config.yaml)
        _warn_unknown_keys(data, cls)

        return cls(**data)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        logger.warning(f"Ignoring {path}: top level is not a mapping")
        return {}
    return loaded


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts, override wins on conflicts."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _collect_all_keys(data: dict, prefix: str = "") -> set[str]:
    """Recursively collect all keys from a nested dict in dot notation."""
    keys = set()
    for key, value in data.items():
        full_key = f"{prefix}.{key}" if prefix else key
        keys.add(full_key)
        if isinstance(value, dict):
            keys.update(_collect_all_keys(value, full_key))
    return keys


def _collect_model_fields(model_class: type[BaseModel], prefix: str = "") -> set[str]:
    """Recursively collect all field names from a Pydantic model in dot notation."""
    fields = set()
    for field_name, field_info in model_class.model_fields.items():
        full_key = f"{prefix}.{field_name}" if prefix else field_name
        fields.add(full_key)

        annotation = field_info.annotation
        if isinstance(annotation, type) and issubclass(annotation, BaseModel):
            fields.update(_collect_model_fields(annotation, full_key))

    return fields


def _warn_unknown_keys(data: dict, model_class: type[BaseModel]) -> None:
    """
    Warn about unknown keys in YAML config that don't match model fields.

    This prevents silent config bugs where typos in key names are ignored.
    """
    unknown_keys = _collect_all_keys(data) - _collect_model_fields(model_class)

    if unknown_keys:
        logger.warning(
            f"Unknown configuration keys found (will be ignored due to extra='ignore'): {sorted(unknown_keys)}. "
            f"This may indicate typos in config.yaml or outdated config keys."
        )


@lru_cache(maxsize=4)
def get_settings(env: str | None = None) -> Settings:
    """Get cached settings instance."""
    resolved_env = env or os.getenv("RISK_ENV", "development")
    return Settings.from_yaml(env=resolved_env)
