"""Configuration: YAML defaults plus RISK_* environment overrides."""

from crash_risk.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
