"""Utility helpers."""

from crash_risk.utils.numbers import pct_change, safe_float

__all__ = ["safe_float", "pct_change"]
