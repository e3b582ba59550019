"""
Numeric helpers.
"""

from __future__ import annotations

import math
from typing import Any


def safe_float(value: Any, default: float | None = None) -> float | None:
    """Safely convert a value to a finite float.

    Returns default for None, bools, NaN, Infinity, and unparseable values.
    Numeric strings (as returned by most exchange APIs) are accepted.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not math.isfinite(result):
        return default
    return result


def pct_change(now: float | None, then: float | None) -> float | None:
    """Relative change from `then` to `now`, or None when undefined."""
    if now is None or then is None or then == 0:
        return None
    result = (now - then) / then
    return result if math.isfinite(result) else None
