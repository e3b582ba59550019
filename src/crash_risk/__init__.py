"""Per-instrument crash-risk state engine for perpetual futures."""

__version__ = "0.4.0"
