"""Market data feed adapters."""

from crash_risk.adapters.feeds.hyperliquid import HyperliquidFeed

__all__ = ["HyperliquidFeed"]
