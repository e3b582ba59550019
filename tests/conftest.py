import asyncio
import os

import pytest

from crash_risk.config.settings import Settings
from crash_risk.domain.errors import FeedUnavailableError
from crash_risk.domain.models import FundingPoint, MetricSample, OrderBookSnapshot
from crash_risk.ports.feed import MetricsFeedPort

# Bucket-aligned (1_700_000_100 = 900 * 1_888_889) reference time
NOW = 1_700_000_100.0
BUCKET = 900.0


def make_sample(
    instrument: str = "BTC",
    timestamp: float = NOW,
    *,
    mark_price: float | None = 100.0,
    funding_rate: float | None = 0.0001,
    open_interest: float | None = 100_000_000.0,
    day_notional_volume: float | None = 100_000_000.0,
    execution_cost_pct: float | None = 0.001,
    order_book: OrderBookSnapshot | None = None,
    at_open_interest_cap: bool | None = None,
) -> MetricSample:
    """Sample that passes the default universe gate."""
    return MetricSample(
        instrument=instrument,
        timestamp=timestamp,
        mark_price=mark_price,
        funding_rate=funding_rate,
        open_interest=open_interest,
        day_notional_volume=day_notional_volume,
        execution_cost_pct=execution_cost_pct,
        order_book=order_book,
        at_open_interest_cap=at_open_interest_cap,
    )


class FakeFeed(MetricsFeedPort):
    """
    Scriptable feed.

    `samples` maps instrument -> MetricSample (or an exception to raise).
    Setting `gate` makes every fetch wait on it, to hold a tick in flight.
    """

    def __init__(self, samples=None, funding=None):
        self.samples = dict(samples or {})
        self.funding = dict(funding or {})
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.calls: list[str] = []
        self.funding_calls: list[str] = []
        self.cancelled = 0
        self.initialized = False
        self.closed = False

    async def initialize(self) -> None:
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def get_instrument_metrics(self, instrument: str) -> MetricSample:
        self.calls.append(instrument)
        self.entered.set()
        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        value = self.samples.get(instrument)
        if value is None:
            raise FeedUnavailableError(f"no data for {instrument}", instrument=instrument)
        if isinstance(value, BaseException):
            raise value
        return value

    async def get_funding_history(self, instrument: str, since: float) -> list[FundingPoint]:
        self.funding_calls.append(instrument)
        return [p for p in self.funding.get(instrument, []) if p.timestamp >= since]


@pytest.fixture
def settings(tmp_path, monkeypatch):
    """Default settings with file logging off and an isolated database path."""
    for key in list(os.environ):
        if key.startswith("RISK_"):
            monkeypatch.delenv(key, raising=False)
    return Settings(
        instruments=["BTC", "ETH"],
        logging={"file_enabled": False, "colors": False},
        database={"backend": "memory", "path": str(tmp_path / "history.db")},
    )


@pytest.fixture
def fake_feed():
    return FakeFeed(
        {
            "BTC": make_sample("BTC"),
            "ETH": make_sample("ETH", mark_price=2000.0),
        }
    )
