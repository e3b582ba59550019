"""
Hyperliquid metrics feed.

Polls the public /info endpoint over a single pooled aiohttp session:
- metaAndAssetCtxs once per tick for all instruments (short TTL cache + lock)
- l2Book only when impact prices are missing, cached per coin
- perpsAtOpenInterestCap alongside the context snapshot when enabled
- fundingHistory on demand (the engine caches it)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

import aiohttp

from crash_risk.adapters.feeds.parsing import (
    AssetContext,
    compute_impact_cost_pct,
    lookup_context,
    parse_asset_contexts,
    parse_funding_history,
    parse_oi_cap_coins,
    parse_order_book,
)
from crash_risk.config.settings import FeedSettings, Settings
from crash_risk.domain.errors import FeedError, FeedUnavailableError, MalformedPayloadError
from crash_risk.domain.models import FundingPoint, MetricSample, OrderBookSnapshot
from crash_risk.observability.logging import get_logger
from crash_risk.ports.feed import MetricsFeedPort

logger = get_logger(__name__)


class HyperliquidFeed(MetricsFeedPort):
    """MetricsFeedPort over the Hyperliquid info API."""

    def __init__(
        self,
        settings: FeedSettings,
        track_oi_cap: bool = False,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.track_oi_cap = track_oi_cap
        self._url = settings.base_url.rstrip("/") + "/info"
        self._clock = clock

        self._session = session
        self._owns_session = session is None

        self._contexts: dict[str, AssetContext] = {}
        self._contexts_at: float | None = None
        self._contexts_lock = asyncio.Lock()
        self._oi_cap_coins: frozenset[str] | None = None
        self._books: dict[str, tuple[float, OrderBookSnapshot | None]] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> HyperliquidFeed:
        return cls(settings.feed, track_oi_cap="oi_cap" in settings.indicators.enabled)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        if self._session is not None:
            return
        logger.info(f"Initializing Hyperliquid feed ({self._url})")
        connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300, keepalive_timeout=60)
        self._session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout_seconds),
            headers={"Content-Type": "application/json"},
        )
        self._owns_session = True

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
        logger.debug("Hyperliquid feed closed")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _post(self, body: dict[str, Any]) -> Any:
        if self._session is None:
            raise FeedUnavailableError("Feed session is not initialized")
        kind = body.get("type")
        try:
            async with self._session.post(self._url, json=body) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise FeedError(
                        f"Hyperliquid {kind} failed ({resp.status}): {text[:200]}",
                        status=resp.status,
                        instrument=body.get("coin"),
                    )
                return await resp.json(content_type=None)
        except FeedError:
            raise
        except ValueError as e:
            raise MalformedPayloadError(f"Hyperliquid {kind}: invalid JSON: {e}") from e
        except (aiohttp.ClientError, TimeoutError) as e:
            raise FeedUnavailableError(f"Hyperliquid {kind} unreachable: {type(e).__name__}: {e}") from e

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def _refresh_contexts(self) -> dict[str, AssetContext]:
        """Shared metaAndAssetCtxs snapshot; concurrent callers wait for one request."""
        async with self._contexts_lock:
            now = self._clock()
            if self._contexts_at is not None and now - self._contexts_at < self.settings.context_ttl_seconds:
                return self._contexts

            body: dict[str, Any] = {"type": "metaAndAssetCtxs"}
            if self.settings.dex is not None:
                body["dex"] = self.settings.dex
            self._contexts = parse_asset_contexts(await self._post(body))
            self._contexts_at = now

            if self.track_oi_cap:
                await self._refresh_oi_cap()
            return self._contexts

    async def _refresh_oi_cap(self) -> None:
        body: dict[str, Any] = {"type": "perpsAtOpenInterestCap"}
        if self.settings.dex is not None:
            body["dex"] = self.settings.dex
        try:
            self._oi_cap_coins = parse_oi_cap_coins(await self._post(body))
        except FeedError as e:
            logger.debug(f"Open interest cap list unavailable: {e}")
            self._oi_cap_coins = None

    async def _order_book(self, coin: str) -> OrderBookSnapshot | None:
        now = self._clock()
        cached = self._books.get(coin)
        if cached is not None and now - cached[0] < self.settings.book_refresh_seconds:
            return cached[1]
        try:
            book = parse_order_book(
                await self._post({"type": "l2Book", "coin": coin}),
                depth_band_pct=self.settings.depth_band_pct,
            )
        except FeedError as e:
            logger.debug(f"Order book unavailable for {coin}: {e}")
            book = None
        self._books[coin] = (now, book)
        return book

    # ------------------------------------------------------------------
    # MetricsFeedPort
    # ------------------------------------------------------------------

    async def get_instrument_metrics(self, instrument: str) -> MetricSample:
        contexts = await self._refresh_contexts()
        ctx = lookup_context(contexts, instrument)
        if ctx is None:
            raise FeedError(f"Unknown instrument {instrument}", instrument=instrument)

        cost = compute_impact_cost_pct(ctx.impact_pxs, ctx.mark_price)
        book = await self._order_book(ctx.coin) if cost is None else None

        at_cap = None
        if self.track_oi_cap and self._oi_cap_coins is not None:
            at_cap = ctx.coin in self._oi_cap_coins or ctx.coin.upper() in self._oi_cap_coins

        return MetricSample(
            instrument=instrument,
            timestamp=self._clock(),
            mark_price=ctx.mark_price,
            funding_rate=ctx.funding_rate,
            open_interest=ctx.open_interest,
            day_notional_volume=ctx.day_notional_volume,
            execution_cost_pct=cost,
            order_book=book,
            at_open_interest_cap=at_cap,
        )

    async def get_funding_history(self, instrument: str, since: float) -> list[FundingPoint]:
        ctx = lookup_context(self._contexts, instrument)
        coin = ctx.coin if ctx is not None else instrument
        raw = await self._post({"type": "fundingHistory", "coin": coin, "startTime": int(since * 1000)})
        return [p for p in parse_funding_history(raw) if p.timestamp >= since]

    async def ping(self) -> int:
        """Fetch a fresh context snapshot; returns the number of listed coins."""
        self._contexts_at = None
        contexts = await self._refresh_contexts()
        return len({c.coin for c in contexts.values()})
