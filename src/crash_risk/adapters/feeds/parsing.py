"""
Hyperliquid /info payload parsing.

Pure functions so that every response shape can be tested offline. Shapes
that are wrong as a whole raise MalformedPayloadError; individual bad fields
become None and are reported as "not evaluated" further down.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from crash_risk.domain.errors import MalformedPayloadError
from crash_risk.domain.models import FundingPoint, OrderBookSnapshot
from crash_risk.utils.numbers import safe_float

DEFAULT_DEPTH_BAND_PCT = 0.002


@dataclass(frozen=True, slots=True)
class AssetContext:
    """One coin's entry of metaAndAssetCtxs, open interest already in USD."""

    coin: str
    mark_price: float | None
    oracle_price: float | None
    funding_rate: float | None
    open_interest: float | None
    premium: float | None
    day_notional_volume: float | None
    impact_pxs: Any = None


# =============================================================================
# metaAndAssetCtxs
# =============================================================================


def _coin_name(entry: Any) -> str | None:
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, dict):
        name = entry.get("name") or entry.get("coin") or entry.get("symbol")
        return name if isinstance(name, str) and name else None
    return None


def parse_asset_contexts(raw: Any) -> dict[str, AssetContext]:
    """
    Parse a metaAndAssetCtxs response into contexts keyed by coin.

    Every coin is stored under its exchange name and its upper-cased name,
    so lookups work for "btc" as well as for mixed-case coins like "kPEPE".
    """
    if not isinstance(raw, list) or len(raw) < 2:
        raise MalformedPayloadError("metaAndAssetCtxs: expected [meta, assetCtxs]")
    meta, ctxs = raw[0], raw[1]
    universe = meta.get("universe") if isinstance(meta, dict) else None
    if not isinstance(universe, list) or not isinstance(ctxs, list):
        raise MalformedPayloadError("metaAndAssetCtxs: missing universe or asset contexts")

    contexts: dict[str, AssetContext] = {}
    for entry, ctx in zip(universe, ctxs, strict=False):
        coin = _coin_name(entry)
        if coin is None:
            continue
        if not isinstance(ctx, dict):
            ctx = {}
        mark = safe_float(ctx.get("markPx"))
        oi_tokens = safe_float(ctx.get("openInterest"))
        context = AssetContext(
            coin=coin,
            mark_price=mark,
            oracle_price=safe_float(ctx.get("oraclePx")),
            funding_rate=safe_float(ctx.get("funding")),
            open_interest=oi_tokens * mark if oi_tokens is not None and mark is not None else None,
            premium=safe_float(ctx.get("premium")),
            day_notional_volume=safe_float(ctx.get("dayNtlVlm")),
            impact_pxs=ctx.get("impactPxs"),
        )
        contexts[coin] = context
        contexts.setdefault(coin.upper(), context)
    return contexts


def lookup_context(contexts: dict[str, AssetContext], instrument: str) -> AssetContext | None:
    return contexts.get(instrument) or contexts.get(instrument.upper())


# =============================================================================
# Execution cost
# =============================================================================


def _first(obj: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if obj.get(key) is not None:
            return obj[key]
    return None


def compute_impact_cost_pct(impact_pxs: Any, mark_price: float | None) -> float | None:
    """
    Impact cost |ask - bid| / mark.

    Accepts [bid, ask], {"bidPx", "askPx"} and {"bid", "ask"} shapes.
    """
    if mark_price is None or mark_price <= 0:
        return None

    bid = ask = None
    if isinstance(impact_pxs, (list, tuple)) and len(impact_pxs) >= 2:
        bid, ask = safe_float(impact_pxs[0]), safe_float(impact_pxs[1])
    elif isinstance(impact_pxs, dict):
        bid = safe_float(_first(impact_pxs, "bidPx", "bid", "b"))
        ask = safe_float(_first(impact_pxs, "askPx", "ask", "a"))

    if bid is None or ask is None:
        return None
    return safe_float(abs(ask - bid) / mark_price)


# =============================================================================
# l2Book
# =============================================================================


def _level(level: Any) -> tuple[float | None, float | None]:
    if isinstance(level, (list, tuple)) and len(level) >= 2:
        return safe_float(level[0]), safe_float(level[1])
    if isinstance(level, dict):
        return safe_float(_first(level, "px", "price")), safe_float(_first(level, "sz", "size"))
    return None, None


def _book_sides(raw: Any) -> tuple[list[Any], list[Any]]:
    if isinstance(raw, dict) and isinstance(raw.get("levels"), list) and len(raw["levels"]) >= 2:
        bids, asks = raw["levels"][0], raw["levels"][1]
        return (bids if isinstance(bids, list) else []), (asks if isinstance(asks, list) else [])
    if isinstance(raw, list) and len(raw) >= 2 and isinstance(raw[0], list) and isinstance(raw[1], list):
        return raw[0], raw[1]
    raise MalformedPayloadError("l2Book: expected {levels: [bids, asks]}")


def _depth(levels: Iterable[Any], inside: Any) -> float:
    total = 0.0
    for level in levels:
        px, sz = _level(level)
        if px is None or sz is None:
            continue
        if not inside(px):
            break
        total += px * sz
    return total


def parse_order_book(raw: Any, depth_band_pct: float = DEFAULT_DEPTH_BAND_PCT) -> OrderBookSnapshot:
    """Best bid/ask, mid, relative spread and notional depth within +/- band of mid."""
    bids, asks = _book_sides(raw)
    best_bid = _level(bids[0])[0] if bids else None
    best_ask = _level(asks[0])[0] if asks else None
    if best_bid is None or best_ask is None:
        return OrderBookSnapshot(best_bid=best_bid, best_ask=best_ask)

    mid = (best_bid + best_ask) / 2
    if mid <= 0:
        return OrderBookSnapshot(best_bid=best_bid, best_ask=best_ask)

    bid_floor = mid * (1 - depth_band_pct)
    ask_cap = mid * (1 + depth_band_pct)
    depth = _depth(bids, lambda px: px >= bid_floor) + _depth(asks, lambda px: px <= ask_cap)
    return OrderBookSnapshot(
        best_bid=best_bid,
        best_ask=best_ask,
        mid_price=mid,
        spread_pct=(best_ask - best_bid) / mid,
        depth_notional=depth,
    )


# =============================================================================
# fundingHistory / perpsAtOpenInterestCap
# =============================================================================


def parse_funding_history(raw: Any) -> list[FundingPoint]:
    """Funding records (time in ms) as FundingPoints in epoch seconds, ascending."""
    if not isinstance(raw, list):
        raise MalformedPayloadError("fundingHistory: expected a list")
    points = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        rate = safe_float(item.get("fundingRate"))
        ts_ms = safe_float(item.get("time"))
        if rate is None or ts_ms is None:
            continue
        points.append(FundingPoint(timestamp=ts_ms / 1000.0, rate=rate))
    points.sort(key=lambda p: p.timestamp)
    return points


def parse_oi_cap_coins(raw: Any) -> frozenset[str]:
    """Coins at their open interest cap, as strings or {coin|name|symbol} objects."""
    if not isinstance(raw, list):
        raise MalformedPayloadError("perpsAtOpenInterestCap: expected a list")
    coins = set()
    for item in raw:
        name = _coin_name(item)
        if name:
            coins.add(name)
            coins.add(name.upper())
    return frozenset(coins)
