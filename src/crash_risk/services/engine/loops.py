"""
Tick and watchdog loops, and the tick itself.

These functions are used as methods of RiskEngine (assigned in engine.py).
"""

from __future__ import annotations

import asyncio
import inspect
import math
import time
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from crash_risk.domain.errors import FeedError
from crash_risk.domain.events import FeedStaleDetected, RiskStateChanged, TickCompleted
from crash_risk.domain.models import FundingPoint, MetricSample, RiskPerInstrument
from crash_risk.observability.logging import get_logger
from crash_risk.observability.metrics import (
    record_feed_error,
    record_stale_override,
    record_state_change,
    record_tick,
    update_risk_states,
)
from crash_risk.services.watchdog import StaleEpisode, build_stale_records

if TYPE_CHECKING:
    from crash_risk.services.engine.engine import RiskEngine

logger = get_logger(__name__)


# =============================================================================
# Loops
# =============================================================================


async def _start_loops(self: RiskEngine) -> None:
    """Start the tick and watchdog loops as supervised tasks."""
    self._task_factories = {
        "risk_tick": self._tick_loop,
        "staleness_watchdog": self._watchdog_loop,
    }
    for name, factory in self._task_factories.items():
        self._tasks[name] = self._create_task(factory(), name=name)
    logger.debug("Engine loops started")


async def _tick_loop(self: RiskEngine) -> None:
    """
    Fixed-interval tick loop.

    The first tick fires immediately. Fires missed because a tick overran
    are skipped, never queued.
    """
    interval = self.settings.scheduler.tick_interval_seconds
    logger.info(f"Tick loop started (interval={interval:.0f}s)")
    next_fire = time.monotonic()

    while not self._shutdown_event.is_set():
        try:
            await self.run_tick()
            self._mark_task_healthy("risk_tick")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # run_tick handles expected failures itself; anything here is a bug
            logger.exception(f"[TICK] Unexpected tick error: {e}")
            record_tick("failed")

        next_fire += interval
        now_mono = time.monotonic()
        if next_fire <= now_mono:
            missed = math.floor((now_mono - next_fire) / interval) + 1
            next_fire += missed * interval
            logger.warning(f"[TICK] Tick overran its interval, skipping {missed} fire(s)")

        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=next_fire - now_mono)
            break
        except TimeoutError:
            pass

    logger.info("Tick loop stopped")


async def _watchdog_loop(self: RiskEngine) -> None:
    """Independent, shorter timer that degrades the published map when the feed goes stale."""
    interval = self.settings.scheduler.watchdog_interval_seconds
    logger.debug(f"Watchdog loop started (interval={interval:.0f}s)")

    while not self._shutdown_event.is_set():
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            break
        except TimeoutError:
            pass

        try:
            await self.check_staleness()
            self._mark_task_healthy("staleness_watchdog")
        except Exception as e:
            logger.warning(f"Watchdog error: {e}")

    logger.debug("Watchdog loop stopped")


# =============================================================================
# Tick
# =============================================================================


async def run_tick(self: RiskEngine, now: float | None = None) -> Mapping[str, RiskPerInstrument] | None:
    """
    Run one tick: fetch, evaluate every instrument, publish atomically.

    Returns the newly published map, or None when the tick was skipped
    (overlap), abandoned (every fetch failed) or discarded (shutdown).
    """
    if self._tick_lock.locked():
        logger.debug("[TICK] Previous tick still in flight, skipping")
        record_tick("skipped_overlap")
        return None

    async with self._tick_lock:
        if self._shutdown_event.is_set():
            return None

        started = time.monotonic()
        tick_now = self._clock() if now is None else now
        self._tick_seq += 1
        tick_id = self._tick_seq
        instruments = list(self._instruments)

        try:
            samples = await self._fetch_all(instruments)
            funding = await self._fetch_funding_histories(
                [i for i in instruments if isinstance(samples.get(i), MetricSample)], tick_now
            )
        except asyncio.CancelledError:
            record_tick("cancelled")
            logger.debug(f"[TICK] Tick {tick_id} cancelled during fetch")
            raise

        failed = [i for i in instruments if not isinstance(samples.get(i), MetricSample)]
        if instruments and len(failed) == len(instruments):
            logger.warning(
                f"[TICK] Tick {tick_id} abandoned: feed failed for all {len(instruments)} instruments",
                extra={"tick_id": tick_id},
            )
            record_tick("abandoned", time.monotonic() - started)
            return None

        if self._shutdown_event.is_set():
            record_tick("cancelled")
            return None

        # Copy-on-write: nothing below is visible until the swap
        working = self._state.clone()
        published: dict[str, RiskPerInstrument] = {}
        for instrument in instruments:
            sample = samples.get(instrument)
            if isinstance(sample, MetricSample):
                published[instrument] = self._pipeline.process(working, sample, tick_now, funding.get(instrument))
                continue
            record = self._record_for_failed(instrument, tick_now)
            if record is not None:
                published[instrument] = record

        previous = self._published
        self._state = working
        self._published = published
        for instrument in instruments:
            if instrument not in failed:
                self._instrument_success[instrument] = tick_now
        recovered = self._watchdog.mark_success(tick_now)

        duration = time.monotonic() - started
        record_tick("published", duration)
        if recovered:
            logger.info("[HEALTH] Feed recovered, risk evaluation resumed")
        logger.debug(
            f"[TICK] Tick {tick_id} published {len(published)} instruments in {duration:.2f}s"
            + (f" (feed failed: {', '.join(failed)})" if failed else ""),
            extra={"tick_id": tick_id},
        )

        await self._after_publish(previous, published, tick_id, failed, duration)
        await self._save_history([i for i in instruments if i not in failed])

        return MappingProxyType(published)


async def _fetch_all(self: RiskEngine, instruments: list[str]) -> dict[str, MetricSample | BaseException]:
    """Fetch every instrument concurrently; failures are returned, not raised."""
    timeout = self.settings.scheduler.fetch_timeout_seconds

    async def fetch(instrument: str) -> MetricSample:
        sample = await asyncio.wait_for(self.feed.get_instrument_metrics(instrument), timeout=timeout)
        if sample.instrument != instrument:
            raise FeedError(f"Feed returned {sample.instrument} for {instrument}", instrument=instrument)
        return sample

    results = await asyncio.gather(*(fetch(i) for i in instruments), return_exceptions=True)

    out: dict[str, MetricSample | BaseException] = {}
    for instrument, result in zip(instruments, results, strict=True):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            record_feed_error(instrument)
            logger.warning(f"Feed error for {instrument}: {type(result).__name__}: {result}")
        out[instrument] = result
    return out


async def _fetch_funding_histories(
    self: RiskEngine,
    instruments: list[str],
    now: float,
) -> dict[str, list[FundingPoint]]:
    """
    Funding history for indicators that need it, cached for refresh_seconds.

    A failed refresh keeps the previous cache entry; an instrument with no
    history at all is simply absent (indicator not evaluated).
    """
    if not self._pipeline.needs_funding_history or not instruments:
        return {}

    cfg = self.settings.funding_anomaly
    stale = [
        i for i in instruments
        if i not in self._funding_cache or now - self._funding_cache[i][0] >= cfg.refresh_seconds
    ]
    if stale:
        since = now - cfg.lookback_hours * 3600
        timeout = self.settings.scheduler.fetch_timeout_seconds
        results = await asyncio.gather(
            *(asyncio.wait_for(self.feed.get_funding_history(i, since), timeout=timeout) for i in stale),
            return_exceptions=True,
        )
        for instrument, result in zip(stale, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.debug(f"Funding history unavailable for {instrument}: {result}")
                continue
            self._funding_cache[instrument] = (now, list(result))

    return {i: self._funding_cache[i][1] for i in instruments if i in self._funding_cache}


def _record_for_failed(self: RiskEngine, instrument: str, now: float) -> RiskPerInstrument | None:
    """
    What to publish for an instrument whose fetch failed this tick.

    The previous record is carried while the instrument's own data is
    younger than stale_after_seconds. Past that it becomes UNSUPPORTED
    ("feed stale"), even when the other instruments keep ticking.
    """
    previous = self._published.get(instrument)
    # An instrument that never succeeded is timed from when it first failed
    last_ok = self._instrument_success.setdefault(instrument, self._watchdog.last_success)
    age = now - last_ok
    if age <= self.settings.scheduler.stale_after_seconds:
        return previous
    if previous is not None and previous.trace.stale:
        return previous

    episode = StaleEpisode(detected_at=now, last_success_at=last_ok, age_seconds=age)
    known = {instrument: previous} if previous is not None else {}
    record = build_stale_records([instrument], known, episode)[instrument]
    record_stale_override()
    logger.warning(f"[STALE] {instrument}: no data for {age:.0f}s, set to UNSUPPORTED")
    return record


# =============================================================================
# Publication
# =============================================================================


async def _after_publish(
    self: RiskEngine,
    previous: Mapping[str, RiskPerInstrument],
    published: Mapping[str, RiskPerInstrument],
    tick_id: int,
    failed: list[str],
    duration: float,
) -> None:
    """Subscribers, state-change logging, metrics and domain events."""
    update_risk_states({i: r.state for i, r in published.items()})

    for instrument, record in published.items():
        hysteresis = record.trace.hysteresis
        if hysteresis is None or record is previous.get(instrument) or not hysteresis.changed:
            continue
        rule = record.trace.decision.rule if record.trace.decision else ""
        old = hysteresis.previous_state
        record_state_change(old, record.state)
        logger.info(
            f"[STATE] {instrument}: {old.value if old else 'NONE'} -> {record.state.value} ({rule})",
            extra={
                "instrument": instrument,
                "state": record.state.value,
                "previous_state": old.value if old else None,
                "rule": rule,
                "tick_id": tick_id,
            },
        )
        if self.event_bus:
            await self.event_bus.publish(
                RiskStateChanged(instrument=instrument, old_state=old, new_state=record.state, rule=rule)
            )

    await self._notify_subscribers(published)

    if self.event_bus:
        await self.event_bus.publish(
            TickCompleted(
                tick_id=tick_id,
                instruments=len(published),
                failed_instruments=tuple(failed),
                duration_seconds=duration,
            )
        )


async def _notify_subscribers(self: RiskEngine, published: Mapping[str, RiskPerInstrument]) -> None:
    """Push the new map to every subscriber; a failing callback never affects others."""
    view = MappingProxyType(dict(published))
    for callback in list(self._subscribers):
        try:
            result = callback(view)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            name = getattr(callback, "__name__", repr(callback))
            logger.exception(f"Subscriber {name} failed: {e}")


async def check_staleness(self: RiskEngine, now: float | None = None) -> bool:
    """
    Degrade the published map to UNSUPPORTED if the feed is stale.

    Acts once per stale episode and only replaces the published map; the
    rolling statistics are never touched. Returns True if it acted.
    """
    check_now = self._clock() if now is None else now
    episode = self._watchdog.check(check_now)
    if episode is None:
        return False

    records = build_stale_records(self._instruments, self._published, episode)
    self._published = records

    record_stale_override()
    update_risk_states({i: r.state for i, r in records.items()})
    logger.warning(
        f"[STALE] No successful tick for {episode.age_seconds:.0f}s, "
        f"{len(records)} instruments set to UNSUPPORTED"
    )

    await self._notify_subscribers(records)
    if self.event_bus:
        await self.event_bus.publish(
            FeedStaleDetected(age_seconds=episode.age_seconds, instruments=tuple(records))
        )
    return True
