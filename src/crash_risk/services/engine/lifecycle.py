"""
Startup and shutdown lifecycle management.

These functions are used as methods of RiskEngine (assigned in engine.py).
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from crash_risk.domain.errors import StoreError
from crash_risk.observability.logging import get_logger

if TYPE_CHECKING:
    from crash_risk.services.engine.engine import RiskEngine

logger = get_logger(__name__)


async def start(self: RiskEngine) -> None:
    """Open collaborators, load history, start the tick and watchdog loops."""
    if self._running:
        logger.warning("Engine already running")
        return

    logger.info(f"Risk engine starting ({len(self._instruments)} instruments, mode={self._pipeline.mode})")
    self._running = True
    self._stopping = False
    self._shutdown_event.clear()

    try:
        await self.open()
        self._watchdog.mark_success(self._clock())
        await self._start_loops()
        logger.info("Risk engine started")
    except Exception as e:
        logger.exception(f"Risk engine start failed: {e}")
        await self.stop()
        raise


async def open(self: RiskEngine) -> None:
    """
    Open feed, store and event bus and load persisted history.

    Used by start(); also usable on its own for one-shot ticks.
    """
    if self._opened:
        return
    await self.feed.initialize()
    if self.store:
        await self.store.initialize()
        await self._load_history()
    if self.event_bus:
        await self.event_bus.start()
    self._opened = True


async def stop(self: RiskEngine) -> None:
    """Stop both timers, abort in-flight fetches, flush history, close collaborators."""
    if self._stopping:
        logger.debug("Engine already stopping")
        return

    self._stopping = True
    self._running = False
    logger.info("Risk engine stopping...")

    self._shutdown_event.set()
    await self._cancel_all_tasks()

    # A tick that got past its fetches finishes its commit before we flush
    try:
        async with asyncio.timeout(self.settings.scheduler.shutdown_timeout_seconds):
            async with self._tick_lock:
                pass
    except TimeoutError:
        logger.warning("Timed out waiting for in-flight tick during shutdown")

    await self.close()
    logger.info("Risk engine stopped")


async def close(self: RiskEngine) -> None:
    """Final history flush, then close collaborators (best effort)."""
    if not self._opened:
        return
    self._opened = False

    await self._save_history(self._state.instruments())

    if self.event_bus:
        with contextlib.suppress(Exception):
            await self.event_bus.stop()
    if self.store:
        try:
            await self.store.close()
        except Exception as e:
            logger.warning(f"Failed to close history store: {e}")
    try:
        await self.feed.close()
    except Exception as e:
        logger.warning(f"Failed to close feed: {e}")


async def _load_history(self: RiskEngine) -> int:
    """
    Restore persisted history. A cold start (empty store) is normal.

    Corrupt payloads are skipped per instrument; a store that cannot be
    read at all leaves the engine with empty history.
    """
    if not self.store:
        return 0
    try:
        payloads = await self.store.load_all()
    except StoreError as e:
        logger.warning(f"Could not load history, starting cold: {e}")
        return 0

    loaded = 0
    for instrument, payload in payloads.items():
        try:
            self._state.restore(instrument, payload)
            loaded += 1
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping stored history for {instrument}: {e}")

    if loaded:
        logger.info(f"Loaded history for {loaded} instruments")
    else:
        logger.info("No stored history, cold start")
    return loaded


async def _save_history(self: RiskEngine, instruments: list[str]) -> None:
    """Persist the committed state. Failures are logged; they never fail a tick."""
    if not self.store or not instruments:
        return
    payloads = {i: self._state.to_payload(i) for i in instruments}
    try:
        await self.store.save_many(payloads)
    except StoreError as e:
        logger.warning(f"Failed to save history: {e}", extra={"error_code": e.error_code})
