"""
Supervision of the engine's background loops.

A loop that dies while the engine is running is restarted after an
exponential backoff (2s, 4s, ... capped at 60s). Nothing is restarted once
shutdown has begun.

These functions are used as methods of RiskEngine (assigned in engine.py).
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from crash_risk.observability.logging import get_logger

if TYPE_CHECKING:
    from crash_risk.services.engine.engine import RiskEngine

logger = get_logger(__name__)

MAX_RESTART_DELAY_SECONDS = 60.0


def _restart_delay(attempts: int) -> float:
    return min(MAX_RESTART_DELAY_SECONDS, 2.0 ** min(attempts, 6))


def _create_task(self: RiskEngine, coro: Any, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(lambda done: self._handle_task_done(done, name))
    return task


def _handle_task_done(self: RiskEngine, task: asyncio.Task, name: str) -> None:
    """Done-callback: schedule a restart unless the loop was cancelled or we are stopping."""
    if task.cancelled():
        return

    error = task.exception()
    if self._stopping or self._shutdown_event.is_set():
        if error is not None:
            logger.debug(f"Loop {name} raised during shutdown: {error!r}")
        return

    if error is not None:
        logger.error(f"Loop {name} crashed: {error!r}", exc_info=error)
        reason = type(error).__name__
    else:
        logger.error(f"Loop {name} returned while the engine is running")
        reason = "returned"

    attempts = self._task_restart_attempts[name] = self._task_restart_attempts.get(name, 0) + 1

    pending = self._task_restart_jobs.pop(name, None)
    if pending is not None and not pending.done():
        pending.cancel()

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    self._task_restart_jobs[name] = loop.create_task(
        self._restart_task_after_delay(name, _restart_delay(attempts), reason),
        name=f"restart_{name}",
    )


def _mark_task_healthy(self: RiskEngine, name: str) -> None:
    """A loop finished a clean iteration: its next crash restarts from the shortest delay."""
    if self._task_restart_attempts.pop(name, 0):
        logger.info(f"Loop {name} healthy again, restart backoff reset")


async def _restart_task_after_delay(self: RiskEngine, name: str, delay_seconds: float, reason: str) -> None:
    try:
        await asyncio.sleep(delay_seconds)
    except asyncio.CancelledError:
        return

    if self._stopping or self._shutdown_event.is_set():
        return
    factory = self._task_factories.get(name)
    if factory is None:
        logger.error(f"Cannot restart loop {name}: no factory registered")
        return

    attempts = self._task_restart_attempts.get(name, 0)
    logger.warning(f"Restarting loop {name} (attempt {attempts}, after {delay_seconds:.0f}s, reason={reason})")
    self._tasks[name] = self._create_task(factory(), name=name)


async def _cancel_all_tasks(self: RiskEngine) -> None:
    """Cancel pending restarts first, then the loops; in-flight feed calls are aborted with them."""
    restarts = list(self._task_restart_jobs.values())
    self._task_restart_jobs.clear()
    for job in restarts:
        job.cancel()

    loops = dict(self._tasks)
    self._tasks.clear()
    if not loops:
        return

    logger.debug(f"Cancelling {len(loops)} loops")
    for task in loops.values():
        task.cancel()
    outcomes = await asyncio.gather(*loops.values(), return_exceptions=True)
    for name, outcome in zip(loops, outcomes, strict=True):
        if isinstance(outcome, Exception):
            logger.error(f"Loop {name} raised while cancelling: {outcome!r}")
