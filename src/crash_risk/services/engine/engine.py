"""
Risk engine facade with orchestration state and method wiring.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from types import MappingProxyType
from typing import Any

from crash_risk.config.settings import Settings
from crash_risk.domain.models import FundingPoint, RiskPerInstrument
from crash_risk.ports.event_bus import EventBusPort
from crash_risk.ports.feed import MetricsFeedPort
from crash_risk.ports.store import HistoryStorePort
from crash_risk.services.engine.lifecycle import (
    _load_history,
    _save_history,
    close,
    open,
    start,
    stop,
)
from crash_risk.services.engine.loops import (
    _after_publish,
    _fetch_all,
    _fetch_funding_histories,
    _notify_subscribers,
    _record_for_failed,
    _start_loops,
    _tick_loop,
    _watchdog_loop,
    check_staleness,
    run_tick,
)
from crash_risk.services.engine.pipeline import RiskPipeline
from crash_risk.services.engine.state import EngineState
from crash_risk.services.engine.tasks import (
    _cancel_all_tasks,
    _create_task,
    _handle_task_done,
    _mark_task_healthy,
    _restart_task_after_delay,
)
from crash_risk.services.signals.base import Indicator
from crash_risk.services.signals.registry import build_indicators
from crash_risk.services.watchdog import StalenessWatchdog

RiskMapCallback = Callable[[Mapping[str, RiskPerInstrument]], Any]


class RiskEngine:
    """
    Per-instrument crash-risk engine.

    Owns all per-instrument state and is its sole mutator. Lifecycle is
    explicit (start/stop); consumers read the published map or subscribe
    to pushes.

    Args:
        settings: Engine configuration.
        feed: Market data collaborator.
        store: Optional durable history store (loaded on start, saved after each tick).
        event_bus: Optional bus for RiskStateChanged / FeedStaleDetected / TickCompleted.
        indicators: Override the configured indicator set (tests).
        clock: Epoch-seconds clock (tests).
    """

    def __init__(
        self,
        settings: Settings,
        feed: MetricsFeedPort,
        store: HistoryStorePort | None = None,
        event_bus: EventBusPort | None = None,
        indicators: Sequence[Indicator] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.feed = feed
        self.store = store
        self.event_bus = event_bus
        self._clock = clock

        self._pipeline = RiskPipeline.from_settings(
            settings, indicators if indicators is not None else build_indicators(settings)
        )
        self._state = EngineState.from_settings(settings)
        self._published: dict[str, RiskPerInstrument] = {}
        self._instruments: list[str] = []
        self.track(settings.instruments)

        self._watchdog = StalenessWatchdog(settings.scheduler.stale_after_seconds, started_at=clock())
        self._subscribers: list[RiskMapCallback] = []
        self._funding_cache: dict[str, tuple[float, list[FundingPoint]]] = {}
        self._instrument_success: dict[str, float] = {}

        self._running = False
        self._stopping = False
        self._opened = False
        self._shutdown_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()
        self._tick_seq = 0

        # Background tasks (supervised)
        self._tasks: dict[str, asyncio.Task] = {}
        self._task_factories: dict[str, Any] = {}
        self._task_restart_attempts: dict[str, int] = {}
        self._task_restart_jobs: dict[str, asyncio.Task] = {}

    @property
    def is_running(self) -> bool:
        return self._running and not self._stopping

    @property
    def instruments(self) -> list[str]:
        return list(self._instruments)

    @property
    def last_success(self) -> float:
        return self._watchdog.last_success

    # ------------------------------------------------------------------
    # Exposed interface
    # ------------------------------------------------------------------

    def get_risk_state(self, instrument: str) -> RiskPerInstrument | None:
        """Last published record for the instrument, if any."""
        return self._published.get(instrument)

    def snapshot(self) -> Mapping[str, RiskPerInstrument]:
        """Read-only view of the currently published map."""
        return MappingProxyType(self._published)

    def subscribe(self, callback: RiskMapCallback) -> Callable[[], None]:
        """
        Register a callback for every newly published map (sync or async).

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def track(self, instruments: Iterable[str]) -> None:
        """Set the tracked instrument universe (takes effect on the next tick)."""
        names = [i.strip() for i in instruments if i and i.strip()]
        self._instruments = list(dict.fromkeys(names))

    start = start
    stop = stop
    open = open
    close = close
    _load_history = _load_history
    _save_history = _save_history

    run_tick = run_tick
    check_staleness = check_staleness
    _start_loops = _start_loops
    _tick_loop = _tick_loop
    _watchdog_loop = _watchdog_loop
    _fetch_all = _fetch_all
    _fetch_funding_histories = _fetch_funding_histories
    _record_for_failed = _record_for_failed
    _after_publish = _after_publish
    _notify_subscribers = _notify_subscribers

    _create_task = _create_task
    _handle_task_done = _handle_task_done
    _mark_task_healthy = _mark_task_healthy
    _restart_task_after_delay = _restart_task_after_delay
    _cancel_all_tasks = _cancel_all_tasks
