"""
In-Memory Event Bus Implementation.

Queue-based pub/sub for engine events. The engine must never wait on a slow
consumer, so the queue is bounded: when it is full the oldest pending event
is dropped and counted.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from crash_risk.domain.events import DomainEvent
from crash_risk.observability.logging import get_logger
from crash_risk.ports.event_bus import EventBusPort

logger = get_logger(__name__)

T = TypeVar("T", bound=DomainEvent)
Handler = Callable[[DomainEvent], Awaitable[None]]


class InMemoryEventBus(EventBusPort):
    """
    In-memory async event bus.

    - Handlers are matched on the exact event class
    - One failing handler never affects the others or the publisher
    - Before start() (and after stop()) events are dispatched inline
    - stop() delivers whatever is still queued

    Args:
        max_pending: Queue bound; the oldest event is dropped beyond it.
    """

    def __init__(self, max_pending: int = 1000):
        self._handlers: dict[type[DomainEvent], list[Handler]] = defaultdict(list)
        self._pending: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=max_pending)
        self._worker: asyncio.Task | None = None
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None

    async def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._drain_forever(), name="event_bus_worker")
            logger.debug("Event bus started")

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

        while not self._pending.empty():
            await self._deliver(self._pending.get_nowait())
        logger.debug(f"Event bus stopped (dropped={self.dropped})")

    def subscribe(self, event_type: type[T], handler: Callable[[T], Awaitable[None]]) -> None:
        handlers = self._handlers[event_type]
        if handler not in handlers:
            handlers.append(handler)  # type: ignore[arg-type]

    def unsubscribe(self, event_type: type[T], handler: Callable[[T], Awaitable[None]]) -> None:
        with contextlib.suppress(ValueError):
            self._handlers[event_type].remove(handler)  # type: ignore[arg-type]

    def subscriber_count(self, event_type: type[DomainEvent]) -> int:
        return len(self._handlers.get(event_type, ()))

    async def publish(self, event: DomainEvent) -> None:
        if self._worker is None:
            await self._deliver(event)
            return
        if self._pending.full():
            self._pending.get_nowait()
            self.dropped += 1
            logger.warning(f"Event queue full, dropped oldest event (total dropped={self.dropped})")
        self._pending.put_nowait(event)

    async def _drain_forever(self) -> None:
        while True:
            event = await self._pending.get()
            # Shield delivery so stop() never cancels a handler half-way
            await asyncio.shield(self._deliver(event))

    async def _deliver(self, event: DomainEvent) -> None:
        handlers = list(self._handlers.get(type(event), ()))
        if not handlers:
            return
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results, strict=True):
            if isinstance(result, Exception):
                name = getattr(handler, "__name__", repr(handler))
                logger.error(f"Handler {name} failed for {event.event_type}: {result}", exc_info=result)
