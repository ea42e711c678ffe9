"""
Per-session event dispatch.

Every subscriber owns an ``asyncio.Queue`` and one persistent worker task.
Events therefore reach a given handler one at a time and in delivery order,
while a handler that is suspended on network I/O never holds back the other
handlers of the same session, nor any handler of the other session (each
session has its own bus).
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

from nazuna.datatypes.protocol_datatypes import ProtocolEvent
from nazuna.util.logger import get_logger

logger = get_logger("event_bus")

Handler = Callable[[Any], Any]


@dataclass
class _Subscription:
    event_type: ProtocolEvent
    handler: Handler
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: asyncio.Task | None = None


class SessionEventBus:
    """Ordered, isolated event delivery for one session."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscriptions: Dict[ProtocolEvent, List[_Subscription]] = {}
        self._started = False
        self._closed = False

    def subscribe(self, event_type: ProtocolEvent, handler: Handler) -> None:
        subscription = _Subscription(event_type=event_type, handler=handler)
        self._subscriptions.setdefault(event_type, []).append(subscription)
        if self._started:
            self._start_worker(subscription)

    def publish(self, event_type: ProtocolEvent, payload: Any) -> None:
        """Queue ``payload`` for every subscriber of ``event_type``. Never raises."""
        if self._closed:
            logger.debug("[EVENT BUS %s] Dropping %s after shutdown", self.name, event_type)
            return
        for subscription in self._subscriptions.get(event_type, []):
            subscription.queue.put_nowait(payload)

    def start(self) -> None:
        """Start one worker per subscriber."""
        self._started = True
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                self._start_worker(subscription)

    def _start_worker(self, subscription: _Subscription) -> None:
        if subscription.worker is None or subscription.worker.done():
            subscription.worker = asyncio.create_task(
                self._worker(subscription),
                name=f"nazuna-bus-{self.name}-{subscription.event_type.value}",
            )

    async def _worker(self, subscription: _Subscription) -> None:
        while True:
            payload = await subscription.queue.get()
            try:
                result = subscription.handler(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "[EVENT BUS %s] Handler for %s raised", self.name, subscription.event_type
                )
            finally:
                subscription.queue.task_done()

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                await subscription.queue.join()

    async def shutdown(self) -> None:
        """Stop accepting events and cancel the workers (queued events are dropped)."""
        self._closed = True
        workers = [
            subscription.worker
            for subscriptions in self._subscriptions.values()
            for subscription in subscriptions
            if subscription.worker is not None and not subscription.worker.done()
        ]
        current = asyncio.current_task()
        for worker in workers:
            if worker is not current:
                worker.cancel()
        pending = [worker for worker in workers if worker is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.debug("[EVENT BUS %s] Shut down %d workers", self.name, len(workers))
