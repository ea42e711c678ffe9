"""Short-lived message id -> payload map, cleared wholesale on an interval.

Quoting and message retries look messages up here instead of asking the
server again. Entries do not expire individually: the whole map is dropped
once ``clear_interval`` seconds have passed since the previous clear.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Optional

from nazuna.util.logger import get_logger

logger = get_logger("message_cache")


class MessageDedupCache:
    """Message cache with interval-based wholesale clearing."""

    def __init__(self, clear_interval: float = 600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.clear_interval = clear_interval
        self._clock = clock
        self._messages: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._last_clear = clock()
        self._task: asyncio.Task | None = None

    def _clear_if_due(self) -> None:
        # Caller holds the lock
        now = self._clock()
        if now - self._last_clear >= self.clear_interval:
            self._messages.clear()
            self._last_clear = now

    def set(self, message_id: str, payload: Any) -> None:
        """Store ``payload`` under ``message_id``; a later write wins."""
        with self._lock:
            self._clear_if_due()
            self._messages[message_id] = payload

    def get(self, message_id: str) -> Optional[Any]:
        with self._lock:
            self._clear_if_due()
            return self._messages.get(message_id)

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            self._clear_if_due()
            return message_id in self._messages

    def __len__(self) -> int:
        with self._lock:
            self._clear_if_due()
            return len(self._messages)

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()
            self._last_clear = self._clock()

    # --------------------------
    # Periodic clearing
    # --------------------------
    async def _run_loop(self) -> None:
        logger.info("[MESSAGE CACHE] Starting periodic clear (interval=%.1fs)", self.clear_interval)
        try:
            while True:
                await asyncio.sleep(self.clear_interval)
                count = len(self._messages)
                self.clear()
                logger.debug("[MESSAGE CACHE] Cleared %d cached messages", count)
        except asyncio.CancelledError:
            logger.info("[MESSAGE CACHE] Periodic clear cancelled")
            raise

    def start(self) -> None:
        """Start the background clear task if not already running."""
        if self._task and not self._task.done():
            logger.warning("[MESSAGE CACHE] Clear task already running")
            return
        self._task = asyncio.create_task(self._run_loop(), name="nazuna-message-cache-clear")

    async def shutdown(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("[MESSAGE CACHE] Message cache shutdown complete")
