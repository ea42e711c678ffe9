"""Per-message retry counters handed to the protocol library.

The protocol library counts decryption/delivery retries per message id and
gives up after a few attempts. Counters expire after ``ttl_seconds`` so a
message that failed long ago can be retried again. One instance is shared
by both sessions.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional, Tuple


class RetryCounterCache:

    def __init__(self, ttl_seconds: float = 120.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[int]:
        with self._lock:
            entry = self._counters.get(key)
            if entry is None:
                return None
            value, written_at = entry
            if self._clock() - written_at >= self.ttl_seconds:
                del self._counters[key]
                return None
            return value

    def set(self, key: str, value: int) -> None:
        with self._lock:
            self._counters[key] = (value, self._clock())

    def delete(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    def increment(self, key: str) -> int:
        """Bump the counter for ``key`` and return the new value."""
        value = (self.get(key) or 0) + 1
        self.set(key, value)
        return value
