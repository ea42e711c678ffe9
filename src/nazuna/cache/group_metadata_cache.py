"""Time-bounded cache of group metadata shared by every session."""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from nazuna.datatypes.protocol_datatypes import GroupMetadata
from nazuna.util.logger import get_logger

logger = get_logger("group_metadata_cache")


class GroupMetadataCache:
    """
    Maps group id -> :class:`GroupMetadata` with a fixed time-to-live.

    Expiry is measured from the last ``set`` for the entry; reads never
    extend an entry's life. The clock is injectable so expiry can be tested
    without sleeping.
    """

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[GroupMetadata, float]] = {}
        self._lock = threading.Lock()

    def get(self, group_id: str) -> Optional[GroupMetadata]:
        """Return the cached metadata, or ``None`` when absent or stale."""
        with self._lock:
            entry = self._entries.get(group_id)
            if entry is None:
                return None
            metadata, written_at = entry
            if self._clock() - written_at >= self.ttl_seconds:
                del self._entries[group_id]
                return None
            return metadata

    def set(self, group_id: str, metadata: GroupMetadata) -> None:
        with self._lock:
            self._entries[group_id] = (metadata, self._clock())

    def delete(self, group_id: str) -> None:
        with self._lock:
            self._entries.pop(group_id, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            now = self._clock()
            return sum(1 for _, written_at in self._entries.values() if now - written_at < self.ttl_seconds)

    async def fetch(self, group_id: str, client: Any, timeout: float) -> Optional[GroupMetadata]:
        """
        Fetch metadata through ``client`` and store it.

        Network failures and timeouts are logged and reported as ``None``.
        """
        try:
            payload = await asyncio.wait_for(client.fetch_group_metadata(group_id), timeout=timeout)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("[GROUP METADATA CACHE] Failed to fetch metadata for group %s: %s", group_id, exc)
            return None

        if payload is None:
            return None
        try:
            metadata = GroupMetadata.from_payload(payload)
        except Exception as exc:
            logger.warning("[GROUP METADATA CACHE] Malformed metadata for group %s: %s", group_id, exc)
            return None

        self.set(group_id, metadata)
        return metadata

    async def get_or_fetch(self, group_id: str, client: Any, timeout: float) -> Optional[GroupMetadata]:
        """Return cached metadata, fetching and caching it on a miss."""
        metadata = self.get(group_id)
        if metadata is not None:
            return metadata
        return await self.fetch(group_id, client, timeout)
