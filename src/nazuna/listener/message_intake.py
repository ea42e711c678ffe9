"""Message intake.

Receives message batches from the primary session, remembers each live
message in the dedup cache and forwards it to the command router through
the session picked by the session manager's round robin.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional, Protocol

from nazuna.cache.group_metadata_cache import GroupMetadataCache
from nazuna.cache.message_cache import MessageDedupCache
from nazuna.datatypes.protocol_datatypes import InboundMessage, MessageBatch
from nazuna.session.transport import resolve_dotted
from nazuna.util.logger import get_logger

logger = get_logger("message_intake")

CommandRouter = Callable[[Any, InboundMessage, GroupMetadataCache, MessageDedupCache], Any]


class DispatchSource(Protocol):
    def dispatch_client(self) -> Any: ...


def load_command_router(path: Optional[str]) -> Optional[CommandRouter]:
    """Import the router given as ``module:attribute``; ``None`` when unusable."""
    if not path:
        logger.warning("[MESSAGE INTAKE] No command router configured; messages will only be cached")
        return None
    try:
        router = resolve_dotted(path)
    except (ImportError, AttributeError, ValueError) as exc:
        logger.error("[MESSAGE INTAKE] Could not load command router %s: %s", path, exc)
        return None
    if not callable(router):
        logger.error("[MESSAGE INTAKE] Command router %s is not callable", path)
        return None
    return router


class MessageIntake:

    def __init__(
        self,
        dispatcher: DispatchSource,
        metadata_cache: GroupMetadataCache,
        dedup_cache: MessageDedupCache,
        router: Optional[CommandRouter],
    ) -> None:
        self.dispatcher = dispatcher
        self.metadata_cache = metadata_cache
        self.dedup_cache = dedup_cache
        self.router = router

    async def handle_batch(self, payload: Any) -> int:
        """
        Process one inbound batch and return how many messages were forwarded.

        History-sync replays are ignored; messages without payload or chat id
        are skipped. Router errors are logged per message.
        """
        try:
            batch = MessageBatch.from_payload(payload)
        except (AttributeError, TypeError) as exc:
            logger.warning("[MESSAGE INTAKE] Malformed message batch: %s", exc)
            return 0

        if not batch.is_live:
            return 0

        if self.router is None:
            logger.error("[MESSAGE INTAKE] Invalid or missing command router; %d message(s) not handled", len(batch.messages))

        forwarded = 0
        for message in batch.messages:
            if not message.payload or not message.remote_id:
                continue

            self.dedup_cache.set(message.message_id, message.payload)
            if self.router is None:
                continue

            client = self.dispatcher.dispatch_client()
            try:
                result = self.router(client, message, self.metadata_cache, self.dedup_cache)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "[MESSAGE INTAKE] Error handling message %s from %s: %s",
                    message.message_id,
                    message.remote_id,
                    exc,
                    exc_info=True,
                )
                continue
            forwarded += 1
        return forwarded
