"""Group event listener.

Keeps the metadata cache fresh on group-metadata-changed events and hands
membership changes to the policy engine. Both handlers are the last line of
defence for their events: nothing they raise may reach the session's bus.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from nazuna.cache.group_metadata_cache import GroupMetadataCache
from nazuna.datatypes.protocol_datatypes import MembershipEvent
from nazuna.moderation.group_policy_engine import GroupPolicyEngine, PolicyOutcome
from nazuna.util.logger import get_logger

logger = get_logger("group_listener")


class GroupListener:

    def __init__(self, engine: GroupPolicyEngine, metadata_cache: GroupMetadataCache, fetch_timeout: float = 30.0) -> None:
        self.engine = engine
        self.metadata_cache = metadata_cache
        self.fetch_timeout = fetch_timeout

    async def handle_group_update(self, client: Any, updates: Any) -> None:
        """Refetch metadata for the updated group and store it in the cache."""
        try:
            entry = updates[0] if isinstance(updates, (list, tuple)) else updates
            group_id = entry.get("id") if isinstance(entry, dict) else getattr(entry, "id", None)
        except (IndexError, AttributeError):
            logger.debug("[GROUP LISTENER] Ignoring empty group update")
            return
        if not group_id:
            return

        metadata = await self.metadata_cache.fetch(str(group_id), client, self.fetch_timeout)
        if metadata is not None:
            logger.debug("[GROUP LISTENER] Refreshed metadata for group %s", group_id)

    async def handle_membership(self, client: Any, payload: Any) -> Optional[PolicyOutcome]:
        try:
            event = MembershipEvent.from_payload(payload)
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("[GROUP LISTENER] Malformed membership event %r: %s", payload, exc)
            return None

        try:
            outcome = await self.engine.handle_membership_event(client, event)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "[GROUP LISTENER] Policy evaluation failed for %s in group %s", event.action, event.group_id
            )
            return None

        if outcome.skipped:
            logger.debug("[GROUP LISTENER] Event %s in group %s skipped (%s)", event.action, event.group_id, outcome.skipped_reason)
        return outcome
