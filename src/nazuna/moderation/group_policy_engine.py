"""
Group membership policy engine.

Turns a :class:`MembershipEvent` plus the group's JSON configuration into
outbound actions. Rules run in a fixed order and every applicable rule
fires; only the blacklist rule ends evaluation early, so a blacklisted
member never gets a welcome message.

Rule order for one event:

1. self-filter (the bot's own membership changes are ignored)
2. admin-change announcement (``x9``) on promote/demote
3. anti-fake on add (country prefix outside the allow-set)
4. anti-PT on add (Portuguese prefix)
5. blacklist on add (terminal)
6. welcome on add (``bemvindo``)
7. exit on remove (``exit.enabled``)

Outbound failures are logged with the group id and do not stop later rules.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, FrozenSet, List, Optional

from nazuna.cache.group_metadata_cache import GroupMetadataCache
from nazuna.configuration.app_configuration import DEFAULT_FALLBACK_AVATAR, AppConfig
from nazuna.configuration.group_config import GroupConfig, GroupConfigStore
from nazuna.datatypes.protocol_datatypes import (
    GroupMetadata,
    MembershipAction,
    MembershipEvent,
    OutboundMessage,
    bare_id,
)
from nazuna.moderation import templates
from nazuna.moderation.banner import BannerRenderer
from nazuna.util.logger import get_logger

logger = get_logger("group_policy_engine")

BANNER_SENTINEL = "banner"


class PolicyRule(Enum):
    ROLE_CHANGE = "x9"
    ANTIFAKE = "antifake"
    ANTIPT = "antipt"
    BLACKLIST = "blacklist"
    WELCOME = "welcome"
    EXIT = "exit"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class PolicySettings:
    """Tunables of the policy engine, normally read from ``app_config.yml``."""

    allowed_country_prefixes: FrozenSet[str] = frozenset({"55", "35"})
    blocked_prefix: str = "351"
    action_timeout: float = 30.0
    fallback_avatar_url: str = DEFAULT_FALLBACK_AVATAR
    banner_title: str = "Bem-vindo(a)!"
    banner_message: str = "Aceita um cafézinho enquanto lê as regras?"

    @classmethod
    def from_app_config(cls, app_config: AppConfig) -> "PolicySettings":
        return cls(
            allowed_country_prefixes=app_config.allowed_country_prefixes,
            blocked_prefix=app_config.blocked_prefix,
            action_timeout=app_config.action_timeout,
            fallback_avatar_url=app_config.fallback_avatar_url,
            banner_title=app_config.banner_title,
            banner_message=app_config.banner_message,
        )


@dataclass(slots=True)
class PolicyOutcome:
    """What the engine did for one event."""

    group_id: str
    fired: List[PolicyRule] = field(default_factory=list)
    failed: List[PolicyRule] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


class GroupPolicyEngine:
    """Evaluates the moderation rules for membership events."""

    def __init__(
        self,
        config_store: GroupConfigStore,
        metadata_cache: GroupMetadataCache,
        banner_renderer: BannerRenderer,
        settings: PolicySettings | None = None,
    ) -> None:
        self.config_store = config_store
        self.metadata_cache = metadata_cache
        self.banner_renderer = banner_renderer
        self.settings = settings or PolicySettings()

    # --------------------------
    # Outbound helpers
    # --------------------------
    async def _call(self, awaitable: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(awaitable, timeout=self.settings.action_timeout)

    async def _send(self, client: Any, group_id: str, message: OutboundMessage) -> None:
        await self._call(client.send_message(group_id, message.to_payload()))

    async def _remove(self, client: Any, group_id: str, participant: str) -> None:
        await self._call(client.remove_participant(group_id, participant))

    async def _run_rule(
        self,
        outcome: PolicyOutcome,
        rule: PolicyRule,
        action: Callable[[], Awaitable[None]],
    ) -> None:
        """Run one rule's outbound actions, logging failures instead of raising."""
        try:
            await action()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            outcome.failed.append(rule)
            logger.error(
                "[POLICY ENGINE] Rule %s failed in group %s: %s",
                rule,
                outcome.group_id,
                str(exc) or type(exc).__name__,
            )
        else:
            outcome.fired.append(rule)
            logger.info("[POLICY ENGINE] Rule %s applied in group %s", rule, outcome.group_id)

    async def _remove_and_notify(self, client: Any, group_id: str, participant: str, text: str) -> None:
        await self._remove(client, group_id, participant)
        await self._send(client, group_id, OutboundMessage.text_message(text, [participant]))

    # --------------------------
    # Rule predicates
    # --------------------------
    def is_fake_number(self, participant: str) -> bool:
        return bare_id(participant)[:2] not in self.settings.allowed_country_prefixes

    def is_blocked_country(self, participant: str) -> bool:
        prefix = self.settings.blocked_prefix
        return bare_id(participant)[: len(prefix)] == prefix

    # --------------------------
    # Welcome / exit messages
    # --------------------------
    async def _resolve_welcome_image(self, client: Any, participant: str, image: str) -> dict:
        if image != BANNER_SENTINEL:
            return {"url": image}

        avatar_url = self.settings.fallback_avatar_url
        try:
            fetched = await self._call(client.fetch_profile_picture(participant))
            if fetched:
                avatar_url = fetched
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug("[POLICY ENGINE] No profile picture for %s: %s", participant, exc)

        banner = await self._call(
            self.banner_renderer.render_welcome_banner(
                avatar_url, self.settings.banner_title, self.settings.banner_message
            )
        )
        return {"data": banner, "mimetype": "image/png"}

    async def build_welcome_message(
        self, client: Any, participant: str, config: GroupConfig, metadata: GroupMetadata
    ) -> OutboundMessage:
        template = (
            config.textbv
            if templates.has_custom_text(config.textbv)
            else templates.default_welcome_text(participant, metadata)
        )
        text = templates.render_placeholders(template, participant, metadata)

        if not config.welcome_image:
            return OutboundMessage.text_message(text, [participant])

        try:
            image = await self._resolve_welcome_image(client, participant, config.welcome_image)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "[POLICY ENGINE] Welcome image unavailable in group %s, sending text only: %s",
                metadata.id or config.group_id,
                str(exc) or type(exc).__name__,
            )
            return OutboundMessage.text_message(text, [participant])
        return OutboundMessage.image_message(image, text, [participant])

    def build_exit_message(self, participant: str, config: GroupConfig, metadata: GroupMetadata) -> OutboundMessage:
        template = (
            config.exit.text
            if templates.has_custom_text(config.exit.text)
            else templates.default_exit_text(participant, metadata)
        )
        text = templates.render_placeholders(template, participant, metadata)
        if config.exit.image:
            return OutboundMessage.image_message({"url": config.exit.image}, text, [participant])
        return OutboundMessage.text_message(text, [participant])

    # --------------------------
    # Entry point
    # --------------------------
    async def handle_membership_event(self, client: Any, event: MembershipEvent) -> PolicyOutcome:
        """Evaluate every applicable rule for ``event`` and perform its actions."""
        group_id = event.group_id
        outcome = PolicyOutcome(group_id=group_id)
        participant = event.participant

        if participant is None:
            outcome.skipped_reason = "no-participant"
            return outcome

        own_id = getattr(client, "user_id", None)
        if own_id and bare_id(participant) == bare_id(own_id):
            outcome.skipped_reason = "self"
            return outcome

        metadata = await self.metadata_cache.get_or_fetch(group_id, client, self.settings.action_timeout)
        if metadata is None:
            outcome.skipped_reason = "no-metadata"
            return outcome

        config = await self.config_store.load_group_config(group_id)
        if config is None:
            outcome.skipped_reason = "no-config"
            return outcome

        action = event.action

        if action in (MembershipAction.PROMOTE, MembershipAction.DEMOTE) and config.x9:
            author = event.author or templates.UNKNOWN_AUTHOR
            mentions = [participant] + ([event.author] if event.author else [])
            message = OutboundMessage.text_message(templates.role_change_text(participant, action, author), mentions)
            await self._run_rule(outcome, PolicyRule.ROLE_CHANGE, lambda: self._send(client, group_id, message))

        if action is MembershipAction.ADD:
            # Anti-fake and anti-PT do not short-circuit: a later rule may act on the same member again
            if config.antifake and self.is_fake_number(participant):
                await self._run_rule(
                    outcome,
                    PolicyRule.ANTIFAKE,
                    lambda: self._remove_and_notify(client, group_id, participant, templates.antifake_text(participant)),
                )

            if config.antipt and self.is_blocked_country(participant):
                await self._run_rule(
                    outcome,
                    PolicyRule.ANTIPT,
                    lambda: self._remove_and_notify(client, group_id, participant, templates.antipt_text(participant)),
                )

            entry = config.blacklist.get(participant)
            if entry is not None:
                await self._run_rule(
                    outcome,
                    PolicyRule.BLACKLIST,
                    lambda: self._remove_and_notify(
                        client, group_id, participant, templates.blacklist_text(participant, entry.reason)
                    ),
                )
                return outcome

            if config.bemvindo:
                async def send_welcome() -> None:
                    message = await self.build_welcome_message(client, participant, config, metadata)
                    await self._send(client, group_id, message)

                await self._run_rule(outcome, PolicyRule.WELCOME, send_welcome)

        if action is MembershipAction.REMOVE and config.exit.enabled:
            message = self.build_exit_message(participant, config, metadata)
            await self._run_rule(outcome, PolicyRule.EXIT, lambda: self._send(client, group_id, message))

        return outcome
