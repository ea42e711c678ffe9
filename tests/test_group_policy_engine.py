import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from nazuna.cache.group_metadata_cache import GroupMetadataCache
from nazuna.configuration.group_config import GroupConfigStore
from nazuna.datatypes.protocol_datatypes import GroupMetadata, MembershipAction, MembershipEvent
from nazuna.moderation.group_policy_engine import GroupPolicyEngine, PolicyRule, PolicySettings

GROUP_ID = "120363000000000000@g.us"
BOT_ID = "5511000000000:7@s.whatsapp.net"
BR_MEMBER = "5511999999999@s.whatsapp.net"
PT_MEMBER = "351911222333@s.whatsapp.net"
US_MEMBER = "14155550100@s.whatsapp.net"


def make_client(**overrides):
    client = SimpleNamespace(
        user_id=BOT_ID,
        send_message=AsyncMock(),
        remove_participant=AsyncMock(),
        fetch_group_metadata=AsyncMock(return_value=None),
        fetch_profile_picture=AsyncMock(return_value="https://pps/avatar.jpg"),
    )
    for name, value in overrides.items():
        setattr(client, name, value)
    return client


@pytest.fixture()
def groups_dir(tmp_path):
    directory = tmp_path / "grupos"
    directory.mkdir()
    return directory


@pytest.fixture()
def metadata_cache():
    cache = GroupMetadataCache()
    cache.set(
        GROUP_ID,
        GroupMetadata(
            id=GROUP_ID,
            subject="GroupName",
            participants=[f"55110000000{n:02d}@s.whatsapp.net" for n in range(10)],
            description="Regras no topo",
        ),
    )
    return cache


@pytest.fixture()
def renderer():
    return SimpleNamespace(render_welcome_banner=AsyncMock(return_value=b"\x89PNG"))


@pytest.fixture()
def engine(groups_dir, metadata_cache, renderer):
    return GroupPolicyEngine(
        GroupConfigStore(groups_dir), metadata_cache, renderer, PolicySettings(action_timeout=1)
    )


def write_group_config(groups_dir, document, group_id=GROUP_ID):
    (groups_dir / f"{group_id}.json").write_text(json.dumps(document), encoding="utf-8")


def event(action, participant, author=None):
    return MembershipEvent(group_id=GROUP_ID, action=MembershipAction(action), participants=[participant], author=author)


def sent_texts(client):
    return [call.args[1].get("text", call.args[1].get("caption")) for call in client.send_message.await_args_list]


# --------------------------
# End-to-end scenarios
# --------------------------
@pytest.mark.asyncio
async def test_custom_welcome_text_is_substituted(engine, groups_dir):
    write_group_config(groups_dir, {"bemvindo": True, "textbv": "Hi #numerodele#, welcome to #nomedogp#!"})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", "user@s.whatsapp.net"))

    assert outcome.fired == [PolicyRule.WELCOME]
    client.send_message.assert_awaited_once_with(
        GROUP_ID, {"mentions": ["user@s.whatsapp.net"], "text": "Hi @user, welcome to GroupName!"}
    )


@pytest.mark.asyncio
async def test_antipt_removes_portuguese_number(engine, groups_dir):
    write_group_config(groups_dir, {"antipt": True})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", PT_MEMBER))

    client.remove_participant.assert_awaited_once_with(GROUP_ID, PT_MEMBER)
    assert outcome.fired == [PolicyRule.ANTIPT]
    (text,) = sent_texts(client)
    assert "Portugal" in text and "anti-PT" in text


@pytest.mark.asyncio
async def test_blacklist_removes_and_skips_welcome(engine, groups_dir):
    write_group_config(groups_dir, {"blacklist": {BR_MEMBER: {"reason": "spam"}}, "bemvindo": True})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", BR_MEMBER))

    client.remove_participant.assert_awaited_once_with(GROUP_ID, BR_MEMBER)
    assert outcome.fired == [PolicyRule.BLACKLIST]
    (text,) = sent_texts(client)
    assert "spam" in text
    assert PolicyRule.WELCOME not in outcome.fired


# --------------------------
# Rule semantics
# --------------------------
@pytest.mark.asyncio
async def test_antifake_removes_and_notifies_exactly_once(engine, groups_dir):
    write_group_config(groups_dir, {"antifake": True, "antipt": True})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", US_MEMBER))

    client.remove_participant.assert_awaited_once_with(GROUP_ID, US_MEMBER)
    client.send_message.assert_awaited_once()
    payload = client.send_message.await_args.args[1]
    assert payload["mentions"] == [US_MEMBER]
    assert "número falso" in payload["text"]
    assert outcome.fired == [PolicyRule.ANTIFAKE]


@pytest.mark.asyncio
async def test_allowed_prefixes_pass_antifake(engine, groups_dir):
    write_group_config(groups_dir, {"antifake": True})
    client = make_client()

    await engine.handle_membership_event(client, event("add", BR_MEMBER))
    await engine.handle_membership_event(client, event("add", PT_MEMBER))

    client.remove_participant.assert_not_awaited()


@pytest.mark.asyncio
async def test_rules_run_in_fixed_order_without_short_circuit(engine, groups_dir):
    # 351 passes anti-fake (35 prefix) but hits anti-PT and the blacklist
    write_group_config(
        groups_dir,
        {"antifake": True, "antipt": True, "blacklist": {PT_MEMBER: {"reason": "flood"}}, "bemvindo": True},
    )
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", PT_MEMBER))

    assert outcome.fired == [PolicyRule.ANTIPT, PolicyRule.BLACKLIST]
    assert client.remove_participant.await_count == 2
    texts = sent_texts(client)
    assert "Portugal" in texts[0]
    assert "flood" in texts[1]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "action, author, expected",
    [
        ("promote", "5511222222222@s.whatsapp.net", "promovido a administrador por @5511222222222."),
        ("demote", None, "rebaixado de administrador por @alguém."),
    ],
)
async def test_role_change_is_announced_once(engine, groups_dir, action, author, expected):
    write_group_config(groups_dir, {"x9": True})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event(action, BR_MEMBER, author=author))

    client.send_message.assert_awaited_once()
    payload = client.send_message.await_args.args[1]
    assert payload["text"].endswith(expected)
    assert payload["text"].startswith("🚨 Atenção! @5511999999999 foi ")
    assert payload["mentions"] == [BR_MEMBER] + ([author] if author else [])
    assert outcome.fired == [PolicyRule.ROLE_CHANGE]


@pytest.mark.asyncio
async def test_role_change_disabled_sends_nothing(engine, groups_dir):
    write_group_config(groups_dir, {"x9": False, "bemvindo": True})
    client = make_client()

    await engine.handle_membership_event(client, event("promote", BR_MEMBER, author=BR_MEMBER))

    client.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_own_membership_changes_are_ignored(engine, groups_dir):
    write_group_config(groups_dir, {"bemvindo": True, "x9": True})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", "5511000000000@s.whatsapp.net"))

    assert outcome.skipped_reason == "self"
    client.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_group_config_is_a_silent_no_op(engine):
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", US_MEMBER))

    assert outcome.skipped_reason == "no-config"
    client.send_message.assert_not_awaited()
    client.remove_participant.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_metadata_aborts_event(groups_dir, renderer):
    write_group_config(groups_dir, {"bemvindo": True})
    engine = GroupPolicyEngine(GroupConfigStore(groups_dir), GroupMetadataCache(), renderer, PolicySettings(action_timeout=1))
    client = make_client(fetch_group_metadata=AsyncMock(side_effect=ConnectionError("offline")))

    outcome = await engine.handle_membership_event(client, event("add", BR_MEMBER))

    assert outcome.skipped_reason == "no-metadata"
    client.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_rule_does_not_stop_later_rules(engine, groups_dir):
    write_group_config(groups_dir, {"antipt": True, "blacklist": {PT_MEMBER: {"reason": "spam"}}})
    client = make_client(remove_participant=AsyncMock(side_effect=[PermissionError("not-admin"), None]))

    outcome = await engine.handle_membership_event(client, event("add", PT_MEMBER))

    assert outcome.failed == [PolicyRule.ANTIPT]
    assert outcome.fired == [PolicyRule.BLACKLIST]
    assert client.remove_participant.await_count == 2


@pytest.mark.asyncio
async def test_blacklist_is_terminal_even_when_removal_fails(engine, groups_dir):
    write_group_config(groups_dir, {"blacklist": {BR_MEMBER: {"reason": "spam"}}, "bemvindo": True})
    client = make_client(remove_participant=AsyncMock(side_effect=PermissionError("not-admin")))

    outcome = await engine.handle_membership_event(client, event("add", BR_MEMBER))

    assert outcome.failed == [PolicyRule.BLACKLIST]
    client.send_message.assert_not_awaited()


@pytest.mark.asyncio
async def test_outbound_timeout_is_reported_as_failure(groups_dir, metadata_cache, renderer):
    write_group_config(groups_dir, {"bemvindo": True})
    engine = GroupPolicyEngine(
        GroupConfigStore(groups_dir), metadata_cache, renderer, PolicySettings(action_timeout=0.01)
    )

    async def hang(*_args):
        await asyncio.sleep(1)

    client = make_client(send_message=AsyncMock(side_effect=hang))

    outcome = await engine.handle_membership_event(client, event("add", BR_MEMBER))

    assert outcome.failed == [PolicyRule.WELCOME]


# --------------------------
# Welcome / exit content
# --------------------------
@pytest.mark.asyncio
async def test_default_welcome_text_when_template_unset(engine, groups_dir):
    write_group_config(groups_dir, {"bemvindo": True, "textbv": "x"})
    client = make_client()

    await engine.handle_membership_event(client, event("add", BR_MEMBER))

    (text,) = sent_texts(client)
    assert text.startswith("🎉 Bem-vindo(a), @5511999999999!")
    assert "GroupName" in text


@pytest.mark.asyncio
async def test_welcome_banner_uses_profile_picture(engine, groups_dir, renderer):
    write_group_config(groups_dir, {"bemvindo": True, "textbv": "Oi #numerodele#", "welcome": {"image": "banner"}})
    client = make_client()

    await engine.handle_membership_event(client, event("add", BR_MEMBER))

    renderer.render_welcome_banner.assert_awaited_once_with(
        "https://pps/avatar.jpg", "Bem-vindo(a)!", "Aceita um cafézinho enquanto lê as regras?"
    )
    payload = client.send_message.await_args.args[1]
    assert payload == {
        "mentions": [BR_MEMBER],
        "image": {"data": b"\x89PNG", "mimetype": "image/png"},
        "caption": "Oi @5511999999999",
    }


@pytest.mark.asyncio
async def test_welcome_banner_falls_back_to_stock_avatar(engine, groups_dir, renderer):
    write_group_config(groups_dir, {"bemvindo": True, "welcome": {"image": "banner"}})
    client = make_client(fetch_profile_picture=AsyncMock(side_effect=RuntimeError("item-not-found")))

    await engine.handle_membership_event(client, event("add", BR_MEMBER))

    avatar_url = renderer.render_welcome_banner.await_args.args[0]
    assert avatar_url == PolicySettings().fallback_avatar_url


@pytest.mark.asyncio
async def test_welcome_falls_back_to_text_when_banner_fails(engine, groups_dir, renderer):
    renderer.render_welcome_banner.side_effect = OSError("font missing")
    write_group_config(groups_dir, {"bemvindo": True, "textbv": "Oi #numerodele#", "welcome": {"image": "banner"}})
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("add", BR_MEMBER))

    assert outcome.fired == [PolicyRule.WELCOME]
    client.send_message.assert_awaited_once_with(GROUP_ID, {"mentions": [BR_MEMBER], "text": "Oi @5511999999999"})


@pytest.mark.asyncio
async def test_welcome_with_direct_image_url(engine, groups_dir):
    write_group_config(groups_dir, {"bemvindo": True, "textbv": "Oi", "welcome": {"image": "https://img/w.png"}})
    client = make_client()

    await engine.handle_membership_event(client, event("add", BR_MEMBER))

    payload = client.send_message.await_args.args[1]
    assert payload["image"] == {"url": "https://img/w.png"}
    assert payload["caption"] == "Oi"


@pytest.mark.asyncio
async def test_exit_message_on_remove(engine, groups_dir):
    write_group_config(
        groups_dir,
        {"exit": {"enabled": True, "text": "Tchau #numerodele#, agora somos #membros#", "image": "https://img/bye.png"}},
    )
    client = make_client()

    outcome = await engine.handle_membership_event(client, event("remove", BR_MEMBER))

    assert outcome.fired == [PolicyRule.EXIT]
    payload = client.send_message.await_args.args[1]
    assert payload == {
        "mentions": [BR_MEMBER],
        "image": {"url": "https://img/bye.png"},
        "caption": "Tchau @5511999999999, agora somos 10",
    }


@pytest.mark.asyncio
async def test_exit_disabled_sends_nothing(engine, groups_dir):
    write_group_config(groups_dir, {"exit": {"enabled": False, "text": "Tchau"}, "bemvindo": True})
    client = make_client()

    await engine.handle_membership_event(client, event("remove", BR_MEMBER))

    client.send_message.assert_not_awaited()
