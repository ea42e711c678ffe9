from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from nazuna.cache.group_metadata_cache import GroupMetadataCache
from nazuna.datatypes.protocol_datatypes import GroupMetadata


def make_metadata(subject: str = "Grupo") -> GroupMetadata:
    return GroupMetadata(id="123@g.us", subject=subject, participants=["a@s.whatsapp.net"])


def test_get_before_ttl_returns_last_set(clock):
    cache = GroupMetadataCache(ttl_seconds=300, clock=clock)
    cache.set("123@g.us", make_metadata("first"))
    cache.set("123@g.us", make_metadata("second"))

    clock.advance(299)

    assert cache.get("123@g.us").subject == "second"


def test_get_after_ttl_returns_none_without_intervening_write(clock):
    cache = GroupMetadataCache(ttl_seconds=300, clock=clock)
    cache.set("123@g.us", make_metadata())

    clock.advance(300)

    assert cache.get("123@g.us") is None
    assert len(cache) == 0


def test_reads_do_not_extend_ttl(clock):
    cache = GroupMetadataCache(ttl_seconds=10, clock=clock)
    cache.set("g", make_metadata())

    clock.advance(6)
    assert cache.get("g") is not None
    clock.advance(6)

    assert cache.get("g") is None


def test_delete_and_clear(clock):
    cache = GroupMetadataCache(clock=clock)
    cache.set("a", make_metadata())
    cache.set("b", make_metadata())

    cache.delete("a")
    assert cache.get("a") is None
    assert len(cache) == 1

    cache.clear()
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_get_or_fetch_stores_fetched_metadata(clock):
    cache = GroupMetadataCache(clock=clock)
    client = SimpleNamespace(
        fetch_group_metadata=AsyncMock(
            return_value={"id": "123@g.us", "subject": "Nazuna", "participants": [{"id": "a"}, {"id": "b"}], "desc": "d"}
        )
    )

    metadata = await cache.get_or_fetch("123@g.us", client, timeout=1)

    assert metadata.subject == "Nazuna"
    assert metadata.member_count == 2
    assert metadata.description == "d"
    assert cache.get("123@g.us") is metadata

    await cache.get_or_fetch("123@g.us", client, timeout=1)
    client.fetch_group_metadata.assert_awaited_once_with("123@g.us")


@pytest.mark.asyncio
async def test_fetch_failure_returns_none(clock):
    cache = GroupMetadataCache(clock=clock)
    client = SimpleNamespace(fetch_group_metadata=AsyncMock(side_effect=RuntimeError("rate-overlimit")))

    assert await cache.get_or_fetch("123@g.us", client, timeout=1) is None
    assert len(cache) == 0
