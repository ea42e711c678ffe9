import asyncio

import pytest

from nazuna.cache.message_cache import MessageDedupCache
from nazuna.cache.retry_counter_cache import RetryCounterCache


def test_latest_payload_wins(clock):
    cache = MessageDedupCache(clear_interval=600, clock=clock)
    cache.set("ABC", {"conversation": "first"})
    cache.set("ABC", {"conversation": "second"})

    assert cache.get("ABC") == {"conversation": "second"}
    assert len(cache) == 1


def test_cache_empty_after_clear_interval(clock):
    cache = MessageDedupCache(clear_interval=600, clock=clock)
    cache.set("A", 1)
    cache.set("B", 2)

    clock.advance(599)
    assert "A" in cache

    clock.advance(1)
    assert len(cache) == 0
    assert cache.get("B") is None


def test_interval_restarts_after_clear(clock):
    cache = MessageDedupCache(clear_interval=100, clock=clock)
    clock.advance(150)
    cache.set("A", 1)  # triggers the due clear before storing

    clock.advance(60)
    assert cache.get("A") == 1


def test_manual_clear(clock):
    cache = MessageDedupCache(clock=clock)
    cache.set("A", 1)
    cache.clear()
    assert "A" not in cache


@pytest.mark.asyncio
async def test_background_clear_task_start_and_shutdown():
    cache = MessageDedupCache(clear_interval=0.01)
    cache.set("A", 1)
    cache.start()
    await asyncio.sleep(0.05)

    assert cache.get("A") is None

    await cache.shutdown()
    assert cache._task is None


def test_retry_counter_increment_and_expiry(clock):
    counters = RetryCounterCache(ttl_seconds=120, clock=clock)

    assert counters.increment("msg") == 1
    assert counters.increment("msg") == 2

    clock.advance(120)
    assert counters.get("msg") is None
    assert counters.increment("msg") == 1
