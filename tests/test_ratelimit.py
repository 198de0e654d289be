"""Tests for src/ratelimit.py."""

import asyncio
import logging
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.ratelimit import (
    MemoryCounterStore,
    RateLimiter,
    RedisCounterStore,
    build_rate_limiter,
)


@pytest.fixture
def store(fake_clock) -> MemoryCounterStore:
    return MemoryCounterStore(clock=fake_clock)


@pytest.fixture
def limiter(store) -> RateLimiter:
    return RateLimiter(store, limit=10, window_sec=60)


# --- MemoryCounterStore ---

async def test_store_get_missing_key(store):
    assert await store.get("nobody") is None


async def test_store_set_with_ttl_then_get(store, fake_clock):
    await store.set_with_ttl("k", 3, 60)
    entry = await store.get("k")
    assert entry.count == 3
    assert entry.expires_at == fake_clock.now + 60


async def test_store_entry_expires(store, fake_clock):
    await store.set_with_ttl("k", 3, 60)
    fake_clock.advance(60)
    assert await store.get("k") is None


async def test_expired_windows_are_evicted_for_idle_keys(store, fake_clock):
    for i in range(5000):
        await store.increment_below(f"rate_limit:10.0.{i // 256}.{i % 256}", 10, 60)
    assert len(store._entries) == 5000

    fake_clock.advance(3600)
    await store.increment_below("rate_limit:late", 10, 60)

    assert list(store._entries) == ["rate_limit:late"]
    assert store._expiries == [(fake_clock.now + 60, "rate_limit:late")]


async def test_eviction_keeps_entry_rewritten_with_later_ttl(store, fake_clock):
    await store.set_with_ttl("k", 1, 10)
    fake_clock.advance(5)
    await store.set_with_ttl("k", 2, 60)
    fake_clock.advance(10)

    await store.increment_below("other", 10, 60)

    assert (await store.get("k")).count == 2


async def test_increment_below_starts_at_one(store):
    assert await store.increment_below("k", limit=2, ttl_seconds=60) == 1


async def test_increment_below_stops_at_limit(store):
    assert await store.increment_below("k", 2, 60) == 1
    assert await store.increment_below("k", 2, 60) == 2
    assert await store.increment_below("k", 2, 60) is None
    entry = await store.get("k")
    assert entry.count == 2  # denied call does not mutate


async def test_increment_keeps_original_expiry(store, fake_clock):
    await store.increment_below("k", 5, 60)
    first_expiry = (await store.get("k")).expires_at
    fake_clock.advance(30)
    await store.increment_below("k", 5, 60)
    assert (await store.get("k")).expires_at == first_expiry


# --- RateLimiter ---

async def test_first_request_allowed(limiter):
    decision = await limiter.check("1.2.3.4")
    assert decision.allowed is True
    assert decision.remaining == 9
    assert decision.limit == 10


async def test_remaining_strictly_decreases_within_limit(limiter):
    remaining = [(await limiter.check("1.2.3.4")).remaining for _ in range(10)]
    assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]


async def test_request_over_limit_denied(limiter):
    for _ in range(10):
        assert (await limiter.check("1.2.3.4")).allowed
    decision = await limiter.check("1.2.3.4")
    assert decision.allowed is False
    assert decision.remaining == 0


async def test_window_resets_after_ttl(limiter, fake_clock):
    for _ in range(11):
        await limiter.check("1.2.3.4")
    fake_clock.advance(60)
    decision = await limiter.check("1.2.3.4")
    assert decision.allowed is True
    assert decision.remaining == 9


async def test_window_does_not_slide(limiter, fake_clock):
    """Requests late in the window must not extend it."""
    await limiter.check("1.2.3.4")
    fake_clock.advance(59)
    for _ in range(9):
        await limiter.check("1.2.3.4")
    assert (await limiter.check("1.2.3.4")).allowed is False
    fake_clock.advance(1)
    assert (await limiter.check("1.2.3.4")).remaining == 9


async def test_keys_are_independent(limiter, fake_clock):
    for _ in range(10):
        await limiter.check("a")
    fake_clock.advance(30)
    assert (await limiter.check("a")).allowed is False
    assert (await limiter.check("b")).remaining == 9


async def test_key_is_prefixed(limiter, store):
    await limiter.check("1.2.3.4")
    assert (await store.get("rate_limit:1.2.3.4")).count == 1


async def test_concurrent_checks_never_over_admit(limiter):
    decisions = await asyncio.gather(*(limiter.check("burst") for _ in range(25)))
    allowed = [d for d in decisions if d.allowed]
    assert len(allowed) == 10
    assert sorted(d.remaining for d in allowed) == list(range(10))


async def test_no_store_always_allows():
    limiter = RateLimiter(None, limit=3, window_sec=60)
    for _ in range(10):
        decision = await limiter.check("x")
        assert decision.allowed is True
        assert decision.remaining == 3
    assert limiter.backend == "disabled"


async def test_store_failure_fails_open(caplog):
    broken = MagicMock(spec=MemoryCounterStore)
    broken.increment_below = AsyncMock(side_effect=ConnectionError("store down"))
    limiter = RateLimiter(broken, limit=5, window_sec=60, fail_open=True)

    with caplog.at_level(logging.WARNING):
        decision = await limiter.check("x")

    assert decision.allowed is True
    assert decision.remaining == 5
    assert any("unavailable" in msg for msg in caplog.messages)


async def test_store_failure_fails_closed():
    broken = MagicMock(spec=MemoryCounterStore)
    broken.increment_below = AsyncMock(side_effect=ConnectionError("store down"))
    limiter = RateLimiter(broken, limit=5, window_sec=60, fail_open=False)

    with pytest.raises(ConnectionError):
        await limiter.check("x")


# --- RedisCounterStore ---

def _redis_with_script(result: int) -> tuple[MagicMock, AsyncMock]:
    script = AsyncMock(return_value=result)
    redis = MagicMock()
    redis.register_script.return_value = script
    return redis, script


async def test_redis_increment_below_passes_limit_and_ttl():
    redis, script = _redis_with_script(4)
    store = RedisCounterStore(redis)

    assert await store.increment_below("rate_limit:ip", 10, 60) == 4
    script.assert_awaited_once_with(keys=["rate_limit:ip"], args=[10, 60])


async def test_redis_increment_below_at_limit_returns_none():
    redis, _ = _redis_with_script(-1)
    store = RedisCounterStore(redis)
    assert await store.increment_below("rate_limit:ip", 10, 60) is None


async def test_redis_set_with_ttl():
    redis, _ = _redis_with_script(1)
    redis.set = AsyncMock()
    store = RedisCounterStore(redis)
    await store.set_with_ttl("k", 2, 30)
    redis.set.assert_awaited_once_with("k", 2, ex=30)


def _redis_with_pipeline(results: list) -> tuple[MagicMock, MagicMock]:
    redis, _ = _redis_with_script(1)
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=results)
    redis.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
    redis.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
    return redis, pipe


async def test_redis_get_reads_count_and_ttl():
    redis, pipe = _redis_with_pipeline(["4", 30000])
    store = RedisCounterStore(redis)

    before = time.time()
    entry = await store.get("rate_limit:ip")

    assert entry.count == 4
    assert before + 29 <= entry.expires_at <= time.time() + 30
    redis.pipeline.assert_called_once_with(transaction=True)
    pipe.get.assert_called_once_with("rate_limit:ip")
    pipe.pttl.assert_called_once_with("rate_limit:ip")


async def test_redis_get_missing_key():
    redis, _ = _redis_with_pipeline([None, -2])
    store = RedisCounterStore(redis)
    assert await store.get("rate_limit:ip") is None


async def test_redis_get_key_without_expiry_reads_as_stale():
    redis, _ = _redis_with_pipeline(["3", -1])
    store = RedisCounterStore(redis)

    entry = await store.get("rate_limit:ip")

    assert entry.count == 3
    assert entry.expires_at <= time.time()


# --- build_rate_limiter ---

def test_build_prefers_redis():
    limiter = build_rate_limiter(10, 60, redis_url="redis://localhost:6379/0")
    assert limiter.backend == "redis"


def test_build_falls_back_to_memory():
    limiter = build_rate_limiter(10, 60)
    assert limiter.backend == "memory"


def test_build_without_store():
    limiter = build_rate_limiter(10, 60, memory_fallback=False)
    assert limiter.backend == "disabled"
