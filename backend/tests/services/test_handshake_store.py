"""
OAuth 握手状态存储测试

- 内存实现：一次性消费、TTL 过期、exists 不消费、周期清理
- Redis 实现：基于 DummyRedis 验证 GETDEL 语义
"""
import asyncio

import pytest

from app.core.cache import CacheService
from app.services.oauth.handshake_store import (
    HANDSHAKE_KEY_PREFIX,
    MemoryHandshakeStore,
    RedisHandshakeStore,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.mark.asyncio
async def test_consume_returns_verifier_exactly_once():
    store = MemoryHandshakeStore(clock=FakeClock())
    token = await store.start("verifier-abc", ttl_seconds=600)

    assert await store.consume(token) == "verifier-abc"
    assert await store.consume(token) is None
    assert await store.consume(token) is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_tokens_are_unique_and_url_safe():
    store = MemoryHandshakeStore(clock=FakeClock())
    tokens = {await store.start("v", ttl_seconds=60) for _ in range(50)}

    assert len(tokens) == 50
    for token in tokens:
        assert len(token) >= 43
        assert all(c.isalnum() or c in "-_" for c in token)


@pytest.mark.asyncio
async def test_consume_fails_after_ttl_and_exists_turns_false():
    clock = FakeClock()
    store = MemoryHandshakeStore(clock=clock)
    token = await store.start("verifier", ttl_seconds=600)

    clock.advance(599)
    assert await store.exists(token) is True

    clock.advance(1)
    assert await store.exists(token) is False
    assert await store.consume(token) is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_consume_at_expiry_removes_entry():
    clock = FakeClock()
    store = MemoryHandshakeStore(clock=clock)
    token = await store.start("verifier", ttl_seconds=10)

    clock.advance(10)
    assert await store.consume(token) is None
    assert await store.size() == 0


@pytest.mark.asyncio
async def test_exists_does_not_consume():
    store = MemoryHandshakeStore(clock=FakeClock())
    token = await store.start("verifier", ttl_seconds=60)

    assert await store.exists(token) is True
    assert await store.exists(token) is True
    assert await store.consume(token) == "verifier"


@pytest.mark.asyncio
async def test_unknown_and_empty_tokens_are_misses():
    store = MemoryHandshakeStore(clock=FakeClock())

    assert await store.consume("") is None
    assert await store.consume("never-issued") is None
    assert await store.exists("") is False


@pytest.mark.asyncio
async def test_purge_expired_only_removes_stale_entries():
    clock = FakeClock()
    store = MemoryHandshakeStore(clock=clock)
    stale = await store.start("old", ttl_seconds=5)
    clock.advance(3)
    fresh = await store.start("new", ttl_seconds=60)

    clock.advance(5)
    assert await store.purge_expired() == 1
    assert await store.consume(stale) is None
    assert await store.consume(fresh) == "new"


@pytest.mark.asyncio
async def test_remove_discards_entry():
    store = MemoryHandshakeStore(clock=FakeClock())
    token = await store.start("verifier", ttl_seconds=60)

    await store.remove(token)
    await store.remove(token)
    assert await store.consume(token) is None


@pytest.mark.asyncio
async def test_concurrent_consumers_get_single_winner():
    store = MemoryHandshakeStore(clock=FakeClock())
    token = await store.start("verifier", ttl_seconds=60)

    results = await asyncio.gather(*(store.consume(token) for _ in range(20)))
    assert results.count("verifier") == 1
    assert results.count(None) == 19


@pytest.mark.asyncio
async def test_start_rejects_non_positive_ttl():
    store = MemoryHandshakeStore(clock=FakeClock())
    with pytest.raises(ValueError):
        await store.start("verifier", ttl_seconds=0)


def _redis_cache(redis) -> CacheService:
    cache = CacheService(prefix="test:")
    cache._redis = redis
    return cache


@pytest.mark.asyncio
async def test_redis_store_consume_once_with_ttl(dummy_redis):
    redis = dummy_redis
    cache = _redis_cache(redis)
    store = RedisHandshakeStore(cache)

    token = await store.start("verifier-redis", ttl_seconds=600)
    key = f"test:{HANDSHAKE_KEY_PREFIX}{token}"
    assert redis.ttl[key] == 600
    assert await store.exists(token) is True
    assert await store.size() == 1

    assert await store.consume(token) == "verifier-redis"
    assert await store.consume(token) is None
    assert await store.exists(token) is False


@pytest.mark.asyncio
async def test_redis_store_remove_and_purge_noop(dummy_redis):
    cache = _redis_cache(dummy_redis)
    store = RedisHandshakeStore(cache)
    token = await store.start("verifier", ttl_seconds=30)

    assert await store.purge_expired() == 0
    await store.remove(token)
    assert await store.consume(token) is None
