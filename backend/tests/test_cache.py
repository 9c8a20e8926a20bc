"""Tests for the permission cache backends."""

import asyncio
import threading

import pytest

from propertyhub.auth.cache import (
    CacheVersion,
    InMemoryPermissionCache,
    RedisPermissionCache,
    build_permission_cache,
)
from propertyhub.auth.errors import CacheCorruption


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.cache
@pytest.mark.asyncio
class TestInMemoryPermissionCache:

    async def test_miss_then_hit(self):
        cache = InMemoryPermissionCache()
        assert await cache.get("u1") is None

        assert await cache.put("u1", {"booking:view"})
        assert await cache.get("u1") == frozenset({"booking:view"})
        assert cache.stats()["hits"] == 1
        assert cache.stats()["misses"] == 1

    async def test_entries_are_immutable(self):
        cache = InMemoryPermissionCache()
        source = {"booking:view"}
        await cache.put("u1", source)
        source.add("booking:delete")

        cached = await cache.get("u1")
        assert isinstance(cached, frozenset)
        assert cached == frozenset({"booking:view"})

    async def test_invalidate_user(self):
        cache = InMemoryPermissionCache()
        await cache.put("u1", {"a:b"})
        await cache.put("u2", {"c:d"})

        await cache.invalidate_user("u1")

        assert await cache.get("u1") is None
        assert await cache.get("u2") == frozenset({"c:d"})

    async def test_invalidate_all(self):
        cache = InMemoryPermissionCache()
        await cache.put("u1", {"a:b"})
        await cache.put("u2", {"c:d"})

        await cache.invalidate_all()

        assert await cache.get("u1") is None
        assert await cache.get("u2") is None
        assert len(cache) == 0

    async def test_ttl_expiry(self):
        clock = FakeClock()
        cache = InMemoryPermissionCache(ttl_seconds=60, clock=clock)
        await cache.put("u1", {"a:b"})

        clock.now += 59
        assert await cache.get("u1") == frozenset({"a:b"})
        clock.now += 1
        assert await cache.get("u1") is None
        assert len(cache) == 0

    async def test_zero_ttl_never_expires(self):
        clock = FakeClock()
        cache = InMemoryPermissionCache(ttl_seconds=0, clock=clock)
        await cache.put("u1", {"a:b"})
        clock.now += 10**9
        assert await cache.get("u1") == frozenset({"a:b"})

    async def test_put_refused_after_user_invalidation(self):
        cache = InMemoryPermissionCache()
        version = await cache.version("u1")
        await cache.invalidate_user("u1")

        assert not await cache.put("u1", {"a:b"}, version)
        assert await cache.get("u1") is None

    async def test_put_refused_after_global_invalidation(self):
        cache = InMemoryPermissionCache()
        version = await cache.version("u1")
        await cache.invalidate_all()

        assert not await cache.put("u1", {"a:b"}, version)

    async def test_put_accepted_when_version_current(self):
        cache = InMemoryPermissionCache()
        await cache.invalidate_user("u2")
        version = await cache.version("u1")

        assert await cache.put("u1", {"a:b"}, version)

    async def test_corrupt_entry_raises(self):
        cache = InMemoryPermissionCache()
        cache._entries["u1"] = ["not", "a", "set"]

        with pytest.raises(CacheCorruption):
            await cache.get("u1")

    async def test_concurrent_writers_and_invalidators(self):
        """Threads hammering put/invalidate never leave a torn entry behind."""
        cache = InMemoryPermissionCache()
        full = frozenset(f"m{i}:a" for i in range(50))
        errors = []

        def writer():
            loop = asyncio.new_event_loop()
            try:
                for _ in range(200):
                    loop.run_until_complete(cache.put("u1", full))
                    loop.run_until_complete(cache.invalidate_all())
                    value = loop.run_until_complete(cache.get("u1"))
                    if value is not None and value != full:
                        errors.append(value)
            finally:
                loop.close()

        threads = [threading.Thread(target=writer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert await cache.get("u1") in (None, full)


@pytest.mark.cache
@pytest.mark.asyncio
class TestRedisPermissionCache:

    def _cache(self, fake_redis, ttl=300) -> RedisPermissionCache:
        async def factory():
            return fake_redis

        return RedisPermissionCache(factory, prefix="test-perms", ttl_seconds=ttl)

    async def test_miss_then_hit(self, fake_redis):
        cache = self._cache(fake_redis)
        assert await cache.get("u1") is None

        assert await cache.put("u1", {"b:2", "a:1"})
        assert await cache.get("u1") == frozenset({"a:1", "b:2"})

    async def test_entry_key_embeds_version_and_ttl(self, fake_redis):
        cache = self._cache(fake_redis, ttl=120)
        await cache.put("u1", {"a:1"})

        assert fake_redis.data["test-perms:g0:u0:u1"] == '["a:1"]'
        assert fake_redis.ttls["test-perms:g0:u0:u1"] == 120

    async def test_zero_ttl_falls_back_to_default(self, fake_redis):
        cache = self._cache(fake_redis, ttl=0)
        await cache.put("u1", {"a:1"})
        assert fake_redis.ttls["test-perms:g0:u0:u1"] == 300

    async def test_invalidate_user(self, fake_redis):
        cache = self._cache(fake_redis)
        await cache.put("u1", {"a:1"})
        await cache.put("u2", {"a:1"})

        await cache.invalidate_user("u1")

        assert await cache.get("u1") is None
        assert await cache.get("u2") == frozenset({"a:1"})
        assert await cache.version("u1") == CacheVersion(0, 1)

    async def test_invalidate_all(self, fake_redis):
        cache = self._cache(fake_redis)
        await cache.put("u1", {"a:1"})

        await cache.invalidate_all()

        assert await cache.get("u1") is None
        assert await cache.version("u1") == CacheVersion(1, 0)

    async def test_stale_put_lands_on_dead_key(self, fake_redis):
        cache = self._cache(fake_redis)
        version = await cache.version("u1")
        await cache.invalidate_all()

        await cache.put("u1", {"a:1"}, version)

        assert await cache.get("u1") is None

    async def test_redis_down_reads_as_miss(self, fake_redis):
        cache = self._cache(fake_redis)
        await cache.put("u1", {"a:1"})
        fake_redis.fail = True

        assert await cache.get("u1") is None
        assert not await cache.put("u1", {"a:1"})

    async def test_redis_down_version_is_never_publishable(self, fake_redis):
        cache = self._cache(fake_redis)
        fake_redis.fail = True
        version = await cache.version("u1")
        fake_redis.fail = False

        assert version.generation < 0
        assert not await cache.put("u1", {"a:1"}, version)

    async def test_failed_invalidation_is_logged_not_raised(self, fake_redis, caplog):
        cache = self._cache(fake_redis)
        fake_redis.fail = True

        await cache.invalidate_user("u1")
        await cache.invalidate_all()

        assert "Failed to invalidate" in caplog.text

    async def test_garbage_entry_raises_corruption(self, fake_redis):
        cache = self._cache(fake_redis)
        fake_redis.data["test-perms:g0:u0:u1"] = "{not json"
        with pytest.raises(CacheCorruption):
            await cache.get("u1")

        fake_redis.data["test-perms:g0:u0:u1"] = '{"a": 1}'
        with pytest.raises(CacheCorruption):
            await cache.get("u1")


@pytest.mark.cache
class TestBuildPermissionCache:

    class _Settings:
        permission_cache_backend = "memory"
        permission_cache_ttl_seconds = 42
        permission_cache_prefix = "p"

    def test_memory_backend(self):
        cache = build_permission_cache(self._Settings())
        assert isinstance(cache, InMemoryPermissionCache)
        assert cache.ttl_seconds == 42

    def test_redis_backend(self):
        settings = self._Settings()
        settings.permission_cache_backend = "redis"
        cache = build_permission_cache(settings)
        assert isinstance(cache, RedisPermissionCache)
        assert cache.prefix == "p"

    def test_unknown_backend(self):
        settings = self._Settings()
        settings.permission_cache_backend = "memcached"
        with pytest.raises(ValueError):
            build_permission_cache(settings)
