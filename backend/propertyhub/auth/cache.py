"""Permission cache: user id → resolved capability set.

The cache is a memoization layer only. The database stays the source of
truth and every entry can be rebuilt from it at any time.

Contract shared by both backends:
  get(user_id)              → frozenset, or None when absent/expired
  put(user_id, caps, ver)   → publish a complete set; refused (False) when
                              `ver` was captured before an invalidation
  version(user_id)          → token to capture *before* reading the store
  invalidate_user(user_id)  → call after that user's role assignments change
  invalidate_all()          → call after any role / permission content change

Invalidation is visible to every `get` issued after the call returns. A
`get` running concurrently with an invalidation may still see the old entry
(one-operation staleness window). Entries are immutable frozensets published
in a single store operation, so a reader never observes a half-built set.

Backends:
  InMemoryPermissionCache  per-process; each worker keeps its own copy and
                           only sees its own invalidations.
  RedisPermissionCache     shared by every worker; invalidation is global.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, NamedTuple

import redis.asyncio as redis

from propertyhub.auth.capabilities import CapabilitySet
from propertyhub.auth.errors import CacheCorruption

logger = logging.getLogger(__name__)


class CacheVersion(NamedTuple):
    generation: int  # bumped by invalidate_all
    user: int        # bumped by invalidate_user


class PermissionCache(ABC):

    @abstractmethod
    async def get(self, user_id: str) -> CapabilitySet | None: ...

    @abstractmethod
    async def put(
        self,
        user_id: str,
        capabilities: Iterable[str],
        version: CacheVersion | None = None,
    ) -> bool: ...

    @abstractmethod
    async def version(self, user_id: str) -> CacheVersion: ...

    @abstractmethod
    async def invalidate_user(self, user_id: str) -> None: ...

    @abstractmethod
    async def invalidate_all(self) -> None: ...

    async def close(self) -> None:
        return None


# ── In-process backend ──────────────────────────────────────

class _Entry(NamedTuple):
    capabilities: CapabilitySet
    expires_at: float | None


class InMemoryPermissionCache(PermissionCache):
    """Thread- and task-safe dict cache.

    Reads take no lock: they do a single dict lookup on an immutable entry.
    Writers serialize on a short `threading.Lock` so version checks and
    publishes are atomic with respect to invalidation. `invalidate_all`
    swaps in a fresh dict instead of clearing in place.

    Hit and miss counters are bumped outside the lock, so `stats()` is
    approximate under concurrent access.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._generation = 0
        self._user_versions: dict[str, int] = {}
        self._hits = 0
        self._misses = 0

    async def get(self, user_id: str) -> CapabilitySet | None:
        entry = self._entries.get(user_id)
        if entry is None:
            self._misses += 1
            return None

        if not isinstance(entry, _Entry) or not isinstance(entry.capabilities, frozenset):
            raise CacheCorruption(f"Cache entry for {user_id} is {type(entry).__name__}")

        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            with self._lock:
                if self._entries.get(user_id) is entry:
                    del self._entries[user_id]
            self._misses += 1
            return None

        self._hits += 1
        return entry.capabilities

    async def put(
        self,
        user_id: str,
        capabilities: Iterable[str],
        version: CacheVersion | None = None,
    ) -> bool:
        caps = frozenset(capabilities)
        expires_at = self._clock() + self.ttl_seconds if self.ttl_seconds > 0 else None
        with self._lock:
            if version is not None and version != self._current_version(user_id):
                logger.debug(f"Discarding stale permission set for user {user_id}")
                return False
            self._entries[user_id] = _Entry(caps, expires_at)
        return True

    async def version(self, user_id: str) -> CacheVersion:
        with self._lock:
            return self._current_version(user_id)

    async def invalidate_user(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._user_versions[user_id] = self._user_versions.get(user_id, 0) + 1
        logger.info(f"Invalidated permission cache for user {user_id}")

    async def invalidate_all(self) -> None:
        with self._lock:
            self._entries = {}
            self._user_versions = {}
            self._generation += 1
        logger.info("Invalidated permission cache for all users")

    def _current_version(self, user_id: str) -> CacheVersion:
        return CacheVersion(self._generation, self._user_versions.get(user_id, 0))

    def stats(self) -> dict:
        return {
            "backend": "memory",
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
            "generation": self._generation,
        }

    def __len__(self) -> int:
        return len(self._entries)


# ── Shared Redis backend ────────────────────────────────────

class RedisPermissionCache(PermissionCache):
    """Cache shared by every worker through Redis.

    Keys:
      {prefix}:generation           global counter, INCR on invalidate_all
      {prefix}:uv:{user_id}         per-user counter, INCR on invalidate_user
      {prefix}:g{G}:u{U}:{user_id}  JSON list of capability keys, with TTL

    The entry key embeds the version it was computed under, so invalidation
    is a single INCR and a late write from a stale resolution lands on a key
    that no reader will ever look up again. Old keys age out through TTL.

    Redis failures degrade to cache misses (the store is consulted); failed
    invalidations are logged as errors and bounded by the TTL.
    """

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[redis.Redis]],
        prefix: str = "perms",
        ttl_seconds: int = 300,
    ):
        self._client_factory = client_factory
        self.prefix = prefix
        # A shared cache without expiry would keep orphaned keys forever
        self.ttl_seconds = ttl_seconds if ttl_seconds > 0 else 300

    @property
    def _generation_key(self) -> str:
        return f"{self.prefix}:generation"

    def _user_version_key(self, user_id: str) -> str:
        return f"{self.prefix}:uv:{user_id}"

    def _entry_key(self, user_id: str, version: CacheVersion) -> str:
        return f"{self.prefix}:g{version.generation}:u{version.user}:{user_id}"

    async def _read_version(self, client: redis.Redis, user_id: str) -> CacheVersion:
        generation, user = await client.mget(
            self._generation_key, self._user_version_key(user_id)
        )
        return CacheVersion(int(generation or 0), int(user or 0))

    async def get(self, user_id: str) -> CapabilitySet | None:
        try:
            client = await self._client_factory()
            version = await self._read_version(client, user_id)
            raw = await client.get(self._entry_key(user_id, version))
        except redis.RedisError as e:
            logger.warning(f"Redis error reading permissions for {user_id} (treating as miss): {e}")
            return None

        if raw is None:
            logger.debug(f"Permission cache MISS: {user_id}")
            return None

        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheCorruption(f"Cache entry for {user_id} is not JSON") from e
        if not isinstance(decoded, list) or not all(isinstance(k, str) for k in decoded):
            raise CacheCorruption(f"Cache entry for {user_id} is not a list of keys")

        logger.debug(f"Permission cache HIT: {user_id}")
        return frozenset(decoded)

    async def put(
        self,
        user_id: str,
        capabilities: Iterable[str],
        version: CacheVersion | None = None,
    ) -> bool:
        if version is not None and version.generation < 0:
            return False
        payload = json.dumps(sorted(set(capabilities)))
        try:
            client = await self._client_factory()
            if version is None:
                version = await self._read_version(client, user_id)
            await client.setex(self._entry_key(user_id, version), self.ttl_seconds, payload)
            return True
        except redis.RedisError as e:
            logger.warning(f"Redis error caching permissions for {user_id}: {e}")
            return False

    async def version(self, user_id: str) -> CacheVersion:
        try:
            client = await self._client_factory()
            return await self._read_version(client, user_id)
        except redis.RedisError as e:
            logger.warning(f"Redis error reading cache version for {user_id}: {e}")
            # Never matches a real key, so the resolution result is not cached
            return CacheVersion(-1, -1)

    async def invalidate_user(self, user_id: str) -> None:
        try:
            client = await self._client_factory()
            await client.incr(self._user_version_key(user_id))
            logger.info(f"Invalidated permission cache for user {user_id}")
        except redis.RedisError as e:
            logger.error(f"Failed to invalidate permission cache for user {user_id}: {e}")

    async def invalidate_all(self) -> None:
        try:
            client = await self._client_factory()
            generation = await client.incr(self._generation_key)
            logger.info(f"Invalidated permission cache for all users (generation {generation})")
        except redis.RedisError as e:
            logger.error(f"Failed to invalidate permission cache: {e}")


def build_permission_cache(settings) -> PermissionCache:
    """Construct the cache backend selected by `permission_cache_backend`."""
    backend = settings.permission_cache_backend
    if backend == "memory":
        return InMemoryPermissionCache(ttl_seconds=settings.permission_cache_ttl_seconds)
    if backend == "redis":
        from propertyhub.utils.cache import get_redis

        return RedisPermissionCache(
            get_redis,
            prefix=settings.permission_cache_prefix,
            ttl_seconds=settings.permission_cache_ttl_seconds,
        )
    raise ValueError(f"Unknown permission cache backend: {backend!r}")
