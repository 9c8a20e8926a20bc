"""Effective permission resolution.

resolve(user_id):
  1. Return the cached set when present.
  2. Otherwise load the user's active roles and their active permissions
     from the store and build `{module:action}` keys.
  3. Admin-tier users additionally get every active permission in the
     system, whether or not a role grants it.
  4. Publish the set to the cache (only if nothing was invalidated while
     it was being computed) and return it.

Unknown and non-active users resolve to the empty set and are not cached.
Store and cache failures propagate as AuthorizationError subclasses so the
guard can deny; they never turn into a grant.

Concurrent resolutions of the same uncached user share a single load. The
load runs in its own task: a caller that is cancelled (client went away)
stops waiting but does not abort the load, and the cache only ever receives
a complete set.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from propertyhub.auth.cache import CacheVersion, PermissionCache
from propertyhub.auth.capabilities import (
    EMPTY_CAPABILITIES,
    CapabilitySet,
    has_capability,
    is_admin_tier,
)
from propertyhub.auth.errors import (
    CacheCorruption,
    StoreUnavailable,
    UnknownSubject,
)
from propertyhub.auth.store import PermissionStore, Subject

logger = logging.getLogger(__name__)


class PermissionResolver:

    def __init__(
        self,
        store: PermissionStore,
        cache: PermissionCache,
        admin_user_types: Iterable[str] = ("admin", "super_admin"),
    ):
        self.store = store
        self.cache = cache
        self.admin_user_types = frozenset(admin_user_types)
        # (loop, user_id) → (version the load started under, load task)
        self._inflight: dict[tuple, tuple[CacheVersion, asyncio.Task]] = {}

    def is_admin(self, user_type: str | None) -> bool:
        return is_admin_tier(user_type, self.admin_user_types)

    async def resolve(self, user_id: str) -> CapabilitySet:
        if not user_id:
            return EMPTY_CAPABILITIES

        try:
            cached = await self.cache.get(user_id)
        except CacheCorruption:
            logger.error(f"Corrupt permission cache entry for user {user_id}; evicting")
            await self.cache.invalidate_user(user_id)
            raise
        if cached is not None:
            return cached

        version = await self.cache.version(user_id)
        key = (asyncio.get_running_loop(), user_id)
        inflight = self._inflight.get(key)
        if inflight is not None and inflight[0] == version:
            task = inflight[1]
        else:
            # A load started before an invalidation must not be joined
            task = asyncio.ensure_future(self._load(user_id, version))
            self._inflight[key] = (version, task)
            task.add_done_callback(lambda t, k=key: self._forget(k, t))

        return await asyncio.shield(task)

    async def resolve_subject(self, user_id: str) -> tuple[Subject, CapabilitySet]:
        """Return the user record with its live capability set.

        Unlike `resolve`, raises UnknownSubject for a missing user; used at
        credential issuance where the caller needs the user type too.
        """
        subject = await self.store.get_active_user(user_id)
        capabilities = await self.resolve(user_id) if subject.is_active else EMPTY_CAPABILITIES
        return subject, capabilities

    async def has_permission(self, user_id: str, module: str, action: str) -> bool:
        return has_capability(await self.resolve(user_id), module, action)

    # ── internals ───────────────────────────────────────────

    async def _load(self, user_id: str, version: CacheVersion) -> CapabilitySet:
        try:
            subject = await self.store.get_active_user(user_id)
        except UnknownSubject:
            logger.warning(f"Permission lookup for unknown subject {user_id}")
            return EMPTY_CAPABILITIES
        except StoreUnavailable:
            logger.error(f"Permission store unavailable while resolving user {user_id}")
            raise

        if not subject.is_active:
            logger.debug(f"User {user_id} is {subject.status}; no capabilities")
            return EMPTY_CAPABILITIES

        try:
            grants = await self.store.get_active_roles_with_permissions(user_id)
            keys = {perm.key for grant in grants for perm in grant.permissions}
            if self.is_admin(subject.user_type):
                everything = await self.store.get_all_active_permissions()
                keys.update(perm.key for perm in everything)
        except StoreUnavailable:
            logger.error(f"Permission store unavailable while resolving user {user_id}")
            raise

        capabilities = frozenset(keys)
        if not await self.cache.put(user_id, capabilities, version):
            logger.debug(f"Permissions for {user_id} changed during resolution; not cached")
        return capabilities

    def _forget(self, key: tuple, task: asyncio.Task) -> None:
        current = self._inflight.get(key)
        if current is not None and current[1] is task:
            del self._inflight[key]
        # Mark any exception as retrieved even if every waiter has gone away
        if not task.cancelled():
            task.exception()
