"""Pytest configuration and fixtures for PropertyHub tests.

Provides a throwaway SQLite database (aiosqlite), seeded RBAC data,
an app client over ASGITransport, and in-process fakes for the
permission store and Redis.
"""

import asyncio
from collections import Counter
from typing import AsyncGenerator

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import propertyhub.models  # noqa: F401  (registers tables)
from propertyhub.auth.cache import InMemoryPermissionCache
from propertyhub.auth.capabilities import UserStatus, split_capability
from propertyhub.auth.deps import AuthComponents, build_auth_components
from propertyhub.auth.errors import StoreUnavailable, UnknownSubject
from propertyhub.auth.jwt import TokenCodec
from propertyhub.auth.resolver import PermissionResolver
from propertyhub.auth.store import PermissionRecord, RoleGrant, Subject
from propertyhub.config import settings
from propertyhub.database import Base, build_engine, build_session_factory
from propertyhub.main import create_app
from propertyhub.models.rbac import Role, User, UserRole
from propertyhub.services.seed import seed_rbac

ADMIN_TYPES = ["admin", "super_admin"]


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Test Data Fixtures ───────────────────────────────────────────

USER_FIXTURES = [
    # key, user_type, status, role
    ("owner", "property_listing", UserStatus.ACTIVE, "Property Owner"),
    ("searcher", "property_searching", UserStatus.ACTIVE, "End User"),
    ("admin", "admin", UserStatus.ACTIVE, None),
    ("suspended", "property_listing", UserStatus.SUSPENDED, "Property Owner"),
    ("norole", "property_searching", UserStatus.ACTIVE, None),
]


@pytest_asyncio.fixture
async def users(session_factory) -> dict[str, User]:
    """Seeded catalogue plus one user per interesting shape.

    The admin user holds Super Admin through the seeder; `norole` holds
    nothing at all.
    """
    created: dict[str, User] = {}
    async with session_factory() as db:
        for key, user_type, status, _ in USER_FIXTURES:
            user = User(
                email=f"{key}@example.com",
                first_name=key.title(),
                last_name="Test",
                user_type=user_type,
                status=status,
                verified=True,
            )
            db.add(user)
            created[key] = user
        await db.commit()

    await seed_rbac(session_factory, ADMIN_TYPES)

    async with session_factory() as db:
        role_ids = {r.name: r.id for r in (await db.execute(select(Role))).scalars()}
        for key, _, _, role_name in USER_FIXTURES:
            if role_name:
                db.add(UserRole(user_id=created[key].id, role_id=role_ids[role_name]))
        await db.commit()

    return created


# ── Auth Components / App ────────────────────────────────────────

@pytest.fixture
def cache() -> InMemoryPermissionCache:
    return InMemoryPermissionCache(ttl_seconds=300)


@pytest.fixture
def auth_components(session_factory, cache) -> AuthComponents:
    return build_auth_components(settings, session_factory, cache=cache)


@pytest_asyncio.fixture
async def client(session_factory, auth_components) -> AsyncGenerator[AsyncClient, None]:
    app = create_app(session_factory=session_factory, auth_components=auth_components)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def issue_headers(auth_components):
    """Async helper: bearer headers for a user, tokens minted through the issuer."""
    async def _issue(user_id: str) -> dict:
        issued = await auth_components.issuer.issue_for(user_id)
        return {"Authorization": f"Bearer {issued.access_token}"}

    return _issue


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(secret_key="test-secret", admin_user_types=ADMIN_TYPES)


# ── Fakes ────────────────────────────────────────────────────────

class FakePermissionStore:
    """In-memory PermissionStore that counts calls.

    Set `gate` to an asyncio.Event to hold every lookup until it is set;
    `entered` fires as soon as the first lookup starts. `fail` makes every
    lookup raise StoreUnavailable.
    """

    def __init__(self):
        self.users: dict[str, Subject] = {}
        self.grants: dict[str, list[RoleGrant]] = {}
        self.permissions: dict[str, PermissionRecord] = {}
        self.calls: Counter = Counter()
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.fail = False

    def add_permission(self, key: str) -> PermissionRecord:
        if key not in self.permissions:
            module, action = split_capability(key)
            self.permissions[key] = PermissionRecord(f"perm-{key}", module, action)
        return self.permissions[key]

    def add_user(
        self,
        user_id: str,
        user_type: str | None = "property_searching",
        status: str = "active",
        capabilities: tuple[str, ...] = (),
    ) -> None:
        self.users[user_id] = Subject(user_id=user_id, user_type=user_type, status=status)
        self.set_capabilities(user_id, capabilities)

    def set_capabilities(self, user_id: str, capabilities) -> None:
        perms = tuple(self.add_permission(key) for key in sorted(capabilities))
        self.grants[user_id] = [RoleGrant(f"role-{user_id}", "Role", perms)] if perms else []

    async def _enter(self, name: str) -> None:
        self.calls[name] += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise StoreUnavailable("store is down")

    async def get_active_user(self, user_id: str) -> Subject:
        await self._enter("get_active_user")
        if user_id not in self.users:
            raise UnknownSubject(user_id)
        return self.users[user_id]

    async def get_active_roles_with_permissions(self, user_id: str) -> list[RoleGrant]:
        await self._enter("get_active_roles_with_permissions")
        return list(self.grants.get(user_id, []))

    async def get_all_active_permissions(self) -> list[PermissionRecord]:
        await self._enter("get_all_active_permissions")
        return list(self.permissions.values())


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the permission cache."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("redis is down")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def mget(self, *keys):
        self._check()
        return [self.data.get(k) for k in keys]

    async def setex(self, key, ttl, value):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def incr(self, key):
        self._check()
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def ping(self):
        self._check()
        return True


@pytest.fixture
def fake_store() -> FakePermissionStore:
    return FakePermissionStore()


@pytest.fixture
def resolver(fake_store, cache) -> PermissionResolver:
    return PermissionResolver(fake_store, cache, admin_user_types=ADMIN_TYPES)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


# ── Test Markers ─────────────────────────────────────────────────

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "auth: Authentication and authorization tests")
    config.addinivalue_line("markers", "cache: Permission cache tests")
    config.addinivalue_line("markers", "slow: Slow tests")
