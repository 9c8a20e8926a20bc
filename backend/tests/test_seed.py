"""Tests for the default RBAC seed."""

import pytest
from sqlalchemy import delete, func, select

from propertyhub.auth.capabilities import ALL_DEFAULT_CAPABILITIES, DEFAULT_ROLES
from propertyhub.models.rbac import Permission, Role, RolePermission, User, UserRole
from propertyhub.services.seed import seed_rbac


@pytest.mark.integration
@pytest.mark.asyncio
class TestSeedRbac:

    async def test_fresh_seed(self, session_factory):
        summary = await seed_rbac(session_factory, ["admin", "super_admin"])

        assert summary.permissions_created == len(ALL_DEFAULT_CAPABILITIES)
        assert summary.roles_created == len(DEFAULT_ROLES)
        assert summary.admins_assigned == 0

        async with session_factory() as db:
            perms = (await db.execute(select(Permission))).scalars().all()
            assert all(p.is_system for p in perms)
            roles = (await db.execute(select(Role))).scalars().all()
            assert {r.name for r in roles} == set(DEFAULT_ROLES)

    async def test_seed_is_idempotent(self, session_factory):
        await seed_rbac(session_factory, ["admin"])
        again = await seed_rbac(session_factory, ["admin"])

        assert again.permissions_created == 0
        assert again.roles_created == 0
        assert again.grants_created == 0

        async with session_factory() as db:
            grants = (await db.execute(select(func.count(RolePermission.id)))).scalar()
        expected = len(ALL_DEFAULT_CAPABILITIES) + sum(
            len(keys) for _, keys in DEFAULT_ROLES.values() if keys is not None
        )
        assert grants == expected

    async def test_existing_admins_get_super_admin(self, session_factory):
        async with session_factory() as db:
            db.add(User(email="a@example.com", first_name="A", last_name="A", user_type="super_admin"))
            db.add(User(email="b@example.com", first_name="B", last_name="B", user_type="property_listing"))
            await db.commit()

        summary = await seed_rbac(session_factory, ["admin", "super_admin"])
        assert summary.admins_assigned == 1

        again = await seed_rbac(session_factory, ["admin", "super_admin"])
        assert again.admins_assigned == 0

        async with session_factory() as db:
            assigned = (await db.execute(select(func.count(UserRole.id)))).scalar()
        assert assigned == 1


@pytest.mark.integration
@pytest.mark.asyncio
class TestSeedInvalidatesCache:

    async def _drop_owner_grant(self, session_factory, module: str, action: str) -> None:
        async with session_factory() as db:
            role_id = (
                await db.execute(select(Role.id).where(Role.name == "Property Owner"))
            ).scalar_one()
            perm_id = (
                await db.execute(
                    select(Permission.id).where(
                        Permission.module == module, Permission.action == action
                    )
                )
            ).scalar_one()
            await db.execute(
                delete(RolePermission).where(
                    RolePermission.role_id == role_id,
                    RolePermission.permission_id == perm_id,
                )
            )
            await db.commit()

    async def test_restored_grant_is_visible_after_seed(
        self, session_factory, users, auth_components
    ):
        owner_id = users["owner"].id
        await self._drop_owner_grant(session_factory, "booking", "update")
        await auth_components.cache.invalidate_all()
        assert "booking:update" not in await auth_components.resolver.resolve(owner_id)

        summary = await seed_rbac(
            session_factory, ["admin", "super_admin"], cache=auth_components.cache
        )

        assert summary.grants_created == 1
        assert await auth_components.cache.get(owner_id) is None
        assert "booking:update" in await auth_components.resolver.resolve(owner_id)

    async def test_noop_seed_keeps_cached_sets(self, session_factory, users, auth_components):
        owner_id = users["owner"].id
        resolved = await auth_components.resolver.resolve(owner_id)

        summary = await seed_rbac(
            session_factory, ["admin", "super_admin"], cache=auth_components.cache
        )

        assert not summary.changed
        assert await auth_components.cache.get(owner_id) == resolved
