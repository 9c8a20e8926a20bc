"""Tests for the SQL permission store."""

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from propertyhub.auth.capabilities import DEFAULT_ROLES, RecordStatus
from propertyhub.auth.errors import StoreUnavailable, UnknownSubject
from propertyhub.auth.store import SqlPermissionStore
from propertyhub.models.rbac import Permission, Role


@pytest.mark.integration
@pytest.mark.asyncio
class TestSqlPermissionStore:

    async def test_get_active_user(self, session_factory, users):
        store = SqlPermissionStore(session_factory)
        subject = await store.get_active_user(users["owner"].id)

        assert subject.user_id == users["owner"].id
        assert subject.user_type == "property_listing"
        assert subject.status == "active"
        assert subject.is_active

    async def test_suspended_user_is_not_active(self, session_factory, users):
        store = SqlPermissionStore(session_factory)
        subject = await store.get_active_user(users["suspended"].id)
        assert subject.status == "suspended"
        assert not subject.is_active

    async def test_unknown_user_raises(self, session_factory, users):
        store = SqlPermissionStore(session_factory)
        with pytest.raises(UnknownSubject):
            await store.get_active_user("does-not-exist")

    async def test_roles_with_permissions(self, session_factory, users):
        store = SqlPermissionStore(session_factory)
        grants = await store.get_active_roles_with_permissions(users["owner"].id)

        assert [g.role_name for g in grants] == ["Property Owner"]
        keys = {p.key for p in grants[0].permissions}
        assert keys == DEFAULT_ROLES["Property Owner"][1]

    async def test_user_without_roles(self, session_factory, users):
        store = SqlPermissionStore(session_factory)
        assert await store.get_active_roles_with_permissions(users["norole"].id) == []

    async def test_inactive_role_is_excluded(self, session_factory, users, db_session):
        await db_session.execute(
            update(Role).where(Role.name == "Property Owner").values(status=RecordStatus.INACTIVE)
        )
        await db_session.commit()

        store = SqlPermissionStore(session_factory)
        assert await store.get_active_roles_with_permissions(users["owner"].id) == []

    async def test_inactive_permission_is_excluded(self, session_factory, users, db_session):
        await db_session.execute(
            update(Permission)
            .where(Permission.module == "booking", Permission.action == "update")
            .values(status=RecordStatus.INACTIVE)
        )
        await db_session.commit()

        store = SqlPermissionStore(session_factory)
        grants = await store.get_active_roles_with_permissions(users["owner"].id)
        keys = {p.key for g in grants for p in g.permissions}
        assert "booking:update" not in keys
        assert "booking:view" in keys

    async def test_role_with_only_inactive_permissions_still_listed(
        self, session_factory, users, db_session
    ):
        await db_session.execute(update(Permission).values(status=RecordStatus.INACTIVE))
        await db_session.commit()

        store = SqlPermissionStore(session_factory)
        grants = await store.get_active_roles_with_permissions(users["owner"].id)
        assert len(grants) == 1
        assert grants[0].permissions == ()

    async def test_all_active_permissions(self, session_factory, users, db_session):
        total = len((await db_session.execute(select(Permission))).scalars().all())
        await db_session.execute(
            update(Permission).where(Permission.module == "cms").values(status=RecordStatus.INACTIVE)
        )
        await db_session.commit()

        store = SqlPermissionStore(session_factory)
        records = await store.get_all_active_permissions()
        assert len(records) == total - 2
        assert all(r.module != "cms" for r in records)

    async def test_database_errors_become_store_unavailable(self, users):
        def broken_factory():
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))

        store = SqlPermissionStore(broken_factory)
        with pytest.raises(StoreUnavailable):
            await store.get_active_user(users["owner"].id)
        with pytest.raises(StoreUnavailable):
            await store.get_all_active_permissions()
