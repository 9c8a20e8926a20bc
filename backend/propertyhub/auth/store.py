"""Read-only access to users, roles and permissions.

The store never caches. Every call may hit the database. Only active
roles and active permissions are ever returned, so callers can build a
capability set without re-checking statuses.

Failure contract:
  - unknown user id       → UnknownSubject (callers treat as zero capabilities)
  - database unreachable  → StoreUnavailable (callers deny, fail-closed)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import and_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from propertyhub.auth.capabilities import (
    RecordStatus,
    UserStatus,
    capability_key,
)
from propertyhub.auth.errors import StoreUnavailable, UnknownSubject
from propertyhub.models.rbac import Permission, Role, RolePermission, User, UserRole


# ── Records ─────────────────────────────────────────────────

@dataclass(frozen=True)
class Subject:
    user_id: str
    user_type: str | None
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value


@dataclass(frozen=True)
class PermissionRecord:
    id: str
    module: str
    action: str

    @property
    def key(self) -> str:
        return capability_key(self.module, self.action)


@dataclass(frozen=True)
class RoleGrant:
    """One active role held by a user and its active permissions."""
    role_id: str
    role_name: str
    permissions: tuple[PermissionRecord, ...]


class PermissionStore(Protocol):
    async def get_active_user(self, user_id: str) -> Subject: ...

    async def get_active_roles_with_permissions(self, user_id: str) -> list[RoleGrant]: ...

    async def get_all_active_permissions(self) -> list[PermissionRecord]: ...


# ── SQLAlchemy implementation ───────────────────────────────

def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class SqlPermissionStore:
    """PermissionStore backed by the RBAC tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_active_user(self, user_id: str) -> Subject:
        stmt = select(User.id, User.user_type, User.status).where(User.id == user_id)
        try:
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"User lookup failed: {e}") from e

        if row is None:
            raise UnknownSubject(user_id)
        return Subject(user_id=row.id, user_type=row.user_type, status=_status_value(row.status))

    async def get_active_roles_with_permissions(self, user_id: str) -> list[RoleGrant]:
        # Outer join so an active role with no active permissions still shows up
        stmt = (
            select(
                Role.id.label("role_id"),
                Role.name.label("role_name"),
                Permission.id.label("permission_id"),
                Permission.module,
                Permission.action,
            )
            .join(UserRole, UserRole.role_id == Role.id)
            .outerjoin(RolePermission, RolePermission.role_id == Role.id)
            .outerjoin(
                Permission,
                and_(
                    Permission.id == RolePermission.permission_id,
                    Permission.status == RecordStatus.ACTIVE,
                ),
            )
            .where(UserRole.user_id == user_id, Role.status == RecordStatus.ACTIVE)
            .order_by(Role.name, Permission.module, Permission.action)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Role lookup failed: {e}") from e

        grants: dict[str, tuple[str, list[PermissionRecord]]] = {}
        for row in rows:
            _, perms = grants.setdefault(row.role_id, (row.role_name, []))
            if row.permission_id is not None:
                perms.append(PermissionRecord(row.permission_id, row.module, row.action))

        return [
            RoleGrant(role_id=role_id, role_name=name, permissions=tuple(perms))
            for role_id, (name, perms) in grants.items()
        ]

    async def get_all_active_permissions(self) -> list[PermissionRecord]:
        stmt = (
            select(Permission.id, Permission.module, Permission.action)
            .where(Permission.status == RecordStatus.ACTIVE)
            .order_by(Permission.module, Permission.action)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except (SQLAlchemyError, OSError) as e:
            raise StoreUnavailable(f"Permission lookup failed: {e}") from e

        return [PermissionRecord(row.id, row.module, row.action) for row in rows]
