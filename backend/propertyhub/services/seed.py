"""Seed the default RBAC catalogue.

Safe to run repeatedly: existing permissions, roles and grants are left
as they are and only missing rows are inserted. Seeded rows are marked
`is_system` so the management API refuses to rename or delete them.

Existing admin-tier users are given the Super Admin role. When a cache is
passed and anything was inserted, every cached permission set is
invalidated after the commit.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from propertyhub.auth.cache import PermissionCache
from propertyhub.auth.capabilities import (
    DEFAULT_MODULES,
    DEFAULT_ROLES,
    SUPER_ADMIN_ROLE,
    RecordStatus,
    capability_key,
)
from propertyhub.models.rbac import Permission, Role, RolePermission, User, UserRole

logger = logging.getLogger(__name__)


@dataclass
class SeedSummary:
    permissions_created: int = 0
    roles_created: int = 0
    grants_created: int = 0
    admins_assigned: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.permissions_created
            or self.roles_created
            or self.grants_created
            or self.admins_assigned
        )


def _permission_name(module: str, action: str) -> str:
    return f"{module.replace('_', ' ').title()} {action.replace('_', ' ').title()}"


async def _seed_permissions(db: AsyncSession, summary: SeedSummary) -> dict[str, str]:
    """Insert missing catalogue permissions; return capability key → id."""
    rows = (await db.execute(select(Permission))).scalars().all()
    by_key = {capability_key(p.module, p.action): p.id for p in rows}

    for module, actions in DEFAULT_MODULES.items():
        for action, description in actions:
            key = capability_key(module, action)
            if key in by_key:
                continue
            permission = Permission(
                name=_permission_name(module, action),
                module=module,
                action=action,
                description=description,
                is_system=True,
                status=RecordStatus.ACTIVE,
            )
            db.add(permission)
            await db.flush()
            by_key[key] = permission.id
            summary.permissions_created += 1
    return by_key


async def _seed_roles(
    db: AsyncSession,
    permission_ids: dict[str, str],
    summary: SeedSummary,
) -> dict[str, str]:
    role_ids: dict[str, str] = {}
    for name, (description, keys) in DEFAULT_ROLES.items():
        role = (await db.execute(select(Role).where(Role.name == name))).scalar_one_or_none()
        if role is None:
            role = Role(
                name=name,
                description=description,
                is_system=True,
                status=RecordStatus.ACTIVE,
            )
            db.add(role)
            await db.flush()
            summary.roles_created += 1
        role_ids[name] = role.id

        wanted = set(permission_ids) if keys is None else keys
        granted = set(
            (
                await db.execute(
                    select(RolePermission.permission_id).where(RolePermission.role_id == role.id)
                )
            ).scalars()
        )
        for key in sorted(wanted):
            pid = permission_ids.get(key)
            if pid is None:
                logger.warning(f"Seed role {name!r} references unknown capability {key!r}")
                continue
            if pid in granted:
                continue
            db.add(RolePermission(role_id=role.id, permission_id=pid))
            summary.grants_created += 1
    return role_ids


async def _assign_super_admin(
    db: AsyncSession,
    role_id: str,
    admin_user_types: list[str],
    summary: SeedSummary,
) -> None:
    admins = (
        await db.execute(select(User.id).where(User.user_type.in_(admin_user_types)))
    ).scalars().all()
    assigned = set(
        (
            await db.execute(select(UserRole.user_id).where(UserRole.role_id == role_id))
        ).scalars()
    )
    for user_id in admins:
        if user_id in assigned:
            continue
        db.add(UserRole(user_id=user_id, role_id=role_id))
        summary.admins_assigned += 1


async def seed_rbac(
    session_factory: async_sessionmaker[AsyncSession],
    admin_user_types: list[str] | None = None,
    cache: PermissionCache | None = None,
) -> SeedSummary:
    if admin_user_types is None:
        from propertyhub.config import settings
        admin_user_types = settings.admin_user_types

    summary = SeedSummary()
    async with session_factory() as db:
        permission_ids = await _seed_permissions(db, summary)
        role_ids = await _seed_roles(db, permission_ids, summary)
        await _assign_super_admin(db, role_ids[SUPER_ADMIN_ROLE], admin_user_types, summary)
        await db.commit()

    if cache is not None and summary.changed:
        await cache.invalidate_all()

    logger.info(
        f"RBAC seed: {summary.permissions_created} permission(s), "
        f"{summary.roles_created} role(s), {summary.grants_created} grant(s), "
        f"{summary.admins_assigned} admin assignment(s) created"
    )
    return summary
