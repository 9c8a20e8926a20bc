"""Role and permission management.

Every mutation commits first and then invalidates the permission cache:
  - role assigned to / removed from a user    → invalidate that user
  - role renamed, status or permission set changed → invalidate everyone
  - role deleted                              → invalidate everyone
  - permission created / updated / deleted    → invalidate everyone
    (admin-tier users implicitly hold every active permission)

Description and color edits change no capability and leave the cache alone.

Each mutation also appends an AuditLog row in the same transaction.
"""

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from propertyhub.auth.cache import PermissionCache
from propertyhub.auth.capabilities import RecordStatus
from propertyhub.middleware.exceptions import (
    BusinessLogicError,
    ConflictError,
    PermissionDeniedError,
    ResourceNotFoundError,
)
from propertyhub.models.audit_log import AuditAction
from propertyhub.models.rbac import Permission, Role, RolePermission, User, UserRole
from propertyhub.schemas.rbac import (
    PermissionCreate,
    PermissionUpdate,
    RoleCreate,
    RoleUpdate,
)
from propertyhub.utils.audit import (
    PERMISSION_AUDIT_FIELDS,
    ROLE_AUDIT_FIELDS,
    log_audit,
    snapshot,
)


# ── Lookups ─────────────────────────────────────────────────

async def _load_role(db: AsyncSession, role_id: str) -> Role:
    role = (
        await db.execute(
            select(Role)
            .where(Role.id == role_id)
            .options(selectinload(Role.permissions))
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not role:
        raise ResourceNotFoundError("Role", role_id, error_code="ROLE_NOT_FOUND")
    return role


async def _load_user(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise ResourceNotFoundError("User", user_id, error_code="USER_NOT_FOUND")
    return user


async def _load_permission(db: AsyncSession, permission_id: str) -> Permission:
    permission = (
        await db.execute(select(Permission).where(Permission.id == permission_id))
    ).scalar_one_or_none()
    if not permission:
        raise ResourceNotFoundError("Permission", permission_id, error_code="PERMISSION_NOT_FOUND")
    return permission


async def _ensure_permissions_exist(db: AsyncSession, permission_ids: list[str]) -> list[str]:
    wanted = list(dict.fromkeys(permission_ids))
    if not wanted:
        return []
    found = set(
        (await db.execute(select(Permission.id).where(Permission.id.in_(wanted)))).scalars()
    )
    missing = [pid for pid in wanted if pid not in found]
    if missing:
        raise ResourceNotFoundError("Permission", ", ".join(missing), error_code="PERMISSION_NOT_FOUND")
    return wanted


async def _ensure_role_name_free(db: AsyncSession, name: str) -> None:
    existing = (await db.execute(select(Role.id).where(Role.name == name))).scalar_one_or_none()
    if existing:
        raise ConflictError("Role name already exists", error_code="ROLE_NAME_EXISTS")


def _role_state(role: Role, permission_ids) -> dict:
    state = snapshot(role, ROLE_AUDIT_FIELDS)
    state["permissions"] = sorted(permission_ids)
    return state


# ── Roles ───────────────────────────────────────────────────

async def list_roles(db: AsyncSession) -> list[Role]:
    result = await db.execute(
        select(Role).options(selectinload(Role.permissions)).order_by(Role.name)
    )
    return list(result.scalars())


async def list_roles_with_user_counts(db: AsyncSession) -> list[tuple[Role, int]]:
    roles = await list_roles(db)
    counts = dict(
        (
            await db.execute(
                select(UserRole.role_id, func.count(UserRole.id)).group_by(UserRole.role_id)
            )
        ).all()
    )
    return [(role, counts.get(role.id, 0)) for role in roles]


async def get_role(db: AsyncSession, role_id: str) -> Role:
    return await _load_role(db, role_id)


async def create_role(
    db: AsyncSession,
    cache: PermissionCache,
    body: RoleCreate,
    actor_id: str | None = None,
) -> Role:
    await _ensure_role_name_free(db, body.name)
    permission_ids = await _ensure_permissions_exist(db, body.permissions)

    role = Role(
        name=body.name,
        description=body.description,
        color_class=body.color_class,
        is_system=False,
        status=RecordStatus.ACTIVE,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(role)
    await db.flush()
    for pid in permission_ids:
        db.add(RolePermission(role_id=role.id, permission_id=pid, created_by=actor_id))
    await log_audit(
        db, actor_id, action=AuditAction.CREATE, entity_type="Role",
        entity_id=role.id, new=_role_state(role, permission_ids),
    )
    await db.commit()

    if permission_ids:
        await cache.invalidate_all()
    return await _load_role(db, role.id)


async def update_role(
    db: AsyncSession,
    cache: PermissionCache,
    role_id: str,
    body: RoleUpdate,
    actor_id: str | None = None,
) -> Role:
    role = await _load_role(db, role_id)
    current_permission_ids = [p.id for p in role.permissions]
    before = _role_state(role, current_permission_ids)

    renaming = body.name is not None and body.name != role.name
    redescribing = body.description is not None and body.description != role.description
    if role.is_system and (renaming or redescribing):
        raise PermissionDeniedError(
            "System roles cannot be modified", error_code="SYSTEM_ROLE_MODIFICATION"
        )
    if renaming:
        await _ensure_role_name_free(db, body.name)

    capabilities_changed = False
    if renaming:
        role.name = body.name
        capabilities_changed = True
    if body.description is not None:
        role.description = body.description
    if body.color_class is not None:
        role.color_class = body.color_class
    if body.status is not None and body.status != role.status:
        role.status = body.status
        capabilities_changed = True
    role.updated_by = actor_id

    if body.permissions is not None:
        permission_ids = await _ensure_permissions_exist(db, body.permissions)
        await db.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        for pid in permission_ids:
            db.add(RolePermission(role_id=role_id, permission_id=pid, created_by=actor_id))
        current_permission_ids = permission_ids
        capabilities_changed = True

    await log_audit(
        db, actor_id, action=AuditAction.UPDATE, entity_type="Role",
        entity_id=role_id, previous=before, new=_role_state(role, current_permission_ids),
    )
    await db.commit()

    if capabilities_changed:
        await cache.invalidate_all()
    return await _load_role(db, role_id)


async def delete_role(
    db: AsyncSession,
    cache: PermissionCache,
    role_id: str,
    actor_id: str | None = None,
) -> None:
    role = await _load_role(db, role_id)
    if role.is_system:
        raise PermissionDeniedError(
            "System roles cannot be deleted", error_code="SYSTEM_ROLE_DELETION"
        )

    assigned = (
        await db.execute(select(func.count(UserRole.id)).where(UserRole.role_id == role_id))
    ).scalar() or 0
    if assigned:
        raise BusinessLogicError(
            "Cannot delete role that is assigned to users", error_code="ROLE_IN_USE"
        )

    before = _role_state(role, [p.id for p in role.permissions])
    await db.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
    await db.delete(role)
    await log_audit(
        db, actor_id, action=AuditAction.DELETE, entity_type="Role",
        entity_id=role_id, previous=before,
    )
    await db.commit()
    await cache.invalidate_all()


# ── Assignments ─────────────────────────────────────────────

async def assign_role(
    db: AsyncSession,
    cache: PermissionCache,
    user_id: str,
    role_id: str,
    actor_id: str | None = None,
) -> UserRole:
    await _load_role(db, role_id)
    await _load_user(db, user_id)

    existing = (
        await db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
    ).scalar_one_or_none()
    if existing:
        raise ConflictError("Role is already assigned to user", error_code="ROLE_ALREADY_ASSIGNED")

    assignment = UserRole(user_id=user_id, role_id=role_id, created_by=actor_id)
    db.add(assignment)
    await db.flush()
    await log_audit(
        db, actor_id, action=AuditAction.CREATE, entity_type="UserRole",
        entity_id=assignment.id, new={"user_id": user_id, "role_id": role_id},
    )
    await db.commit()

    await cache.invalidate_user(user_id)
    return assignment


async def unassign_role(
    db: AsyncSession,
    cache: PermissionCache,
    user_id: str,
    role_id: str,
    actor_id: str | None = None,
) -> None:
    await _load_role(db, role_id)
    await _load_user(db, user_id)

    assignment = (
        await db.execute(
            select(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
        )
    ).scalar_one_or_none()
    if not assignment:
        raise ResourceNotFoundError(
            "Role assignment", f"{user_id}/{role_id}", error_code="ROLE_NOT_ASSIGNED"
        )

    await db.delete(assignment)
    await log_audit(
        db, actor_id, action=AuditAction.DELETE, entity_type="UserRole",
        entity_id=assignment.id, previous={"user_id": user_id, "role_id": role_id},
    )
    await db.commit()

    await cache.invalidate_user(user_id)


async def list_user_roles(db: AsyncSession, user_id: str) -> list[Role]:
    await _load_user(db, user_id)
    result = await db.execute(
        select(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .options(selectinload(Role.permissions))
        .order_by(Role.name)
    )
    return list(result.scalars())


# ── Permissions ─────────────────────────────────────────────

async def list_permissions(db: AsyncSession, module: str | None = None) -> list[Permission]:
    stmt = select(Permission).order_by(Permission.module, Permission.action)
    if module is not None:
        stmt = stmt.where(Permission.module == module)
    return list((await db.execute(stmt)).scalars())


async def list_modules(db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(Permission.module).group_by(Permission.module).order_by(Permission.module)
    )
    return list(result.scalars())


async def get_permission(db: AsyncSession, permission_id: str) -> Permission:
    return await _load_permission(db, permission_id)


async def create_permission(
    db: AsyncSession,
    cache: PermissionCache,
    body: PermissionCreate,
    actor_id: str | None = None,
) -> Permission:
    existing = (
        await db.execute(
            select(Permission.id).where(
                Permission.module == body.module, Permission.action == body.action
            )
        )
    ).scalar_one_or_none()
    if existing:
        raise ConflictError(
            "Permission with this module and action already exists",
            error_code="PERMISSION_ALREADY_EXISTS",
        )

    permission = Permission(
        name=body.name,
        module=body.module,
        action=body.action,
        description=body.description,
        is_system=False,
        status=RecordStatus.ACTIVE,
        created_by=actor_id,
        updated_by=actor_id,
    )
    db.add(permission)
    await db.flush()
    await log_audit(
        db, actor_id, action=AuditAction.CREATE, entity_type="Permission",
        entity_id=permission.id, new=snapshot(permission, PERMISSION_AUDIT_FIELDS),
    )
    await db.commit()

    await cache.invalidate_all()
    return permission


async def update_permission(
    db: AsyncSession,
    cache: PermissionCache,
    permission_id: str,
    body: PermissionUpdate,
    actor_id: str | None = None,
) -> Permission:
    permission = await _load_permission(db, permission_id)
    if permission.is_system:
        raise PermissionDeniedError(
            "System permissions cannot be modified", error_code="SYSTEM_PERMISSION_MODIFICATION"
        )

    before = snapshot(permission, PERMISSION_AUDIT_FIELDS)
    if body.name is not None:
        permission.name = body.name
    if body.description is not None:
        permission.description = body.description
    if body.status is not None:
        permission.status = body.status
    permission.updated_by = actor_id
    await log_audit(
        db, actor_id, action=AuditAction.UPDATE, entity_type="Permission",
        entity_id=permission_id, previous=before,
        new=snapshot(permission, PERMISSION_AUDIT_FIELDS),
    )
    await db.commit()

    await cache.invalidate_all()
    return permission


async def delete_permission(
    db: AsyncSession,
    cache: PermissionCache,
    permission_id: str,
    actor_id: str | None = None,
) -> None:
    permission = await _load_permission(db, permission_id)
    if permission.is_system:
        raise PermissionDeniedError(
            "System permissions cannot be deleted", error_code="SYSTEM_PERMISSION_DELETION"
        )

    before = snapshot(permission, PERMISSION_AUDIT_FIELDS)
    await db.execute(delete(RolePermission).where(RolePermission.permission_id == permission_id))
    await db.delete(permission)
    await log_audit(
        db, actor_id, action=AuditAction.DELETE, entity_type="Permission",
        entity_id=permission_id, previous=before,
    )
    await db.commit()
    await cache.invalidate_all()
