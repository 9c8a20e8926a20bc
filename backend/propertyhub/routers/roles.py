"""Role management router.

Endpoints:
    GET    /api/roles/                      List roles with their permissions
    GET    /api/roles/with-user-counts      List roles with assigned-user counts
    GET    /api/roles/user/{user_id}        Roles assigned to a user
    GET    /api/roles/{role_id}             Role detail
    POST   /api/roles/                      Create role
    PUT    /api/roles/{role_id}             Update role (permissions replace the set)
    DELETE /api/roles/{role_id}             Delete role
    POST   /api/roles/assign                Assign role to user
    DELETE /api/roles/assign/{user_id}/{role_id}  Remove role from user

All endpoints require the matching `role_permission:*` capability.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from propertyhub.auth.deps import AuthComponents, get_auth, require_permission
from propertyhub.auth.guard import AuthorizationResult
from propertyhub.database import get_db
from propertyhub.schemas.rbac import (
    RoleAssignmentRequest,
    RoleCreate,
    RoleOut,
    RoleUpdate,
    RoleWithUserCount,
)
from propertyhub.services import rbac_admin

router = APIRouter()


@router.get("/", response_model=list[RoleOut])
async def list_roles(
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    return await rbac_admin.list_roles(db)


@router.get("/with-user-counts", response_model=list[RoleWithUserCount])
async def list_roles_with_user_counts(
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    rows = await rbac_admin.list_roles_with_user_counts(db)
    return [
        RoleWithUserCount(
            **RoleOut.model_validate(role).model_dump(),
            user_count=count,
        )
        for role, count in rows
    ]


@router.get("/user/{user_id}", response_model=list[RoleOut])
async def list_user_roles(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    return await rbac_admin.list_user_roles(db, user_id)


@router.get("/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    return await rbac_admin.get_role(db, role_id)


@router.post("/", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "create")),
):
    return await rbac_admin.create_role(db, auth.cache, body, actor_id=authz.subject_id)


@router.put("/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: str,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "update")),
):
    return await rbac_admin.update_role(db, auth.cache, role_id, body, actor_id=authz.subject_id)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "delete")),
):
    await rbac_admin.delete_role(db, auth.cache, role_id, actor_id=authz.subject_id)


# ── Assignments ─────────────────────────────────────────────

@router.post("/assign", status_code=status.HTTP_201_CREATED)
async def assign_role(
    body: RoleAssignmentRequest,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "assign")),
):
    await rbac_admin.assign_role(
        db, auth.cache, body.user_id, body.role_id, actor_id=authz.subject_id
    )
    return {"message": "Role assigned successfully"}


@router.delete("/assign/{user_id}/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_role(
    user_id: str,
    role_id: str,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "assign")),
):
    await rbac_admin.unassign_role(
        db, auth.cache, user_id, role_id, actor_id=authz.subject_id
    )
