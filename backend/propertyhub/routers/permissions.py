"""Permission management router.

Endpoints:
    GET    /api/permissions/                   List permissions (optional ?module=)
    GET    /api/permissions/modules/all        Distinct module names
    GET    /api/permissions/{permission_id}    Permission detail
    POST   /api/permissions/                   Create permission
    PUT    /api/permissions/{permission_id}    Update name, description or status
    DELETE /api/permissions/{permission_id}    Delete permission
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from propertyhub.auth.deps import AuthComponents, get_auth, require_permission
from propertyhub.auth.guard import AuthorizationResult
from propertyhub.database import get_db
from propertyhub.schemas.rbac import PermissionCreate, PermissionOut, PermissionUpdate
from propertyhub.services import rbac_admin

router = APIRouter()


@router.get("/", response_model=list[PermissionOut])
async def list_permissions(
    module: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    return await rbac_admin.list_permissions(db, module=module)


@router.get("/modules/all", response_model=list[str])
async def list_modules(
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    return await rbac_admin.list_modules(db)


@router.get("/{permission_id}", response_model=PermissionOut)
async def get_permission(
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    _authz: AuthorizationResult = Depends(require_permission("role_permission", "view")),
):
    return await rbac_admin.get_permission(db, permission_id)


@router.post("/", response_model=PermissionOut, status_code=status.HTTP_201_CREATED)
async def create_permission(
    body: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "create")),
):
    return await rbac_admin.create_permission(db, auth.cache, body, actor_id=authz.subject_id)


@router.put("/{permission_id}", response_model=PermissionOut)
async def update_permission(
    permission_id: str,
    body: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "update")),
):
    return await rbac_admin.update_permission(
        db, auth.cache, permission_id, body, actor_id=authz.subject_id
    )


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    auth: AuthComponents = Depends(get_auth),
    authz: AuthorizationResult = Depends(require_permission("role_permission", "delete")),
):
    await rbac_admin.delete_permission(db, auth.cache, permission_id, actor_id=authz.subject_id)
