from pydantic import BaseModel, Field

from propertyhub.auth.capabilities import RecordStatus


# ── Permissions ──────────────────────────────────────────────

class PermissionCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    module: str = Field(min_length=2, max_length=50)
    action: str = Field(min_length=2, max_length=50)
    description: str | None = None


class PermissionUpdate(BaseModel):
    """Module and action are immutable; create a new permission instead."""
    name: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = None
    status: RecordStatus | None = None


class PermissionOut(BaseModel):
    id: str
    name: str
    module: str
    action: str
    description: str | None
    is_system: bool
    status: RecordStatus

    model_config = {"from_attributes": True}


# ── Roles ────────────────────────────────────────────────────

class RoleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    description: str | None = None
    color_class: str | None = None
    permissions: list[str] = []   # permission ids


class RoleUpdate(BaseModel):
    """Omitted fields stay unchanged; `permissions` replaces the whole set."""
    name: str | None = Field(default=None, min_length=2, max_length=50)
    description: str | None = None
    color_class: str | None = None
    status: RecordStatus | None = None
    permissions: list[str] | None = None


class RoleOut(BaseModel):
    id: str
    name: str
    description: str | None
    color_class: str | None
    is_system: bool
    status: RecordStatus
    permissions: list[PermissionOut] = []

    model_config = {"from_attributes": True}


class RoleWithUserCount(RoleOut):
    user_count: int


# ── Assignments ──────────────────────────────────────────────

class RoleAssignmentRequest(BaseModel):
    user_id: str
    role_id: str
