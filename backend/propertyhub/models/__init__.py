"""Aggregate model imports so `Base.metadata` sees every table."""

from propertyhub.models.audit_log import AuditAction, AuditLog  # noqa: F401
from propertyhub.models.rbac import (  # noqa: F401
    Permission,
    Role,
    RolePermission,
    User,
    UserRole,
)
