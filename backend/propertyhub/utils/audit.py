"""Helpers for recording RBAC audit log entries.

Usage:
    before = snapshot(role, ROLE_AUDIT_FIELDS)
    ...mutate role...
    await log_audit(
        db, actor_id, action=AuditAction.UPDATE, entity_type="Role",
        entity_id=role.id, previous=before, new=snapshot(role, ROLE_AUDIT_FIELDS),
    )
    await db.commit()

The row is added to the current session and committed with the
enclosing transaction. An UPDATE whose values did not change is skipped.
"""

from __future__ import annotations

import enum

from sqlalchemy.ext.asyncio import AsyncSession

from propertyhub.models.audit_log import AuditAction, AuditLog

ROLE_AUDIT_FIELDS = ("name", "description", "color_class", "status", "is_system")
PERMISSION_AUDIT_FIELDS = ("name", "module", "action", "description", "status", "is_system")


def snapshot(obj, fields: tuple[str, ...]) -> dict:
    """JSON-safe dict of the given attributes (enums stored by value)."""
    out = {}
    for field in fields:
        value = getattr(obj, field)
        out[field] = value.value if isinstance(value, enum.Enum) else value
    return out


async def log_audit(
    db: AsyncSession,
    actor_id: str | None,
    *,
    action: AuditAction,
    entity_type: str,
    entity_id: str | None,
    previous: dict | None = None,
    new: dict | None = None,
) -> AuditLog | None:
    """Append an audit entry to the current DB session."""
    changed_fields = None
    if action is AuditAction.UPDATE:
        previous = previous or {}
        new = new or {}
        changed_fields = sorted(k for k in new if previous.get(k) != new[k])
        if not changed_fields:
            return None
        previous = {k: previous.get(k) for k in changed_fields}
        new = {k: new[k] for k in changed_fields}

    entry = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        previous_value=previous,
        new_value=new,
        changed_fields=changed_fields,
        created_by=actor_id,
    )
    db.add(entry)
    return entry
