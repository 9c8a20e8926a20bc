"""Capability vocabulary for PropertyHub RBAC.

Design:
  - A permission is a (module, action) pair stored in the database.
  - Its *capability key* is the string `<module>:<action>`, e.g.
    `property_management:create`. Keys are the atomic unit of checks.
  - Roles carry permissions; users hold any number of roles.
  - Users whose `user_type` is in the admin tier implicitly hold every
    active permission, regardless of role assignments.

The catalogue below is the default module/action set seeded on a fresh
install (see `services/seed.py`). Runtime checks never read it; they only
see what is in the database.
"""

from __future__ import annotations

import enum
from typing import Iterable

CAPABILITY_SEPARATOR = ":"

CapabilitySet = frozenset[str]

EMPTY_CAPABILITIES: CapabilitySet = frozenset()


class UserType(str, enum.Enum):
    PROPERTY_SEARCHING = "property_searching"  # regular user
    PROPERTY_LISTING = "property_listing"      # property owner
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class RecordStatus(str, enum.Enum):
    """Status shared by roles and permissions."""
    ACTIVE = "active"
    INACTIVE = "inactive"


# ── Keys ────────────────────────────────────────────────────

def capability_key(module: str, action: str) -> str:
    return f"{module}{CAPABILITY_SEPARATOR}{action}"


def split_capability(key: str) -> tuple[str, str]:
    """Split `module:action` back into its parts.

    Raises ValueError for strings without a separator or with an empty side.
    """
    module, sep, action = key.partition(CAPABILITY_SEPARATOR)
    if not sep or not module or not action:
        raise ValueError(f"Not a capability key: {key!r}")
    return module, action


def has_capability(capabilities: Iterable[str], module: str, action: str) -> bool:
    """Check whether a capability collection grants `module:action`."""
    return capability_key(module, action) in capabilities


def is_admin_tier(user_type: str | None, admin_types: Iterable[str]) -> bool:
    if user_type is None:
        return False
    value = user_type.value if isinstance(user_type, enum.Enum) else user_type
    return value in set(admin_types)


# ── Default catalogue ───────────────────────────────────────

DEFAULT_MODULES: dict[str, list[tuple[str, str]]] = {
    "dashboard": [
        ("view", "View dashboard"),
        ("view_admin", "View admin dashboard with all metrics"),
    ],
    "user_management": [
        ("view", "View users"),
        ("create", "Create users"),
        ("update", "Update users"),
        ("delete", "Delete users"),
        ("activate", "Activate/Deactivate users"),
    ],
    "property_management": [
        ("view", "View properties"),
        ("create", "Create properties"),
        ("update", "Update properties"),
        ("delete", "Delete properties"),
        ("approve", "Approve/Reject property listings"),
    ],
    "owner_management": [
        ("view", "View property owners"),
        ("activate", "Activate/Deactivate property owners"),
    ],
    "subscription_plans": [
        ("view", "View subscription plans"),
        ("create", "Create subscription plans"),
        ("update", "Update subscription plans"),
        ("delete", "Delete subscription plans"),
    ],
    "payment_reports": [
        ("view", "View payment reports"),
    ],
    "review_management": [
        ("view", "View reviews"),
        ("moderate", "Moderate reviews"),
        ("reply", "Reply to reviews"),
    ],
    "role_permission": [
        ("view", "View roles and permissions"),
        ("create", "Create roles and permissions"),
        ("update", "Update roles and permissions"),
        ("delete", "Delete roles and permissions"),
        ("assign", "Assign roles to users"),
    ],
    "notification_center": [
        ("view", "View notifications"),
        ("send", "Send notifications"),
    ],
    "cms": [
        ("view", "View CMS pages"),
        ("update", "Update CMS pages"),
    ],
    "settings": [
        ("view", "View settings"),
        ("update", "Update settings"),
    ],
    "booking": [
        ("view", "View bookings"),
        ("create", "Create booking requests"),
        ("update", "Update booking status"),
        ("delete", "Cancel bookings"),
    ],
    "profile": [
        ("view", "View own profile"),
        ("update", "Update own profile"),
    ],
    "wishlist": [
        ("view", "View wishlists"),
        ("create", "Add to wishlist"),
        ("delete", "Remove from wishlist"),
    ],
}

ALL_DEFAULT_CAPABILITIES: CapabilitySet = frozenset(
    capability_key(module, action)
    for module, actions in DEFAULT_MODULES.items()
    for action, _ in actions
)

SUPER_ADMIN_ROLE = "Super Admin"

# Role name → default capability keys. None means "every permission".
DEFAULT_ROLES: dict[str, tuple[str, set[str] | None]] = {
    SUPER_ADMIN_ROLE: (
        "Has full control over the system, users, properties, settings, and permissions.",
        None,
    ),
    "Property Owner": (
        "Manages their own properties, bookings, payments, and profile.",
        {
            "dashboard:view",
            "property_management:view",
            "property_management:create",
            "property_management:update",
            "property_management:delete",
            "booking:view",
            "booking:update",
            "payment_reports:view",
            "review_management:view",
            "review_management:reply",
            "notification_center:view",
            "profile:view",
            "profile:update",
        },
    ),
    "End User": (
        "Can search, view, book, and review properties.",
        {
            "property_management:view",
            "booking:view",
            "booking:create",
            "booking:delete",
            "review_management:view",
            "notification_center:view",
            "profile:view",
            "profile:update",
            "wishlist:view",
            "wishlist:create",
            "wishlist:delete",
        },
    ),
}
