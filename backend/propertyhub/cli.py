"""Management CLI for RBAC data.

Usage:
    python -m propertyhub.cli seed-rbac     # Insert default permissions and roles
    python -m propertyhub.cli list-roles    # Show roles with permission / user counts
"""

import asyncio
import logging
import sys

from propertyhub.auth.cache import build_permission_cache
from propertyhub.config import settings
from propertyhub.database import async_session, engine
from propertyhub.services import rbac_admin
from propertyhub.services.seed import seed_rbac
from propertyhub.utils.cache import close_redis


async def _seed() -> None:
    # Shared (redis) caches must drop sets resolved before the seed
    cache = build_permission_cache(settings)
    try:
        summary = await seed_rbac(async_session, settings.admin_user_types, cache=cache)
    finally:
        await cache.close()
        await close_redis()
        await engine.dispose()
    print(f"  Permissions created: {summary.permissions_created}")
    print(f"  Roles created:       {summary.roles_created}")
    print(f"  Grants created:      {summary.grants_created}")
    print(f"  Admins assigned:     {summary.admins_assigned}")


async def _list_roles() -> None:
    try:
        async with async_session() as db:
            rows = await rbac_admin.list_roles_with_user_counts(db)
    finally:
        await engine.dispose()
    for role, count in rows:
        marker = " [system]" if role.is_system else ""
        print(
            f"  {role.name}{marker}: {len(role.permissions)} permission(s), "
            f"{count} user(s), {role.status.value}"
        )
    print(f"\n{len(rows)} role(s)")


def seed():
    """Seed the default RBAC catalogue (idempotent)."""
    asyncio.run(_seed())


def list_roles():
    asyncio.run(_list_roles())


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    if cmd == "seed-rbac":
        seed()
    elif cmd == "list-roles":
        list_roles()
    else:
        print("Usage: python -m propertyhub.cli [seed-rbac|list-roles]")
