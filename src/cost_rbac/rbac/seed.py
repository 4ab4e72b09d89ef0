"""
RBAC Database Seeding

Creates the RBAC tables and seeds the permission catalog and the default
role permissions. Safe to run repeatedly: existing catalog entries are
updated in place and existing role edges are skipped.

Usage:
    python -m cost_rbac.rbac.seed
    python -m cost_rbac.rbac.seed --database-url sqlite+aiosqlite:///data/costs.db
    python -m cost_rbac.rbac.seed --reset-role-permissions
"""

import argparse
import asyncio
import logging
from typing import Dict, List, Optional
from uuid import uuid4

from ..config.database import DatabaseSettings, get_database_settings
from ..database.async_engine import create_engine, get_session_factory, init_models
from ..database.sql_store import SQLAlchemyRBACStore
from ..database.store import RBACStore
from .models import PermissionRecord
from .permissions import PERMISSIONS, ROLE_PERMISSIONS
from .roles import ROLES

logger = logging.getLogger(__name__)


async def seed_permissions(store: RBACStore) -> Dict[str, str]:
    """Upsert every catalog permission. Returns name -> stored id."""
    ids: Dict[str, str] = {}
    async with store.transaction() as tx:
        for info in PERMISSIONS.values():
            saved = await tx.save_permission(PermissionRecord(
                id=str(uuid4()),
                name=info.name,
                category=info.category.value,
                resource=info.resource,
                action=info.action.value,
                description=info.description,
            ))
            ids[saved.name] = saved.id
    logger.info(f"Seeded {len(ids)} permissions")
    return ids


async def seed_role_permissions(
    store: RBACStore,
    permission_ids: Dict[str, str],
    reset: bool = False,
) -> int:
    """
    Add the default permissions of every role.

    With ``reset`` each role is first stripped of all its permissions, which
    undoes administrative changes. Returns the number of edges created.
    """
    created = 0
    async with store.transaction() as tx:
        for role, permissions in ROLE_PERMISSIONS.items():
            if reset:
                await tx.delete_role_permissions(role)
            for permission in permissions:
                if await tx.add_role_permission(role, permission_ids[permission.value]):
                    created += 1
    logger.info(f"Seeded {created} role permission edges")
    return created


async def show_summary(store: RBACStore) -> None:
    catalog = await store.list_permissions()

    print()
    print("=" * 60)
    print("RBAC SEEDING COMPLETE")
    print("=" * 60)
    print()
    print(f"  Permissions: {len(catalog)}")
    print()
    print("  Roles:")
    for role, info in sorted(ROLES.items(), key=lambda item: -item[1].rank):
        count = len(await store.list_role_permission_ids(role))
        print(f"    [{info.rank}] {role.value}: {count} permissions")
    print()
    print("  Permissions by Category:")
    by_category: Dict[str, int] = {}
    for record in catalog:
        by_category[record.category] = by_category.get(record.category, 0) + 1
    for category, count in sorted(by_category.items()):
        print(f"    {category}: {count}")


async def seed_all(
    settings: Optional[DatabaseSettings] = None,
    reset_role_permissions: bool = False,
) -> None:
    """Create tables and run all seeding operations."""
    settings = settings or get_database_settings()
    engine = create_engine(settings)
    try:
        print("Creating RBAC tables...")
        await init_models(engine)

        store = SQLAlchemyRBACStore(get_session_factory(engine))

        print("Seeding permissions...")
        permission_ids = await seed_permissions(store)

        print("Seeding role-permission mappings...")
        await seed_role_permissions(store, permission_ids, reset=reset_role_permissions)

        await show_summary(store)
    finally:
        await engine.dispose()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Seed the RBAC permission catalog")
    parser.add_argument("--database-url", help="Async database URL (defaults to DB_* settings)")
    parser.add_argument(
        "--reset-role-permissions",
        action="store_true",
        help="Restore default role permissions, discarding administrative changes",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = DatabaseSettings(url=args.database_url) if args.database_url else None
    asyncio.run(seed_all(settings, reset_role_permissions=args.reset_role_permissions))


if __name__ == "__main__":
    main()
