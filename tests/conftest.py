"""Pytest configuration and fixtures for the RBAC test suite."""

import os
import sys
from pathlib import Path

import pytest

# Settings are read from the environment; keep tests on in-memory backends
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("RBAC_CACHE_BACKEND", "memory")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")

src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from cost_rbac.cache.permission_cache import InMemoryPermissionCache
from cost_rbac.database.memory_store import InMemoryRBACStore
from cost_rbac.rbac.admin import RolePermissionAdmin
from cost_rbac.rbac.models import Property
from cost_rbac.rbac.resolver import PropertyAccessResolver
from cost_rbac.rbac.roles import Role

from tests.helpers.factories import fixed_clock, make_user


@pytest.fixture
def store():
    """
    Seeded in-memory store with three properties and one user per role.

    Properties:
        p-downtown  active
        p-harbor    active
        p-closed    inactive

    Users:
        u-admin       super_admin
        u-owner       property_owner, owns p-downtown
        u-padmin      property_admin, manages p-harbor
        u-regional    regional_manager
        u-manager     property_manager
        u-supervisor  supervisor
        u-reader      readonly
        u-inactive    property_manager, deactivated
    """
    s = InMemoryRBACStore.seeded()
    for prop in (
        Property(id="p-downtown", name="Downtown Bistro"),
        Property(id="p-harbor", name="Harbor Grill"),
        Property(id="p-closed", name="Airport Kiosk", is_active=False),
    ):
        s.properties[prop.id] = prop

    for user in (
        make_user("u-admin", Role.SUPER_ADMIN),
        make_user("u-owner", Role.PROPERTY_OWNER, owned_property_ids=frozenset({"p-downtown"})),
        make_user("u-padmin", Role.PROPERTY_ADMIN, managed_property_ids=frozenset({"p-harbor"})),
        make_user("u-regional", Role.REGIONAL_MANAGER),
        make_user("u-manager", Role.PROPERTY_MANAGER),
        make_user("u-supervisor", Role.SUPERVISOR),
        make_user("u-reader", Role.READONLY),
        make_user("u-inactive", Role.PROPERTY_MANAGER, is_active=False),
    ):
        s.users[user.id] = user
    return s


@pytest.fixture
def cache():
    return InMemoryPermissionCache()


@pytest.fixture
def resolver(store, cache):
    return PropertyAccessResolver(store, cache, clock=fixed_clock)


@pytest.fixture
def admin(store, cache):
    return RolePermissionAdmin(store, cache)
