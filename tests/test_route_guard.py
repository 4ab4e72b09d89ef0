"""Tests for the route guard."""

import pytest

from cost_rbac.rbac.access_levels import AccessLevel
from cost_rbac.rbac.permissions import Permission
from cost_rbac.rbac.roles import Role
from cost_rbac.rbac.routes import (
    ROUTE_PERMISSIONS,
    RouteGuard,
    RouteRequirement,
    normalize_route,
)

from tests.helpers.factories import make_user


@pytest.fixture
def guard(resolver):
    return RouteGuard(resolver)


class TestRouteTable:
    """Tests for the static route table."""

    def test_dashboard_requires_dashboard_view(self):
        assert ROUTE_PERMISSIONS["/dashboard"].permissions == (Permission.DASHBOARD_VIEW,)

    def test_cost_input_routes_need_data_entry(self):
        for route in ("/dashboard/food-cost-input", "/dashboard/beverage-cost-input", "/dashboard/financial-summary"):
            requirement = ROUTE_PERMISSIONS[route]
            assert requirement.property_required
            assert requirement.min_access_level == AccessLevel.DATA_ENTRY

    @pytest.mark.parametrize("raw,expected", [
        ("/dashboard/users/", "/dashboard/users"),
        ("/dashboard/reports?propertyId=3", "/dashboard/reports"),
        ("/dashboard#top", "/dashboard"),
        ("/", "/"),
        ("", "/"),
    ])
    def test_normalize_route(self, raw, expected):
        assert normalize_route(raw) == expected


class TestCanAccessRoute:
    """Tests for RouteGuard.can_access_route."""

    @pytest.mark.asyncio
    async def test_no_user(self, guard):
        assert await guard.can_access_route(None, "/dashboard") is False

    @pytest.mark.asyncio
    async def test_inactive_user(self, guard):
        user = make_user("u-x", Role.SUPER_ADMIN, is_active=False)
        assert await guard.can_access_route(user, "/dashboard") is False

    @pytest.mark.asyncio
    async def test_unmapped_route_denied(self, guard):
        user = make_user("u-admin", Role.SUPER_ADMIN)
        assert await guard.can_access_route(user, "/dashboard/secret-new-page") is False

    @pytest.mark.asyncio
    async def test_unmapped_route_allowed_when_configured(self, resolver):
        guard = RouteGuard(resolver, allow_unmapped=True)
        user = make_user("u-reader", Role.READONLY)
        assert await guard.can_access_route(user, "/dashboard/secret-new-page") is True

    @pytest.mark.asyncio
    async def test_no_prefix_matching(self, guard):
        """A child path is not covered by its parent's entry."""
        user = make_user("u-reader", Role.READONLY)
        assert await guard.can_access_route(user, "/dashboard") is True
        assert await guard.can_access_route(user, "/dashboard/anything") is False

    @pytest.mark.asyncio
    async def test_role_requirement(self, guard):
        assert await guard.can_access_route(make_user("a", Role.PROPERTY_ADMIN), "/dashboard/settings")
        assert not await guard.can_access_route(make_user("o", Role.PROPERTY_OWNER), "/dashboard/settings")

    @pytest.mark.asyncio
    async def test_any_permission_suffices(self, guard):
        """The readonly role can read food costs, which opens the input page."""
        user = make_user("u-reader", Role.READONLY)
        assert await guard.can_access_route(user, "/dashboard/food-cost-input")

    @pytest.mark.asyncio
    async def test_missing_permission(self, guard):
        user = make_user("u-supervisor", Role.SUPERVISOR)
        assert not await guard.can_access_route(user, "/dashboard/users")

    @pytest.mark.asyncio
    async def test_attached_permissions_count(self, guard):
        user = make_user("u-supervisor", Role.SUPERVISOR, permissions=frozenset({"users.read"}))
        assert await guard.can_access_route(user, "/dashboard/users/")

    @pytest.mark.asyncio
    async def test_property_scope_checked(self, guard, resolver, store):
        supervisor = store.users["u-supervisor"]

        assert not await guard.can_access_route(supervisor, "/dashboard/food-cost-input", "p-harbor")

        await resolver.grant_property_access("u-supervisor", "p-harbor", "read_only", "u-admin")
        assert not await guard.can_access_route(supervisor, "/dashboard/food-cost-input", "p-harbor")

        await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")
        assert await guard.can_access_route(supervisor, "/dashboard/food-cost-input", "p-harbor")

    @pytest.mark.asyncio
    async def test_property_scope_read_only_reports(self, guard, resolver, store):
        await resolver.grant_property_access("u-reader", "p-harbor", "read_only", "u-admin")
        assert await guard.can_access_route(store.users["u-reader"], "/dashboard/reports", "p-harbor")
        assert not await guard.can_access_route(store.users["u-reader"], "/dashboard/reports", "p-closed")

    @pytest.mark.asyncio
    async def test_without_property_id_skips_scope(self, guard):
        user = make_user("u-supervisor", Role.SUPERVISOR)
        assert await guard.can_access_route(user, "/dashboard/food-cost-input")


class TestRegister:
    """Tests for registering new routes."""

    @pytest.mark.asyncio
    async def test_register(self, guard):
        user = make_user("u-manager", Role.PROPERTY_MANAGER)
        assert not await guard.can_access_route(user, "/dashboard/imports")

        guard.register("/dashboard/imports/", RouteRequirement(permissions=(Permission.COST_INPUT_EXCEL_IMPORT,)))

        assert await guard.can_access_route(user, "/dashboard/imports")
        assert not await guard.can_access_route(make_user("s", Role.SUPERVISOR), "/dashboard/imports")

    def test_register_does_not_touch_module_table(self, guard):
        guard.register("/dashboard/imports", RouteRequirement())
        assert "/dashboard/imports" not in ROUTE_PERMISSIONS
