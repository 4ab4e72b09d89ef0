"""
Tests for property-scoped access resolution.

Covers access-level precedence, expiry, permission union and revocation,
cache coherence after writes, fail-closed reads and the write operations.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from cost_rbac.rbac.access_levels import AccessLevel
from cost_rbac.rbac.exceptions import NotFoundError, PersistenceError, ValidationError
from cost_rbac.rbac.permissions import (
    ALL_PERMISSION_NAMES,
    Permission,
    get_role_permissions,
)
from cost_rbac.rbac.models import PropertyAccess
from cost_rbac.rbac.roles import Role

from tests.helpers.factories import FIXED_NOW, make_user


YESTERDAY = FIXED_NOW - timedelta(days=1)
NEXT_WEEK = FIXED_NOW + timedelta(days=7)


class TestAccessLevelResolution:
    """Tests for get_user_property_access_level precedence."""

    @pytest.mark.asyncio
    async def test_ownership_beats_explicit_grant(self, resolver, store):
        """An owner stays owner even with a lower explicit grant on the same property."""
        store.property_access[("u-owner", "p-downtown")] = PropertyAccess(
            "u-owner", "p-downtown", AccessLevel.READ_ONLY, granted_by="u-admin"
        )

        level = await resolver.get_user_property_access_level("u-owner", "p-downtown")

        assert level == AccessLevel.OWNER

    @pytest.mark.asyncio
    async def test_managed_property_is_full_control(self, resolver):
        level = await resolver.get_user_property_access_level("u-padmin", "p-harbor")
        assert level == AccessLevel.FULL_CONTROL

    @pytest.mark.asyncio
    async def test_super_admin_is_owner_everywhere(self, resolver):
        assert await resolver.get_user_property_access_level("u-admin", "p-closed") == AccessLevel.OWNER
        assert await resolver.get_user_property_access_level("u-admin", "p-unknown") == AccessLevel.OWNER

    @pytest.mark.asyncio
    async def test_explicit_grant(self, resolver):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")
        level = await resolver.get_user_property_access_level("u-supervisor", "p-harbor")
        assert level == AccessLevel.DATA_ENTRY

    @pytest.mark.asyncio
    async def test_no_relationship(self, resolver):
        assert await resolver.get_user_property_access_level("u-manager", "p-harbor") is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, resolver):
        assert await resolver.get_user_property_access_level("ghost", "p-harbor") is None


class TestCanAccessProperty:
    """Tests for can_access_property."""

    @pytest.mark.asyncio
    async def test_inactive_property_denies_despite_role(self, resolver):
        """A manager's role permissions never open an inactive property."""
        assert await resolver.can_access_property("u-manager", "p-closed") is False

    @pytest.mark.asyncio
    async def test_inactive_property_denies_explicit_grant(self, resolver):
        await resolver.grant_property_access("u-manager", "p-closed", "management", "u-admin")
        assert await resolver.can_access_property("u-manager", "p-closed") is False

    @pytest.mark.asyncio
    async def test_inactive_user_denied(self, resolver, store):
        store.property_access[("u-inactive", "p-harbor")] = PropertyAccess(
            "u-inactive", "p-harbor", AccessLevel.OWNER, granted_by="u-admin"
        )
        assert await resolver.can_access_property("u-inactive", "p-harbor") is False

    @pytest.mark.asyncio
    async def test_unknown_property_denied(self, resolver):
        assert await resolver.can_access_property("u-owner", "p-nowhere") is False

    @pytest.mark.asyncio
    async def test_expired_grant_denied(self, resolver):
        await resolver.grant_property_access(
            "u-supervisor", "p-harbor", "data_entry", "u-admin", expires_at=YESTERDAY
        )
        assert await resolver.can_access_property("u-supervisor", "p-harbor", "read_only") is False

    @pytest.mark.asyncio
    async def test_grant_expiring_now_is_expired(self, resolver):
        await resolver.grant_property_access(
            "u-supervisor", "p-harbor", "data_entry", "u-admin", expires_at=FIXED_NOW
        )
        assert await resolver.can_access_property("u-supervisor", "p-harbor") is False

    @pytest.mark.asyncio
    async def test_future_expiry_allowed(self, resolver):
        await resolver.grant_property_access(
            "u-supervisor", "p-harbor", "data_entry", "u-admin", expires_at=NEXT_WEEK
        )
        assert await resolver.can_access_property("u-supervisor", "p-harbor", "data_entry") is True

    @pytest.mark.asyncio
    async def test_required_level_is_enforced(self, resolver):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")
        assert await resolver.can_access_property("u-supervisor", "p-harbor", "data_entry")
        assert not await resolver.can_access_property("u-supervisor", "p-harbor", "management")

    @pytest.mark.asyncio
    async def test_invalid_required_level_rejected(self, resolver):
        with pytest.raises(ValidationError):
            await resolver.can_access_property("u-owner", "p-downtown", "superuser")

    @pytest.mark.asyncio
    async def test_can_manage_property_users(self, resolver):
        assert await resolver.can_manage_property_users("u-padmin", "p-harbor")
        assert await resolver.can_manage_property_users("u-owner", "p-downtown")
        assert not await resolver.can_manage_property_users("u-owner", "p-harbor")

    @pytest.mark.asyncio
    async def test_filter_accessible_properties(self, resolver):
        await resolver.grant_property_access("u-reader", "p-harbor", "read_only", "u-admin")

        allowed = await resolver.filter_accessible_properties(
            "u-reader", ["p-closed", "p-harbor", "p-downtown"]
        )

        assert allowed == ["p-harbor"]


class TestResolvedPermissions:
    """Tests for get_user_property_permissions."""

    @pytest.mark.asyncio
    async def test_super_admin_has_every_permission_everywhere(self, resolver):
        for property_id in ("p-downtown", "p-closed", "p-unknown"):
            resolved = await resolver.get_user_property_permissions("u-admin", property_id)
            assert resolved == ALL_PERMISSION_NAMES
            for permission in Permission:
                assert await resolver.has_property_permission("u-admin", property_id, permission)

    @pytest.mark.asyncio
    async def test_union_of_role_level_and_grants(self, resolver, store):
        """Role {A,B} + level {B,C,...} + grant {D} gives exactly their union."""
        await store.delete_role_permissions(Role.USER)
        await store.add_role_permission(Role.USER, store.permission_id("users.read"))
        await store.add_role_permission(Role.USER, store.permission_id("financial.food_costs.read"))
        store.users["u-plain"] = make_user("u-plain", Role.USER)

        await resolver.grant_property_access("u-plain", "p-harbor", "read_only", "u-admin")
        await resolver.grant_user_permission("u-plain", Permission.REPORTS_EXPORT, "u-admin")

        resolved = await resolver.get_user_property_permissions("u-plain", "p-harbor")

        expected = (
            {"users.read", "financial.food_costs.read", "reports.export"}
            | get_role_permissions(Role.READONLY)
        )
        assert resolved == expected

    @pytest.mark.asyncio
    async def test_role_only_without_property_relationship(self, resolver):
        resolved = await resolver.get_user_property_permissions("u-supervisor", "p-harbor")
        assert resolved == get_role_permissions(Role.SUPERVISOR)

    @pytest.mark.asyncio
    async def test_expired_grant_contributes_nothing(self, resolver):
        await resolver.grant_property_access(
            "u-supervisor", "p-harbor", "owner", "u-admin", expires_at=YESTERDAY
        )
        resolved = await resolver.get_user_property_permissions("u-supervisor", "p-harbor")
        assert resolved == get_role_permissions(Role.SUPERVISOR)

    @pytest.mark.asyncio
    async def test_revocation_subtracts(self, resolver):
        await resolver.grant_user_permission(
            "u-supervisor", Permission.FOOD_COSTS_CREATE, "u-admin", granted=False
        )

        resolved = await resolver.get_user_property_permissions("u-supervisor", "p-harbor")

        assert "financial.food_costs.create" not in resolved
        assert "financial.food_costs.read" in resolved

    @pytest.mark.asyncio
    async def test_revocation_beats_access_level(self, resolver):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "owner", "u-admin")
        await resolver.grant_user_permission(
            "u-supervisor", "reports.export", "u-admin", granted=False
        )
        assert not await resolver.has_property_permission("u-supervisor", "p-harbor", "reports.export")

    @pytest.mark.asyncio
    async def test_expired_override_ignored(self, resolver):
        await resolver.grant_user_permission(
            "u-reader", Permission.REPORTS_EXPORT, "u-admin", expires_at=YESTERDAY
        )
        assert not await resolver.has_property_permission("u-reader", "p-harbor", Permission.REPORTS_EXPORT)

    @pytest.mark.asyncio
    async def test_inactive_user_gets_nothing_and_is_not_cached(self, resolver, cache):
        assert await resolver.get_user_property_permissions("u-inactive", "p-harbor") == frozenset()
        assert cache.stats().sets == 0

    @pytest.mark.asyncio
    async def test_any_and_all(self, resolver):
        user, prop = "u-supervisor", "p-harbor"
        assert await resolver.has_any_property_permission(user, prop, ["users.delete", "financial.food_costs.create"])
        assert not await resolver.has_any_property_permission(user, prop, ["users.delete"])
        assert await resolver.has_all_property_permissions(
            user, prop, [Permission.FOOD_COSTS_CREATE, Permission.FOOD_COSTS_READ]
        )
        assert not await resolver.has_all_property_permissions(
            user, prop, [Permission.FOOD_COSTS_CREATE, Permission.USERS_DELETE]
        )


class TestCacheCoherence:
    """Writes must be visible to the very next read."""

    @pytest.mark.asyncio
    async def test_second_read_hits_cache(self, resolver, cache):
        await resolver.get_user_property_permissions("u-supervisor", "p-harbor")
        await resolver.get_user_property_permissions("u-supervisor", "p-harbor")
        assert cache.stats().hits == 1

    @pytest.mark.asyncio
    async def test_grant_is_visible_immediately(self, resolver):
        before = await resolver.get_user_property_permissions("u-supervisor", "p-harbor")
        assert "reports.detailed.read" not in before

        await resolver.grant_property_access("u-supervisor", "p-harbor", "management", "u-admin")

        after = await resolver.get_user_property_permissions("u-supervisor", "p-harbor")
        assert "reports.detailed.read" in after

    @pytest.mark.asyncio
    async def test_revoke_is_visible_immediately(self, resolver):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "management", "u-admin")
        assert await resolver.has_property_permission("u-supervisor", "p-harbor", "reports.detailed.read")

        await resolver.revoke_property_access("u-supervisor", "p-harbor", "u-admin")

        assert not await resolver.has_property_permission("u-supervisor", "p-harbor", "reports.detailed.read")

    @pytest.mark.asyncio
    async def test_read_racing_a_revoke_does_not_cache_stale_permissions(self, resolver, store, monkeypatch):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "management", "u-admin")

        original = store.list_active_user_permissions
        entered = asyncio.Event()
        release = asyncio.Event()

        async def slow_overrides(*args, **kwargs):
            entered.set()
            await release.wait()
            return await original(*args, **kwargs)

        monkeypatch.setattr(store, "list_active_user_permissions", slow_overrides)

        read = asyncio.create_task(resolver.get_user_property_permissions("u-supervisor", "p-harbor"))
        await entered.wait()
        await resolver.revoke_property_access("u-supervisor", "p-harbor", "u-admin")
        release.set()

        # The in-flight read resolved against the old grant
        assert "reports.detailed.read" in await read
        assert not await resolver.has_property_permission("u-supervisor", "p-harbor", "reports.detailed.read")

    @pytest.mark.asyncio
    async def test_user_override_is_visible_immediately(self, resolver):
        assert not await resolver.has_property_permission("u-reader", "p-harbor", "reports.export")
        await resolver.grant_user_permission("u-reader", "reports.export", "u-admin")
        assert await resolver.has_property_permission("u-reader", "p-harbor", "reports.export")

        await resolver.remove_user_permission("u-reader", "reports.export", "u-admin")
        assert not await resolver.has_property_permission("u-reader", "p-harbor", "reports.export")


class TestFailClosed:
    """Persistence failures deny on reads and propagate on writes."""

    @pytest.mark.asyncio
    async def test_reads_deny_when_store_fails(self, resolver, store, cache):
        with patch.object(store, "get_user", AsyncMock(side_effect=PersistenceError("db down"))):
            assert await resolver.can_access_property("u-owner", "p-downtown") is False
            assert await resolver.get_user_property_permissions("u-owner", "p-downtown") == frozenset()
            assert await resolver.get_user_property_access_level("u-owner", "p-downtown") is None
            assert await resolver.get_user_accessible_properties("u-owner") == []
            assert await resolver.get_user_manageable_properties("u-owner") == []

        assert cache.stats().sets == 0

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, resolver, store):
        with patch.object(store, "get_role_permission_names", AsyncMock(side_effect=PersistenceError("db down"))):
            assert await resolver.get_user_property_permissions("u-owner", "p-downtown") == frozenset()

        resolved = await resolver.get_user_property_permissions("u-owner", "p-downtown")
        assert "properties.access.manage" in resolved

    @pytest.mark.asyncio
    async def test_access_lists_empty_on_failure(self, resolver, store):
        failing = AsyncMock(side_effect=PersistenceError("db down"))
        with patch.object(store, "list_active_property_access", failing):
            assert await resolver.get_property_access_list("p-harbor") == []
            assert await resolver.get_user_property_access_list("u-owner") == []

    @pytest.mark.asyncio
    async def test_write_failure_propagates_and_rolls_back(self, resolver, store):
        failing = AsyncMock(side_effect=PersistenceError("disk full"))
        with patch.object(store, "append_audit_entry", failing):
            with pytest.raises(PersistenceError):
                await resolver.grant_property_access("u-supervisor", "p-harbor", "management", "u-admin")

        assert ("u-supervisor", "p-harbor") not in store.property_access
        assert store.audit_entries == []


class TestPropertyLists:
    """Tests for accessible and manageable property lists."""

    @pytest.mark.asyncio
    async def test_super_admin_sees_all_active(self, resolver):
        properties = await resolver.get_user_accessible_properties("u-admin")
        assert [p.id for p in properties] == ["p-downtown", "p-harbor"]

    @pytest.mark.asyncio
    async def test_inactive_properties_excluded(self, resolver):
        await resolver.grant_property_access("u-supervisor", "p-downtown", "read_only", "u-admin")
        await resolver.grant_property_access("u-supervisor", "p-closed", "read_only", "u-admin")

        properties = await resolver.get_user_accessible_properties("u-supervisor")

        assert [p.id for p in properties] == ["p-downtown"]

    @pytest.mark.asyncio
    async def test_expired_grants_excluded(self, resolver):
        await resolver.grant_property_access(
            "u-supervisor", "p-harbor", "read_only", "u-admin", expires_at=YESTERDAY
        )
        assert await resolver.get_user_accessible_properties("u-supervisor") == []

    @pytest.mark.asyncio
    async def test_manageable_requires_management(self, resolver):
        await resolver.grant_property_access("u-owner", "p-harbor", "data_entry", "u-admin")
        manageable = await resolver.get_user_manageable_properties("u-owner")
        assert [p.id for p in manageable] == ["p-downtown"]

        await resolver.grant_property_access("u-owner", "p-harbor", "management", "u-admin")
        manageable = await resolver.get_user_manageable_properties("u-owner")
        assert [p.id for p in manageable] == ["p-downtown", "p-harbor"]

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_properties(self, resolver):
        assert await resolver.get_user_accessible_properties("ghost") == []

    @pytest.mark.asyncio
    async def test_access_lists_skip_expired(self, resolver):
        await resolver.grant_property_access("u-reader", "p-harbor", "read_only", "u-admin")
        await resolver.grant_property_access(
            "u-supervisor", "p-harbor", "data_entry", "u-admin", expires_at=YESTERDAY
        )

        grants = await resolver.get_property_access_list("p-harbor")
        assert [g.user_id for g in grants] == ["u-reader"]

        mine = await resolver.get_user_property_access_list("u-reader")
        assert [(g.property_id, g.access_level) for g in mine] == [("p-harbor", AccessLevel.READ_ONLY)]


class TestPropertyAccessWrites:
    """Tests for grant, update, revoke, bulk and cleanup."""

    @pytest.mark.asyncio
    async def test_grant_records_audit_entry(self, resolver, store):
        access = await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")

        assert access.granted_by == "u-admin"
        assert access.granted_at == FIXED_NOW
        entry = store.audit_entries[-1]
        assert entry.action == "GRANT_PROPERTY_ACCESS"
        assert entry.user_id == "u-admin"
        assert entry.property_id == "p-harbor"
        assert entry.resource_id == "u-supervisor-p-harbor"
        assert entry.details["access_level"] == "data_entry"

    @pytest.mark.asyncio
    async def test_grant_overwrites_existing(self, resolver, store):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")
        await resolver.grant_property_access("u-supervisor", "p-harbor", "management", "u-padmin")

        access = store.property_access[("u-supervisor", "p-harbor")]
        assert access.access_level == AccessLevel.MANAGEMENT
        assert access.granted_by == "u-padmin"

    @pytest.mark.asyncio
    async def test_grant_rejects_unknown_level(self, resolver, store):
        with pytest.raises(ValidationError):
            await resolver.grant_property_access("u-supervisor", "p-harbor", "boss", "u-admin")
        assert store.audit_entries == []

    @pytest.mark.asyncio
    async def test_grant_to_unknown_user_or_property_raises(self, resolver, store):
        with pytest.raises(NotFoundError):
            await resolver.grant_property_access("u-ghost", "p-harbor", "read_only", "u-admin")
        with pytest.raises(NotFoundError):
            await resolver.grant_property_access("u-supervisor", "p-ghost", "read_only", "u-admin")

        assert store.property_access == {}
        assert store.audit_entries == []

    @pytest.mark.asyncio
    async def test_update_existing(self, resolver, store):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")

        updated = await resolver.update_property_access(
            "u-supervisor", "p-harbor", "management", "u-padmin", expires_at=NEXT_WEEK
        )

        assert updated.access_level == AccessLevel.MANAGEMENT
        assert updated.expires_at == NEXT_WEEK
        assert updated.granted_by == "u-admin"
        entry = store.audit_entries[-1]
        assert entry.action == "UPDATE_PROPERTY_ACCESS"
        assert entry.details["previous_access_level"] == "data_entry"

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, resolver):
        with pytest.raises(NotFoundError):
            await resolver.update_property_access("u-supervisor", "p-harbor", "management", "u-admin")

    @pytest.mark.asyncio
    async def test_revoke_twice(self, resolver, store):
        await resolver.grant_property_access("u-supervisor", "p-harbor", "data_entry", "u-admin")

        assert await resolver.revoke_property_access("u-supervisor", "p-harbor", "u-admin") is True
        assert await resolver.revoke_property_access("u-supervisor", "p-harbor", "u-admin") is False

        revokes = [e for e in store.audit_entries if e.action == "REVOKE_PROPERTY_ACCESS"]
        assert len(revokes) == 1

    @pytest.mark.asyncio
    async def test_bulk_grant(self, resolver, store):
        result = await resolver.bulk_grant_property_access(
            ["u-manager", "u-supervisor", "u-manager"], "p-harbor", "data_entry", "u-admin"
        )

        assert result.granted == ["u-manager", "u-supervisor"]
        assert result.failed == {}
        assert ("u-manager", "p-harbor") in store.property_access

    @pytest.mark.asyncio
    async def test_bulk_grant_collects_failures(self, resolver, store, monkeypatch):
        original = store.upsert_property_access

        async def flaky(access):
            if access.user_id == "u-reader":
                raise PersistenceError("constraint violated")
            return await original(access)

        monkeypatch.setattr(store, "upsert_property_access", flaky)

        result = await resolver.bulk_grant_property_access(
            ["u-manager", "u-reader"], "p-harbor", "read_only", "u-admin"
        )

        assert result.granted == ["u-manager"]
        assert result.failed == {"u-reader": "constraint violated"}
        assert result.to_dict()["failed"] == {"u-reader": "constraint violated"}

    @pytest.mark.asyncio
    async def test_bulk_grant_reports_unknown_users(self, resolver, store):
        result = await resolver.bulk_grant_property_access(
            ["u-manager", "u-ghost"], "p-harbor", "read_only", "u-admin"
        )

        assert result.granted == ["u-manager"]
        assert result.failed == {"u-ghost": "User u-ghost not found"}
        assert ("u-ghost", "p-harbor") not in store.property_access

    @pytest.mark.asyncio
    async def test_bulk_grant_unknown_property_raises(self, resolver, store):
        with pytest.raises(NotFoundError):
            await resolver.bulk_grant_property_access(["u-manager"], "p-ghost", "read_only", "u-admin")
        assert store.property_access == {}

    @pytest.mark.asyncio
    async def test_bulk_grant_rejects_unknown_level_upfront(self, resolver, store):
        with pytest.raises(ValidationError):
            await resolver.bulk_grant_property_access(["u-manager"], "p-harbor", "boss", "u-admin")
        assert store.property_access == {}

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, resolver, store):
        await resolver.grant_property_access("u-manager", "p-harbor", "read_only", "u-admin", expires_at=YESTERDAY)
        await resolver.grant_property_access("u-reader", "p-harbor", "read_only", "u-admin", expires_at=FIXED_NOW)
        await resolver.grant_property_access("u-supervisor", "p-harbor", "read_only", "u-admin")

        removed = await resolver.cleanup_expired_property_access()

        assert removed == 2
        assert list(store.property_access) == [("u-supervisor", "p-harbor")]
        entry = store.audit_entries[-1]
        assert entry.action == "CLEANUP_EXPIRED_PROPERTY_ACCESS"
        assert entry.user_id == "system"
        assert entry.details["count"] == 2

    @pytest.mark.asyncio
    async def test_cleanup_with_nothing_expired(self, resolver, store):
        assert await resolver.cleanup_expired_property_access() == 0
        assert store.audit_entries == []


class TestUserPermissionOverrides:
    """Tests for per-user grants and revocations."""

    @pytest.mark.asyncio
    async def test_grant_stores_override(self, resolver, store):
        override = await resolver.grant_user_permission("u-reader", "reports.export", "u-admin", expires_at=NEXT_WEEK)

        assert override.permission_name == "reports.export"
        assert override.permission_id == store.permission_id("reports.export")
        assert override.granted is True
        assert store.audit_entries[-1].action == "GRANT_USER_PERMISSION"

    @pytest.mark.asyncio
    async def test_unknown_permission_rejected(self, resolver, store):
        with pytest.raises(ValidationError):
            await resolver.grant_user_permission("u-reader", "reports.burn", "u-admin")
        assert store.user_permissions == {}

    @pytest.mark.asyncio
    async def test_permission_missing_from_stored_catalog(self, resolver, store):
        del store.permissions[store.permission_id("reports.export")]
        with pytest.raises(NotFoundError):
            await resolver.grant_user_permission("u-reader", "reports.export", "u-admin")

    @pytest.mark.asyncio
    async def test_override_for_unknown_user_raises(self, resolver, store):
        with pytest.raises(NotFoundError):
            await resolver.grant_user_permission("u-ghost", Permission.REPORTS_EXPORT, "u-admin")
        assert store.user_permissions == {}

    @pytest.mark.asyncio
    async def test_remove_override(self, resolver, store):
        await resolver.grant_user_permission("u-reader", "reports.export", "u-admin")

        assert await resolver.remove_user_permission("u-reader", "reports.export", "u-admin") is True
        assert await resolver.remove_user_permission("u-reader", "reports.export", "u-admin") is False
        assert store.audit_entries[-1].action == "REVOKE_USER_PERMISSION"
