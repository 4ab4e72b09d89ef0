"""
Role-level permission checks.

Pure functions over a User and the static permission catalog. No property
scoping and no I/O, so they suit UI gating before a property is chosen.
They are never the only gate for a property-scoped mutation; use
PropertyAccessResolver for that.
"""

from typing import FrozenSet, Iterable, Union

from .models import User
from .permissions import Permission, get_role_permissions, permission_names
from .roles import ADMIN_ROLES, Role, get_role_rank

PermissionLike = Union[Permission, str]


def get_user_permissions(user: User) -> FrozenSet[str]:
    """Role permissions plus permissions already attached to the user."""
    return get_role_permissions(user.role) | permission_names(user.permissions)


# -------------------------------------------------------------------------
# Permission checks
# -------------------------------------------------------------------------

def has_permission(user: User, permission: PermissionLike) -> bool:
    return permission_names([permission]) <= get_user_permissions(user)


def has_any_permission(user: User, permissions: Iterable[PermissionLike]) -> bool:
    return bool(get_user_permissions(user) & permission_names(permissions))


def has_all_permissions(user: User, permissions: Iterable[PermissionLike]) -> bool:
    return permission_names(permissions) <= get_user_permissions(user)


# -------------------------------------------------------------------------
# Role checks
# -------------------------------------------------------------------------

def has_role(user: User, role: Union[Role, str]) -> bool:
    return user.role == role


def has_any_role(user: User, roles: Iterable[Union[Role, str]]) -> bool:
    return user.role in set(roles)


def is_admin(user: User) -> bool:
    """super_admin or property_admin."""
    return user.role in ADMIN_ROLES


def is_super_admin(user: User) -> bool:
    return user.role == Role.SUPER_ADMIN


def is_property_owner(user: User) -> bool:
    return user.role == Role.PROPERTY_OWNER


def get_user_access_hierarchy(user: User) -> int:
    """Rank of the user's role: super_admin=7 ... readonly=0."""
    return get_role_rank(user.role)


def has_higher_access(user_a: User, user_b: User) -> bool:
    """True if user_a's role ranks strictly above user_b's."""
    return get_user_access_hierarchy(user_a) > get_user_access_hierarchy(user_b)


# -------------------------------------------------------------------------
# Convenience checks
# -------------------------------------------------------------------------

def can_manage_users(user: User) -> bool:
    return has_any_permission(user, [
        Permission.USERS_CREATE,
        Permission.USERS_UPDATE,
        Permission.USERS_DELETE,
    ])


def can_manage_properties(user: User) -> bool:
    return has_any_permission(user, [
        Permission.PROPERTIES_CREATE,
        Permission.PROPERTIES_UPDATE,
        Permission.PROPERTIES_DELETE,
    ])


def can_view_financial_data(user: User) -> bool:
    return has_any_permission(user, [
        Permission.FOOD_COSTS_READ,
        Permission.BEVERAGE_COSTS_READ,
        Permission.DAILY_SUMMARY_READ,
    ])


def can_edit_financial_data(user: User) -> bool:
    return has_any_permission(user, [
        Permission.FOOD_COSTS_CREATE,
        Permission.FOOD_COSTS_UPDATE,
        Permission.BEVERAGE_COSTS_CREATE,
        Permission.BEVERAGE_COSTS_UPDATE,
        Permission.DAILY_SUMMARY_CREATE,
        Permission.DAILY_SUMMARY_UPDATE,
    ])


def can_view_reports(user: User) -> bool:
    return has_any_permission(user, [
        Permission.REPORTS_BASIC_READ,
        Permission.REPORTS_DETAILED_READ,
        Permission.REPORTS_FINANCIAL_READ,
    ])


def can_export_reports(user: User) -> bool:
    return has_permission(user, Permission.REPORTS_EXPORT)


def can_view_cross_property_reports(user: User) -> bool:
    return has_permission(user, Permission.REPORTS_CROSS_PROPERTY_READ)
