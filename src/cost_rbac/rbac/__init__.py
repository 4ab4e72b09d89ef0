"""
Role-Based Access Control

Permission catalog, property access levels and role-level checks.

Services that touch storage live in submodules and are imported from there:
    resolver.PropertyAccessResolver   property-scoped resolution and grants
    admin.RolePermissionAdmin         role permission bulk operations
    routes.RouteGuard                 route/action guard
    bootstrap.create_rbac_services    wiring
    dependencies                      FastAPI dependencies
"""

from .roles import Role, RoleInfo, ROLES, ADMIN_ROLES, get_role_info, get_role_rank, parse_role
from .permissions import (
    Permission,
    PermissionAction,
    PermissionCategory,
    PermissionInfo,
    PERMISSIONS,
    ROLE_PERMISSIONS,
    ALL_PERMISSION_NAMES,
    get_permission_category,
    get_permission_info,
    get_permissions_by_category,
    get_role_permissions,
    is_valid_permission,
)
from .access_levels import (
    AccessLevel,
    ACCESS_LEVEL_ORDER,
    compare_access_levels,
    get_access_level_permissions,
    has_required_access_level,
    parse_access_level,
)
from .models import User, Property, PropertyAccess, PermissionRecord, UserPermission
from .exceptions import RBACError, PersistenceError, ValidationError, NotFoundError

__all__ = [
    # Roles
    "Role",
    "RoleInfo",
    "ROLES",
    "ADMIN_ROLES",
    "get_role_info",
    "get_role_rank",
    "parse_role",
    # Permissions
    "Permission",
    "PermissionAction",
    "PermissionCategory",
    "PermissionInfo",
    "PERMISSIONS",
    "ROLE_PERMISSIONS",
    "ALL_PERMISSION_NAMES",
    "get_permission_category",
    "get_permission_info",
    "get_permissions_by_category",
    "get_role_permissions",
    "is_valid_permission",
    # Access levels
    "AccessLevel",
    "ACCESS_LEVEL_ORDER",
    "compare_access_levels",
    "get_access_level_permissions",
    "has_required_access_level",
    "parse_access_level",
    # Records
    "User",
    "Property",
    "PropertyAccess",
    "PermissionRecord",
    "UserPermission",
    # Errors
    "RBACError",
    "PersistenceError",
    "ValidationError",
    "NotFoundError",
]
