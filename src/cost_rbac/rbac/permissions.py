"""
Permission Definitions

Every permission is a dotted ``resource.action`` name grouped into one of
8 categories. Role defaults are declared here; property-scoped access levels
live in ``access_levels``.

Categories:
    - SYSTEM_ADMIN: System settings, audit log, backups
    - USER_MANAGEMENT: User accounts and role assignment
    - PROPERTY_MANAGEMENT: Properties and property access
    - FINANCIAL_DATA: Food, beverage and daily summary figures
    - REPORTING: Reports and exports
    - COST_INPUT: Daily entry and spreadsheet import
    - OUTLET_MANAGEMENT: Outlets within a property
    - DASHBOARD_ACCESS: Dashboards
"""

from enum import Enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Union

from .roles import Role


class PermissionCategory(str, Enum):
    """Permission categories."""
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    USER_MANAGEMENT = "USER_MANAGEMENT"
    PROPERTY_MANAGEMENT = "PROPERTY_MANAGEMENT"
    FINANCIAL_DATA = "FINANCIAL_DATA"
    REPORTING = "REPORTING"
    COST_INPUT = "COST_INPUT"
    OUTLET_MANAGEMENT = "OUTLET_MANAGEMENT"
    DASHBOARD_ACCESS = "DASHBOARD_ACCESS"


class PermissionAction(str, Enum):
    """What a permission allows on its resource."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANAGE = "MANAGE"
    APPROVE = "APPROVE"
    EXPORT = "EXPORT"
    IMPORT = "IMPORT"
    VIEW_ALL = "VIEW_ALL"
    VIEW_OWN = "VIEW_OWN"


class Permission(str, Enum):
    """
    All permissions in the system.

    Naming: resource.action (e.g., financial.food_costs.read)
    """

    # =========================================================================
    # SYSTEM ADMINISTRATION
    # =========================================================================

    SYSTEM_MANAGE = "system.manage"
    SYSTEM_AUDIT_READ = "system.audit.read"
    SYSTEM_BACKUP_MANAGE = "system.backup.manage"
    SYSTEM_SETTINGS_MANAGE = "system.settings.manage"

    # =========================================================================
    # USER MANAGEMENT
    # =========================================================================

    USERS_CREATE = "users.create"
    USERS_READ = "users.read"
    USERS_UPDATE = "users.update"
    USERS_DELETE = "users.delete"
    USERS_ROLES_MANAGE = "users.roles.manage"
    USERS_PASSWORD_RESET = "users.password.reset"
    USERS_PERMISSIONS_MANAGE = "users.permissions.manage"
    USERS_VIEW_ALL = "users.view_all"
    USERS_VIEW_PROPERTY = "users.view_property"

    # =========================================================================
    # PROPERTY MANAGEMENT
    # =========================================================================

    PROPERTIES_CREATE = "properties.create"
    PROPERTIES_READ = "properties.read"
    PROPERTIES_UPDATE = "properties.update"
    PROPERTIES_DELETE = "properties.delete"
    PROPERTIES_ACCESS_MANAGE = "properties.access.manage"
    PROPERTIES_OWNERSHIP_TRANSFER = "properties.ownership.transfer"
    PROPERTIES_VIEW_ALL = "properties.view_all"
    PROPERTIES_VIEW_OWN = "properties.view_own"
    PROPERTIES_SETTINGS_MANAGE = "properties.settings.manage"

    # =========================================================================
    # FINANCIAL DATA
    # =========================================================================

    FOOD_COSTS_CREATE = "financial.food_costs.create"
    FOOD_COSTS_READ = "financial.food_costs.read"
    FOOD_COSTS_UPDATE = "financial.food_costs.update"
    FOOD_COSTS_DELETE = "financial.food_costs.delete"

    BEVERAGE_COSTS_CREATE = "financial.beverage_costs.create"
    BEVERAGE_COSTS_READ = "financial.beverage_costs.read"
    BEVERAGE_COSTS_UPDATE = "financial.beverage_costs.update"
    BEVERAGE_COSTS_DELETE = "financial.beverage_costs.delete"

    COSTS_APPROVE = "financial.costs.approve"

    DAILY_SUMMARY_CREATE = "financial.daily_summary.create"
    DAILY_SUMMARY_READ = "financial.daily_summary.read"
    DAILY_SUMMARY_UPDATE = "financial.daily_summary.update"
    DAILY_SUMMARY_DELETE = "financial.daily_summary.delete"

    # =========================================================================
    # REPORTING
    # =========================================================================

    REPORTS_BASIC_READ = "reports.basic.read"
    REPORTS_DETAILED_READ = "reports.detailed.read"
    REPORTS_FINANCIAL_READ = "reports.financial.read"
    REPORTS_CROSS_PROPERTY_READ = "reports.cross_property.read"
    REPORTS_EXPORT = "reports.export"
    REPORTS_CUSTOM_CREATE = "reports.custom.create"
    REPORTS_SCHEDULE_MANAGE = "reports.schedule.manage"

    # =========================================================================
    # COST INPUT
    # =========================================================================

    COST_INPUT_DAILY_ENTRY = "cost_input.daily_entry.create"
    COST_INPUT_EXCEL_IMPORT = "cost_input.excel.import"

    # =========================================================================
    # OUTLET MANAGEMENT
    # =========================================================================

    OUTLETS_CREATE = "outlets.create"
    OUTLETS_READ = "outlets.read"
    OUTLETS_UPDATE = "outlets.update"
    OUTLETS_DELETE = "outlets.delete"
    OUTLETS_USERS_MANAGE = "outlets.users.manage"

    # =========================================================================
    # DASHBOARD ACCESS
    # =========================================================================

    DASHBOARD_VIEW = "dashboard.view"
    DASHBOARD_PROPERTY_VIEW = "dashboard.property.view"
    DASHBOARD_CROSS_PROPERTY_VIEW = "dashboard.cross_property.view"
    DASHBOARD_SETTINGS_MANAGE = "dashboard.settings.manage"


@dataclass(frozen=True)
class PermissionInfo:
    """Complete information about a permission."""
    permission: Permission
    description: str
    category: PermissionCategory
    resource: str
    action: PermissionAction

    @property
    def name(self) -> str:
        return self.permission.value


def _info(
    permission: Permission,
    description: str,
    category: PermissionCategory,
    resource: str,
    action: PermissionAction,
) -> tuple:
    return permission, PermissionInfo(permission, description, category, resource, action)


_C = PermissionCategory
_A = PermissionAction


# =============================================================================
# PERMISSION REGISTRY
# =============================================================================

PERMISSIONS: Dict[Permission, PermissionInfo] = dict([
    # System administration
    _info(Permission.SYSTEM_MANAGE, "Full system management access", _C.SYSTEM_ADMIN, "system", _A.MANAGE),
    _info(Permission.SYSTEM_AUDIT_READ, "View system audit logs", _C.SYSTEM_ADMIN, "audit", _A.READ),
    _info(Permission.SYSTEM_BACKUP_MANAGE, "Manage system backups", _C.SYSTEM_ADMIN, "backup", _A.MANAGE),
    _info(Permission.SYSTEM_SETTINGS_MANAGE, "Manage system settings", _C.SYSTEM_ADMIN, "settings", _A.MANAGE),

    # User management
    _info(Permission.USERS_CREATE, "Create new users", _C.USER_MANAGEMENT, "users", _A.CREATE),
    _info(Permission.USERS_READ, "View user information", _C.USER_MANAGEMENT, "users", _A.READ),
    _info(Permission.USERS_UPDATE, "Update user information", _C.USER_MANAGEMENT, "users", _A.UPDATE),
    _info(Permission.USERS_DELETE, "Delete users", _C.USER_MANAGEMENT, "users", _A.DELETE),
    _info(Permission.USERS_ROLES_MANAGE, "Manage user roles", _C.USER_MANAGEMENT, "user_roles", _A.MANAGE),
    _info(Permission.USERS_PASSWORD_RESET, "Reset user passwords", _C.USER_MANAGEMENT, "user_passwords", _A.UPDATE),
    _info(Permission.USERS_PERMISSIONS_MANAGE, "Manage individual user permissions", _C.USER_MANAGEMENT, "user_permissions", _A.MANAGE),
    _info(Permission.USERS_VIEW_ALL, "View all users in the system", _C.USER_MANAGEMENT, "users", _A.VIEW_ALL),
    _info(Permission.USERS_VIEW_PROPERTY, "View users within own properties", _C.USER_MANAGEMENT, "users", _A.VIEW_OWN),

    # Property management
    _info(Permission.PROPERTIES_CREATE, "Create new properties", _C.PROPERTY_MANAGEMENT, "properties", _A.CREATE),
    _info(Permission.PROPERTIES_READ, "View property information", _C.PROPERTY_MANAGEMENT, "properties", _A.READ),
    _info(Permission.PROPERTIES_UPDATE, "Update property information", _C.PROPERTY_MANAGEMENT, "properties", _A.UPDATE),
    _info(Permission.PROPERTIES_DELETE, "Delete properties", _C.PROPERTY_MANAGEMENT, "properties", _A.DELETE),
    _info(Permission.PROPERTIES_ACCESS_MANAGE, "Manage user access to properties", _C.PROPERTY_MANAGEMENT, "property_access", _A.MANAGE),
    _info(Permission.PROPERTIES_OWNERSHIP_TRANSFER, "Transfer property ownership", _C.PROPERTY_MANAGEMENT, "property_ownership", _A.UPDATE),
    _info(Permission.PROPERTIES_VIEW_ALL, "View all properties", _C.PROPERTY_MANAGEMENT, "properties", _A.VIEW_ALL),
    _info(Permission.PROPERTIES_VIEW_OWN, "View own properties", _C.PROPERTY_MANAGEMENT, "properties", _A.VIEW_OWN),
    _info(Permission.PROPERTIES_SETTINGS_MANAGE, "Manage property settings", _C.PROPERTY_MANAGEMENT, "property_settings", _A.MANAGE),

    # Financial data
    _info(Permission.FOOD_COSTS_CREATE, "Create food cost entries", _C.FINANCIAL_DATA, "food_costs", _A.CREATE),
    _info(Permission.FOOD_COSTS_READ, "View food cost data", _C.FINANCIAL_DATA, "food_costs", _A.READ),
    _info(Permission.FOOD_COSTS_UPDATE, "Update food cost entries", _C.FINANCIAL_DATA, "food_costs", _A.UPDATE),
    _info(Permission.FOOD_COSTS_DELETE, "Delete food cost entries", _C.FINANCIAL_DATA, "food_costs", _A.DELETE),
    _info(Permission.BEVERAGE_COSTS_CREATE, "Create beverage cost entries", _C.FINANCIAL_DATA, "beverage_costs", _A.CREATE),
    _info(Permission.BEVERAGE_COSTS_READ, "View beverage cost data", _C.FINANCIAL_DATA, "beverage_costs", _A.READ),
    _info(Permission.BEVERAGE_COSTS_UPDATE, "Update beverage cost entries", _C.FINANCIAL_DATA, "beverage_costs", _A.UPDATE),
    _info(Permission.BEVERAGE_COSTS_DELETE, "Delete beverage cost entries", _C.FINANCIAL_DATA, "beverage_costs", _A.DELETE),
    _info(Permission.COSTS_APPROVE, "Approve cost entries", _C.FINANCIAL_DATA, "costs", _A.APPROVE),
    _info(Permission.DAILY_SUMMARY_CREATE, "Create daily summaries", _C.FINANCIAL_DATA, "daily_summary", _A.CREATE),
    _info(Permission.DAILY_SUMMARY_READ, "View daily summaries", _C.FINANCIAL_DATA, "daily_summary", _A.READ),
    _info(Permission.DAILY_SUMMARY_UPDATE, "Update daily summaries", _C.FINANCIAL_DATA, "daily_summary", _A.UPDATE),
    _info(Permission.DAILY_SUMMARY_DELETE, "Delete daily summaries", _C.FINANCIAL_DATA, "daily_summary", _A.DELETE),

    # Reporting
    _info(Permission.REPORTS_BASIC_READ, "View basic reports", _C.REPORTING, "basic_reports", _A.READ),
    _info(Permission.REPORTS_DETAILED_READ, "View detailed reports", _C.REPORTING, "detailed_reports", _A.READ),
    _info(Permission.REPORTS_FINANCIAL_READ, "View financial reports", _C.REPORTING, "financial_reports", _A.READ),
    _info(Permission.REPORTS_CROSS_PROPERTY_READ, "View reports across properties", _C.REPORTING, "cross_property_reports", _A.READ),
    _info(Permission.REPORTS_EXPORT, "Export reports", _C.REPORTING, "reports", _A.EXPORT),
    _info(Permission.REPORTS_CUSTOM_CREATE, "Create custom reports", _C.REPORTING, "custom_reports", _A.CREATE),
    _info(Permission.REPORTS_SCHEDULE_MANAGE, "Manage scheduled reports", _C.REPORTING, "report_schedules", _A.MANAGE),

    # Cost input
    _info(Permission.COST_INPUT_DAILY_ENTRY, "Enter daily cost figures", _C.COST_INPUT, "daily_entry", _A.CREATE),
    _info(Permission.COST_INPUT_EXCEL_IMPORT, "Import cost figures from spreadsheets", _C.COST_INPUT, "excel_import", _A.IMPORT),

    # Outlet management
    _info(Permission.OUTLETS_CREATE, "Create outlets", _C.OUTLET_MANAGEMENT, "outlets", _A.CREATE),
    _info(Permission.OUTLETS_READ, "View outlets", _C.OUTLET_MANAGEMENT, "outlets", _A.READ),
    _info(Permission.OUTLETS_UPDATE, "Update outlets", _C.OUTLET_MANAGEMENT, "outlets", _A.UPDATE),
    _info(Permission.OUTLETS_DELETE, "Delete outlets", _C.OUTLET_MANAGEMENT, "outlets", _A.DELETE),
    _info(Permission.OUTLETS_USERS_MANAGE, "Manage outlet users", _C.OUTLET_MANAGEMENT, "outlet_users", _A.MANAGE),

    # Dashboard access
    _info(Permission.DASHBOARD_VIEW, "View the dashboard", _C.DASHBOARD_ACCESS, "dashboard", _A.READ),
    _info(Permission.DASHBOARD_PROPERTY_VIEW, "View property dashboards", _C.DASHBOARD_ACCESS, "property_dashboard", _A.READ),
    _info(Permission.DASHBOARD_CROSS_PROPERTY_VIEW, "View cross-property dashboards", _C.DASHBOARD_ACCESS, "cross_property_dashboard", _A.READ),
    _info(Permission.DASHBOARD_SETTINGS_MANAGE, "Manage dashboard settings", _C.DASHBOARD_ACCESS, "dashboard_settings", _A.MANAGE),
])

ALL_PERMISSION_NAMES: FrozenSet[str] = frozenset(p.value for p in Permission)


def get_permission_info(permission: Permission) -> PermissionInfo:
    """Get information about a permission."""
    return PERMISSIONS[permission]


def _in_category(category: PermissionCategory) -> FrozenSet[Permission]:
    return frozenset(p for p, info in PERMISSIONS.items() if info.category == category)


# =============================================================================
# ROLE -> PERMISSIONS MAPPING
# =============================================================================

_FINANCIAL = _in_category(PermissionCategory.FINANCIAL_DATA)
_REPORTING = _in_category(PermissionCategory.REPORTING)
_OUTLETS = _in_category(PermissionCategory.OUTLET_MANAGEMENT)
_DASHBOARD = _in_category(PermissionCategory.DASHBOARD_ACCESS)
_PROPERTIES = _in_category(PermissionCategory.PROPERTY_MANAGEMENT)
_COST_INPUT = _in_category(PermissionCategory.COST_INPUT)

# Daily figures every role can read
_DAILY_READ = frozenset({
    Permission.FOOD_COSTS_READ,
    Permission.BEVERAGE_COSTS_READ,
    Permission.DAILY_SUMMARY_READ,
    Permission.REPORTS_BASIC_READ,
    Permission.DASHBOARD_VIEW,
})

_MANAGER_BASE = frozenset({
    Permission.USERS_READ,
    Permission.USERS_VIEW_PROPERTY,
    Permission.PROPERTIES_READ,
    Permission.PROPERTIES_VIEW_OWN,
    Permission.FOOD_COSTS_CREATE,
    Permission.FOOD_COSTS_READ,
    Permission.FOOD_COSTS_UPDATE,
    Permission.BEVERAGE_COSTS_CREATE,
    Permission.BEVERAGE_COSTS_READ,
    Permission.BEVERAGE_COSTS_UPDATE,
    Permission.DAILY_SUMMARY_CREATE,
    Permission.DAILY_SUMMARY_READ,
    Permission.DAILY_SUMMARY_UPDATE,
    Permission.REPORTS_BASIC_READ,
    Permission.REPORTS_DETAILED_READ,
    Permission.REPORTS_FINANCIAL_READ,
    Permission.REPORTS_EXPORT,
    Permission.COST_INPUT_DAILY_ENTRY,
    Permission.COST_INPUT_EXCEL_IMPORT,
    Permission.OUTLETS_READ,
    Permission.OUTLETS_UPDATE,
    Permission.DASHBOARD_VIEW,
    Permission.DASHBOARD_PROPERTY_VIEW,
})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    # -------------------------------------------------------------------------
    # SUPER_ADMIN: Everything
    # -------------------------------------------------------------------------
    Role.SUPER_ADMIN: frozenset(Permission),

    # -------------------------------------------------------------------------
    # PROPERTY_OWNER: Everything on properties, most user management
    # -------------------------------------------------------------------------
    Role.PROPERTY_OWNER: frozenset({
        Permission.SYSTEM_AUDIT_READ,
        Permission.USERS_CREATE,
        Permission.USERS_READ,
        Permission.USERS_UPDATE,
        Permission.USERS_DELETE,
        Permission.USERS_PASSWORD_RESET,
        Permission.USERS_VIEW_PROPERTY,
    }) | _PROPERTIES | _FINANCIAL | _REPORTING | _COST_INPUT | _OUTLETS | _DASHBOARD,

    # -------------------------------------------------------------------------
    # PROPERTY_ADMIN: Administers properties (no create/delete/transfer)
    # -------------------------------------------------------------------------
    Role.PROPERTY_ADMIN: frozenset({
        Permission.USERS_READ,
        Permission.USERS_UPDATE,
        Permission.USERS_VIEW_PROPERTY,
        Permission.PROPERTIES_READ,
        Permission.PROPERTIES_UPDATE,
        Permission.PROPERTIES_ACCESS_MANAGE,
        Permission.PROPERTIES_VIEW_OWN,
        Permission.PROPERTIES_SETTINGS_MANAGE,
        Permission.REPORTS_BASIC_READ,
        Permission.REPORTS_DETAILED_READ,
        Permission.REPORTS_FINANCIAL_READ,
        Permission.REPORTS_EXPORT,
        Permission.DASHBOARD_VIEW,
        Permission.DASHBOARD_PROPERTY_VIEW,
        Permission.DASHBOARD_SETTINGS_MANAGE,
    }) | _FINANCIAL | _COST_INPUT | _OUTLETS,

    # -------------------------------------------------------------------------
    # REGIONAL_MANAGER: Manager set plus cross-property views
    # -------------------------------------------------------------------------
    Role.REGIONAL_MANAGER: _MANAGER_BASE | frozenset({
        Permission.PROPERTIES_UPDATE,
        Permission.REPORTS_CROSS_PROPERTY_READ,
        Permission.DASHBOARD_CROSS_PROPERTY_VIEW,
    }),

    # -------------------------------------------------------------------------
    # PROPERTY_MANAGER: Single-property operations
    # -------------------------------------------------------------------------
    Role.PROPERTY_MANAGER: _MANAGER_BASE,

    # -------------------------------------------------------------------------
    # SUPERVISOR: Daily data entry
    # -------------------------------------------------------------------------
    Role.SUPERVISOR: frozenset({
        Permission.FOOD_COSTS_CREATE,
        Permission.FOOD_COSTS_READ,
        Permission.BEVERAGE_COSTS_CREATE,
        Permission.BEVERAGE_COSTS_READ,
        Permission.DAILY_SUMMARY_CREATE,
        Permission.DAILY_SUMMARY_READ,
        Permission.COST_INPUT_DAILY_ENTRY,
        Permission.REPORTS_BASIC_READ,
        Permission.DASHBOARD_VIEW,
        Permission.DASHBOARD_PROPERTY_VIEW,
    }),

    # -------------------------------------------------------------------------
    # USER / READONLY: Read daily figures
    # -------------------------------------------------------------------------
    Role.USER: _DAILY_READ,
    Role.READONLY: _DAILY_READ,
}


def permission_names(permissions: Iterable[Union[Permission, str]]) -> FrozenSet[str]:
    """Normalize permissions to a frozenset of plain names."""
    return frozenset(p.value if isinstance(p, Permission) else str(p) for p in permissions)


def get_role_permissions(role: Union[Role, str, None]) -> FrozenSet[str]:
    """
    Get the default permission names for a role.

    Not expanded with access-level or per-user permissions. Never raises;
    an unknown role yields an empty set.
    """
    try:
        role = Role(role)
    except ValueError:
        return frozenset()
    return permission_names(ROLE_PERMISSIONS.get(role, frozenset()))


def is_valid_permission(name: str) -> bool:
    """Check whether a name is in the permission catalog."""
    return name in ALL_PERMISSION_NAMES


def get_permission_category(name: str) -> Optional[PermissionCategory]:
    """Category of a permission name, or None when unknown."""
    try:
        return PERMISSIONS[Permission(name)].category
    except ValueError:
        return None


def get_permissions_by_category(category: PermissionCategory) -> FrozenSet[str]:
    """Names of every permission in a category."""
    return permission_names(_in_category(category))
