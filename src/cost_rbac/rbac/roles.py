"""
Role Definitions

8 roles in a single ordered hierarchy (highest first):

    super_admin       (7) - Full system access across every property
    property_owner    (6) - Owns one or more properties
    property_admin    (5) - Administers properties on the owner's behalf
    regional_manager  (4) - Oversees several properties in a region
    property_manager  (3) - Runs day-to-day operations of a property
    supervisor        (2) - Enters daily cost data
    user              (1) - Read access to daily figures
    readonly          (0) - Read access to daily figures
"""

from enum import Enum
from dataclasses import dataclass
from typing import Optional, Union


class Role(str, Enum):
    """
    All 8 roles in the system.

    Naming convention: UPPER_SNAKE_CASE for enum, lower_snake_case for value.
    """

    SUPER_ADMIN = "super_admin"
    """
    Unrestricted access to every property and every permission.
    Who: System operators
    """

    PROPERTY_OWNER = "property_owner"
    """
    Owner of restaurant properties. Full control of owned properties.
    Who: Restaurant group owners
    """

    PROPERTY_ADMIN = "property_admin"
    """
    Administers properties, users and settings for an owner.
    Who: Group administrators, controllers
    """

    REGIONAL_MANAGER = "regional_manager"
    """
    Oversees several properties, including cross-property reports.
    Who: Area and regional managers
    """

    PROPERTY_MANAGER = "property_manager"
    """
    Manages cost input and reports for a property.
    Who: General managers, F&B managers
    """

    SUPERVISOR = "supervisor"
    """
    Enters daily food, beverage and summary figures.
    Who: Shift supervisors, cost controllers
    """

    USER = "user"
    """
    Reads daily figures and basic reports.
    Who: Staff
    """

    READONLY = "readonly"
    """
    Read-only access to daily figures and basic reports.
    Who: Auditors, external accountants
    """


@dataclass(frozen=True)
class RoleInfo:
    """Complete information about a role."""
    role: Role
    name: str
    description: str
    rank: int             # Position in the hierarchy, higher = more access
    is_admin: bool        # Administers users and system settings


# =============================================================================
# ROLE REGISTRY
# =============================================================================

ROLES: dict[Role, RoleInfo] = {
    Role.SUPER_ADMIN: RoleInfo(
        role=Role.SUPER_ADMIN,
        name="Super Admin",
        description="Full system access",
        rank=7,
        is_admin=True,
    ),
    Role.PROPERTY_OWNER: RoleInfo(
        role=Role.PROPERTY_OWNER,
        name="Property Owner",
        description="Owns and fully controls properties",
        rank=6,
        is_admin=False,
    ),
    Role.PROPERTY_ADMIN: RoleInfo(
        role=Role.PROPERTY_ADMIN,
        name="Property Admin",
        description="Administers properties and their users",
        rank=5,
        is_admin=True,
    ),
    Role.REGIONAL_MANAGER: RoleInfo(
        role=Role.REGIONAL_MANAGER,
        name="Regional Manager",
        description="Oversees properties within a region",
        rank=4,
        is_admin=False,
    ),
    Role.PROPERTY_MANAGER: RoleInfo(
        role=Role.PROPERTY_MANAGER,
        name="Property Manager",
        description="Manages a single property",
        rank=3,
        is_admin=False,
    ),
    Role.SUPERVISOR: RoleInfo(
        role=Role.SUPERVISOR,
        name="Supervisor",
        description="Enters daily cost data",
        rank=2,
        is_admin=False,
    ),
    Role.USER: RoleInfo(
        role=Role.USER,
        name="User",
        description="Standard read access",
        rank=1,
        is_admin=False,
    ),
    Role.READONLY: RoleInfo(
        role=Role.READONLY,
        name="Read Only",
        description="Read-only access",
        rank=0,
        is_admin=False,
    ),
}


def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    """Coerce a role value to a Role, returning None when unknown."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def get_role_info(role: Role) -> RoleInfo:
    """Get information about a role."""
    return ROLES[role]


def get_role_rank(role: Union[Role, str, None]) -> int:
    """Hierarchy rank of a role; unknown roles rank below readonly."""
    parsed = parse_role(role)
    if parsed is None:
        return -1
    return ROLES[parsed].rank


# =============================================================================
# ROLE SETS (for quick checks)
# =============================================================================

# Roles that administer users and system settings
ADMIN_ROLES = frozenset({
    Role.SUPER_ADMIN,
    Role.PROPERTY_ADMIN,
})
