"""
Property Access Levels

A property-scoped grant tier layered on top of a user's role:

    read_only < data_entry < management < full_control < owner

ACCESS_LEVEL_ORDER is the only ordering of access levels. Every sufficiency
check goes through compare_access_levels / has_required_access_level.
"""

from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from .exceptions import ValidationError
from .permissions import get_role_permissions
from .roles import Role


class AccessLevel(str, Enum):
    """Property-scoped access tiers."""
    READ_ONLY = "read_only"
    DATA_ENTRY = "data_entry"
    MANAGEMENT = "management"
    FULL_CONTROL = "full_control"
    OWNER = "owner"


ACCESS_LEVEL_ORDER: tuple = (
    AccessLevel.READ_ONLY,
    AccessLevel.DATA_ENTRY,
    AccessLevel.MANAGEMENT,
    AccessLevel.FULL_CONTROL,
    AccessLevel.OWNER,
)

_RANK: Dict[AccessLevel, int] = {level: i for i, level in enumerate(ACCESS_LEVEL_ORDER)}

# Each level grants the default permission set of a matching role
_LEVEL_ROLE: Dict[AccessLevel, Role] = {
    AccessLevel.OWNER: Role.PROPERTY_OWNER,
    AccessLevel.FULL_CONTROL: Role.PROPERTY_ADMIN,
    AccessLevel.MANAGEMENT: Role.PROPERTY_MANAGER,
    AccessLevel.DATA_ENTRY: Role.SUPERVISOR,
    AccessLevel.READ_ONLY: Role.READONLY,
}

ACCESS_LEVEL_PERMISSIONS: Dict[AccessLevel, FrozenSet[str]] = {
    level: get_role_permissions(role) for level, role in _LEVEL_ROLE.items()
}


def parse_access_level(value: Union[AccessLevel, str]) -> AccessLevel:
    """
    Convert a string to an AccessLevel.

    Raises:
        ValidationError: If the value is not a known access level.
    """
    if isinstance(value, AccessLevel):
        return value
    try:
        return AccessLevel(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            f"Unknown access level: {value!r}", field="access_level"
        ) from None


def get_access_level_permissions(level: Optional[Union[AccessLevel, str]]) -> FrozenSet[str]:
    """Additional permissions granted by an access level; empty for None or unknown."""
    if level is None:
        return frozenset()
    try:
        return ACCESS_LEVEL_PERMISSIONS[AccessLevel(level)]
    except ValueError:
        return frozenset()


def compare_access_levels(a: Union[AccessLevel, str], b: Union[AccessLevel, str]) -> int:
    """Return -1, 0 or 1 as ``a`` ranks below, equal to or above ``b``."""
    rank_a = _RANK[parse_access_level(a)]
    rank_b = _RANK[parse_access_level(b)]
    return (rank_a > rank_b) - (rank_a < rank_b)


def has_required_access_level(
    user_level: Optional[Union[AccessLevel, str]],
    required_level: Union[AccessLevel, str],
) -> bool:
    """True iff ``user_level`` is at least ``required_level``; None never suffices."""
    if user_level is None:
        return False
    return compare_access_levels(user_level, required_level) >= 0

