"""Typed records consumed and produced by the RBAC core."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Optional

from .access_levels import AccessLevel
from .roles import Role


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass
class User:
    """A user as seen by permission checks."""
    id: str
    role: Role
    is_active: bool = True
    email: str = ""
    name: str = ""
    owned_property_ids: FrozenSet[str] = frozenset()
    managed_property_ids: FrozenSet[str] = frozenset()
    # Permission names attached to the session, if any
    permissions: FrozenSet[str] = frozenset()


@dataclass
class Property:
    """A restaurant location."""
    id: str
    name: str = ""
    is_active: bool = True


@dataclass
class PropertyAccess:
    """An explicit access grant of a user on a property."""
    user_id: str
    property_id: str
    access_level: AccessLevel
    granted_by: str
    granted_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) <= (now or utc_now())


@dataclass
class PermissionRecord:
    """A stored permission catalog row."""
    id: str
    name: str
    category: str
    resource: str
    action: str
    description: str = ""


@dataclass
class UserPermission:
    """A per-user grant (granted=True) or revocation (granted=False)."""
    user_id: str
    permission_id: str
    permission_name: str
    granted: bool = True
    granted_by: Optional[str] = None
    granted_at: datetime = field(default_factory=utc_now)
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) <= (now or utc_now())
