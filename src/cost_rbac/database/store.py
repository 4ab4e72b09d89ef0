"""
Persistence interface consumed by the RBAC core.

The resolver and administrative services only talk to an RBACStore. Two
implementations exist:

- SQLAlchemyRBACStore (``sql_store``): the relational store
- InMemoryRBACStore (``memory_store``): a dict-backed store for tests,
  scripts and local development

Every method raises PersistenceError when the backing store fails. Expired
grants are filtered by the store on every ``active`` query.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Iterable, List, Optional, Set

from ..audit.audit_logger import AuditLogEntry
from ..rbac.models import (
    PermissionRecord,
    Property,
    PropertyAccess,
    User,
    UserPermission,
)
from ..rbac.roles import Role


class RBACStore(ABC):
    """Storage collaborator for users, properties, grants and audit entries."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager["RBACStore"]:
        """
        Open a unit of work.

        Yields a store whose writes commit together when the block exits
        normally and roll back when it raises. Entering a transaction on a
        store that is already inside one reuses the outer unit of work.
        """
        ...

    # =========================================================================
    # USERS AND PROPERTIES
    # =========================================================================

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def save_user(self, user: User) -> User:
        """Insert or update a user and its owner/manager relations."""
        ...

    @abstractmethod
    async def update_user_role(self, user_id: str, role: Role) -> bool:
        ...

    @abstractmethod
    async def get_property(self, property_id: str) -> Optional[Property]:
        ...

    @abstractmethod
    async def save_property(self, prop: Property) -> Property:
        ...

    @abstractmethod
    async def list_properties(
        self,
        property_ids: Optional[Iterable[str]] = None,
        active_only: bool = True,
    ) -> List[Property]:
        """Properties sorted by name, optionally restricted to ids."""
        ...

    # =========================================================================
    # PROPERTY ACCESS
    # =========================================================================

    @abstractmethod
    async def get_property_access(self, user_id: str, property_id: str) -> Optional[PropertyAccess]:
        """The grant for a pair, expired or not."""
        ...

    @abstractmethod
    async def get_active_property_access(
        self, user_id: str, property_id: str, now: datetime
    ) -> Optional[PropertyAccess]:
        ...

    @abstractmethod
    async def list_active_property_access(
        self,
        now: datetime,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> List[PropertyAccess]:
        ...

    @abstractmethod
    async def upsert_property_access(self, access: PropertyAccess) -> PropertyAccess:
        """Create the grant or overwrite the existing one for the same pair."""
        ...

    @abstractmethod
    async def delete_property_access(self, user_id: str, property_id: str) -> bool:
        """Returns False when no grant existed."""
        ...

    @abstractmethod
    async def delete_expired_property_access(self, now: datetime) -> List[PropertyAccess]:
        """Delete and return every grant expired at ``now``."""
        ...

    # =========================================================================
    # PERMISSION CATALOG AND ROLE DEFAULTS
    # =========================================================================

    @abstractmethod
    async def list_permissions(self) -> List[PermissionRecord]:
        ...

    @abstractmethod
    async def get_permissions_by_ids(self, permission_ids: Iterable[str]) -> List[PermissionRecord]:
        ...

    @abstractmethod
    async def get_permission_by_name(self, name: str) -> Optional[PermissionRecord]:
        ...

    @abstractmethod
    async def save_permission(self, record: PermissionRecord) -> PermissionRecord:
        """Insert or update a catalog entry, matched by name."""
        ...

    @abstractmethod
    async def list_role_permission_ids(self, role: Role) -> Set[str]:
        ...

    @abstractmethod
    async def get_role_permission_names(self, role: Role) -> Set[str]:
        ...

    @abstractmethod
    async def add_role_permission(self, role: Role, permission_id: str) -> bool:
        """Returns False when the edge already existed."""
        ...

    @abstractmethod
    async def remove_role_permission(self, role: Role, permission_id: str) -> bool:
        """Returns False when the edge did not exist."""
        ...

    @abstractmethod
    async def delete_role_permissions(self, role: Role) -> int:
        ...

    # =========================================================================
    # USER PERMISSION OVERRIDES
    # =========================================================================

    @abstractmethod
    async def list_active_user_permissions(self, user_id: str, now: datetime) -> List[UserPermission]:
        ...

    @abstractmethod
    async def upsert_user_permission(self, override: UserPermission) -> UserPermission:
        ...

    @abstractmethod
    async def delete_user_permission(self, user_id: str, permission_id: str) -> bool:
        ...

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    @abstractmethod
    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        ...

    @abstractmethod
    async def query_audit_entries(
        self,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Newest first."""
        ...
