"""Dict-backed RBAC store.

Behaves like the relational store, including unique pairs, expiry filtering
and transactional rollback, without a database. Transactions are serialized
with an asyncio lock; reads outside a transaction see uncommitted writes. Used by tests, scripts and
local development.
"""

import asyncio
import copy
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple
from uuid import uuid4

from ..audit.audit_logger import AuditLogEntry
from ..rbac.models import (
    PermissionRecord,
    Property,
    PropertyAccess,
    User,
    UserPermission,
)
from ..rbac.permissions import PERMISSIONS, ROLE_PERMISSIONS
from ..rbac.roles import Role
from .store import RBACStore

logger = logging.getLogger(__name__)


class InMemoryRBACStore(RBACStore):
    """In-memory RBAC store."""

    def __init__(self):
        self.users: Dict[str, User] = {}
        self.properties: Dict[str, Property] = {}
        self.property_access: Dict[Tuple[str, str], PropertyAccess] = {}
        self.permissions: Dict[str, PermissionRecord] = {}
        self.role_permissions: Set[Tuple[str, str]] = set()
        self.user_permissions: Dict[Tuple[str, str], UserPermission] = {}
        self.audit_entries: List[AuditLogEntry] = []
        self._tx_lock = asyncio.Lock()
        self._tx_owner: Optional[asyncio.Task] = None

    @classmethod
    def seeded(cls) -> "InMemoryRBACStore":
        """A store holding the full permission catalog and default role grants."""
        store = cls()
        for permission, info in PERMISSIONS.items():
            record = PermissionRecord(
                id=str(uuid4()),
                name=info.name,
                category=info.category.value,
                resource=info.resource,
                action=info.action.value,
                description=info.description,
            )
            store.permissions[record.id] = record
        by_name = {record.name: record.id for record in store.permissions.values()}
        for role, granted in ROLE_PERMISSIONS.items():
            for permission in granted:
                store.role_permissions.add((role.value, by_name[permission.value]))
        return store

    def permission_id(self, name: str) -> str:
        """Id of a catalog entry by name."""
        for record in self.permissions.values():
            if record.name == name:
                return record.id
        raise KeyError(name)

    _STATE = (
        "users", "properties", "property_access", "permissions",
        "role_permissions", "user_permissions", "audit_entries",
    )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryRBACStore"]:
        task = asyncio.current_task()
        if self._tx_owner is not None and self._tx_owner is task:
            yield self
            return
        async with self._tx_lock:
            snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
            self._tx_owner = task
            try:
                yield self
            except BaseException:
                for name, value in snapshot.items():
                    setattr(self, name, value)
                logger.debug("In-memory transaction rolled back")
                raise
            finally:
                self._tx_owner = None

    # =========================================================================
    # USERS AND PROPERTIES
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[User]:
        user = self.users.get(user_id)
        return replace(user) if user else None

    async def save_user(self, user: User) -> User:
        self.users[user.id] = replace(user)
        return user

    async def update_user_role(self, user_id: str, role: Role) -> bool:
        user = self.users.get(user_id)
        if user is None:
            return False
        user.role = Role(role)
        return True

    async def get_property(self, property_id: str) -> Optional[Property]:
        prop = self.properties.get(property_id)
        return replace(prop) if prop else None

    async def save_property(self, prop: Property) -> Property:
        self.properties[prop.id] = replace(prop)
        return prop

    async def list_properties(
        self,
        property_ids: Optional[Iterable[str]] = None,
        active_only: bool = True,
    ) -> List[Property]:
        wanted = set(property_ids) if property_ids is not None else None
        found = [
            replace(prop) for prop in self.properties.values()
            if (wanted is None or prop.id in wanted) and (prop.is_active or not active_only)
        ]
        return sorted(found, key=lambda prop: (prop.name, prop.id))

    # =========================================================================
    # PROPERTY ACCESS
    # =========================================================================

    async def get_property_access(self, user_id: str, property_id: str) -> Optional[PropertyAccess]:
        access = self.property_access.get((user_id, property_id))
        return replace(access) if access else None

    async def get_active_property_access(
        self, user_id: str, property_id: str, now: datetime
    ) -> Optional[PropertyAccess]:
        access = self.property_access.get((user_id, property_id))
        if access is None or access.is_expired(now):
            return None
        return replace(access)

    async def list_active_property_access(
        self,
        now: datetime,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> List[PropertyAccess]:
        found = [
            replace(access) for (uid, pid), access in self.property_access.items()
            if (user_id is None or uid == user_id)
            and (property_id is None or pid == property_id)
            and not access.is_expired(now)
        ]
        return sorted(found, key=lambda access: access.granted_at, reverse=True)

    async def upsert_property_access(self, access: PropertyAccess) -> PropertyAccess:
        self.property_access[(access.user_id, access.property_id)] = replace(access)
        return replace(access)

    async def delete_property_access(self, user_id: str, property_id: str) -> bool:
        return self.property_access.pop((user_id, property_id), None) is not None

    async def delete_expired_property_access(self, now: datetime) -> List[PropertyAccess]:
        expired = [key for key, access in self.property_access.items() if access.is_expired(now)]
        return [self.property_access.pop(key) for key in expired]

    # =========================================================================
    # PERMISSION CATALOG AND ROLE DEFAULTS
    # =========================================================================

    async def list_permissions(self) -> List[PermissionRecord]:
        return sorted(self.permissions.values(), key=lambda p: (p.category, p.name))

    async def get_permissions_by_ids(self, permission_ids: Iterable[str]) -> List[PermissionRecord]:
        return [self.permissions[pid] for pid in set(permission_ids) if pid in self.permissions]

    async def get_permission_by_name(self, name: str) -> Optional[PermissionRecord]:
        for record in self.permissions.values():
            if record.name == name:
                return record
        return None

    async def save_permission(self, record: PermissionRecord) -> PermissionRecord:
        existing = await self.get_permission_by_name(record.name)
        if existing is not None:
            record = replace(record, id=existing.id)
        self.permissions[record.id] = record
        return record

    async def list_role_permission_ids(self, role: Role) -> Set[str]:
        role = Role(role).value
        return {pid for r, pid in self.role_permissions if r == role}

    async def get_role_permission_names(self, role: Role) -> Set[str]:
        return {
            self.permissions[pid].name
            for pid in await self.list_role_permission_ids(role)
            if pid in self.permissions
        }

    async def add_role_permission(self, role: Role, permission_id: str) -> bool:
        key = (Role(role).value, permission_id)
        if key in self.role_permissions:
            return False
        self.role_permissions.add(key)
        return True

    async def remove_role_permission(self, role: Role, permission_id: str) -> bool:
        key = (Role(role).value, permission_id)
        if key not in self.role_permissions:
            return False
        self.role_permissions.discard(key)
        return True

    async def delete_role_permissions(self, role: Role) -> int:
        role = Role(role).value
        doomed = {key for key in self.role_permissions if key[0] == role}
        self.role_permissions -= doomed
        return len(doomed)

    # =========================================================================
    # USER PERMISSION OVERRIDES
    # =========================================================================

    async def list_active_user_permissions(self, user_id: str, now: datetime) -> List[UserPermission]:
        return [
            replace(override) for (uid, _), override in self.user_permissions.items()
            if uid == user_id and not override.is_expired(now)
        ]

    async def upsert_user_permission(self, override: UserPermission) -> UserPermission:
        self.user_permissions[(override.user_id, override.permission_id)] = replace(override)
        return override

    async def delete_user_permission(self, user_id: str, permission_id: str) -> bool:
        return self.user_permissions.pop((user_id, permission_id), None) is not None

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        self.audit_entries.append(entry)

    async def query_audit_entries(
        self,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        found = [
            entry for entry in reversed(self.audit_entries)
            if (user_id is None or entry.user_id == user_id)
            and (property_id is None or entry.property_id == property_id)
            and (action is None or entry.action == action)
        ]
        return found[:limit]
