"""
Property access resolution.

Answers "what may this user do on this property" by combining three
sources:

    role defaults (RolePermission edges)
    + permissions of the user's access level on the property
    + per-user grants
    - per-user revocations

The access level on a property is decided in a fixed order: super_admin,
then ownership, then management, then an unexpired explicit grant. Read
paths fail closed on persistence errors; write paths log and re-raise.
Cache invalidation always happens after the write has committed and before
the call returns.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, TYPE_CHECKING, Union

from ..audit.audit_logger import AuditAction, AuditLogger, AuditResource
from ..cache.permission_cache import CacheInvalidationEvent, PermissionCacheBackend
from .access_levels import (
    AccessLevel,
    get_access_level_permissions,
    has_required_access_level,
    parse_access_level,
)
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .models import Property, PropertyAccess, User, UserPermission, utc_now
from .permissions import ALL_PERMISSION_NAMES, Permission, is_valid_permission, permission_names
from .roles import Role

if TYPE_CHECKING:
    from ..database.store import RBACStore

logger = logging.getLogger(__name__)

LevelLike = Union[AccessLevel, str]
PermissionLike = Union[Permission, str]


@dataclass
class BulkGrantResult:
    """Outcome of granting one property to many users."""
    granted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"granted": list(self.granted), "failed": dict(self.failed)}


class PropertyAccessResolver:
    """
    Resolves property-scoped access and permissions.

    Args:
        store: Persistence collaborator.
        cache: Permission cache backend.
        audit: Audit logger; a default enabled logger when omitted.
        clock: Returns the current aware UTC time.
    """

    def __init__(
        self,
        store: "RBACStore",
        cache: PermissionCacheBackend,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cache = cache
        self.audit = audit or AuditLogger()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # ACCESS LEVELS
    # =========================================================================

    async def _resolve_access_level(self, user: User, property_id: str) -> Optional[AccessLevel]:
        if user.role == Role.SUPER_ADMIN:
            return AccessLevel.OWNER
        if property_id in user.owned_property_ids:
            return AccessLevel.OWNER
        if property_id in user.managed_property_ids:
            return AccessLevel.FULL_CONTROL
        access = await self.store.get_active_property_access(user.id, property_id, self.now())
        return access.access_level if access else None

    async def _access_levels_by_property(self, user: User) -> Dict[str, AccessLevel]:
        """Access level on every property the user reaches, same precedence as above."""
        levels: Dict[str, AccessLevel] = {}
        for access in await self.store.list_active_property_access(self.now(), user_id=user.id):
            levels[access.property_id] = access.access_level
        for property_id in user.managed_property_ids:
            levels[property_id] = AccessLevel.FULL_CONTROL
        for property_id in user.owned_property_ids:
            levels[property_id] = AccessLevel.OWNER
        return levels

    async def get_user_property_access_level(
        self, user_id: str, property_id: str
    ) -> Optional[AccessLevel]:
        """Access level of a user on a property, or None for no access."""
        try:
            user = await self.store.get_user(user_id)
            if user is None:
                return None
            return await self._resolve_access_level(user, property_id)
        except PersistenceError as e:
            logger.error(f"Access level lookup failed for {user_id}:{property_id}, denying: {e}")
            return None

    async def can_access_property(
        self,
        user_id: str,
        property_id: str,
        required_level: LevelLike = AccessLevel.READ_ONLY,
    ) -> bool:
        """
        Check that a user reaches ``required_level`` on a property.

        Inactive or unknown users and properties never have access.

        Raises:
            ValidationError: If required_level is not an access level.
        """
        required = parse_access_level(required_level)
        try:
            user = await self.store.get_user(user_id)
            if user is None or not user.is_active:
                logger.warning(f"Property access denied: user {user_id} missing or inactive")
                return False

            prop = await self.store.get_property(property_id)
            if prop is None or not prop.is_active:
                logger.warning(f"Property access denied: property {property_id} missing or inactive")
                return False

            level = await self._resolve_access_level(user, property_id)
        except PersistenceError as e:
            logger.error(f"Property access check failed for {user_id}:{property_id}, denying: {e}")
            return False

        return has_required_access_level(level, required)

    async def can_manage_property_users(self, user_id: str, property_id: str) -> bool:
        """Management level or above on the property."""
        return await self.can_access_property(user_id, property_id, AccessLevel.MANAGEMENT)

    async def filter_accessible_properties(
        self,
        user_id: str,
        property_ids: Iterable[str],
        required_level: LevelLike = AccessLevel.READ_ONLY,
    ) -> List[str]:
        """The subset of ``property_ids`` the user can access, order preserved."""
        required = parse_access_level(required_level)
        allowed = []
        for property_id in property_ids:
            if await self.can_access_property(user_id, property_id, required):
                allowed.append(property_id)
        return allowed

    # =========================================================================
    # RESOLVED PERMISSIONS
    # =========================================================================

    async def _compute_permissions(self, user: User, property_id: str) -> FrozenSet[str]:
        if user.role == Role.SUPER_ADMIN:
            return ALL_PERMISSION_NAMES

        role_permissions = await self.store.get_role_permission_names(user.role)
        level = await self._resolve_access_level(user, property_id)
        overrides = await self.store.list_active_user_permissions(user.id, self.now())

        granted = {o.permission_name for o in overrides if o.granted}
        revoked = {o.permission_name for o in overrides if not o.granted}

        resolved = set(role_permissions) | get_access_level_permissions(level) | granted
        return frozenset(resolved - revoked)

    async def get_user_property_permissions(self, user_id: str, property_id: str) -> FrozenSet[str]:
        """Resolved permission names of a user on a property; empty on any failure."""
        generation = self.cache.generation()
        cached = await self.cache.get(user_id, property_id)
        if cached is not None:
            return cached

        try:
            user = await self.store.get_user(user_id)
            if user is None or not user.is_active:
                return frozenset()
            permissions = await self._compute_permissions(user, property_id)
        except PersistenceError as e:
            logger.error(f"Permission resolution failed for {user_id}:{property_id}, denying: {e}")
            return frozenset()

        # Dropped when an invalidation landed while this read was resolving
        await self.cache.set(user_id, property_id, permissions, role=user.role, generation=generation)
        return permissions

    async def has_property_permission(
        self, user_id: str, property_id: str, permission: PermissionLike
    ) -> bool:
        resolved = await self.get_user_property_permissions(user_id, property_id)
        return permission_names([permission]) <= resolved

    async def has_any_property_permission(
        self, user_id: str, property_id: str, permissions: Iterable[PermissionLike]
    ) -> bool:
        resolved = await self.get_user_property_permissions(user_id, property_id)
        return bool(resolved & permission_names(permissions))

    async def has_all_property_permissions(
        self, user_id: str, property_id: str, permissions: Iterable[PermissionLike]
    ) -> bool:
        resolved = await self.get_user_property_permissions(user_id, property_id)
        return permission_names(permissions) <= resolved

    # =========================================================================
    # PROPERTY LISTS
    # =========================================================================

    async def get_user_accessible_properties(self, user_id: str) -> List[Property]:
        """Active properties the user owns, manages or holds an unexpired grant on."""
        try:
            user = await self.store.get_user(user_id)
            if user is None or not user.is_active:
                return []
            if user.role == Role.SUPER_ADMIN:
                return await self.store.list_properties(active_only=True)
            levels = await self._access_levels_by_property(user)
            return await self.store.list_properties(levels.keys(), active_only=True)
        except PersistenceError as e:
            logger.error(f"Accessible property lookup failed for {user_id}: {e}")
            return []

    async def get_user_manageable_properties(self, user_id: str) -> List[Property]:
        """Accessible properties where the user holds management level or above."""
        try:
            user = await self.store.get_user(user_id)
            if user is None or not user.is_active:
                return []
            if user.role == Role.SUPER_ADMIN:
                return await self.store.list_properties(active_only=True)
            levels = await self._access_levels_by_property(user)
            manageable = [
                property_id for property_id, level in levels.items()
                if has_required_access_level(level, AccessLevel.MANAGEMENT)
            ]
            return await self.store.list_properties(manageable, active_only=True)
        except PersistenceError as e:
            logger.error(f"Manageable property lookup failed for {user_id}: {e}")
            return []

    async def get_property_access_list(self, property_id: str) -> List[PropertyAccess]:
        """Unexpired explicit grants on a property."""
        try:
            return await self.store.list_active_property_access(self.now(), property_id=property_id)
        except PersistenceError as e:
            logger.error(f"Property access list failed for {property_id}: {e}")
            return []

    async def get_user_property_access_list(self, user_id: str) -> List[PropertyAccess]:
        """Unexpired explicit grants held by a user."""
        try:
            return await self.store.list_active_property_access(self.now(), user_id=user_id)
        except PersistenceError as e:
            logger.error(f"User property access list failed for {user_id}: {e}")
            return []

    # =========================================================================
    # PROPERTY ACCESS WRITES
    # =========================================================================

    async def grant_property_access(
        self,
        user_id: str,
        property_id: str,
        access_level: LevelLike,
        granted_by: str,
        expires_at: Optional[datetime] = None,
    ) -> PropertyAccess:
        """
        Grant (or overwrite) a user's access level on a property.

        Raises:
            ValidationError: Unknown access level.
            NotFoundError: The user or the property does not exist.
            PersistenceError: The write failed.
        """
        level = parse_access_level(access_level)
        access = PropertyAccess(
            user_id=user_id,
            property_id=property_id,
            access_level=level,
            granted_by=granted_by,
            granted_at=self.now(),
            expires_at=expires_at,
        )
        try:
            async with self.store.transaction() as tx:
                if await tx.get_user(user_id) is None:
                    raise NotFoundError(f"User {user_id} not found")
                if await tx.get_property(property_id) is None:
                    raise NotFoundError(f"Property {property_id} not found")
                saved = await tx.upsert_property_access(access)
                await self.audit.record(
                    tx,
                    granted_by,
                    AuditAction.GRANT_PROPERTY_ACCESS,
                    AuditResource.PROPERTY_ACCESS,
                    resource_id=f"{user_id}-{property_id}",
                    property_id=property_id,
                    details={
                        "target_user_id": user_id,
                        "access_level": level.value,
                        "expires_at": expires_at.isoformat() if expires_at else None,
                    },
                )
        except PersistenceError as e:
            logger.error(f"Failed to grant {level.value} on {property_id} to {user_id}: {e}")
            raise

        await self.cache.invalidate(
            CacheInvalidationEvent.PROPERTY_ACCESS_GRANTED,
            user_id=user_id,
            property_id=property_id,
            reason=f"{level.value} granted by {granted_by}",
        )
        logger.info(f"Granted {level.value} on property {property_id} to user {user_id}")
        return saved

    async def update_property_access(
        self,
        user_id: str,
        property_id: str,
        access_level: LevelLike,
        updated_by: str,
        expires_at: Optional[datetime] = None,
    ) -> PropertyAccess:
        """
        Change the level or expiry of an existing grant.

        Raises:
            ValidationError: Unknown access level.
            NotFoundError: No grant exists for the pair.
            PersistenceError: The write failed.
        """
        level = parse_access_level(access_level)
        try:
            async with self.store.transaction() as tx:
                existing = await tx.get_property_access(user_id, property_id)
                if existing is None:
                    raise NotFoundError(f"No property access for user {user_id} on {property_id}")
                saved = await tx.upsert_property_access(
                    replace(existing, access_level=level, expires_at=expires_at)
                )
                await self.audit.record(
                    tx,
                    updated_by,
                    AuditAction.UPDATE_PROPERTY_ACCESS,
                    AuditResource.PROPERTY_ACCESS,
                    resource_id=f"{user_id}-{property_id}",
                    property_id=property_id,
                    details={
                        "target_user_id": user_id,
                        "previous_access_level": existing.access_level.value,
                        "access_level": level.value,
                        "expires_at": expires_at.isoformat() if expires_at else None,
                    },
                )
        except PersistenceError as e:
            logger.error(f"Failed to update access of {user_id} on {property_id}: {e}")
            raise

        await self.cache.invalidate(
            CacheInvalidationEvent.PROPERTY_ACCESS_GRANTED,
            user_id=user_id,
            property_id=property_id,
            reason=f"access updated to {level.value} by {updated_by}",
        )
        return saved

    async def revoke_property_access(self, user_id: str, property_id: str, revoked_by: str) -> bool:
        """
        Remove a user's explicit grant on a property.

        Revoking a grant that does not exist returns False.

        Raises:
            PersistenceError: The write failed.
        """
        try:
            async with self.store.transaction() as tx:
                deleted = await tx.delete_property_access(user_id, property_id)
                if deleted:
                    await self.audit.record(
                        tx,
                        revoked_by,
                        AuditAction.REVOKE_PROPERTY_ACCESS,
                        AuditResource.PROPERTY_ACCESS,
                        resource_id=f"{user_id}-{property_id}",
                        property_id=property_id,
                        details={"target_user_id": user_id},
                    )
        except PersistenceError as e:
            logger.error(f"Failed to revoke access of {user_id} on {property_id}: {e}")
            raise

        await self.cache.invalidate(
            CacheInvalidationEvent.PROPERTY_ACCESS_REVOKED,
            user_id=user_id,
            property_id=property_id,
            reason=f"revoked by {revoked_by}",
        )
        if deleted:
            logger.info(f"Revoked access of user {user_id} on property {property_id}")
        else:
            logger.debug(f"No access to revoke for user {user_id} on property {property_id}")
        return deleted

    async def bulk_grant_property_access(
        self,
        user_ids: Iterable[str],
        property_id: str,
        access_level: LevelLike,
        granted_by: str,
        expires_at: Optional[datetime] = None,
    ) -> BulkGrantResult:
        """
        Grant one property to many users; failures are collected per user.

        Raises:
            ValidationError: Unknown access level.
            NotFoundError: The property does not exist.
        """
        level = parse_access_level(access_level)
        try:
            prop = await self.store.get_property(property_id)
        except PersistenceError as e:
            logger.error(f"Bulk grant on {property_id} failed before any write: {e}")
            raise
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")

        result = BulkGrantResult()
        for user_id in dict.fromkeys(user_ids):
            try:
                await self.grant_property_access(user_id, property_id, level, granted_by, expires_at)
                result.granted.append(user_id)
            except (NotFoundError, PersistenceError) as e:
                result.failed[user_id] = str(e)
        return result

    async def cleanup_expired_property_access(self, actor_id: str = "system") -> int:
        """Delete every expired grant. Returns how many were removed."""
        try:
            async with self.store.transaction() as tx:
                removed = await tx.delete_expired_property_access(self.now())
                if removed:
                    await self.audit.record(
                        tx,
                        actor_id,
                        AuditAction.CLEANUP_EXPIRED_PROPERTY_ACCESS,
                        AuditResource.PROPERTY_ACCESS,
                        details={
                            "count": len(removed),
                            "grants": [f"{a.user_id}-{a.property_id}" for a in removed],
                        },
                    )
        except PersistenceError as e:
            logger.error(f"Expired property access cleanup failed: {e}")
            raise

        for access in removed:
            await self.cache.invalidate(
                CacheInvalidationEvent.PROPERTY_ACCESS_REVOKED,
                user_id=access.user_id,
                property_id=access.property_id,
                reason="expired",
            )
        logger.info(f"Removed {len(removed)} expired property access grants")
        return len(removed)

    # =========================================================================
    # USER PERMISSION OVERRIDES
    # =========================================================================

    async def grant_user_permission(
        self,
        user_id: str,
        permission: PermissionLike,
        granted_by: str,
        granted: bool = True,
        expires_at: Optional[datetime] = None,
    ) -> UserPermission:
        """
        Grant (granted=True) or explicitly revoke (granted=False) one
        permission for a user on every property.

        Raises:
            ValidationError: Unknown permission name.
            NotFoundError: Permission missing from the stored catalog or unknown user.
            PersistenceError: The write failed.
        """
        name = next(iter(permission_names([permission])))
        if not is_valid_permission(name):
            raise ValidationError(f"Unknown permission: {name!r}", field="permission")

        try:
            async with self.store.transaction() as tx:
                record = await tx.get_permission_by_name(name)
                if record is None:
                    raise NotFoundError(f"Permission {name} is not in the stored catalog")
                if await tx.get_user(user_id) is None:
                    raise NotFoundError(f"User {user_id} not found")
                override = await tx.upsert_user_permission(UserPermission(
                    user_id=user_id,
                    permission_id=record.id,
                    permission_name=name,
                    granted=granted,
                    granted_by=granted_by,
                    granted_at=self.now(),
                    expires_at=expires_at,
                ))
                await self.audit.record(
                    tx,
                    granted_by,
                    AuditAction.GRANT_USER_PERMISSION,
                    AuditResource.USER_PERMISSION,
                    resource_id=f"{user_id}-{name}",
                    details={
                        "target_user_id": user_id,
                        "permission": name,
                        "granted": granted,
                        "expires_at": expires_at.isoformat() if expires_at else None,
                    },
                )
        except PersistenceError as e:
            logger.error(f"Failed to set permission {name} for {user_id}: {e}")
            raise

        await self.cache.invalidate(
            CacheInvalidationEvent.USER_PERMISSIONS_CHANGED,
            user_id=user_id,
            reason=f"{name} {'granted' if granted else 'revoked'} by {granted_by}",
        )
        return override

    async def remove_user_permission(
        self, user_id: str, permission: PermissionLike, removed_by: str
    ) -> bool:
        """Delete a user's override for a permission. False when none existed."""
        name = next(iter(permission_names([permission])))
        if not is_valid_permission(name):
            raise ValidationError(f"Unknown permission: {name!r}", field="permission")

        try:
            async with self.store.transaction() as tx:
                record = await tx.get_permission_by_name(name)
                deleted = record is not None and await tx.delete_user_permission(user_id, record.id)
                if deleted:
                    await self.audit.record(
                        tx,
                        removed_by,
                        AuditAction.REVOKE_USER_PERMISSION,
                        AuditResource.USER_PERMISSION,
                        resource_id=f"{user_id}-{name}",
                        details={"target_user_id": user_id, "permission": name},
                    )
        except PersistenceError as e:
            logger.error(f"Failed to remove permission {name} for {user_id}: {e}")
            raise

        await self.cache.invalidate(
            CacheInvalidationEvent.USER_PERMISSIONS_CHANGED,
            user_id=user_id,
            reason=f"{name} override removed by {removed_by}",
        )
        return deleted
