"""
Role permission administration.

Mutations of the default permission set of a role. A role change touches
every user holding that role on every property, so each mutation drops all
cached permission sets tagged with the affected role once it has committed.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Optional, Set, TYPE_CHECKING

from ..audit.audit_logger import AuditAction, AuditLogger, AuditResource
from ..cache.permission_cache import CacheInvalidationEvent, PermissionCacheBackend
from .exceptions import NotFoundError, PersistenceError, ValidationError
from .models import PermissionRecord
from .permissions import PermissionCategory
from .roles import Role, ROLES, parse_role

if TYPE_CHECKING:
    from ..database.store import RBACStore

logger = logging.getLogger(__name__)


@dataclass
class BulkAssignResult:
    assigned: int = 0
    skipped: int = 0


@dataclass
class BulkRemoveResult:
    removed: int = 0
    not_found: int = 0


@dataclass
class CopyResult:
    copied: int = 0
    skipped: int = 0


def _require_role(value, field: str = "role") -> Role:
    role = parse_role(value)
    if role is None:
        raise ValidationError(f"Unknown role: {value!r}", field=field)
    return role


def _unique_ids(permission_ids: Iterable[str]) -> List[str]:
    ids = list(dict.fromkeys(permission_ids))
    if not ids:
        raise ValidationError("At least one permission id is required", field="permission_ids")
    return ids


class RolePermissionAdmin:
    """
    Administrative operations on RolePermission edges.

    Usage:
        admin = RolePermissionAdmin(store, cache)
        result = await admin.bulk_assign(Role.SUPERVISOR, ids, actor_id="u-1")
        result.assigned, result.skipped
    """

    def __init__(
        self,
        store: "RBACStore",
        cache: PermissionCacheBackend,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.cache = cache
        self.audit = audit or AuditLogger()

    async def _invalidate_roles(self, *roles: Role, reason: str) -> None:
        for role in roles:
            await self.cache.invalidate(
                CacheInvalidationEvent.ROLE_PERMISSIONS_UPDATED,
                role=role,
                reason=reason,
            )

    async def _check_permission_ids(self, tx: "RBACStore", ids: List[str]) -> None:
        known = {record.id for record in await tx.get_permissions_by_ids(ids)}
        unknown = [pid for pid in ids if pid not in known]
        if unknown:
            raise ValidationError(f"Unknown permission ids: {unknown}", field="permission_ids")

    # =========================================================================
    # SINGLE EDGES
    # =========================================================================

    async def assign_permission(self, role, permission_id: str, actor_id: str) -> bool:
        """Add one permission to a role. False when the role already had it."""
        role = _require_role(role)
        try:
            async with self.store.transaction() as tx:
                await self._check_permission_ids(tx, [permission_id])
                added = await tx.add_role_permission(role, permission_id)
                if added:
                    await self.audit.record(
                        tx,
                        actor_id,
                        AuditAction.PERMISSION_ASSIGNED_TO_ROLE,
                        AuditResource.ROLE_PERMISSION,
                        resource_id=f"{role.value}-{permission_id}",
                        details={"role": role.value, "permission_ids": [permission_id]},
                    )
        except PersistenceError as e:
            logger.error(f"Failed to assign {permission_id} to {role.value}: {e}")
            raise

        if added:
            await self._invalidate_roles(role, reason=f"permission assigned by {actor_id}")
        return added

    async def remove_permission(self, role, permission_id: str, actor_id: str) -> bool:
        """Remove one permission from a role. False when the role did not have it."""
        role = _require_role(role)
        try:
            async with self.store.transaction() as tx:
                removed = await tx.remove_role_permission(role, permission_id)
                if removed:
                    await self.audit.record(
                        tx,
                        actor_id,
                        AuditAction.PERMISSION_REMOVED_FROM_ROLE,
                        AuditResource.ROLE_PERMISSION,
                        resource_id=f"{role.value}-{permission_id}",
                        details={"role": role.value, "permission_ids": [permission_id]},
                    )
        except PersistenceError as e:
            logger.error(f"Failed to remove {permission_id} from {role.value}: {e}")
            raise

        if removed:
            await self._invalidate_roles(role, reason=f"permission removed by {actor_id}")
        return removed

    # =========================================================================
    # BULK OPERATIONS
    # =========================================================================

    async def bulk_assign(self, role, permission_ids: Iterable[str], actor_id: str) -> BulkAssignResult:
        """
        Add several permissions to a role.

        Permissions the role already holds are counted as skipped.

        Raises:
            ValidationError: Unknown role, empty list or unknown permission ids.
            PersistenceError: The write failed; nothing was applied.
        """
        role = _require_role(role)
        ids = _unique_ids(permission_ids)
        result = BulkAssignResult()
        try:
            async with self.store.transaction() as tx:
                await self._check_permission_ids(tx, ids)
                for permission_id in ids:
                    if await tx.add_role_permission(role, permission_id):
                        result.assigned += 1
                    else:
                        result.skipped += 1
                await self.audit.record(
                    tx,
                    actor_id,
                    AuditAction.BULK_PERMISSIONS_ASSIGNED_TO_ROLE,
                    AuditResource.ROLE_PERMISSION,
                    resource_id=role.value,
                    details={"role": role.value, "permission_ids": ids, **asdict(result)},
                )
        except PersistenceError as e:
            logger.error(f"Bulk assign to {role.value} failed: {e}")
            raise

        await self._invalidate_roles(role, reason=f"bulk assign by {actor_id}")
        logger.info(f"Bulk assigned to {role.value}: {result.assigned} assigned, {result.skipped} skipped")
        return result

    async def bulk_remove(self, role, permission_ids: Iterable[str], actor_id: str) -> BulkRemoveResult:
        """
        Remove several permissions from a role.

        Ids the role does not hold are counted as not found.
        """
        role = _require_role(role)
        ids = _unique_ids(permission_ids)
        result = BulkRemoveResult()
        try:
            async with self.store.transaction() as tx:
                for permission_id in ids:
                    if await tx.remove_role_permission(role, permission_id):
                        result.removed += 1
                    else:
                        result.not_found += 1
                await self.audit.record(
                    tx,
                    actor_id,
                    AuditAction.BULK_PERMISSIONS_REMOVED_FROM_ROLE,
                    AuditResource.ROLE_PERMISSION,
                    resource_id=role.value,
                    details={"role": role.value, "permission_ids": ids, **asdict(result)},
                )
        except PersistenceError as e:
            logger.error(f"Bulk remove from {role.value} failed: {e}")
            raise

        await self._invalidate_roles(role, reason=f"bulk remove by {actor_id}")
        logger.info(f"Bulk removed from {role.value}: {result.removed} removed, {result.not_found} not found")
        return result

    async def copy_permissions(
        self,
        source_role,
        target_role,
        actor_id: str,
        overwrite: bool = False,
    ) -> CopyResult:
        """
        Copy every permission of ``source_role`` onto ``target_role``.

        With ``overwrite`` the target's existing permissions are removed
        first, so the target ends up with exactly the source's set. The
        whole copy runs in one transaction.

        Raises:
            ValidationError: Unknown roles, or source equals target.
            PersistenceError: The write failed; nothing was applied.
        """
        source = _require_role(source_role, field="source_role")
        target = _require_role(target_role, field="target_role")
        if source == target:
            raise ValidationError("Source and target roles cannot be the same", field="target_role")

        result = CopyResult()
        try:
            async with self.store.transaction() as tx:
                source_ids = sorted(await tx.list_role_permission_ids(source))
                if not source_ids:
                    raise ValidationError(
                        f"Role {source.value} has no permissions to copy", field="source_role"
                    )
                if overwrite:
                    await tx.delete_role_permissions(target)
                for permission_id in source_ids:
                    if await tx.add_role_permission(target, permission_id):
                        result.copied += 1
                    else:
                        result.skipped += 1
                action = (
                    AuditAction.ROLE_PERMISSIONS_COPIED_WITH_OVERWRITE
                    if overwrite
                    else AuditAction.ROLE_PERMISSIONS_COPIED
                )
                await self.audit.record(
                    tx,
                    actor_id,
                    action,
                    AuditResource.ROLE_PERMISSION,
                    resource_id=f"{source.value}->{target.value}",
                    details={
                        "source_role": source.value,
                        "target_role": target.value,
                        "overwrite": overwrite,
                        "permission_ids": source_ids,
                        **asdict(result),
                    },
                )
        except PersistenceError as e:
            logger.error(f"Copying {source.value} permissions to {target.value} failed: {e}")
            raise

        await self._invalidate_roles(target, reason=f"copied from {source.value} by {actor_id}")
        logger.info(
            f"Copied {source.value} -> {target.value} (overwrite={overwrite}): "
            f"{result.copied} copied, {result.skipped} skipped"
        )
        return result

    # =========================================================================
    # USER ROLE
    # =========================================================================

    async def change_user_role(self, user_id: str, new_role, actor_id: str) -> Role:
        """
        Move a user to another role.

        Raises:
            ValidationError: Unknown role.
            NotFoundError: Unknown user.
        """
        role = _require_role(new_role)
        try:
            async with self.store.transaction() as tx:
                user = await tx.get_user(user_id)
                if user is None:
                    raise NotFoundError(f"User {user_id} not found")
                previous = user.role
                await tx.update_user_role(user_id, role)
                await self.audit.record(
                    tx,
                    actor_id,
                    AuditAction.USER_ROLE_CHANGED,
                    AuditResource.USER,
                    resource_id=user_id,
                    details={"previous_role": Role(previous).value, "role": role.value},
                )
        except PersistenceError as e:
            logger.error(f"Changing role of {user_id} failed: {e}")
            raise

        await self.cache.invalidate(
            CacheInvalidationEvent.USER_ROLE_CHANGED,
            user_id=user_id,
            reason=f"{Role(previous).value} -> {role.value} by {actor_id}",
        )
        return role

    # =========================================================================
    # READS
    # =========================================================================

    async def get_role_permissions(self, role) -> List[PermissionRecord]:
        """Catalog entries currently assigned to a role."""
        role = _require_role(role)
        ids = await self.store.list_role_permission_ids(role)
        records = await self.store.get_permissions_by_ids(ids)
        return sorted(records, key=lambda r: (r.category, r.name))

    async def get_roles_with_permissions(self) -> List[dict]:
        """Every role with the full catalog, each entry flagged as assigned or not."""
        catalog = await self.store.list_permissions()
        roles = []
        for role in Role:
            assigned = await self.store.list_role_permission_ids(role)
            roles.append({
                "role": role.value,
                "name": ROLES[role].name,
                "permissions": [
                    {**asdict(record), "assigned": record.id in assigned}
                    for record in catalog
                ],
            })
        return roles

    async def get_role_permission_stats(self) -> dict:
        """Assignment counts per role and catalog coverage per category."""
        catalog = await self.store.list_permissions()
        total_permissions = len(catalog)

        assigned_by_role: Dict[Role, Set[str]] = {}
        for role in Role:
            assigned_by_role[role] = await self.store.list_role_permission_ids(role)
        assigned_anywhere = set().union(*assigned_by_role.values())

        role_stats = [
            {
                "role": role.value,
                "permission_count": len(ids),
                "percentage": round(len(ids) / total_permissions * 100) if total_permissions else 0,
            }
            for role, ids in assigned_by_role.items()
        ]

        category_stats = []
        for category in PermissionCategory:
            in_category = [r.id for r in catalog if r.category == category.value]
            assigned = sum(1 for pid in in_category if pid in assigned_anywhere)
            category_stats.append({
                "category": category.value,
                "total_permissions": len(in_category),
                "assigned_permissions": assigned,
                "coverage": round(assigned / len(in_category) * 100) if in_category else 0,
            })

        return {
            "total_roles": len(Role),
            "total_permissions": total_permissions,
            "total_assignments": sum(len(ids) for ids in assigned_by_role.values()),
            "role_stats": role_stats,
            "category_stats": category_stats,
        }
