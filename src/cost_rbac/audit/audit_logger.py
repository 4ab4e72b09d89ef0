"""
Audit Logging

Append-only trail of security-relevant actions. Entries are written through
the RBAC store, inside the caller's transaction, so an audit row commits or
rolls back together with the change it describes. Every entry is mirrored
to the ``cost_rbac.audit`` logger.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from uuid import uuid4

if TYPE_CHECKING:
    from ..database.store import RBACStore

logger = logging.getLogger("cost_rbac.audit")


class AuditAction(str, Enum):
    """Actions that get audited"""

    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"

    # Property access
    GRANT_PROPERTY_ACCESS = "GRANT_PROPERTY_ACCESS"
    REVOKE_PROPERTY_ACCESS = "REVOKE_PROPERTY_ACCESS"
    UPDATE_PROPERTY_ACCESS = "UPDATE_PROPERTY_ACCESS"
    CLEANUP_EXPIRED_PROPERTY_ACCESS = "CLEANUP_EXPIRED_PROPERTY_ACCESS"

    # User permission overrides
    GRANT_USER_PERMISSION = "GRANT_USER_PERMISSION"
    REVOKE_USER_PERMISSION = "REVOKE_USER_PERMISSION"
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"

    # Role permissions
    PERMISSION_ASSIGNED_TO_ROLE = "PERMISSION_ASSIGNED_TO_ROLE"
    PERMISSION_REMOVED_FROM_ROLE = "PERMISSION_REMOVED_FROM_ROLE"
    BULK_PERMISSIONS_ASSIGNED_TO_ROLE = "BULK_PERMISSIONS_ASSIGNED_TO_ROLE"
    BULK_PERMISSIONS_REMOVED_FROM_ROLE = "BULK_PERMISSIONS_REMOVED_FROM_ROLE"
    ROLE_PERMISSIONS_COPIED = "ROLE_PERMISSIONS_COPIED"
    ROLE_PERMISSIONS_COPIED_WITH_OVERWRITE = "ROLE_PERMISSIONS_COPIED_WITH_OVERWRITE"


class AuditResource(str, Enum):
    """Resource types named in audit entries"""
    AUTH = "auth"
    PROPERTY_ACCESS = "property_access"
    USER_PERMISSION = "user_permission"
    USER = "user"
    ROLE_PERMISSION = "role_permission"


@dataclass
class AuditLogEntry:
    """Audit log record"""
    user_id: str
    action: str
    resource: str
    resource_id: Optional[str] = None
    property_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "property_id": self.property_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class AuditLogger:
    """
    Writes audit entries through an RBAC store.

    Usage:
        async with store.transaction() as tx:
            await tx.upsert_property_access(...)
            await audit.record(tx, actor_id, AuditAction.GRANT_PROPERTY_ACCESS, ...)
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    async def record(
        self,
        store: "RBACStore",
        user_id: str,
        action: AuditAction,
        resource: AuditResource,
        resource_id: Optional[str] = None,
        property_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Append an audit entry.

        Returns: the entry written, or None when auditing is disabled
        """
        if not self.enabled:
            return None

        entry = AuditLogEntry(
            user_id=user_id,
            action=AuditAction(action).value,
            resource=AuditResource(resource).value,
            resource_id=resource_id,
            property_id=property_id,
            details=dict(details or {}),
        )
        await store.append_audit_entry(entry)
        logger.info(
            f"AUDIT {entry.action} by {entry.user_id} on {entry.resource}:{entry.resource_id}",
            extra={"audit": entry.to_dict()},
        )
        return entry

    async def query(
        self,
        store: "RBACStore",
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        """Most recent entries first, filtered by any given field."""
        return await store.query_audit_entries(
            user_id=user_id,
            property_id=property_id,
            action=AuditAction(action).value if action else None,
            limit=limit,
        )
