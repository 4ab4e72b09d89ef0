"""
RBAC Administration API

Endpoints for the permission-management dashboard: property access grants,
per-user permission overrides, role permission bulk operations, and
read-only views of resolved permissions, statistics and the audit trail.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..audit.audit_logger import AuditAction
from ..rbac.access_levels import AccessLevel
from ..rbac.bootstrap import RBACServices
from ..rbac.dependencies import (
    get_current_user,
    get_rbac_services,
    require_permission,
    require_property_permission,
    require_role,
)
from ..rbac.models import Property, PropertyAccess, User
from ..rbac.permissions import Permission
from ..rbac.roles import Role

router = APIRouter(prefix="/api/rbac", tags=["rbac-admin"])

# Managing grants needs the permission and management level on that property
manage_property_access = require_property_permission(
    Permission.PROPERTIES_ACCESS_MANAGE, min_access_level=AccessLevel.MANAGEMENT
)
super_admin_only = require_role(Role.SUPER_ADMIN)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class PropertyResponse(BaseModel):
    """Property summary"""
    id: str
    name: str
    is_active: bool

    @classmethod
    def from_property(cls, prop: Property) -> "PropertyResponse":
        return cls(id=prop.id, name=prop.name, is_active=prop.is_active)


class PropertyAccessResponse(BaseModel):
    """Explicit property access grant"""
    user_id: str
    property_id: str
    access_level: AccessLevel
    granted_by: str
    granted_at: datetime
    expires_at: Optional[datetime] = None

    @classmethod
    def from_access(cls, access: PropertyAccess) -> "PropertyAccessResponse":
        return cls(
            user_id=access.user_id,
            property_id=access.property_id,
            access_level=access.access_level,
            granted_by=access.granted_by,
            granted_at=access.granted_at,
            expires_at=access.expires_at,
        )


class GrantAccessRequest(BaseModel):
    """Grant or overwrite a user's access on a property"""
    user_id: str
    access_level: str = Field(..., description="read_only, data_entry, management, full_control or owner")
    expires_at: Optional[datetime] = None


class UpdateAccessRequest(BaseModel):
    """Change an existing grant"""
    access_level: str
    expires_at: Optional[datetime] = None


class BulkGrantAccessRequest(BaseModel):
    """Grant one property to several users"""
    user_ids: List[str] = Field(..., min_length=1)
    access_level: str
    expires_at: Optional[datetime] = None


class UserPermissionRequest(BaseModel):
    """Per-user permission override"""
    permission: str
    granted: bool = True  # False = explicit revocation
    expires_at: Optional[datetime] = None


class PermissionIdsRequest(BaseModel):
    """Permission ids for a bulk role operation"""
    permission_ids: List[str] = Field(..., min_length=1)


class CopyPermissionsRequest(BaseModel):
    """Copy role permissions"""
    source_role: str
    target_role: str
    overwrite: bool = False


class ChangeRoleRequest(BaseModel):
    """Move a user to another role"""
    role: str


class ResolvedPermissionsResponse(BaseModel):
    """Resolved permissions of a user on a property"""
    user_id: str
    property_id: str
    access_level: Optional[AccessLevel]
    permissions: List[str]


# =============================================================================
# CURRENT USER
# =============================================================================

@router.get("/me/properties", response_model=List[PropertyResponse])
async def my_properties(
    manageable: bool = Query(False, description="Only properties at management level or above"),
    user: User = Depends(get_current_user),
    services: RBACServices = Depends(get_rbac_services),
):
    if manageable:
        properties = await services.resolver.get_user_manageable_properties(user.id)
    else:
        properties = await services.resolver.get_user_accessible_properties(user.id)
    return [PropertyResponse.from_property(p) for p in properties]


@router.get("/me/properties/{property_id}/permissions", response_model=ResolvedPermissionsResponse)
async def my_property_permissions(
    property_id: str,
    user: User = Depends(get_current_user),
    services: RBACServices = Depends(get_rbac_services),
):
    resolver = services.resolver
    return ResolvedPermissionsResponse(
        user_id=user.id,
        property_id=property_id,
        access_level=await resolver.get_user_property_access_level(user.id, property_id),
        permissions=sorted(await resolver.get_user_property_permissions(user.id, property_id)),
    )


# =============================================================================
# PROPERTY ACCESS
# =============================================================================

@router.get("/properties/{property_id}/access", response_model=List[PropertyAccessResponse])
async def list_property_access(
    property_id: str,
    user: User = Depends(manage_property_access),
    services: RBACServices = Depends(get_rbac_services),
):
    grants = await services.resolver.get_property_access_list(property_id)
    return [PropertyAccessResponse.from_access(a) for a in grants]


@router.post("/properties/{property_id}/access", response_model=PropertyAccessResponse, status_code=201)
async def grant_property_access(
    property_id: str,
    body: GrantAccessRequest,
    user: User = Depends(manage_property_access),
    services: RBACServices = Depends(get_rbac_services),
):
    access = await services.resolver.grant_property_access(
        body.user_id, property_id, body.access_level, user.id, body.expires_at
    )
    return PropertyAccessResponse.from_access(access)


@router.post("/properties/{property_id}/access/bulk")
async def bulk_grant_property_access(
    property_id: str,
    body: BulkGrantAccessRequest,
    user: User = Depends(manage_property_access),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, Any]:
    result = await services.resolver.bulk_grant_property_access(
        body.user_ids, property_id, body.access_level, user.id, body.expires_at
    )
    return result.to_dict()


@router.put("/properties/{property_id}/access/{user_id}", response_model=PropertyAccessResponse)
async def update_property_access(
    property_id: str,
    user_id: str,
    body: UpdateAccessRequest,
    user: User = Depends(manage_property_access),
    services: RBACServices = Depends(get_rbac_services),
):
    access = await services.resolver.update_property_access(
        user_id, property_id, body.access_level, user.id, body.expires_at
    )
    return PropertyAccessResponse.from_access(access)


@router.delete("/properties/{property_id}/access/{user_id}")
async def revoke_property_access(
    property_id: str,
    user_id: str,
    user: User = Depends(manage_property_access),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, bool]:
    revoked = await services.resolver.revoke_property_access(user_id, property_id, user.id)
    return {"revoked": revoked}


@router.post("/property-access/cleanup")
async def cleanup_expired_property_access(
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, int]:
    removed = await services.resolver.cleanup_expired_property_access(actor_id=user.id)
    return {"removed": removed}


# =============================================================================
# USER PERMISSIONS AND ROLES
# =============================================================================

@router.get("/users/{user_id}/properties/{property_id}/permissions", response_model=ResolvedPermissionsResponse)
async def user_property_permissions(
    user_id: str,
    property_id: str,
    user: User = Depends(manage_property_access),
    services: RBACServices = Depends(get_rbac_services),
):
    resolver = services.resolver
    return ResolvedPermissionsResponse(
        user_id=user_id,
        property_id=property_id,
        access_level=await resolver.get_user_property_access_level(user_id, property_id),
        permissions=sorted(await resolver.get_user_property_permissions(user_id, property_id)),
    )


@router.post("/users/{user_id}/permissions", status_code=201)
async def set_user_permission(
    user_id: str,
    body: UserPermissionRequest,
    user: User = Depends(require_permission(Permission.USERS_PERMISSIONS_MANAGE)),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, Any]:
    override = await services.resolver.grant_user_permission(
        user_id, body.permission, user.id, granted=body.granted, expires_at=body.expires_at
    )
    return {
        "user_id": override.user_id,
        "permission": override.permission_name,
        "granted": override.granted,
        "expires_at": override.expires_at,
    }


@router.delete("/users/{user_id}/permissions/{permission}")
async def remove_user_permission(
    user_id: str,
    permission: str,
    user: User = Depends(require_permission(Permission.USERS_PERMISSIONS_MANAGE)),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, bool]:
    removed = await services.resolver.remove_user_permission(user_id, permission, user.id)
    return {"removed": removed}


@router.put("/users/{user_id}/role")
async def change_user_role(
    user_id: str,
    body: ChangeRoleRequest,
    user: User = Depends(require_permission(Permission.USERS_ROLES_MANAGE)),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, str]:
    role = await services.admin.change_user_role(user_id, body.role, user.id)
    return {"user_id": user_id, "role": role.value}


# =============================================================================
# ROLE PERMISSIONS (super admin)
# =============================================================================

@router.get("/roles")
async def roles_with_permissions(
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> List[Dict[str, Any]]:
    return await services.admin.get_roles_with_permissions()


@router.get("/roles/stats")
async def role_permission_stats(
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, Any]:
    return await services.admin.get_role_permission_stats()


@router.post("/roles/{role}/permissions/bulk-assign")
async def bulk_assign_permissions(
    role: str,
    body: PermissionIdsRequest,
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, int]:
    result = await services.admin.bulk_assign(role, body.permission_ids, user.id)
    return {"assigned": result.assigned, "skipped": result.skipped}


@router.post("/roles/{role}/permissions/bulk-remove")
async def bulk_remove_permissions(
    role: str,
    body: PermissionIdsRequest,
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, int]:
    result = await services.admin.bulk_remove(role, body.permission_ids, user.id)
    return {"removed": result.removed, "not_found": result.not_found}


@router.post("/roles/copy")
async def copy_role_permissions(
    body: CopyPermissionsRequest,
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, int]:
    result = await services.admin.copy_permissions(
        body.source_role, body.target_role, user.id, overwrite=body.overwrite
    )
    return {"copied": result.copied, "skipped": result.skipped}


# =============================================================================
# MONITORING
# =============================================================================

@router.get("/cache/stats")
async def cache_stats(
    user: User = Depends(super_admin_only),
    services: RBACServices = Depends(get_rbac_services),
) -> Dict[str, Any]:
    return services.cache.stats().to_dict()


@router.get("/audit")
async def audit_log(
    user_id: Optional[str] = None,
    property_id: Optional[str] = None,
    action: Optional[AuditAction] = None,
    limit: int = Query(100, ge=1, le=1000),
    user: User = Depends(require_permission(Permission.SYSTEM_AUDIT_READ)),
    services: RBACServices = Depends(get_rbac_services),
) -> List[Dict[str, Any]]:
    entries = await services.audit.query(
        services.store, user_id=user_id, property_id=property_id, action=action, limit=limit
    )
    return [entry.to_dict() for entry in entries]
