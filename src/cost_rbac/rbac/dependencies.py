"""
FastAPI Dependencies

Dependency helpers that turn RBAC decisions into HTTP responses. The core
returns booleans; this module is the only place a False becomes a 403.

The authenticated user id is expected on ``request.state.user_id``, set by
the authentication layer in front of the application. A permission list
stored with the session may be placed on ``request.state.permissions``.

Usage:
    @router.get("/dashboard/reports")
    async def reports(user: User = Depends(require_route("/dashboard/reports"))):
        ...

    @router.post("/properties/{property_id}/food-costs")
    async def add_food_cost(
        property_id: str,
        user: User = Depends(require_property_permission(Permission.FOOD_COSTS_CREATE)),
    ):
        ...
"""

import logging
from typing import Callable, Iterable, Optional, Set, Union

from fastapi import Depends, HTTPException, Request, status

from .access_levels import AccessLevel, parse_access_level
from .bootstrap import RBACServices
from .checks import has_permission
from .exceptions import PersistenceError
from .models import User
from .permissions import Permission, permission_names
from .roles import Role

logger = logging.getLogger(__name__)


# =============================================================================
# CORE DEPENDENCIES
# =============================================================================

def get_rbac_services(request: Request) -> RBACServices:
    """RBAC services attached to the application at startup."""
    services = getattr(request.app.state, "rbac", None)
    if services is None:
        logger.error("RBAC services are not configured on app.state.rbac")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access control unavailable",
        )
    return services


async def get_current_user(
    request: Request,
    services: RBACServices = Depends(get_rbac_services),
) -> User:
    """
    Load the authenticated user.

    Raises 401 when no user id is present or the user is unknown or
    inactive, and 503 when the user store cannot be reached.
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    try:
        user = await services.store.get_user(str(user_id))
    except PersistenceError as e:
        logger.error(f"User lookup failed for {user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access control unavailable",
        )

    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    session_permissions = getattr(request.state, "permissions", None)
    if session_permissions:
        user.permissions = user.permissions | permission_names(session_permissions)
    return user


def _property_id_from(request: Request, param: str) -> Optional[str]:
    value = request.path_params.get(param) or request.query_params.get(param)
    return str(value) if value else None


# =============================================================================
# GUARDS
# =============================================================================

def require_route(route: Optional[str] = None, property_param: str = "property_id") -> Callable:
    """
    Require access to a route in the route table.

    Args:
        route: Route key; the request path when omitted.
        property_param: Path or query parameter holding the property id.
    """

    async def dependency(
        request: Request,
        user: User = Depends(get_current_user),
        services: RBACServices = Depends(get_rbac_services),
    ) -> User:
        route_key = route or request.url.path
        property_id = _property_id_from(request, property_param)
        if not await services.guard.can_access_route(user, route_key, property_id):
            logger.info(f"Route {route_key} denied for user {user.id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied",
            )
        return user

    return dependency


def require_property_permission(
    permission: Union[Permission, str, Iterable[Union[Permission, str]]],
    property_param: str = "property_id",
    require_all: bool = False,
    min_access_level: Optional[Union[AccessLevel, str]] = None,
) -> Callable:
    """
    Require resolved permission(s) on the property named by a request parameter.

    Resolved permissions include role-wide grants that hold on every
    property. Pass ``min_access_level`` when the caller must also stand in
    a relationship to this property (owner, manager or explicit grant).

    Args:
        permission: One permission or several (ANY unless require_all).
        property_param: Path or query parameter holding the property id.
        require_all: Require every listed permission.
        min_access_level: Access level the caller needs on the property.
    """
    required_level = parse_access_level(min_access_level) if min_access_level is not None else None
    if isinstance(permission, (Permission, str)):
        required: Set[str] = set(permission_names([permission]))
    else:
        required = set(permission_names(permission))

    async def dependency(
        request: Request,
        user: User = Depends(get_current_user),
        services: RBACServices = Depends(get_rbac_services),
    ) -> User:
        property_id = _property_id_from(request, property_param)
        if property_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Missing {property_param}",
            )

        resolver = services.resolver
        if required_level is not None and not await resolver.can_access_property(
            user.id, property_id, required_level
        ):
            logger.info(f"User {user.id} lacks {required_level.value} access on property {property_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient access to this property",
            )

        if require_all:
            allowed = await resolver.has_all_property_permissions(user.id, property_id, required)
        else:
            allowed = await resolver.has_any_property_permission(user.id, property_id, required)

        if not allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permission denied",
            )
        return user

    return dependency


def require_role(*roles: Union[Role, str]) -> Callable:
    """Require one of the given roles."""
    allowed = {Role(role) for role in roles}

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required role: {', '.join(sorted(r.value for r in allowed))}",
            )
        return user

    return dependency


def require_permission(permission: Union[Permission, str]) -> Callable:
    """Require a role-level permission, without property scope."""
    name = next(iter(permission_names([permission])))

    async def dependency(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user, name):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Required permission: {name}",
            )
        return user

    return dependency
