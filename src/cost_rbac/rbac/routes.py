"""
Route and action guard.

Maps application routes to their requirements and decides allow/deny:

    1. roles: the user's role must be one of them, when listed
    2. permissions: the user needs at least one of them, when listed
    3. property scope: with a property id, the user needs the route's
       minimum access level on that property

Routes without an entry are denied unless the guard is built with
``allow_unmapped=True``. New routes must be registered explicitly.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .access_levels import AccessLevel
from .checks import has_any_permission, has_any_role
from .models import User
from .permissions import Permission
from .resolver import PropertyAccessResolver
from .roles import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteRequirement:
    """What a route demands of the caller."""
    permissions: Tuple[Permission, ...] = ()
    roles: Tuple[Role, ...] = ()
    property_required: bool = False
    min_access_level: AccessLevel = AccessLevel.READ_ONLY


# =============================================================================
# ROUTE TABLE
# =============================================================================

ROUTE_PERMISSIONS: Dict[str, RouteRequirement] = {
    "/dashboard": RouteRequirement(
        permissions=(Permission.DASHBOARD_VIEW,),
    ),

    # User management
    "/dashboard/users": RouteRequirement(
        permissions=(Permission.USERS_READ,),
    ),
    "/dashboard/users/create": RouteRequirement(
        permissions=(Permission.USERS_CREATE,),
    ),
    "/dashboard/users/edit": RouteRequirement(
        permissions=(Permission.USERS_UPDATE,),
    ),

    # Property management
    "/dashboard/properties": RouteRequirement(
        permissions=(Permission.PROPERTIES_READ,),
    ),
    "/dashboard/properties/create": RouteRequirement(
        permissions=(Permission.PROPERTIES_CREATE,),
    ),

    # Cost input
    "/dashboard/food-cost-input": RouteRequirement(
        permissions=(Permission.FOOD_COSTS_CREATE, Permission.FOOD_COSTS_READ),
        property_required=True,
        min_access_level=AccessLevel.DATA_ENTRY,
    ),
    "/dashboard/beverage-cost-input": RouteRequirement(
        permissions=(Permission.BEVERAGE_COSTS_CREATE, Permission.BEVERAGE_COSTS_READ),
        property_required=True,
        min_access_level=AccessLevel.DATA_ENTRY,
    ),
    "/dashboard/financial-summary": RouteRequirement(
        permissions=(Permission.DAILY_SUMMARY_CREATE, Permission.DAILY_SUMMARY_READ),
        property_required=True,
        min_access_level=AccessLevel.DATA_ENTRY,
    ),

    # Reports
    "/dashboard/reports": RouteRequirement(
        permissions=(Permission.REPORTS_BASIC_READ,),
        property_required=True,
    ),
    "/dashboard/reports/detailed": RouteRequirement(
        permissions=(Permission.REPORTS_DETAILED_READ,),
        property_required=True,
    ),

    # Administration
    "/dashboard/settings": RouteRequirement(
        roles=(Role.SUPER_ADMIN, Role.PROPERTY_ADMIN),
    ),

    # Outlets
    "/dashboard/outlets": RouteRequirement(
        permissions=(Permission.OUTLETS_READ,),
        property_required=True,
    ),
}


def normalize_route(route: str) -> str:
    """Drop query string, fragment and trailing slash."""
    path = route.split("?", 1)[0].split("#", 1)[0]
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


class RouteGuard:
    """
    Decides route access for a user.

    Args:
        resolver: Used for property-scoped checks.
        routes: Route table; a copy of ROUTE_PERMISSIONS when omitted.
        allow_unmapped: Allow routes that have no table entry.
    """

    def __init__(
        self,
        resolver: PropertyAccessResolver,
        routes: Optional[Dict[str, RouteRequirement]] = None,
        allow_unmapped: bool = False,
    ):
        self.resolver = resolver
        self.routes = dict(ROUTE_PERMISSIONS if routes is None else routes)
        self.allow_unmapped = allow_unmapped

    def register(self, route: str, requirement: RouteRequirement) -> None:
        self.routes[normalize_route(route)] = requirement

    def get_requirement(self, route: str) -> Optional[RouteRequirement]:
        return self.routes.get(normalize_route(route))

    async def can_access_route(
        self,
        user: Optional[User],
        route: str,
        property_id: Optional[str] = None,
    ) -> bool:
        if user is None or not user.is_active:
            return False

        requirement = self.get_requirement(route)
        if requirement is None:
            if not self.allow_unmapped:
                logger.warning(f"Denied unmapped route {route} for user {user.id}")
            return self.allow_unmapped

        if requirement.roles and not has_any_role(user, requirement.roles):
            logger.debug(f"Route {route} denied for {user.id}: role {user.role}")
            return False

        if requirement.permissions and not has_any_permission(user, requirement.permissions):
            logger.debug(f"Route {route} denied for {user.id}: missing permissions")
            return False

        if requirement.property_required and property_id is not None:
            return await self.resolver.can_access_property(
                user.id, property_id, requirement.min_access_level
            )

        return True
