"""SQLAlchemy implementation of the RBAC store."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional, Set

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..audit.audit_logger import AuditLogEntry
from ..rbac.access_levels import AccessLevel
from ..rbac.exceptions import PersistenceError
from ..rbac.models import (
    PermissionRecord,
    Property,
    PropertyAccess,
    User,
    UserPermission,
    ensure_utc,
)
from ..rbac.roles import Role
from .models import (
    AuditLogRecord,
    PermissionCatalogRecord,
    PropertyAccessRecord,
    PropertyRecord,
    RolePermissionRecord,
    UserPermissionRecord,
    UserRecord,
)
from .store import RBACStore
from .transaction import session_scope

logger = logging.getLogger(__name__)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    value = ensure_utc(value)
    return value.astimezone(timezone.utc) if value is not None else None


def _stored(enum_cls, value: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise PersistenceError(
            f"Stored value {value!r} is not a valid {enum_cls.__name__}", operation="load"
        ) from None


def _to_user(row: UserRecord) -> User:
    return User(
        id=row.id,
        role=_stored(Role, row.role),
        is_active=row.is_active,
        email=row.email or "",
        name=row.name or "",
        owned_property_ids=frozenset(p.id for p in row.owned_properties),
        managed_property_ids=frozenset(p.id for p in row.managed_properties),
    )


def _to_property(row: PropertyRecord) -> Property:
    return Property(id=row.id, name=row.name, is_active=row.is_active)


def _to_access(row: PropertyAccessRecord) -> PropertyAccess:
    return PropertyAccess(
        user_id=row.user_id,
        property_id=row.property_id,
        access_level=_stored(AccessLevel, row.access_level),
        granted_by=row.granted_by,
        granted_at=ensure_utc(row.granted_at),
        expires_at=ensure_utc(row.expires_at),
    )


def _to_permission(row: PermissionCatalogRecord) -> PermissionRecord:
    return PermissionRecord(
        id=row.id,
        name=row.name,
        category=row.category,
        resource=row.resource,
        action=row.action,
        description=row.description or "",
    )


def _to_audit(row: AuditLogRecord) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        user_id=row.user_id,
        property_id=row.property_id,
        action=row.action,
        resource=row.resource,
        resource_id=row.resource_id,
        details=dict(row.details or {}),
        timestamp=ensure_utc(row.timestamp),
    )


class SQLAlchemyRBACStore(RBACStore):
    """
    RBAC store over an async SQLAlchemy session factory.

    Outside a transaction every call runs in its own short session. Inside
    ``transaction()`` all calls share one session and commit together.
    SQLAlchemy errors are logged and re-raised as PersistenceError.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        session: Optional[AsyncSession] = None,
    ):
        self._session_factory = session_factory
        self._session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLAlchemyRBACStore"]:
        if self._session is not None:
            yield self
            return
        async with session_scope(self._session_factory) as session:
            yield SQLAlchemyRBACStore(self._session_factory, session)

    @asynccontextmanager
    async def _scope(self, operation: str) -> AsyncIterator[AsyncSession]:
        if self._session is None:
            async with session_scope(self._session_factory, operation) as session:
                yield session
            return
        try:
            yield self._session
        except SQLAlchemyError as e:
            logger.error(f"RBAC store {operation} failed: {e}")
            raise PersistenceError(f"{operation} failed: {e}", operation=operation) from e

    # =========================================================================
    # USERS AND PROPERTIES
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._scope("get_user") as session:
            row = await session.get(UserRecord, user_id)
            return _to_user(row) if row else None

    async def save_user(self, user: User) -> User:
        async with self._scope("save_user") as session:
            row = await session.get(UserRecord, user.id)
            if row is None:
                row = UserRecord(id=user.id)
                session.add(row)
            row.email = user.email or None
            row.name = user.name
            row.role = Role(user.role).value
            row.is_active = user.is_active
            row.owned_properties = await self._load_properties(session, user.owned_property_ids)
            row.managed_properties = await self._load_properties(session, user.managed_property_ids)
            await session.flush()
            return _to_user(row)

    async def _load_properties(self, session: AsyncSession, ids: Iterable[str]) -> List[PropertyRecord]:
        ids = list(ids)
        if not ids:
            return []
        result = await session.execute(select(PropertyRecord).where(PropertyRecord.id.in_(ids)))
        return list(result.scalars())

    async def update_user_role(self, user_id: str, role: Role) -> bool:
        async with self._scope("update_user_role") as session:
            result = await session.execute(
                update(UserRecord).where(UserRecord.id == user_id).values(role=Role(role).value)
            )
            return result.rowcount > 0

    async def get_property(self, property_id: str) -> Optional[Property]:
        async with self._scope("get_property") as session:
            row = await session.get(PropertyRecord, property_id)
            return _to_property(row) if row else None

    async def save_property(self, prop: Property) -> Property:
        async with self._scope("save_property") as session:
            row = await session.get(PropertyRecord, prop.id)
            if row is None:
                row = PropertyRecord(id=prop.id)
                session.add(row)
            row.name = prop.name
            row.is_active = prop.is_active
            await session.flush()
            return _to_property(row)

    async def list_properties(
        self,
        property_ids: Optional[Iterable[str]] = None,
        active_only: bool = True,
    ) -> List[Property]:
        stmt = select(PropertyRecord).order_by(PropertyRecord.name, PropertyRecord.id)
        if property_ids is not None:
            ids = list(property_ids)
            if not ids:
                return []
            stmt = stmt.where(PropertyRecord.id.in_(ids))
        if active_only:
            stmt = stmt.where(PropertyRecord.is_active.is_(True))
        async with self._scope("list_properties") as session:
            result = await session.execute(stmt)
            return [_to_property(row) for row in result.scalars()]

    # =========================================================================
    # PROPERTY ACCESS
    # =========================================================================

    @staticmethod
    def _active(now: datetime):
        return or_(
            PropertyAccessRecord.expires_at.is_(None),
            PropertyAccessRecord.expires_at > _utc(now),
        )

    async def _find_access(self, session: AsyncSession, user_id: str, property_id: str):
        result = await session.execute(
            select(PropertyAccessRecord).where(
                PropertyAccessRecord.user_id == user_id,
                PropertyAccessRecord.property_id == property_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_property_access(self, user_id: str, property_id: str) -> Optional[PropertyAccess]:
        async with self._scope("get_property_access") as session:
            row = await self._find_access(session, user_id, property_id)
            return _to_access(row) if row else None

    async def get_active_property_access(
        self, user_id: str, property_id: str, now: datetime
    ) -> Optional[PropertyAccess]:
        async with self._scope("get_active_property_access") as session:
            result = await session.execute(
                select(PropertyAccessRecord).where(
                    PropertyAccessRecord.user_id == user_id,
                    PropertyAccessRecord.property_id == property_id,
                    self._active(now),
                )
            )
            row = result.scalar_one_or_none()
            return _to_access(row) if row else None

    async def list_active_property_access(
        self,
        now: datetime,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
    ) -> List[PropertyAccess]:
        stmt = select(PropertyAccessRecord).where(self._active(now))
        if user_id is not None:
            stmt = stmt.where(PropertyAccessRecord.user_id == user_id)
        if property_id is not None:
            stmt = stmt.where(PropertyAccessRecord.property_id == property_id)
        stmt = stmt.order_by(PropertyAccessRecord.granted_at.desc())
        async with self._scope("list_active_property_access") as session:
            result = await session.execute(stmt)
            return [_to_access(row) for row in result.scalars()]

    async def upsert_property_access(self, access: PropertyAccess) -> PropertyAccess:
        async with self._scope("upsert_property_access") as session:
            row = await self._find_access(session, access.user_id, access.property_id)
            if row is None:
                row = PropertyAccessRecord(user_id=access.user_id, property_id=access.property_id)
                session.add(row)
            row.access_level = AccessLevel(access.access_level).value
            row.granted_by = access.granted_by
            row.granted_at = _utc(access.granted_at)
            row.expires_at = _utc(access.expires_at)
            await session.flush()
            return _to_access(row)

    async def delete_property_access(self, user_id: str, property_id: str) -> bool:
        async with self._scope("delete_property_access") as session:
            result = await session.execute(
                delete(PropertyAccessRecord).where(
                    PropertyAccessRecord.user_id == user_id,
                    PropertyAccessRecord.property_id == property_id,
                )
            )
            return result.rowcount > 0

    async def delete_expired_property_access(self, now: datetime) -> List[PropertyAccess]:
        async with self._scope("delete_expired_property_access") as session:
            result = await session.execute(
                select(PropertyAccessRecord).where(
                    PropertyAccessRecord.expires_at.is_not(None),
                    PropertyAccessRecord.expires_at <= _utc(now),
                )
            )
            rows = list(result.scalars())
            for row in rows:
                await session.delete(row)
            await session.flush()
            return [_to_access(row) for row in rows]

    # =========================================================================
    # PERMISSION CATALOG AND ROLE DEFAULTS
    # =========================================================================

    async def list_permissions(self) -> List[PermissionRecord]:
        async with self._scope("list_permissions") as session:
            result = await session.execute(
                select(PermissionCatalogRecord).order_by(
                    PermissionCatalogRecord.category, PermissionCatalogRecord.name
                )
            )
            return [_to_permission(row) for row in result.scalars()]

    async def get_permissions_by_ids(self, permission_ids: Iterable[str]) -> List[PermissionRecord]:
        ids = list(permission_ids)
        if not ids:
            return []
        async with self._scope("get_permissions_by_ids") as session:
            result = await session.execute(
                select(PermissionCatalogRecord).where(PermissionCatalogRecord.id.in_(ids))
            )
            return [_to_permission(row) for row in result.scalars()]

    async def get_permission_by_name(self, name: str) -> Optional[PermissionRecord]:
        async with self._scope("get_permission_by_name") as session:
            result = await session.execute(
                select(PermissionCatalogRecord).where(PermissionCatalogRecord.name == name)
            )
            row = result.scalar_one_or_none()
            return _to_permission(row) if row else None

    async def save_permission(self, record: PermissionRecord) -> PermissionRecord:
        async with self._scope("save_permission") as session:
            result = await session.execute(
                select(PermissionCatalogRecord).where(PermissionCatalogRecord.name == record.name)
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = PermissionCatalogRecord(id=record.id, name=record.name)
                session.add(row)
            row.category = record.category
            row.resource = record.resource
            row.action = record.action
            row.description = record.description
            await session.flush()
            return _to_permission(row)

    async def list_role_permission_ids(self, role: Role) -> Set[str]:
        async with self._scope("list_role_permission_ids") as session:
            result = await session.execute(
                select(RolePermissionRecord.permission_id).where(
                    RolePermissionRecord.role == Role(role).value
                )
            )
            return set(result.scalars())

    async def get_role_permission_names(self, role: Role) -> Set[str]:
        async with self._scope("get_role_permission_names") as session:
            result = await session.execute(
                select(PermissionCatalogRecord.name)
                .join(RolePermissionRecord, RolePermissionRecord.permission_id == PermissionCatalogRecord.id)
                .where(RolePermissionRecord.role == Role(role).value)
            )
            return set(result.scalars())

    async def add_role_permission(self, role: Role, permission_id: str) -> bool:
        async with self._scope("add_role_permission") as session:
            result = await session.execute(
                select(RolePermissionRecord.id).where(
                    RolePermissionRecord.role == Role(role).value,
                    RolePermissionRecord.permission_id == permission_id,
                )
            )
            if result.first() is not None:
                return False
            session.add(RolePermissionRecord(role=Role(role).value, permission_id=permission_id))
            await session.flush()
            return True

    async def remove_role_permission(self, role: Role, permission_id: str) -> bool:
        async with self._scope("remove_role_permission") as session:
            result = await session.execute(
                delete(RolePermissionRecord).where(
                    RolePermissionRecord.role == Role(role).value,
                    RolePermissionRecord.permission_id == permission_id,
                )
            )
            return result.rowcount > 0

    async def delete_role_permissions(self, role: Role) -> int:
        async with self._scope("delete_role_permissions") as session:
            result = await session.execute(
                delete(RolePermissionRecord).where(RolePermissionRecord.role == Role(role).value)
            )
            return result.rowcount

    # =========================================================================
    # USER PERMISSION OVERRIDES
    # =========================================================================

    async def list_active_user_permissions(self, user_id: str, now: datetime) -> List[UserPermission]:
        async with self._scope("list_active_user_permissions") as session:
            result = await session.execute(
                select(UserPermissionRecord, PermissionCatalogRecord.name)
                .join(PermissionCatalogRecord, PermissionCatalogRecord.id == UserPermissionRecord.permission_id)
                .where(
                    UserPermissionRecord.user_id == user_id,
                    or_(
                        UserPermissionRecord.expires_at.is_(None),
                        UserPermissionRecord.expires_at > _utc(now),
                    ),
                )
            )
            return [
                UserPermission(
                    user_id=row.user_id,
                    permission_id=row.permission_id,
                    permission_name=name,
                    granted=row.granted,
                    granted_by=row.granted_by,
                    granted_at=ensure_utc(row.granted_at),
                    expires_at=ensure_utc(row.expires_at),
                )
                for row, name in result.all()
            ]

    async def upsert_user_permission(self, override: UserPermission) -> UserPermission:
        async with self._scope("upsert_user_permission") as session:
            result = await session.execute(
                select(UserPermissionRecord).where(
                    UserPermissionRecord.user_id == override.user_id,
                    UserPermissionRecord.permission_id == override.permission_id,
                )
            )
            row = result.scalar_one_or_none()
            if row is None:
                row = UserPermissionRecord(user_id=override.user_id, permission_id=override.permission_id)
                session.add(row)
            row.granted = override.granted
            row.granted_by = override.granted_by
            row.granted_at = _utc(override.granted_at)
            row.expires_at = _utc(override.expires_at)
            await session.flush()
            return override

    async def delete_user_permission(self, user_id: str, permission_id: str) -> bool:
        async with self._scope("delete_user_permission") as session:
            result = await session.execute(
                delete(UserPermissionRecord).where(
                    UserPermissionRecord.user_id == user_id,
                    UserPermissionRecord.permission_id == permission_id,
                )
            )
            return result.rowcount > 0

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    async def append_audit_entry(self, entry: AuditLogEntry) -> None:
        async with self._scope("append_audit_entry") as session:
            session.add(AuditLogRecord(
                id=entry.id,
                user_id=entry.user_id,
                property_id=entry.property_id,
                action=entry.action,
                resource=entry.resource,
                resource_id=entry.resource_id,
                details=entry.details,
                timestamp=_utc(entry.timestamp),
            ))
            await session.flush()

    async def query_audit_entries(
        self,
        user_id: Optional[str] = None,
        property_id: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        stmt = select(AuditLogRecord)
        if user_id is not None:
            stmt = stmt.where(AuditLogRecord.user_id == user_id)
        if property_id is not None:
            stmt = stmt.where(AuditLogRecord.property_id == property_id)
        if action is not None:
            stmt = stmt.where(AuditLogRecord.action == action)
        stmt = stmt.order_by(AuditLogRecord.timestamp.desc()).limit(limit)
        async with self._scope("query_audit_entries") as session:
            result = await session.execute(stmt)
            return [_to_audit(row) for row in result.scalars()]
