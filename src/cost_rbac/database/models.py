"""
SQLAlchemy ORM models for the RBAC schema.

Tables:
- users / properties: identity and tenancy, with owner and manager
  association tables
- property_access: explicit per-property grants, unique per (user, property)
- permissions / role_permissions: the permission catalog and role defaults
- user_permissions: per-user grants and revocations
- audit_logs: append-only security log
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, JSON, String, Table, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# OWNERSHIP / MANAGEMENT RELATIONS
# =============================================================================

property_owners = Table(
    "property_owners",
    Base.metadata,
    Column("property_id", String(36), ForeignKey("properties.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

property_managers = Table(
    "property_managers",
    Base.metadata,
    Column("property_id", String(36), ForeignKey("properties.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class UserRecord(Base):
    """Application user."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=True)
    name = Column(String(255), nullable=False, default="")
    role = Column(String(32), nullable=False, default="user", index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    owned_properties = relationship("PropertyRecord", secondary=property_owners, lazy="selectin")
    managed_properties = relationship("PropertyRecord", secondary=property_managers, lazy="selectin")


class PropertyRecord(Base):
    """Restaurant location."""
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


# =============================================================================
# GRANTS
# =============================================================================

class PropertyAccessRecord(Base):
    """Explicit access of a user on a property."""
    __tablename__ = "property_access"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    access_level = Column(String(32), nullable=False)
    granted_by = Column(String(36), nullable=False)
    granted_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "property_id", name="uq_property_access_user_property"),
        Index("ix_property_access_property", "property_id"),
        Index("ix_property_access_expires", "expires_at"),
    )


class PermissionCatalogRecord(Base):
    """Permission catalog entry."""
    __tablename__ = "permissions"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(128), unique=True, nullable=False)
    category = Column(String(32), nullable=False, index=True)
    resource = Column(String(64), nullable=False)
    action = Column(String(16), nullable=False)
    description = Column(Text, nullable=False, default="")


class RolePermissionRecord(Base):
    """Default permission of a role."""
    __tablename__ = "role_permissions"

    id = Column(String(36), primary_key=True, default=_uuid)
    role = Column(String(32), nullable=False, index=True)
    permission_id = Column(String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("role", "permission_id", name="uq_role_permission"),
    )


class UserPermissionRecord(Base):
    """Per-user permission grant or revocation."""
    __tablename__ = "user_permissions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(String(36), ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    granted = Column(Boolean, nullable=False, default=True)
    granted_by = Column(String(36), nullable=True)
    granted_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )


# =============================================================================
# AUDIT
# =============================================================================

class AuditLogRecord(Base):
    """Append-only audit log row."""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    property_id = Column(String(36), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    resource = Column(String(64), nullable=False)
    resource_id = Column(String(255), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
