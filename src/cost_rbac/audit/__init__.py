"""Audit trail."""

from .audit_logger import AuditAction, AuditLogEntry, AuditLogger, AuditResource

__all__ = ["AuditAction", "AuditLogEntry", "AuditLogger", "AuditResource"]
