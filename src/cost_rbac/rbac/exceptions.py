"""Errors raised by the RBAC core.

Access denial is never an exception here. Guards return False and the
HTTP layer turns that into a 403.
"""


class RBACError(Exception):
    """Base class for RBAC errors."""


class PersistenceError(RBACError):
    """The underlying store is unavailable or a query failed."""

    def __init__(self, message: str, operation: str = ""):
        super().__init__(message)
        self.operation = operation


class ValidationError(RBACError):
    """Malformed input, rejected before any persistence call."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class NotFoundError(RBACError):
    """An update targeted a record that does not exist."""
