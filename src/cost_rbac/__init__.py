"""Multi-property RBAC and permission resolution for restaurant cost management."""

__version__ = "1.0.0"
