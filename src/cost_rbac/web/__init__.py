"""HTTP surface of the RBAC core."""

from .app import create_app

__all__ = ["create_app"]
