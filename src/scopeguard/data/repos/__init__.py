"""Repositories for grants and roles."""

from .base import InvalidationListener, Repository
from .authz import GrantRepository, RoleRepository

__all__ = [
    "InvalidationListener",
    "Repository",
    "GrantRepository",
    "RoleRepository",
]
