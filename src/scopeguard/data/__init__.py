"""
Data layer for the authorization store.

Contains models and repositories for roles, grants and resource policies.
"""

from .models import Grant, GrantType, ResourcePolicy, Role, Scope, Status
from .repos import GrantRepository, RoleRepository

__all__ = [
    "Grant",
    "GrantType",
    "ResourcePolicy",
    "Role",
    "Scope",
    "Status",
    "GrantRepository",
    "RoleRepository",
]
