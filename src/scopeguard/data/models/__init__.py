"""Data models for roles, grants, scopes and resource policies."""

from .authz import (
    GLOBAL_SCOPE_TYPE,
    Status,
    GrantType,
    Scope,
    Role,
    Grant,
    PolicyRule,
    ResourcePolicy,
)

__all__ = [
    "GLOBAL_SCOPE_TYPE",
    "Status",
    "GrantType",
    "Scope",
    "Role",
    "Grant",
    "PolicyRule",
    "ResourcePolicy",
]
