"""
Authorization Engine Core

Decision logic, tokens and startup seeding.
"""

from .auth import PolicyEngine, PolicyDecision, AuthorizationResult, PermissionCache
from .bootstrap import BootstrapService, BootstrapError

__all__ = [
    "PolicyEngine",
    "PolicyDecision",
    "AuthorizationResult",
    "PermissionCache",
    "BootstrapService",
    "BootstrapError",
]
