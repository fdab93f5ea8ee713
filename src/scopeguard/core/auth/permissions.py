"""
Permission Codes

Permissions are opaque "resource:action" strings, e.g. "users:read".

Provides:
- Code validation
- Wildcard matching for role entries ("*", "*:*", "users:*", "*:read")
- The catalogue of permissions known to the system
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import FieldError, ValidationErrors

PERMISSION_CODE_PATTERN = re.compile(r"^[a-z][a-z0-9_]*:[a-z][a-z0-9_]*$")
MAX_PERMISSION_LENGTH = 100
WILDCARD = "*"


class Permission(str, Enum):
    """Permissions the engine itself cares about"""
    # System administration
    SYSTEM_ADMIN = "system:admin"
    SYSTEM_CONFIG = "system:config"

    # Users
    USERS_READ = "users:read"
    USERS_WRITE = "users:write"
    USERS_DELETE = "users:delete"

    # Roles
    ROLES_READ = "roles:read"
    ROLES_WRITE = "roles:write"
    ROLES_DELETE = "roles:delete"
    ROLES_MANAGE = "roles:manage"

    # Grants
    GRANTS_READ = "grants:read"
    GRANTS_WRITE = "grants:write"
    GRANTS_DELETE = "grants:delete"
    GRANTS_MANAGE = "grants:manage"


def validate_permission_code(permission: str, field_name: str = "permission") -> ValidationErrors:
    errors = ValidationErrors()

    if not permission:
        errors.append(FieldError(field_name, "required", "Permission code is required"))
        return errors

    if len(permission) > MAX_PERMISSION_LENGTH:
        errors.append(FieldError(
            field_name, "too_long", "Permission code must be less than 101 characters"
        ))

    if not PERMISSION_CODE_PATTERN.match(permission):
        errors.append(FieldError(
            field_name,
            "invalid_format",
            "Permission code must be in format 'resource:action' with lowercase "
            "letters, numbers, and underscores",
        ))

    return errors


def is_valid_permission_code(permission: str) -> bool:
    return not validate_permission_code(permission).has_errors()


def parse_permission(permission: str) -> Optional[Tuple[str, str]]:
    """Split "resource:action"; None when there is no separator."""
    parts = permission.split(":", 1)
    if len(parts) != 2:
        return None
    return parts[0].strip(), parts[1].strip()


def permission_matches(granted: str, requested: str) -> bool:
    """
    Check a role's permission entry against a requested code.

    Entries may use "*" for the resource, the action, or both.
    """
    if not granted:
        return False
    if granted in (WILDCARD, "*:*"):
        return True
    if granted == requested:
        return True

    granted_parts = parse_permission(granted)
    requested_parts = parse_permission(requested)
    if granted_parts is None or requested_parts is None:
        return False

    g_resource, g_action = granted_parts
    r_resource, r_action = requested_parts
    return g_resource in (WILDCARD, r_resource) and g_action in (WILDCARD, r_action)


def contains_permission(permissions, permission: str) -> bool:
    """Exact membership, used for direct grants and policy rules"""
    return permission in permissions


# =========================================================================
# PERMISSION REGISTRY
# =========================================================================

@dataclass(frozen=True)
class PermissionInfo:
    code: Permission
    name: str
    description: str


@dataclass
class PermissionCategory:
    name: str
    permissions: List[PermissionInfo] = field(default_factory=list)


PERMISSION_REGISTRY: List[PermissionCategory] = [
    PermissionCategory("System", [
        PermissionInfo(Permission.SYSTEM_ADMIN, "System Administrator", "Full system access"),
        PermissionInfo(Permission.SYSTEM_CONFIG, "System Configuration", "Manage system settings"),
    ]),
    PermissionCategory("Authentication", [
        PermissionInfo(Permission.USERS_READ, "Read Users", "View user information"),
        PermissionInfo(Permission.USERS_WRITE, "Write Users", "Create and update users"),
        PermissionInfo(Permission.USERS_DELETE, "Delete Users", "Remove users from the system"),
    ]),
    PermissionCategory("Authorization", [
        PermissionInfo(Permission.ROLES_READ, "Read Roles", "View role definitions"),
        PermissionInfo(Permission.ROLES_WRITE, "Write Roles", "Create and update roles"),
        PermissionInfo(Permission.ROLES_DELETE, "Delete Roles", "Remove roles"),
        PermissionInfo(Permission.ROLES_MANAGE, "Manage Roles", "Full role management"),
    ]),
    PermissionCategory("Access Control", [
        PermissionInfo(Permission.GRANTS_READ, "Read Grants", "View permission assignments"),
        PermissionInfo(Permission.GRANTS_WRITE, "Write Grants", "Assign permissions to users"),
        PermissionInfo(Permission.GRANTS_DELETE, "Delete Grants", "Revoke permissions"),
        PermissionInfo(Permission.GRANTS_MANAGE, "Manage Grants", "Full grant management"),
    ]),
]


def all_permissions() -> List[str]:
    """Every registered permission code, in registry order"""
    return [info.code.value for category in PERMISSION_REGISTRY for info in category.permissions]


def get_permission_info(code: str) -> Optional[PermissionInfo]:
    for category in PERMISSION_REGISTRY:
        for info in category.permissions:
            if info.code.value == code:
                return info
    return None
