"""
Permission Evaluator

Pure functions resolving a user's grants (direct permissions and role
references) into decisions and permission sets. Nothing here performs
I/O; callers pass a snapshot of grants and roles.

Missing references (unknown role id, inactive role, expired grant,
non-matching scope) evaluate to "no access", never to an error.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Set

from ...data.models.authz import Grant, GrantType, Role, Scope
from .permissions import Permission, permission_matches
from .scope import GLOBAL_SCOPE, scope_matches


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def index_roles(roles: Iterable[Role]) -> Dict[str, Role]:
    """Map role id (as string) to role"""
    return {str(role.id): role for role in roles}


def filter_valid_grants(grants: Iterable[Grant], now: Optional[datetime] = None) -> List[Grant]:
    """Keep grants that are active and not expired at `now`."""
    now = _now(now)
    return [grant for grant in grants if grant.is_active(now)]


def _resolve_role(roles_by_id: Dict[str, Role], role_id: str) -> Optional[Role]:
    role = roles_by_id.get(role_id)
    if role is None or not role.is_active:
        return None
    return role


def has_permission(
    grants: Iterable[Grant],
    roles: Iterable[Role],
    permission: str,
    scope: Scope,
    now: Optional[datetime] = None,
) -> bool:
    """
    Decide whether the grants give `permission` within `scope`.

    Args:
        grants: The user's grants (any status; filtering happens here)
        roles: Role definitions that role grants may reference by id
        permission: Requested permission code
        scope: Requested scope
        now: Evaluation time (default: current UTC time)

    Returns:
        True on the first matching grant, False otherwise
    """
    roles_by_id = index_roles(roles)

    for grant in filter_valid_grants(grants, now):
        if not scope_matches(grant.scope, scope):
            continue

        if grant.grant_type == GrantType.PERMISSION:
            if grant.value == permission:
                return True

        elif grant.grant_type == GrantType.ROLE:
            role = _resolve_role(roles_by_id, grant.value)
            if role and any(permission_matches(p, permission) for p in role.permissions):
                return True

    return False


def get_user_permissions(
    grants: Iterable[Grant],
    roles: Iterable[Role],
    scope: Scope,
    now: Optional[datetime] = None,
) -> Set[str]:
    """Union of permission codes reachable in `scope`, directly or through roles.

    Role entries are returned as written, wildcards included.
    """
    roles_by_id = index_roles(roles)
    permissions: Set[str] = set()

    for grant in filter_valid_grants(grants, now):
        if not scope_matches(grant.scope, scope):
            continue

        if grant.grant_type == GrantType.PERMISSION:
            permissions.add(grant.value)
        elif grant.grant_type == GrantType.ROLE:
            role = _resolve_role(roles_by_id, grant.value)
            if role:
                permissions.update(role.permissions)

    return permissions


def get_effective_scopes(grants: Iterable[Grant], now: Optional[datetime] = None) -> List[Scope]:
    """Distinct scopes of the valid grants, in first-seen order"""
    seen: Set[str] = set()
    scopes: List[Scope] = []
    for grant in filter_valid_grants(grants, now):
        if grant.scope.key not in seen:
            seen.add(grant.scope.key)
            scopes.append(grant.scope)
    return scopes


def is_global_admin(grants: Iterable[Grant], roles: Iterable[Role], now: Optional[datetime] = None) -> bool:
    return has_permission(grants, roles, Permission.SYSTEM_ADMIN.value, GLOBAL_SCOPE, now)


def can_manage_role(
    grants: Iterable[Grant],
    roles: Iterable[Role],
    scope: Scope,
    now: Optional[datetime] = None,
) -> bool:
    return has_permission(grants, roles, Permission.ROLES_MANAGE.value, scope, now)


def can_grant_permission(
    grants: Iterable[Grant],
    roles: Iterable[Role],
    target_permission: str,
    scope: Scope,
    now: Optional[datetime] = None,
) -> bool:
    """A user may hand out a permission only if they manage grants and hold it themselves."""
    grants = list(grants)
    roles = list(roles)
    if not has_permission(grants, roles, Permission.GRANTS_MANAGE.value, scope, now):
        return False
    return has_permission(grants, roles, target_permission, scope, now)
