"""
Authorization Engine

This package answers "may this user do X here?":
- Scope: Where a grant applies (global acts as a wildcard)
- Permission evaluator: Grants + roles -> decision or permission set
- Resource policies: Versioned allOf/anyOf rules per resource type
- Permission cache: TTL memoization in front of a checker
- Capability tokens: Ed25519-signed claims other services can verify
- Policy engine: Decision point backed by a grant/role store
"""

from .errors import (
    AuthzError,
    ConfigurationError,
    EvaluationUnavailable,
    FieldError,
    InvalidTokenError,
    TokenRejectedError,
    ValidationErrors,
)
from .scope import GLOBAL_SCOPE, scope_matches, validate_scope
from .permissions import (
    Permission,
    permission_matches,
    validate_permission_code,
    is_valid_permission_code,
    all_permissions,
)
from .evaluator import (
    has_permission,
    get_user_permissions,
    get_effective_scopes,
    filter_valid_grants,
    is_global_admin,
    can_manage_role,
    can_grant_permission,
)
from .resource_policy import (
    evaluate_policy,
    evaluate_resource_access,
    find_policy,
    get_latest_policy_version,
    merge_policies,
    validate_policy,
    validate_policy_rule,
    load_policies,
)
from .sources import GrantSource, RoleSource
from .policy import AuthorizationResult, PolicyDecision, PolicyEngine
from .cache import PermissionCache, PermissionCheck, PermissionChecker
from .clients import HTTPAuthzClient, LocalAuthzClient
from .tokens import (
    TokenClaims,
    TokenIssuer,
    TokenVerifier,
    create_token_claims,
    generate_token,
    verify_token,
    generate_key_pair,
    load_private_key,
    load_public_key,
)

__all__ = [
    "AuthzError",
    "ConfigurationError",
    "EvaluationUnavailable",
    "FieldError",
    "InvalidTokenError",
    "TokenRejectedError",
    "ValidationErrors",
    "GLOBAL_SCOPE",
    "scope_matches",
    "validate_scope",
    "Permission",
    "permission_matches",
    "validate_permission_code",
    "is_valid_permission_code",
    "all_permissions",
    "has_permission",
    "get_user_permissions",
    "get_effective_scopes",
    "filter_valid_grants",
    "is_global_admin",
    "can_manage_role",
    "can_grant_permission",
    "evaluate_policy",
    "evaluate_resource_access",
    "find_policy",
    "get_latest_policy_version",
    "merge_policies",
    "validate_policy",
    "validate_policy_rule",
    "load_policies",
    "GrantSource",
    "RoleSource",
    "AuthorizationResult",
    "PolicyDecision",
    "PolicyEngine",
    "PermissionCache",
    "PermissionCheck",
    "PermissionChecker",
    "HTTPAuthzClient",
    "LocalAuthzClient",
    "TokenClaims",
    "TokenIssuer",
    "TokenVerifier",
    "create_token_claims",
    "generate_token",
    "verify_token",
    "generate_key_pair",
    "load_private_key",
    "load_public_key",
]
