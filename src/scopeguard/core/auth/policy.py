"""
Authorization Policy Engine

Policy Decision Point backed by the grant/role store:
- Loads a user's grants and the roles they reference
- Delegates the decision to the pure permission evaluator
- Reports ALLOW, DENY or UNAVAILABLE

Store failures never turn into a DENY. `has` and `get_user_permissions`
raise EvaluationUnavailable; `authorize` folds that into an UNAVAILABLE
result so callers can tell "no" from "don't know".
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Collection, Dict, Iterable, List, Optional, Set, TypeVar

from ...data.models.authz import Grant, GrantType, ResourcePolicy, Role, Scope
from . import evaluator
from .errors import EvaluationUnavailable
from .resource_policy import evaluate_resource_access, get_latest_policy_version, get_required_permissions
from .scope import scope_matches
from .sources import GrantSource, RoleSource

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PolicyDecision(str, Enum):
    """Authorization decision"""
    ALLOW = "allow"
    DENY = "deny"
    UNAVAILABLE = "unavailable"


@dataclass
class AuthorizationResult:
    """Outcome of an authorization check"""
    decision: PolicyDecision
    reason: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.decision == PolicyDecision.ALLOW

    @property
    def unavailable(self) -> bool:
        return self.decision == PolicyDecision.UNAVAILABLE

    @classmethod
    def allow(cls, reason: str = "", **metadata) -> "AuthorizationResult":
        return cls(PolicyDecision.ALLOW, reason, metadata)

    @classmethod
    def deny(cls, reason: str = "", **metadata) -> "AuthorizationResult":
        return cls(PolicyDecision.DENY, reason, metadata)

    @classmethod
    def unavailable_(cls, reason: str = "", **metadata) -> "AuthorizationResult":
        return cls(PolicyDecision.UNAVAILABLE, reason, metadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.value,
            "allowed": self.allowed,
            "reason": self.reason,
            "metadata": self.metadata,
        }


class PolicyEngine:
    """
    Store-backed authorization decisions.

    Usage:
        engine = PolicyEngine(grant_repo, role_repo, timeout=2.0)
        if await engine.has(user_id, "orders:write", Scope(type="team", id="123")):
            ...
    """

    def __init__(
        self,
        grants: GrantSource,
        roles: RoleSource,
        timeout: Optional[float] = None,
    ):
        """
        Initialize policy engine.

        Args:
            grants: Source of user grants
            roles: Source of role definitions
            timeout: Seconds allowed per store lookup (None: no limit)
        """
        self.grants = grants
        self.roles = roles
        self.timeout = timeout

    async def _call_store(self, what: str, awaitable: Awaitable[T]) -> T:
        try:
            if self.timeout is not None:
                return await asyncio.wait_for(awaitable, self.timeout)
            return await awaitable
        except asyncio.TimeoutError as e:
            logger.error(f"Store lookup timed out: {what}")
            raise EvaluationUnavailable(f"timed out loading {what}") from e
        except EvaluationUnavailable:
            raise
        except Exception as e:
            logger.error(f"Store lookup failed: {what}: {e}")
            raise EvaluationUnavailable(f"could not load {what}") from e

    async def _load(self, user_id: str, scope: Scope) -> tuple[List[Grant], List[Role]]:
        """Load the user's grants and every role their in-scope role grants reference."""
        grants = await self._call_store(
            f"grants for user {user_id}", self.grants.list_grants_by_user(user_id)
        )

        role_ids: List[str] = []
        for grant in grants:
            if (
                grant.grant_type == GrantType.ROLE
                and grant.value not in role_ids
                and scope_matches(grant.scope, scope)
            ):
                role_ids.append(grant.value)

        roles: List[Role] = []
        for role_id in role_ids:
            role = await self._call_store(f"role {role_id}", self.roles.get_role(role_id))
            if role is None:
                logger.debug(f"Role {role_id} referenced by a grant of {user_id} not found")
                continue
            roles.append(role)

        return grants, roles

    async def has(
        self,
        user_id: str,
        permission: str,
        scope: Scope,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Check whether the user holds `permission` in `scope`.

        Raises:
            EvaluationUnavailable: If the store could not be read
        """
        grants, roles = await self._load(user_id, scope)
        allowed = evaluator.has_permission(grants, roles, permission, scope, now)
        logger.debug(f"has({user_id}, {permission}, {scope.key}) = {allowed}")
        return allowed

    async def get_user_permissions(
        self,
        user_id: str,
        scope: Scope,
        now: Optional[datetime] = None,
    ) -> Set[str]:
        """
        All permission codes the user holds in `scope`.

        Raises:
            EvaluationUnavailable: If the store could not be read
        """
        grants, roles = await self._load(user_id, scope)
        return evaluator.get_user_permissions(grants, roles, scope, now)

    async def authorize(
        self,
        user_id: str,
        permission: str,
        scope: Scope,
        now: Optional[datetime] = None,
    ) -> AuthorizationResult:
        """Tagged decision for a single permission check."""
        try:
            allowed = await self.has(user_id, permission, scope, now)
        except EvaluationUnavailable as e:
            logger.warning(f"Authorization UNAVAILABLE: {permission} for {user_id} - {e}")
            return AuthorizationResult.unavailable_(str(e), permission=permission, scope=scope.key)

        if allowed:
            logger.info(f"Authorization ALLOW: {permission} for {user_id} in {scope.key}")
            return AuthorizationResult.allow("permission granted", permission=permission, scope=scope.key)

        logger.info(f"Authorization DENY: {permission} for {user_id} in {scope.key}")
        return AuthorizationResult.deny("no matching grant", permission=permission, scope=scope.key)

    async def evaluate_resource_access(
        self,
        user_id: str,
        policies: Iterable[ResourcePolicy],
        resource_type: str,
        action: str,
        scope: Scope,
        now: Optional[datetime] = None,
    ) -> AuthorizationResult:
        """
        Gate a resource action with the latest policy for its type.

        Each code the rule mentions is decided with the same matching as
        `has`, so role wildcards such as "*:*" satisfy policy rules too.
        """
        try:
            grants, roles = await self._load(user_id, scope)
        except EvaluationUnavailable as e:
            logger.warning(f"Resource access UNAVAILABLE: {resource_type}.{action} for {user_id} - {e}")
            return AuthorizationResult.unavailable_(str(e), resource_type=resource_type, action=action)

        policies = list(policies)
        policy = get_latest_policy_version(policies, resource_type)
        required = get_required_permissions(policy, action) if policy else []
        held = {
            code for code in required
            if evaluator.has_permission(grants, roles, code, scope, now)
        }

        if evaluate_resource_access(policies, resource_type, action, held):
            return AuthorizationResult.allow("policy satisfied", resource_type=resource_type, action=action)
        return AuthorizationResult.deny("policy not satisfied", resource_type=resource_type, action=action)

    async def check_all(
        self,
        user_id: str,
        permissions: Collection[str],
        scope: Scope,
        now: Optional[datetime] = None,
    ) -> Dict[str, bool]:
        """Evaluate several permissions against one snapshot of the store."""
        grants, roles = await self._load(user_id, scope)
        return {
            permission: evaluator.has_permission(grants, roles, permission, scope, now)
            for permission in permissions
        }
