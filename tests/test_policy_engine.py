"""
Test Policy Engine

Store-backed decisions, including the UNAVAILABLE outcome.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from scopeguard.core.auth.errors import EvaluationUnavailable
from scopeguard.core.auth.policy import AuthorizationResult, PolicyDecision, PolicyEngine
from scopeguard.core.auth.scope import GLOBAL_SCOPE
from scopeguard.core.auth.sources import GrantSource, RoleSource
from scopeguard.data.models.authz import Grant, GrantType, PolicyRule, ResourcePolicy, Role, Scope
from scopeguard.data.repos.authz import GrantRepository, RoleRepository


TEAM_123 = Scope(type="team", id="123")
TEAM_456 = Scope(type="team", id="456")


class SlowGrantSource:
    async def list_grants_by_user(self, user_id):
        await asyncio.sleep(1)
        return []


class TestPolicyEngine:

    def setup_method(self):
        self.grants = GrantRepository()
        self.roles = RoleRepository()
        self.engine = PolicyEngine(self.grants, self.roles)
        self.orders_role = Role(name="orders", permissions=["orders:read", "orders:write"])

    async def _seed(self):
        await self.roles.create(self.orders_role)
        await self.grants.create(Grant(
            user_id="alice", grant_type=GrantType.ROLE, value=str(self.orders_role.id), scope=TEAM_123,
        ))
        await self.grants.create(Grant(
            user_id="alice", grant_type=GrantType.PERMISSION, value="reports:read",
        ))

    def test_repositories_satisfy_source_protocols(self):
        assert isinstance(self.grants, GrantSource)
        assert isinstance(self.roles, RoleSource)

    @pytest.mark.asyncio
    async def test_has(self):
        await self._seed()

        assert await self.engine.has("alice", "orders:write", TEAM_123)
        assert not await self.engine.has("alice", "orders:write", TEAM_456)
        assert not await self.engine.has("alice", "system:admin", TEAM_123)
        assert await self.engine.has("alice", "reports:read", TEAM_456)
        assert not await self.engine.has("bob", "reports:read", GLOBAL_SCOPE)

    @pytest.mark.asyncio
    async def test_user_permissions(self):
        await self._seed()
        assert await self.engine.get_user_permissions("alice", TEAM_123) == {
            "orders:read", "orders:write", "reports:read",
        }
        assert await self.engine.get_user_permissions("alice", TEAM_456) == {"reports:read"}

    @pytest.mark.asyncio
    async def test_authorize_allow_and_deny(self):
        await self._seed()

        allowed = await self.engine.authorize("alice", "orders:read", TEAM_123)
        assert allowed.decision == PolicyDecision.ALLOW
        assert allowed.allowed

        denied = await self.engine.authorize("alice", "orders:read", TEAM_456)
        assert denied.decision == PolicyDecision.DENY
        assert not denied.allowed
        assert not denied.unavailable
        assert denied.to_dict()["metadata"] == {"permission": "orders:read", "scope": "team:456"}

    @pytest.mark.asyncio
    async def test_revoked_grant_stops_matching(self):
        await self._seed()
        grant = (await self.grants.list_by_scope(TEAM_123))[0]
        await self.grants.revoke(grant.id)
        assert not await self.engine.has("alice", "orders:write", TEAM_123)

    @pytest.mark.asyncio
    async def test_deleted_role_stops_matching(self):
        await self._seed()
        await self.roles.delete(self.orders_role.id)
        assert not await self.engine.has("alice", "orders:write", TEAM_123)

    @pytest.mark.asyncio
    async def test_only_in_scope_roles_are_loaded(self):
        other = Role(name="other", permissions=["x:y"])
        grants = AsyncMock()
        grants.list_grants_by_user.return_value = [
            Grant(user_id="alice", grant_type=GrantType.ROLE, value=str(self.orders_role.id), scope=TEAM_123),
            Grant(user_id="alice", grant_type=GrantType.ROLE, value=str(other.id), scope=TEAM_456),
        ]
        roles = AsyncMock()
        roles.get_role.return_value = self.orders_role

        engine = PolicyEngine(grants, roles)
        assert await engine.has("alice", "orders:read", TEAM_123)
        roles.get_role.assert_awaited_once_with(str(self.orders_role.id))

    @pytest.mark.asyncio
    async def test_check_all(self):
        await self._seed()
        results = await self.engine.check_all("alice", ["orders:read", "users:delete"], TEAM_123)
        assert results == {"orders:read": True, "users:delete": False}

    @pytest.mark.asyncio
    async def test_resource_access(self):
        await self._seed()
        policies = [ResourcePolicy(id="orders-v1", type="orders", actions={
            "edit": PolicyRule(all_of=["orders:write"], any_of=["orders:read", "orders:admin"]),
            "purge": PolicyRule(all_of=["orders:admin"]),
        })]

        edit = await self.engine.evaluate_resource_access("alice", policies, "orders", "edit", TEAM_123)
        assert edit.decision == PolicyDecision.ALLOW

        purge = await self.engine.evaluate_resource_access("alice", policies, "orders", "purge", TEAM_123)
        assert purge.decision == PolicyDecision.DENY

        unknown = await self.engine.evaluate_resource_access("alice", policies, "invoices", "edit", TEAM_123)
        assert unknown.decision == PolicyDecision.DENY


    @pytest.mark.asyncio
    async def test_resource_access_matches_like_has(self):
        manager = Role(name="orders-manager", permissions=["orders:*"])
        await self.roles.create(manager)
        await self.grants.create(Grant(user_id="bob", grant_type=GrantType.ROLE, value=str(manager.id), scope=TEAM_123))
        await self.grants.create(Grant(user_id="carol", grant_type=GrantType.PERMISSION, value="orders:*", scope=TEAM_123))
        policies = [ResourcePolicy(id="orders-v1", type="orders", actions={
            "edit": PolicyRule(all_of=["orders:write"], any_of=["orders:read", "orders:admin"]),
            "export": PolicyRule(all_of=["reports:export"]),
        })]

        for user in ("bob", "carol"):
            for action in ("edit", "export"):
                has = await self.engine.has(user, policies[0].actions[action].all_of[0], TEAM_123)
                result = await self.engine.evaluate_resource_access(user, policies, "orders", action, TEAM_123)
                assert result.allowed == has

        edit = await self.engine.evaluate_resource_access("bob", policies, "orders", "edit", TEAM_123)
        assert edit.decision == PolicyDecision.ALLOW
        carol = await self.engine.evaluate_resource_access("carol", policies, "orders", "edit", TEAM_123)
        assert carol.decision == PolicyDecision.DENY


class TestPolicyEngineUnavailable:

    def setup_method(self):
        self.roles = RoleRepository()

    @pytest.mark.asyncio
    async def test_store_error_raises_unavailable(self):
        grants = AsyncMock()
        grants.list_grants_by_user.side_effect = ConnectionError("db down")
        engine = PolicyEngine(grants, self.roles)

        with pytest.raises(EvaluationUnavailable) as exc_info:
            await engine.has("alice", "orders:read", GLOBAL_SCOPE)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_authorize_reports_unavailable_not_deny(self):
        grants = AsyncMock()
        grants.list_grants_by_user.side_effect = ConnectionError("db down")
        engine = PolicyEngine(grants, self.roles)

        result = await engine.authorize("alice", "orders:read", GLOBAL_SCOPE)
        assert result.decision == PolicyDecision.UNAVAILABLE
        assert result.unavailable
        assert not result.allowed

    @pytest.mark.asyncio
    async def test_role_lookup_error_raises_unavailable(self):
        grants = AsyncMock()
        grants.list_grants_by_user.return_value = [
            Grant(user_id="alice", grant_type=GrantType.ROLE, value="r1"),
        ]
        roles = AsyncMock()
        roles.get_role.side_effect = RuntimeError("boom")
        engine = PolicyEngine(grants, roles)

        with pytest.raises(EvaluationUnavailable):
            await engine.get_user_permissions("alice", GLOBAL_SCOPE)

    @pytest.mark.asyncio
    async def test_timeout_raises_unavailable(self):
        engine = PolicyEngine(SlowGrantSource(), self.roles, timeout=0.01)
        with pytest.raises(EvaluationUnavailable):
            await engine.has("alice", "orders:read", GLOBAL_SCOPE)

    @pytest.mark.asyncio
    async def test_resource_access_unavailable(self):
        engine = PolicyEngine(SlowGrantSource(), self.roles, timeout=0.01)
        result = await engine.evaluate_resource_access("alice", [], "orders", "read", GLOBAL_SCOPE)
        assert result.decision == PolicyDecision.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_cancellation_is_not_a_decision(self):
        grants = AsyncMock()
        grants.list_grants_by_user.side_effect = asyncio.CancelledError()
        engine = PolicyEngine(grants, self.roles)

        with pytest.raises(asyncio.CancelledError):
            await engine.authorize("alice", "orders:read", GLOBAL_SCOPE)


class TestAuthorizationResult:

    def test_constructors(self):
        assert AuthorizationResult.allow().allowed
        assert not AuthorizationResult.deny("nope").allowed
        assert AuthorizationResult.unavailable_("down").unavailable

    def test_to_dict(self):
        result = AuthorizationResult.deny("no matching grant", permission="a:b")
        assert result.to_dict() == {
            "decision": "deny",
            "allowed": False,
            "reason": "no matching grant",
            "metadata": {"permission": "a:b"},
        }
