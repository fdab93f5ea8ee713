"""
Authorization Repository

Handles Grant and Role persistence.

Both repositories implement the lookup protocols the policy engine
reads through (GrantSource / RoleSource). Writes notify registered
listeners synchronously: a grant change clears that user's cached
permissions, a role change clears everything.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from ..models.authz import Grant, Role, Scope, Status
from .base import Repository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


class GrantRepository(Repository[Grant]):
    """Repository for Grant entities."""

    @property
    def table_name(self) -> str:
        return "grants"

    @property
    def model_class(self) -> type[Grant]:
        return Grant

    def _notify(self, user_id: str) -> None:
        for listener in self._listeners:
            listener.clear_user_cache(user_id)

    async def list_grants_by_user(self, user_id: str) -> list[Grant]:
        """All grants of a user, any status. Filtering is the evaluator's job."""
        if self.client:
            return [Grant(**r) for r in await self._db_select(user_id=user_id)]
        return [g for g in self._in_memory_store.values() if g.user_id == user_id]

    async def list_by_scope(self, scope: Scope) -> list[Grant]:
        """Grants attached to exactly this scope."""
        if self.client:
            rows = await self._db_select(**{"scope->>type": scope.type, "scope->>id": scope.id})
            return [Grant(**r) for r in rows]
        return [g for g in self._in_memory_store.values() if g.scope == scope]

    async def list_expired(self, now: Optional[datetime] = None) -> list[Grant]:
        """Active grants whose expiry has been reached."""
        now = now or _utcnow()
        grants = await self.list_all()
        return [g for g in grants if g.status == Status.ACTIVE and g.is_expired(now)]

    async def create(self, grant: Grant) -> Grant:
        created = await self.insert(grant)
        logger.info(
            f"Created {grant.grant_type.value} grant {grant.value} for {grant.user_id} in {grant.scope.key}"
        )
        self._notify(grant.user_id)
        return created

    async def save(self, grant: Grant) -> Grant:
        saved = await self.upsert(grant.model_copy(update={"updated_at": _utcnow()}))
        self._notify(grant.user_id)
        return saved

    async def revoke(self, grant_id: UUID, revoked_by: str = "system") -> Optional[Grant]:
        """Soft-delete a grant."""
        grant = await self.get(grant_id)
        if grant is None:
            return None

        revoked = await self.upsert(grant.model_copy(update={
            "status": Status.DELETED,
            "updated_at": _utcnow(),
            "updated_by": revoked_by,
        }))
        logger.info(f"Revoked grant {grant_id} of {grant.user_id}")
        self._notify(grant.user_id)
        return revoked


class RoleRepository(Repository[Role]):
    """Repository for Role entities."""

    @property
    def table_name(self) -> str:
        return "roles"

    @property
    def model_class(self) -> type[Role]:
        return Role

    def _notify(self) -> None:
        for listener in self._listeners:
            listener.clear()

    async def get_role(self, role_id: str) -> Optional[Role]:
        """Role by id, any status. Unparseable ids are simply not found."""
        uuid = _parse_uuid(role_id)
        if uuid is None:
            return None
        return await self.get(uuid)

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        """Find a non-deleted role by name."""
        if self.client:
            rows = await self._db_select(name=name)
            roles = [Role(**r) for r in rows]
        else:
            roles = [r for r in self._in_memory_store.values() if r.name == name]

        for role in roles:
            if role.status != Status.DELETED:
                return role
        return None

    async def list_roles(self) -> list[Role]:
        """Non-deleted roles, by name."""
        roles = [r for r in await self.list_all() if r.status != Status.DELETED]
        return sorted(roles, key=lambda r: r.name)

    async def create(self, role: Role) -> Role:
        """
        Create a role.

        Raises:
            ValueError: If a non-deleted role with the same name exists
        """
        if await self.get_role_by_name(role.name) is not None:
            raise ValueError(f"Role '{role.name}' already exists")

        created = await self.insert(role)
        logger.info(f"Created role {role.name} ({role.id}) with {len(role.permissions)} permissions")
        self._notify()
        return created

    async def save(self, role: Role) -> Role:
        saved = await self.upsert(role.model_copy(update={"updated_at": _utcnow()}))
        self._notify()
        return saved

    async def delete(self, role_id: UUID, deleted_by: str = "system") -> Optional[Role]:
        """Soft-delete a role. Grants referencing it stop matching."""
        role = await self.get(role_id)
        if role is None:
            return None

        deleted = await self.save(
            role.model_copy(update={"status": Status.DELETED, "updated_by": deleted_by})
        )
        logger.info(f"Deleted role {role.name} ({role_id})")
        return deleted
