"""
Authorization Models

Roles, grants, scopes and resource policies.
These are the records owned by the authorization store; the engine
only reads them and derives decisions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

GLOBAL_SCOPE_TYPE = "global"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; aware ones are returned unchanged."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Status(str, Enum):
    """Lifecycle status shared by roles and grants."""
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DELETED = "deleted"


class GrantType(str, Enum):
    """What a grant binds the user to."""
    ROLE = "role"
    PERMISSION = "permission"


class Scope(BaseModel):
    """
    Context qualifier limiting where a grant applies.

    A "global" scope has an empty id and acts as a wildcard.
    """
    model_config = ConfigDict(frozen=True)

    type: str = GLOBAL_SCOPE_TYPE
    id: str = ""

    @classmethod
    def global_(cls) -> "Scope":
        return cls(type=GLOBAL_SCOPE_TYPE, id="")

    @property
    def is_global(self) -> bool:
        return self.type == GLOBAL_SCOPE_TYPE

    @property
    def key(self) -> str:
        """Stable "type:id" key"""
        return f"{self.type}:{self.id}"


class Role(BaseModel):
    """
    Named bundle of permission codes.

    Roles are soft-deleted by moving status away from ACTIVE.
    """
    id: UUID = Field(default_factory=uuid4)
    name: str
    description: str = ""
    permissions: list[str] = Field(default_factory=list)
    status: Status = Status.ACTIVE

    created_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "system"
    updated_at: datetime = Field(default_factory=_utcnow)
    updated_by: str = "system"

    @property
    def is_active(self) -> bool:
        return self.status == Status.ACTIVE


class Grant(BaseModel):
    """
    Binding of a user to a permission code or a role, inside a scope.

    For ROLE grants, value holds the role id.
    """
    id: UUID = Field(default_factory=uuid4)
    user_id: str
    grant_type: GrantType
    value: str
    scope: Scope = Field(default_factory=Scope.global_)
    expires_at: Optional[datetime] = None
    status: Status = Status.ACTIVE

    created_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "system"
    updated_at: datetime = Field(default_factory=_utcnow)
    updated_by: str = "system"

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A grant expiring exactly at `now` is already expired."""
        if self.expires_at is None:
            return False
        now = as_utc(now) if now is not None else _utcnow()
        return self.expires_at <= now

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.status == Status.ACTIVE and not self.is_expired(now)


class PolicyRule(BaseModel):
    """
    Permission requirement for one action.

    Serialized with the camelCase keys of policy documents.
    """
    model_config = ConfigDict(populate_by_name=True)

    all_of: list[str] = Field(default_factory=list, alias="allOf")
    any_of: list[str] = Field(default_factory=list, alias="anyOf")


class ResourcePolicy(BaseModel):
    """Versioned rule set for a resource type."""
    id: str
    type: str
    version: int = 1
    actions: dict[str, PolicyRule] = Field(default_factory=dict)

    def to_document(self) -> dict:
        """Dump in the policy document shape"""
        return self.model_dump(by_alias=True)
