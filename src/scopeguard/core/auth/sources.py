"""
Grant and Role Sources

The evaluator depends only on these capability sets, so SQL, in-memory
or remote backends can stand behind it. Lookups are the only I/O the
engine performs; their errors must propagate.
"""

from typing import List, Optional, Protocol, runtime_checkable

from ...data.models.authz import Grant, Role


@runtime_checkable
class GrantSource(Protocol):
    async def list_grants_by_user(self, user_id: str) -> List[Grant]:
        ...


@runtime_checkable
class RoleSource(Protocol):
    async def get_role(self, role_id: str) -> Optional[Role]:
        ...

    async def get_role_by_name(self, name: str) -> Optional[Role]:
        ...

    async def list_roles(self) -> List[Role]:
        ...
