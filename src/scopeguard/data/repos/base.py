"""
Base Repository

Abstract base class for the authorization store repositories.
Supports both a table client (Supabase-style) and an in-memory backend.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, Protocol, TypeVar
from uuid import UUID

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class InvalidationListener(Protocol):
    """Something holding derived state (e.g. a PermissionCache)"""

    def clear_user_cache(self, user_id: str) -> int:
        ...

    def clear(self) -> None:
        ...


class Repository(ABC, Generic[T]):
    """
    Abstract repository base class.

    Entities are keyed by UUID. Subclasses decide which listeners to
    notify when records change.
    """

    def __init__(self, client: Any = None):
        """
        Initialize repository.

        Args:
            client: Table client exposing `table(name)` (None for in-memory)
        """
        self.client = client
        self._in_memory_store: dict[UUID, T] = {}
        self._listeners: list[InvalidationListener] = []

    @property
    @abstractmethod
    def table_name(self) -> str:
        """Get the database table name for this repository."""

    @property
    @abstractmethod
    def model_class(self) -> type[T]:
        """Get the Pydantic model class for this repository."""

    def add_listener(self, listener: InvalidationListener) -> None:
        """Register a listener to be told about changes."""
        self._listeners.append(listener)

    async def get(self, id: UUID) -> Optional[T]:
        """Get entity by ID."""
        if self.client:
            result = await self._db_get(id)
            return self.model_class(**result) if result else None
        return self._in_memory_store.get(id)

    async def insert(self, entity: T) -> T:
        """Store a new entity."""
        if self.client:
            result = await self._db_create(entity)
            return self.model_class(**result)
        if entity.id in self._in_memory_store:
            raise ValueError(f"{self.model_class.__name__} {entity.id} already exists")
        self._in_memory_store[entity.id] = entity
        return entity

    async def upsert(self, entity: T) -> T:
        """Store an entity, replacing any previous version."""
        if self.client:
            data = entity.model_dump(mode="json")
            response = self.client.table(self.table_name).upsert(data).execute()
            return self.model_class(**response.data[0])
        self._in_memory_store[entity.id] = entity
        return entity

    async def list_all(self) -> list[T]:
        """Every stored entity, whatever its status."""
        if self.client:
            response = self.client.table(self.table_name).select("*").execute()
            return [self.model_class(**r) for r in response.data]
        return list(self._in_memory_store.values())

    # Database-specific implementations
    async def _db_get(self, id: UUID) -> Optional[dict]:
        response = self.client.table(self.table_name).select("*").eq("id", str(id)).single().execute()
        return response.data if response.data else None

    async def _db_create(self, entity: T) -> dict:
        data = entity.model_dump(mode="json")
        response = self.client.table(self.table_name).insert(data).execute()
        return response.data[0]

    async def _db_select(self, **filters: Any) -> list[dict]:
        query = self.client.table(self.table_name).select("*")
        for key, value in filters.items():
            query = query.eq(key, value)
        return query.execute().data
