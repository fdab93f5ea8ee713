"""
Permission Cache

TTL-bounded memoization in front of a local or remote permission check.

A stale "allowed" entry that outlives a revocation is a security bug,
so keep the TTL short and call `clear_user_cache` whenever a grant of
that user changes. Failed checks are never cached.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class PermissionChecker(Protocol):
    """Anything that can answer (user, permission, resource) -> allowed"""

    async def check_permission(self, user_id: str, permission: str, resource: str) -> bool:
        ...


@dataclass(frozen=True)
class CachedPermission:
    allowed: bool
    expires_at: float


@dataclass(frozen=True)
class PermissionCheck:
    """A permission to check on a resource"""
    permission: str
    resource: str = ""

    @property
    def key(self) -> str:
        return f"{self.permission}:{self.resource}"


class PermissionCache:
    """
    Caching wrapper around a PermissionChecker.

    The entry map is guarded by one lock that is never held while the
    underlying check runs.
    """

    def __init__(
        self,
        checker: PermissionChecker,
        ttl: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            checker: Underlying permission check
            ttl: Entry lifetime in seconds
            clock: Time source in seconds (injectable for tests)
        """
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")

        self.checker = checker
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CachedPermission] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        # Bumped by invalidation; a check that started before a bump must not store its result.
        self._generation = 0
        self._user_generations: Dict[str, int] = {}

    @staticmethod
    def cache_key(user_id: str, permission: str, resource: str) -> str:
        return f"{user_id}:{permission}:{resource}"

    def _get(self, key: str) -> Optional[bool]:
        now = self._clock()
        with self._lock:
            cached = self._entries.get(key)
            if cached is None or now >= cached.expires_at:
                self._misses += 1
                return None
            self._hits += 1
            return cached.allowed

    def _generation_of(self, user_id: str) -> Tuple[int, int]:
        with self._lock:
            return self._generation, self._user_generations.get(user_id, 0)

    def _set(self, key: str, allowed: bool, user_id: str, generation: Tuple[int, int]) -> bool:
        """Store a result unless the user was invalidated since `generation` was read."""
        expires_at = self._clock() + self.ttl
        with self._lock:
            if (self._generation, self._user_generations.get(user_id, 0)) != generation:
                return False
            self._entries[key] = CachedPermission(allowed=allowed, expires_at=expires_at)
            return True

    async def check_permission(self, user_id: str, permission: str, resource: str = "") -> bool:
        """
        Check a permission, answering from the cache when possible.

        Raises:
            Whatever the underlying checker raises; nothing is cached then
        """
        key = self.cache_key(user_id, permission, resource)

        cached = self._get(key)
        if cached is not None:
            logger.debug(f"Permission cache hit: {key}")
            return cached

        logger.debug(f"Permission cache miss: {key}")
        generation = self._generation_of(user_id)
        allowed = await self.checker.check_permission(user_id, permission, resource)
        if not self._set(key, allowed, user_id, generation):
            logger.debug(f"Cache invalidated during check, not storing: {key}")
        return allowed

    async def check_multiple_permissions(
        self,
        user_id: str,
        checks: Iterable[PermissionCheck],
    ) -> Dict[str, bool]:
        """
        Check permissions in order, keyed by "permission:resource".

        Stops at the first failing check and re-raises its error.
        """
        results: Dict[str, bool] = {}
        for check in checks:
            results[check.key] = await self.check_permission(user_id, check.permission, check.resource)
        return results

    # =========================================================================
    # INVALIDATION
    # =========================================================================

    def clear_user_cache(self, user_id: str) -> int:
        """Drop every entry of a user. Returns the number removed."""
        prefix = f"{user_id}:"
        with self._lock:
            self._user_generations[user_id] = self._user_generations.get(user_id, 0) + 1
            stale = [key for key in self._entries if key.startswith(prefix)]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.info(f"Cleared {len(stale)} cached permissions for user {user_id}")
        return len(stale)

    def clear_expired_cache(self) -> int:
        """Drop entries whose expiry has passed. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, cached in self._entries.items() if now >= cached.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired permission cache entries")
        return len(expired)

    def clear(self) -> None:
        """Drop everything, e.g. after a role definition changed"""
        with self._lock:
            self._generation += 1
            self._user_generations.clear()
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared permission cache ({count} entries)")

    async def run_expiry_sweeper(self, interval: float) -> None:
        """
        Sweep expired entries every `interval` seconds until cancelled.

        Meant to run as a background task:
            task = asyncio.create_task(cache.run_expiry_sweeper(300))
        """
        logger.info(f"Permission cache sweeper started (interval={interval}s)")
        try:
            while True:
                await asyncio.sleep(interval)
                self.clear_expired_cache()
        finally:
            logger.info("Permission cache sweeper stopped")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, float]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "ttl_seconds": self.ttl,
            }


# =========================================================================
# COMPOSITION HELPERS
# =========================================================================

async def has_any_permission(
    cache: PermissionCache,
    user_id: str,
    permissions: Iterable[str],
    resource: str = "",
) -> bool:
    """OR over permissions, stopping at the first allowed"""
    for permission in permissions:
        if await cache.check_permission(user_id, permission, resource):
            return True
    return False


async def has_all_permissions(
    cache: PermissionCache,
    user_id: str,
    permissions: Iterable[str],
    resource: str = "",
) -> bool:
    """AND over permissions, stopping at the first denied"""
    for permission in permissions:
        if not await cache.check_permission(user_id, permission, resource):
            return False
    return True


async def is_resource_owner(cache: PermissionCache, user_id: str, resource_id: str) -> bool:
    return await cache.check_permission(user_id, "own", resource_id)
