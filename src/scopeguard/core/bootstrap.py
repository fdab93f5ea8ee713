"""
Bootstrap Seeding

Prepares an empty authorization store at startup:
1. Seeds the base roles (superadmin, admin, user)
2. Grants the superadmin role, globally, to the superadmin user

The superadmin user id either comes from the caller or from the
authentication service, which creates the account on first run.

Every step is idempotent; running bootstrap twice leaves the store as
it was after the first run.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..data.models.authz import Grant, GrantType, Role
from ..data.repos.authz import GrantRepository, RoleRepository
from .auth.errors import AuthzError
from .auth.scope import GLOBAL_SCOPE

logger = logging.getLogger(__name__)

SUPERADMIN_ROLE = "superadmin"

BASE_ROLES: List[Dict[str, Any]] = [
    {
        "name": SUPERADMIN_ROLE,
        "description": "System superadmin with all permissions",
        "permissions": ["*:*"],
    },
    {
        "name": "admin",
        "description": "System administrator",
        "permissions": [
            "users:create", "users:read", "users:update", "users:delete", "users:list",
            "roles:create", "roles:read", "roles:update", "roles:delete", "roles:list",
            "grants:create", "grants:read", "grants:delete", "grants:list",
        ],
    },
    {
        "name": "user",
        "description": "Regular user",
        "permissions": ["users:read", "users:update"],
    },
]


class BootstrapError(AuthzError):
    """Bootstrap could not complete"""


class BootstrapService:
    """
    Seeds roles and the superadmin grant.

    Usage:
        service = BootstrapService(role_repo, grant_repo, authn_url="http://authn:8080")
        await service.bootstrap()
    """

    def __init__(
        self,
        roles: RoleRepository,
        grants: GrantRepository,
        authn_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.roles = roles
        self.grants = grants
        self.authn_url = authn_url.rstrip("/") if authn_url else None
        self.http_client = http_client
        self.timeout = timeout

    async def bootstrap(self, superadmin_id: Optional[str] = None) -> str:
        """
        Run the full bootstrap.

        Args:
            superadmin_id: Known superadmin user id; asked from the
                authentication service when omitted

        Returns:
            The superadmin user id the grant was ensured for
        """
        logger.info("Starting bootstrap process...")

        if superadmin_id is None:
            superadmin_id = await self._resolve_superadmin()

        await self.seed_roles()
        await self.ensure_superadmin_grant(superadmin_id)

        logger.info("Bootstrap process completed successfully")
        return superadmin_id

    # =========================================================================
    # AUTHENTICATION SERVICE
    # =========================================================================

    async def _resolve_superadmin(self) -> str:
        if not self.authn_url:
            raise BootstrapError("No superadmin id given and no authentication service configured")

        if self.http_client is not None:
            return await self._ask_authn(self.http_client)

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._ask_authn(client)

    async def _ask_authn(self, client: httpx.AsyncClient) -> str:
        try:
            response = await client.get(f"{self.authn_url}/system/bootstrap-status")
            response.raise_for_status()
            status = response.json().get("data") or {}

            if not status.get("needs_bootstrap"):
                superadmin_id = status.get("superadmin_id", "")
                logger.info(f"System already bootstrapped (superadmin_id={superadmin_id})")
            else:
                logger.info("System needs bootstrap, triggering authentication service bootstrap...")
                response = await client.post(f"{self.authn_url}/system/bootstrap")
                response.raise_for_status()
                created = response.json()
                superadmin_id = created.get("superadmin_id", "")
                # The generated password is returned once; it is not logged.
                logger.info(f"Superadmin created: {created.get('email', '')} ({superadmin_id})")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise BootstrapError(f"Authentication service bootstrap failed: {e}") from e

        if not superadmin_id:
            raise BootstrapError("Authentication service returned no superadmin id")
        return superadmin_id

    # =========================================================================
    # SEEDING
    # =========================================================================

    async def seed_roles(self) -> List[Role]:
        """Create the base roles that don't exist yet. Returns the created ones."""
        created: List[Role] = []

        for role_data in BASE_ROLES:
            existing = await self.roles.get_role_by_name(role_data["name"])
            if existing is not None:
                logger.info(f"Role already exists, skipping: {role_data['name']}")
                continue

            role = await self.roles.create(Role(
                name=role_data["name"],
                description=role_data["description"],
                permissions=list(role_data["permissions"]),
            ))
            created.append(role)

        return created

    async def ensure_superadmin_grant(self, user_id: str) -> Optional[Grant]:
        """
        Give `user_id` the superadmin role globally, unless an active grant
        of it already exists.

        Returns:
            The new grant, or None if one already existed

        Raises:
            BootstrapError: If the superadmin role has not been seeded
        """
        role = await self.roles.get_role_by_name(SUPERADMIN_ROLE)
        if role is None:
            raise BootstrapError("Superadmin role not found")

        role_id = str(role.id)

        try:
            existing = await self.grants.list_grants_by_user(user_id)
        except Exception as e:
            logger.error(f"Failed to check existing grants, proceeding anyway: {e}")
            existing = []

        # Revoked or expired grants do not count; bootstrap restores access.
        for grant in existing:
            if grant.grant_type == GrantType.ROLE and grant.value == role_id and grant.is_active():
                logger.info(f"Superadmin grant already exists: {grant.id}")
                return None

        grant = await self.grants.create(Grant(
            user_id=user_id,
            grant_type=GrantType.ROLE,
            value=role_id,
            scope=GLOBAL_SCOPE,
        ))
        logger.info(f"Superadmin grant {grant.id} created for {user_id}")
        return grant
