"""
Authorization Clients

Permission checkers that a PermissionCache can sit in front of:
- LocalAuthzClient: asks an in-process PolicyEngine
- HTTPAuthzClient: asks a remote authorization service over HTTP

Both take a resource string: "" or "*" means the global scope, anything
else is treated as the id of a "resource" scope.
"""

import logging
from typing import Any, Optional

import httpx

from ...data.models.authz import Scope
from .errors import EvaluationUnavailable
from .policy import PolicyEngine
from .scope import GLOBAL_SCOPE

logger = logging.getLogger(__name__)

EVALUATE_PATH = "/authz/policy/evaluate"


def resource_scope(resource: str) -> Scope:
    """Map a resource string to the scope it is checked in"""
    if not resource or resource == "*":
        return GLOBAL_SCOPE
    return Scope(type="resource", id=resource)


class LocalAuthzClient:
    """PermissionChecker backed by an in-process PolicyEngine"""

    def __init__(self, engine: PolicyEngine):
        self.engine = engine

    async def check_permission(self, user_id: str, permission: str, resource: str) -> bool:
        return await self.engine.has(user_id, permission, resource_scope(resource))


class HTTPAuthzClient:
    """
    PermissionChecker calling a remote authorization service.

    Request:
        POST /authz/policy/evaluate
        {"user_id": ..., "permission": ..., "scope": {"type": ..., "id": ...}}

    Response:
        {"data": {"allowed": true}}

    Any transport error, non-2xx status or malformed body raises
    EvaluationUnavailable.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def check_permission(self, user_id: str, permission: str, resource: str) -> bool:
        scope = resource_scope(resource)
        payload = {
            "user_id": user_id,
            "permission": permission,
            "scope": {"type": scope.type, "id": scope.id},
        }

        try:
            response = await self.client.post(f"{self.base_url}{EVALUATE_PATH}", json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Authorization service call failed for {user_id}/{permission}: {e}")
            raise EvaluationUnavailable(f"authz check failed: {e}") from e

        return self._parse_allowed(body)

    @staticmethod
    def _parse_allowed(body: Any) -> bool:
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise EvaluationUnavailable("invalid response format")

        allowed = data.get("allowed")
        if not isinstance(allowed, bool):
            raise EvaluationUnavailable("invalid allowed field in response")
        return allowed

    async def aclose(self) -> None:
        await self.client.aclose()
