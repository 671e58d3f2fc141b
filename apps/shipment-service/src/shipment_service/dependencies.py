from __future__ import annotations

from collections.abc import Callable
import logging

from fastapi import HTTPException, status
from fastapi.requests import HTTPConnection
import httpx

logger = logging.getLogger(__name__)


class RoleLookupError(RuntimeError):
    pass


class ProfileRoleResolver:
    """Reads the caller's own profile from profile-service to learn their role.

    The caller's token is forwarded, so profile-service's row policies decide
    what is visible. A caller without a profile is treated as a plain user.
    """

    def __init__(
        self,
        base_url: str | None,
        timeout_seconds: float = 3.0,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._client_factory = client_factory

    async def resolve_role(self, identity_id: str, access_token: str) -> str:
        if not self._base_url:
            raise RoleLookupError("profile service base url is not configured")
        try:
            factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=self._timeout_seconds))
            async with factory() as client:
                response = await client.get(
                    f"{self._base_url}/v1/profiles/{identity_id}",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.HTTPError as exc:
            raise RoleLookupError("profile service unreachable") from exc
        if response.status_code == status.HTTP_404_NOT_FOUND:
            return "user"
        if response.status_code >= 400:
            raise RoleLookupError(f"profile service returned {response.status_code}")
        try:
            return str(response.json()["data"]["role"])
        except (ValueError, KeyError, TypeError) as exc:
            raise RoleLookupError("malformed profile payload") from exc


def get_role_resolver(conn: HTTPConnection) -> ProfileRoleResolver:
    return conn.app.state.role_resolver


async def lookup_role(resolver: ProfileRoleResolver, identity_id: str, access_token: str) -> str:
    try:
        return await resolver.resolve_role(identity_id, access_token)
    except RoleLookupError as exc:
        logger.warning("shipment_role_lookup_failed", extra={"identity_id": identity_id, "error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "ROLE_UNAVAILABLE", "message": "caller role could not be resolved"},
        ) from exc
