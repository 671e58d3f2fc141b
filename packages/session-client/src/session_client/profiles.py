from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
import logging
from typing import Any, Protocol

import httpx

from session_client.errors import (
    StoreError,
    StoreErrorKind,
    StoreResult,
    error_from_response,
    transport_error,
)

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
USER_ROLE = "user"


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    role: str = USER_ROLE
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Profile:
        return cls(
            id=str(payload["id"]),
            name=str(payload["name"]),
            role=str(payload.get("role") or USER_ROLE),
            created_at=payload.get("created_at"),
            updated_at=payload.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProfileStoreAccessor(Protocol):
    async def select_by_id(self, profile_id: str) -> StoreResult[Profile]: ...

    async def insert(self, profile: Profile) -> StoreResult[Profile]: ...

    async def upsert_via_privileged_call(self, profile_id: str, name: str, role: str) -> StoreResult[Profile]: ...


class HttpProfileStoreAccessor:
    """profile-service client acting with the signed-in user's own token.

    Calls never raise; failures come back as a :class:`StoreResult` whose
    error kind tells the caller whether to fall through, give up, or treat a
    conflict as success.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], str | None],
        *,
        timeout_seconds: float = 5.0,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._timeout_seconds = timeout_seconds
        self._client_factory = client_factory

    async def select_by_id(self, profile_id: str) -> StoreResult[Profile]:
        result = await self._call("GET", f"/v1/profiles/{profile_id}")
        if result.error is not None and result.error.kind == StoreErrorKind.NOT_FOUND:
            return StoreResult.success(None)
        return result

    async def insert(self, profile: Profile) -> StoreResult[Profile]:
        return await self._call(
            "POST",
            "/v1/profiles",
            json={"id": profile.id, "name": profile.name, "role": profile.role},
        )

    async def upsert_via_privileged_call(self, profile_id: str, name: str, role: str) -> StoreResult[Profile]:
        return await self._call(
            "POST",
            "/v1/rpc/create_user_profile",
            json={"user_id": profile_id, "user_name": name, "user_role": role},
        )

    async def _call(self, method: str, path: str, *, json: dict[str, Any] | None = None) -> StoreResult[Profile]:
        token = self._token_provider()
        if not token:
            return StoreResult.failure(StoreError(kind=StoreErrorKind.FORBIDDEN, message="no active session"))
        factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=self._timeout_seconds))
        try:
            async with factory() as client:
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    json=json,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as exc:
            return StoreResult.failure(transport_error(exc))
        if response.status_code >= 400:
            return StoreResult.failure(error_from_response(response))
        try:
            return StoreResult.success(Profile.from_dict(response.json()["data"]))
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("profile_payload_malformed", extra={"path": path, "error": type(exc).__name__})
            error = StoreError(
                kind=StoreErrorKind.CONTRACT,
                message="malformed profile payload",
                status_code=response.status_code,
            )
            return StoreResult.failure(error)
