from __future__ import annotations

from collections.abc import Callable
import json
import logging
from typing import Any

from devkit.retry import run_with_retry
import httpx

from identity_service.store import IdentityRecord
from shared.security import build_signed_headers

logger = logging.getLogger(__name__)


class ProfileTriggerClient:
    """Signed calls from identity-service into profile-service's internal routes.

    Sign-up must not depend on profile-service being reachable, so every
    public method reports failure through its return value instead of raising.
    """

    def __init__(
        self,
        *,
        base_url: str | None,
        hmac_secret: str,
        timeout_seconds: float = 4.0,
        max_retries: int = 3,
        base_delay_seconds: float = 0.2,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._hmac_secret = hmac_secret
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._client_factory = client_factory

    @property
    def enabled(self) -> bool:
        return bool(self._base_url and self._hmac_secret)

    async def notify_identity_created(self, identity: IdentityRecord) -> bool:
        if not self.enabled:
            logger.debug("profile_trigger_disabled", extra={"identity_id": identity.id})
            return False
        try:
            await self._post("/internal/profiles/on-identity-created", _identity_payload(identity))
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "profile_trigger_failed",
                extra={"identity_id": identity.id, "error": type(exc).__name__},
            )
            return False
        logger.info("profile_trigger_delivered", extra={"identity_id": identity.id})
        return True

    async def request_backfill(self, identities: list[IdentityRecord]) -> int | None:
        """Ask profile-service to create any missing profiles; returns how many it created."""
        if not self.enabled:
            return None
        try:
            body = await self._post(
                "/internal/profiles/backfill",
                {"identities": [_identity_payload(identity) for identity in identities]},
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("profile_backfill_failed", extra={"error": type(exc).__name__, "count": len(identities)})
            return None
        created = int((body.get("data") or {}).get("created", 0))
        logger.info("profile_backfill_completed", extra={"requested": len(identities), "created_count": created})
        return created

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        payload_text = json.dumps(payload, separators=(",", ":"))

        async def _attempt() -> dict[str, Any]:
            factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=self._timeout_seconds))
            async with factory() as client:
                response = await client.post(
                    f"{self._base_url}{path}",
                    content=payload_text.encode("utf-8"),
                    # re-signed per attempt so a slow retry stays inside the timestamp window
                    headers=build_signed_headers(self._hmac_secret, payload_text),
                )
                response.raise_for_status()
            return response.json()

        return await run_with_retry(
            _attempt,
            max_retries=self._max_retries,
            base_delay_seconds=self._base_delay_seconds,
            should_retry=_is_retryable,
        )


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return isinstance(exc, httpx.TransportError)


def _identity_payload(identity: IdentityRecord) -> dict[str, Any]:
    return {"id": identity.id, "email": identity.email, "user_metadata": dict(identity.user_metadata)}
