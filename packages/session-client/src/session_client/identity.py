from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class AuthChangeEvent(StrEnum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Identity:
        return cls(
            id=str(payload["id"]),
            email=str(payload.get("email") or ""),
            user_metadata=dict(payload.get("user_metadata") or {}),
            created_at=payload.get("created_at"),
        )


@dataclass(frozen=True)
class Session:
    access_token: str
    refresh_token: str
    user: Identity
    expires_in_seconds: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Session:
        return cls(
            access_token=str(payload["access_token"]),
            refresh_token=str(payload["refresh_token"]),
            user=Identity.from_dict(payload["user"]),
            expires_in_seconds=int(payload.get("expires_in_seconds") or 0),
        )


SessionChangeHandler = Callable[[AuthChangeEvent, Session | None], Awaitable[None]]


class IdentityRequestError(Exception):
    def __init__(self, code: str | None, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


class IdentitySessionSource(Protocol):
    async def get_current_session(self) -> Session | None: ...

    def on_session_change(self, handler: SessionChangeHandler) -> Callable[[], None]: ...

    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> Session: ...

    async def sign_out(self) -> None: ...


class HttpIdentitySessionSource:
    """Client for identity-service that keeps the current session in memory.

    Handlers registered with :meth:`on_session_change` are awaited one after
    another, in emission order, before the triggering call returns.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 5.0,
        session: Session | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._client_factory = client_factory
        self._handlers: list[SessionChangeHandler] = []

    @property
    def current_session(self) -> Session | None:
        return self._session

    async def get_current_session(self) -> Session | None:
        return self._session

    def on_session_change(self, handler: SessionChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._request("POST", "/v1/auth/token", json={"email": email, "password": password})
        return await self._set_session(AuthChangeEvent.SIGNED_IN, Session.from_dict(data))

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> Session:
        data = await self._request(
            "POST",
            "/v1/auth/signup",
            json={"email": email, "password": password, "user_metadata": metadata},
        )
        return await self._set_session(AuthChangeEvent.SIGNED_IN, Session.from_dict(data))

    async def refresh_session(self) -> Session:
        if self._session is None:
            raise IdentityRequestError("UNAUTHORIZED", "no active session")
        data = await self._request("POST", "/v1/auth/refresh", json={"refresh_token": self._session.refresh_token})
        return await self._set_session(AuthChangeEvent.TOKEN_REFRESHED, Session.from_dict(data))

    async def get_user(self) -> Identity | None:
        if self._session is None:
            return None
        data = await self._request("GET", "/v1/auth/user", token=self._session.access_token)
        return Identity.from_dict(data)

    async def sign_out(self) -> None:
        """Revoke the session server side; the local session is dropped even if that fails."""
        session = self._session
        self._session = None
        try:
            if session is not None:
                await self._request("POST", "/v1/auth/logout", token=session.access_token)
        finally:
            await self._emit(AuthChangeEvent.SIGNED_OUT, None)

    async def _set_session(self, event: AuthChangeEvent, session: Session) -> Session:
        self._session = session
        await self._emit(event, session)
        return session

    async def _emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event, session)
            except Exception:
                logger.exception("session_change_handler_failed", extra={"event": event.value})

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        factory = self._client_factory or (lambda: httpx.AsyncClient(timeout=self._timeout_seconds))
        try:
            async with factory() as client:
                response = await client.request(method, f"{self._base_url}{path}", json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("identity_request_failed", extra={"path": path, "error": type(exc).__name__})
            raise IdentityRequestError("NETWORK_ERROR", str(exc)) from exc
        try:
            body = response.json()
        except ValueError as exc:
            raise IdentityRequestError("MALFORMED_RESPONSE", "identity service returned invalid JSON") from exc
        if response.status_code >= 400 or not body.get("success"):
            error = body.get("error") or {}
            raise IdentityRequestError(
                error.get("code"),
                str(error.get("message") or f"HTTP {response.status_code}"),
                status_code=response.status_code,
            )
        return body.get("data") or {}
