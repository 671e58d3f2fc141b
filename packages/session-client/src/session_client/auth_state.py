"""Session and role resolution for one signed-in client."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
import logging

from session_client import messages
from session_client.bootstrap import ProfileBootstrap
from session_client.identity import AuthChangeEvent, Identity, IdentityRequestError, IdentitySessionSource, Session
from session_client.profiles import Profile, ProfileStoreAccessor

logger = logging.getLogger(__name__)

PROFILE_TIMEOUT = "timeout"
PROFILE_MISSING = "missing"


class AuthPhase(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    SESSION_RESTORING = "session_restoring"
    AUTHENTICATED_BOOTSTRAPPING = "authenticated_bootstrapping"
    AUTHENTICATED_RESOLVED = "authenticated_resolved"


@dataclass(frozen=True)
class AuthSnapshot:
    phase: AuthPhase = AuthPhase.UNAUTHENTICATED
    session: Session | None = None
    profile: Profile | None = None
    profile_error: str | None = None

    @property
    def user(self) -> Identity | None:
        return self.session.user if self.session is not None else None

    @property
    def is_admin(self) -> bool:
        return self.profile is not None and self.profile.is_admin

    @property
    def role_resolved(self) -> bool:
        return self.phase == AuthPhase.AUTHENTICATED_RESOLVED and self.profile is not None

    @property
    def is_loading(self) -> bool:
        return self.phase in (AuthPhase.SESSION_RESTORING, AuthPhase.AUTHENTICATED_BOOTSTRAPPING)


@dataclass(frozen=True)
class AuthActionResult:
    success: bool
    message: str
    session: Session | None = None


AuthListener = Callable[[AuthSnapshot], None]


class AuthContext:
    """Tracks the current session and the role derived from its profile.

    Session events are handled one at a time. Each resolution is numbered and
    its result is applied only while it is still the latest one issued, so a
    sign-out or a newer sign-in always wins over a slow profile lookup. Events
    that arrive before a sign-out and are still queued behind the lock are
    dropped once they get it.
    """

    def __init__(
        self,
        identity_source: IdentitySessionSource,
        profiles: ProfileStoreAccessor,
        bootstrap: ProfileBootstrap,
        *,
        resolve_timeout_seconds: float = 5.0,
    ) -> None:
        self._identity_source = identity_source
        self._profiles = profiles
        self._bootstrap = bootstrap
        self._resolve_timeout_seconds = resolve_timeout_seconds
        self._snapshot = AuthSnapshot()
        self._lock = asyncio.Lock()
        self._sequence = 0
        self._generation = 0
        self._listeners: list[AuthListener] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._closed = False

    @property
    def snapshot(self) -> AuthSnapshot:
        return self._snapshot

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> AuthSnapshot:
        self._publish(AuthSnapshot(phase=AuthPhase.SESSION_RESTORING))
        self._unsubscribe = self._identity_source.on_session_change(self._on_session_change)
        generation = self._generation
        session = await self._identity_source.get_current_session()
        if session is None:
            if generation == self._generation:
                self._publish(AuthSnapshot())
            return self._snapshot
        await self._resolve_in_turn(session, generation)
        return self._snapshot

    async def close(self) -> None:
        self._closed = True
        self._sequence += 1
        self._generation += 1
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    async def sign_in(self, email: str, password: str) -> AuthActionResult:
        try:
            session = await self._identity_source.sign_in_with_password(email, password)
        except IdentityRequestError as exc:
            logger.info("auth_sign_in_failed", extra={"code": exc.code, "status_code": exc.status_code})
            return AuthActionResult(success=False, message=messages.sign_in_error_message(exc.code))
        return AuthActionResult(success=True, message=messages.SIGN_IN_SUCCESS, session=session)

    async def sign_up(self, email: str, password: str, name: str) -> AuthActionResult:
        if len(password) < messages.MIN_PASSWORD_LENGTH:
            return AuthActionResult(success=False, message=messages.PASSWORD_TOO_SHORT)
        metadata = {"name": name, "full_name": name} if name.strip() else {}
        try:
            session = await self._identity_source.sign_up(email, password, metadata)
        except IdentityRequestError as exc:
            logger.info("auth_sign_up_failed", extra={"code": exc.code, "status_code": exc.status_code})
            return AuthActionResult(success=False, message=messages.sign_up_error_message(exc.code, exc.message))
        return AuthActionResult(success=True, message=messages.SIGN_UP_SUCCESS, session=session)

    async def sign_out(self) -> AuthActionResult:
        self._clear()
        try:
            await self._identity_source.sign_out()
        except IdentityRequestError as exc:
            logger.warning("auth_sign_out_failed", extra={"code": exc.code})
            return AuthActionResult(success=False, message=messages.SIGN_OUT_FAILED)
        return AuthActionResult(success=True, message=messages.SIGN_OUT_SUCCESS)

    async def retry_profile(self) -> AuthSnapshot:
        generation = self._generation
        async with self._lock:
            session = self._snapshot.session
            if session is None or self._closed or generation != self._generation:
                return self._snapshot
            await self._resolve(session)
        return self._snapshot

    async def _on_session_change(self, event: AuthChangeEvent, session: Session | None) -> None:
        if self._closed:
            return
        if event == AuthChangeEvent.SIGNED_OUT or session is None:
            self._clear()
            return
        await self._resolve_in_turn(session, self._generation)

    async def _resolve_in_turn(self, session: Session, generation: int) -> None:
        async with self._lock:
            if self._closed or generation != self._generation:
                logger.debug("auth_session_event_superseded", extra={"identity_id": session.user.id})
                return
            await self._resolve(session)

    async def _resolve(self, session: Session) -> None:
        self._sequence += 1
        sequence = self._sequence
        self._publish(AuthSnapshot(phase=AuthPhase.AUTHENTICATED_BOOTSTRAPPING, session=session))
        try:
            profile, profile_error = await asyncio.wait_for(
                self._load_profile(session.user),
                timeout=self._resolve_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("auth_profile_resolution_timed_out", extra={"identity_id": session.user.id})
            profile, profile_error = None, PROFILE_TIMEOUT
        if self._closed or sequence != self._sequence:
            logger.debug("auth_stale_resolution_discarded", extra={"sequence": sequence, "latest": self._sequence})
            return
        self._publish(
            AuthSnapshot(
                phase=AuthPhase.AUTHENTICATED_RESOLVED,
                session=session,
                profile=profile,
                profile_error=profile_error,
            )
        )

    async def _load_profile(self, identity: Identity) -> tuple[Profile | None, str | None]:
        await self._bootstrap.ensure_profile(identity)
        result = await self._profiles.select_by_id(identity.id)
        if result.error is not None:
            return None, result.error.message
        if result.data is None:
            return None, PROFILE_MISSING
        return result.data, None

    def _clear(self) -> None:
        # invalidates resolutions in flight and session events still waiting for the lock
        self._sequence += 1
        self._generation += 1
        if self._snapshot.phase != AuthPhase.UNAUTHENTICATED or self._snapshot.session is not None:
            self._publish(AuthSnapshot())

    def _publish(self, snapshot: AuthSnapshot) -> None:
        if self._closed:
            return
        self._snapshot = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("auth_listener_failed", extra={"phase": snapshot.phase.value})
