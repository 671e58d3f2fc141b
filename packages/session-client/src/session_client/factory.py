from __future__ import annotations

from devkit.config import ServiceSettings

from session_client.auth_state import AuthContext
from session_client.bootstrap import ProfileBootstrap
from session_client.identity import HttpIdentitySessionSource
from session_client.profiles import HttpProfileStoreAccessor


def create_auth_context(settings: ServiceSettings) -> AuthContext:
    """Wire an AuthContext against identity-service and profile-service."""
    if not settings.IDENTITY_SERVICE_BASE_URL or not settings.PROFILE_SERVICE_BASE_URL:
        raise ValueError("IDENTITY_SERVICE_BASE_URL and PROFILE_SERVICE_BASE_URL are required")
    identity_source = HttpIdentitySessionSource(
        settings.IDENTITY_SERVICE_BASE_URL,
        timeout_seconds=settings.PROFILE_RESOLVE_TIMEOUT_SECONDS,
    )

    def current_token() -> str | None:
        session = identity_source.current_session
        return session.access_token if session is not None else None

    profiles = HttpProfileStoreAccessor(
        settings.PROFILE_SERVICE_BASE_URL,
        current_token,
        timeout_seconds=settings.PROFILE_RESOLVE_TIMEOUT_SECONDS,
    )
    bootstrap = ProfileBootstrap(
        profiles,
        reconcile_attempts=settings.PROFILE_RECONCILE_ATTEMPTS,
        reconcile_base_delay_seconds=settings.PROFILE_RECONCILE_BASE_DELAY_SECONDS,
    )
    return AuthContext(
        identity_source,
        profiles,
        bootstrap,
        resolve_timeout_seconds=settings.PROFILE_RESOLVE_TIMEOUT_SECONDS,
    )
