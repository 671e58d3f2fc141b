from __future__ import annotations

from enum import StrEnum

from session_client import messages
from session_client.auth_state import AuthPhase, AuthSnapshot

LOGIN_PATH = "/auth"
ADMIN_HOME_PATH = "/admin"
DRIVER_DASHBOARD_PATH = "/dashboard-supir"


class RouteRequirement(StrEnum):
    ALL = "all"
    ADMIN = "admin"
    USER = "user"


class RouteAccess(StrEnum):
    LOADING = "loading"
    REDIRECT_LOGIN = "redirect_login"
    REDIRECT_ADMIN = "redirect_admin"
    REDIRECT_DRIVER_DASHBOARD = "redirect_driver_dashboard"
    PROFILE_UNAVAILABLE = "profile_unavailable"
    ALLOW = "allow"


_REDIRECT_PATHS = {
    RouteAccess.REDIRECT_LOGIN: LOGIN_PATH,
    RouteAccess.REDIRECT_ADMIN: ADMIN_HOME_PATH,
    RouteAccess.REDIRECT_DRIVER_DASHBOARD: DRIVER_DASHBOARD_PATH,
}


def resolve_route_access(
    snapshot: AuthSnapshot,
    required: RouteRequirement | str = RouteRequirement.ALL,
) -> RouteAccess:
    required = RouteRequirement(required)
    if snapshot.is_loading:
        return RouteAccess.LOADING
    if snapshot.phase == AuthPhase.UNAUTHENTICATED or snapshot.session is None:
        return RouteAccess.REDIRECT_LOGIN
    if snapshot.profile is None:
        return RouteAccess.PROFILE_UNAVAILABLE
    if required == RouteRequirement.ADMIN and not snapshot.is_admin:
        return RouteAccess.REDIRECT_DRIVER_DASHBOARD
    if required == RouteRequirement.USER and snapshot.is_admin:
        return RouteAccess.REDIRECT_ADMIN
    return RouteAccess.ALLOW


def redirect_path(access: RouteAccess) -> str | None:
    return _REDIRECT_PATHS.get(access)


def access_message(access: RouteAccess) -> str | None:
    """Message to show in place of the page, if any."""
    if access == RouteAccess.PROFILE_UNAVAILABLE:
        return messages.PROFILE_UNAVAILABLE
    return None
