from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    ADMIN = "admin"


def parse_role(value: str | None) -> Role | None:
    if value is None:
        return None
    try:
        return Role(value.strip().lower())
    except ValueError:
        return None


def coerce_role(value: str | None) -> Role:
    """Map any unrecognized role value to ``Role.USER``."""
    return parse_role(value) or Role.USER

