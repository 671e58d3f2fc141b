from __future__ import annotations

from collections.abc import Mapping
from typing import Any

DEFAULT_DISPLAY_NAME = "User"
MAX_DISPLAY_NAME_LENGTH = 255
_METADATA_NAME_KEYS = ("name", "full_name")


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    collapsed = " ".join(value.split())
    return collapsed[:MAX_DISPLAY_NAME_LENGTH] or None


def email_local_part(email: str | None) -> str | None:
    if not email:
        return None
    return _clean(email.split("@", 1)[0])


def resolve_display_name(metadata: Mapping[str, Any] | None, email: str | None) -> str:
    """Pick a profile name: metadata ``name``, then ``full_name``, then the
    email local part, then ``"User"``."""
    for key in _METADATA_NAME_KEYS:
        name = _clean((metadata or {}).get(key))
        if name:
            return name
    return email_local_part(email) or DEFAULT_DISPLAY_NAME
