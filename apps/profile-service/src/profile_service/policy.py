"""Row-level access rules for the ``profiles`` table.

Ordinary callers only ever see and write their own row; admins may act on
any row. Reads that a caller may not perform look exactly like a missing row.
"""

from __future__ import annotations

from shared.security import Role, coerce_role, parse_role

from profile_service.models import Caller


class PolicyViolationError(PermissionError):
    pass


def can_read(caller: Caller, profile_id: str) -> bool:
    return caller.is_admin or caller.identity_id == profile_id


def can_update(caller: Caller, profile_id: str) -> bool:
    return caller.is_admin or caller.identity_id == profile_id


def check_insert(caller: Caller, profile_id: str, role: str) -> Role:
    requested = parse_role(role)
    if requested is None:
        raise ValueError(f"invalid role value: {role!r}")
    if caller.is_admin:
        return requested
    if caller.identity_id != profile_id:
        raise PolicyViolationError("new row violates row-level security policy for table \"profiles\"")
    if requested is not Role.USER:
        raise PolicyViolationError("only admins may create admin profiles")
    return requested


def check_privileged_call(caller: Caller, target_id: str | None, role: str | None) -> tuple[str, Role]:
    """Resolve the row and role a ``create_user_profile`` call may write.

    Self-service calls are pinned to the caller's own id and always produce a
    plain user; admins may name any id and grant ``admin``.
    """
    if caller.is_admin:
        return target_id or caller.identity_id, coerce_role(role)
    if target_id and target_id != caller.identity_id:
        raise PolicyViolationError("create_user_profile may only target the caller's own profile")
    return caller.identity_id, Role.USER


def check_role_assignment(caller: Caller) -> None:
    if not caller.is_admin:
        raise PolicyViolationError("only admins may assign roles")
