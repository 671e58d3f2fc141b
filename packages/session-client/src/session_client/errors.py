from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

import httpx

T = TypeVar("T")


class StoreErrorKind(StrEnum):
    TRANSIENT = "transient"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    CONTRACT = "contract"


@dataclass(frozen=True)
class StoreError:
    kind: StoreErrorKind
    message: str
    status_code: int | None = None
    code: str | None = None


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Outcome of one store call: ``data`` on success, ``error`` otherwise."""

    data: T | None = None
    error: StoreError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T | None = None) -> StoreResult[T]:
        return cls(data=data)

    @classmethod
    def failure(cls, error: StoreError) -> StoreResult[T]:
        return cls(error=error)


def classify_status(status_code: int) -> StoreErrorKind:
    if status_code in (401, 403):
        return StoreErrorKind.FORBIDDEN
    if status_code == 404:
        return StoreErrorKind.NOT_FOUND
    if status_code == 409:
        return StoreErrorKind.CONFLICT
    if status_code == 429 or status_code >= 500:
        return StoreErrorKind.TRANSIENT
    return StoreErrorKind.CONTRACT


def error_from_response(response: httpx.Response) -> StoreError:
    code: str | None = None
    message = f"HTTP {response.status_code}"
    try:
        detail = response.json().get("error") or {}
    except ValueError:
        detail = {}
    if isinstance(detail, dict):
        code = detail.get("code")
        message = str(detail.get("message") or message)
    return StoreError(
        kind=classify_status(response.status_code),
        message=message,
        status_code=response.status_code,
        code=code,
    )


def transport_error(exc: httpx.HTTPError) -> StoreError:
    return StoreError(kind=StoreErrorKind.TRANSIENT, message=f"{type(exc).__name__}: {exc}")
