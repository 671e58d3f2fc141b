"""Makes sure a signed-in identity has a profile row.

Up to three writers race to create the row: the identity-created trigger in
profile-service, the privileged creation call, and a direct insert. The
store's primary key keeps the row unique, so each step here only needs to
find out whether the row exists once it has run.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
import logging
from typing import Protocol

from devkit.retry import backoff_delay

from session_client.errors import StoreError, StoreErrorKind
from session_client.identity import Identity
from session_client.profiles import USER_ROLE, Profile, ProfileStoreAccessor
from shared.naming import resolve_display_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyOutcome:
    succeeded: bool
    error: StoreError | None = None


class BootstrapStrategy(Protocol):
    name: str

    async def attempt(self, identity: Identity, display_name: str) -> StrategyOutcome: ...


class ExistenceCheck:
    name = "existence_check"

    def __init__(self, accessor: ProfileStoreAccessor) -> None:
        self._accessor = accessor

    async def attempt(self, identity: Identity, display_name: str) -> StrategyOutcome:
        result = await self._accessor.select_by_id(identity.id)
        if result.error is not None:
            return StrategyOutcome(succeeded=False, error=result.error)
        return StrategyOutcome(succeeded=result.data is not None)


class PrivilegedCreation:
    name = "privileged_call"

    def __init__(self, accessor: ProfileStoreAccessor) -> None:
        self._accessor = accessor

    async def attempt(self, identity: Identity, display_name: str) -> StrategyOutcome:
        result = await self._accessor.upsert_via_privileged_call(identity.id, display_name, USER_ROLE)
        return StrategyOutcome(succeeded=result.ok, error=result.error)


class DirectInsert:
    name = "direct_insert"

    def __init__(self, accessor: ProfileStoreAccessor) -> None:
        self._accessor = accessor

    async def attempt(self, identity: Identity, display_name: str) -> StrategyOutcome:
        result = await self._accessor.insert(Profile(id=identity.id, name=display_name, role=USER_ROLE))
        if result.error is not None and result.error.kind == StoreErrorKind.CONFLICT:
            # someone else created the row first
            return StrategyOutcome(succeeded=True)
        return StrategyOutcome(succeeded=result.ok, error=result.error)


class Reconciliation:
    """Bounded re-check for a row the trigger may have written meanwhile."""

    name = "reconciliation"

    def __init__(
        self,
        accessor: ProfileStoreAccessor,
        *,
        attempts: int = 1,
        base_delay_seconds: float = 0.0,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._accessor = accessor
        self._attempts = max(attempts, 1)
        self._base_delay_seconds = base_delay_seconds
        self._sleep_fn = sleep_fn

    async def attempt(self, identity: Identity, display_name: str) -> StrategyOutcome:
        last_error: StoreError | None = None
        for attempt in range(1, self._attempts + 1):
            delay = backoff_delay(attempt, self._base_delay_seconds)
            if delay > 0:
                await self._sleep_fn(delay)
            result = await self._accessor.select_by_id(identity.id)
            if result.ok and result.data is not None:
                return StrategyOutcome(succeeded=True)
            last_error = result.error
        return StrategyOutcome(succeeded=False, error=last_error)


class ProfileBootstrap:
    def __init__(
        self,
        accessor: ProfileStoreAccessor,
        *,
        reconcile_attempts: int = 1,
        reconcile_base_delay_seconds: float = 0.0,
        sleep_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
        strategies: Sequence[BootstrapStrategy] | None = None,
    ) -> None:
        self._strategies: tuple[BootstrapStrategy, ...] = tuple(
            strategies
            if strategies is not None
            else (
                ExistenceCheck(accessor),
                PrivilegedCreation(accessor),
                DirectInsert(accessor),
                Reconciliation(
                    accessor,
                    attempts=reconcile_attempts,
                    base_delay_seconds=reconcile_base_delay_seconds,
                    sleep_fn=sleep_fn,
                ),
            )
        )

    @property
    def strategy_names(self) -> tuple[str, ...]:
        return tuple(strategy.name for strategy in self._strategies)

    async def ensure_profile(self, identity: Identity | None) -> bool:
        """True once a profile row for ``identity`` is known to exist. Never raises."""
        if identity is None:
            return False
        display_name = resolve_display_name(identity.user_metadata, identity.email)
        for strategy in self._strategies:
            try:
                outcome = await strategy.attempt(identity, display_name)
            except Exception:
                logger.exception(
                    "profile_bootstrap_step_raised",
                    extra={"identity_id": identity.id, "step": strategy.name},
                )
                continue
            if outcome.succeeded:
                logger.info("profile_bootstrap_succeeded", extra={"identity_id": identity.id, "step": strategy.name})
                return True
            _log_step_failure(identity.id, strategy.name, outcome.error)
        logger.error("profile_bootstrap_exhausted", extra={"identity_id": identity.id})
        return False


def _log_step_failure(identity_id: str, step: str, error: StoreError | None) -> None:
    extra = {
        "identity_id": identity_id,
        "step": step,
        "kind": error.kind.value if error else None,
        "error": error.message if error else None,
    }
    if error is None or error.kind in (StoreErrorKind.FORBIDDEN, StoreErrorKind.NOT_FOUND, StoreErrorKind.CONFLICT):
        logger.info("profile_bootstrap_step_failed", extra=extra)
    elif error.kind == StoreErrorKind.TRANSIENT:
        logger.warning("profile_bootstrap_step_failed", extra=extra)
    else:
        logger.error("profile_bootstrap_step_failed", extra=extra)
