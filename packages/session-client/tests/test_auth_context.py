import asyncio

import pytest

from session_client import messages
from session_client.auth_state import PROFILE_TIMEOUT, AuthActionResult, AuthContext, AuthPhase, AuthSnapshot
from session_client.bootstrap import ProfileBootstrap
from session_client.errors import StoreError, StoreErrorKind
from session_client.identity import AuthChangeEvent, IdentityRequestError
from session_client.profiles import Profile


def build_context(identity_source, profile_store, *, timeout: float = 5.0) -> AuthContext:
    return AuthContext(
        identity_source,
        profile_store,
        ProfileBootstrap(profile_store),
        resolve_timeout_seconds=timeout,
    )


async def _wait_for_phase(context: AuthContext, phase: AuthPhase) -> None:
    for _ in range(100):
        if context.snapshot.phase == phase:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"phase {phase} never reached")


@pytest.mark.asyncio
async def test_start_without_session_is_unauthenticated(identity_source, profile_store) -> None:
    context = build_context(identity_source, profile_store)
    seen: list[AuthSnapshot] = []
    context.subscribe(seen.append)

    snapshot = await context.start()

    assert snapshot.phase == AuthPhase.UNAUTHENTICATED
    assert [item.phase for item in seen] == [AuthPhase.SESSION_RESTORING, AuthPhase.UNAUTHENTICATED]
    assert profile_store.calls == []


@pytest.mark.asyncio
async def test_restored_session_resolves_role(identity_source, profile_store) -> None:
    identity = identity_source.add_account("boss@x.com", "secret1")
    identity_source.session = identity_source.session_for(identity)
    profile_store.rows[identity.id] = Profile(id=identity.id, name="Boss", role="admin")
    context = build_context(identity_source, profile_store)

    snapshot = await context.start()

    assert snapshot.phase == AuthPhase.AUTHENTICATED_RESOLVED
    assert snapshot.is_admin is True
    assert snapshot.role_resolved is True


@pytest.mark.asyncio
async def test_sign_up_bootstraps_user_profile(identity_source, profile_store) -> None:
    context = build_context(identity_source, profile_store)
    await context.start()

    result = await context.sign_up("d@x.com", "secret1", "Dina")

    snapshot = context.snapshot
    assert result.success is True
    assert result.message == messages.SIGN_UP_SUCCESS
    assert snapshot.phase == AuthPhase.AUTHENTICATED_RESOLVED
    assert snapshot.profile == Profile(id=snapshot.user.id, name="Dina", role="user")
    assert snapshot.is_admin is False


@pytest.mark.asyncio
async def test_short_password_is_rejected_locally(identity_source, profile_store) -> None:
    context = build_context(identity_source, profile_store)

    result = await context.sign_up("d@x.com", "12345", "Dina")

    assert result == AuthActionResult(success=False, message=messages.PASSWORD_TOO_SHORT)
    assert identity_source.accounts == {}


@pytest.mark.asyncio
async def test_wrong_password_gives_localized_message_and_no_profile(identity_source, profile_store) -> None:
    identity_source.add_account("d@x.com", "secret1")
    context = build_context(identity_source, profile_store)
    await context.start()

    result = await context.sign_in("d@x.com", "wrong-password")

    assert result.success is False
    assert result.message.startswith("Email atau password tidak valid")
    assert context.snapshot.phase == AuthPhase.UNAUTHENTICATED
    assert profile_store.rows == {}
    assert profile_store.calls == []


@pytest.mark.asyncio
async def test_sign_out_clears_role_immediately(identity_source, profile_store) -> None:
    identity = identity_source.add_account("boss@x.com", "secret1")
    profile_store.rows[identity.id] = Profile(id=identity.id, name="Boss", role="admin")
    context = build_context(identity_source, profile_store)
    await context.start()
    await context.sign_in("boss@x.com", "secret1")
    assert context.snapshot.is_admin is True

    phases: list[AuthPhase] = []
    context.subscribe(lambda snapshot: phases.append(snapshot.phase))
    result = await context.sign_out()

    assert result.success is True
    assert context.snapshot == AuthSnapshot()
    assert context.snapshot.is_admin is False
    assert phases == [AuthPhase.UNAUTHENTICATED]


@pytest.mark.asyncio
async def test_failed_remote_sign_out_still_clears_local_state(identity_source, profile_store) -> None:
    identity_source.add_account("d@x.com", "secret1")
    identity_source.sign_out_error = IdentityRequestError("NETWORK_ERROR", "connection refused")
    context = build_context(identity_source, profile_store)
    await context.start()
    await context.sign_in("d@x.com", "secret1")

    result = await context.sign_out()

    assert result.success is False
    assert result.message == messages.SIGN_OUT_FAILED
    assert context.snapshot.session is None


@pytest.mark.asyncio
async def test_slow_resolution_times_out_without_profile(identity_source, profile_store) -> None:
    identity_source.add_account("d@x.com", "secret1")
    profile_store.select_gate = asyncio.Event()
    context = build_context(identity_source, profile_store, timeout=0.05)
    await context.start()

    await context.sign_in("d@x.com", "secret1")

    snapshot = context.snapshot
    assert snapshot.phase == AuthPhase.AUTHENTICATED_RESOLVED
    assert snapshot.profile is None
    assert snapshot.profile_error == PROFILE_TIMEOUT
    assert snapshot.role_resolved is False


@pytest.mark.asyncio
async def test_sign_out_during_resolution_discards_stale_result(identity_source, profile_store) -> None:
    identity = identity_source.add_account("boss@x.com", "secret1")
    profile_store.rows[identity.id] = Profile(id=identity.id, name="Boss", role="admin")
    profile_store.select_gate = asyncio.Event()
    context = build_context(identity_source, profile_store)
    await context.start()

    sign_in = asyncio.create_task(context.sign_in("boss@x.com", "secret1"))
    await _wait_for_phase(context, AuthPhase.AUTHENTICATED_BOOTSTRAPPING)
    await context.sign_out()
    profile_store.select_gate.set()
    await sign_in

    assert context.snapshot.phase == AuthPhase.UNAUTHENTICATED
    assert context.snapshot.is_admin is False


@pytest.mark.asyncio
async def test_newer_sign_in_waits_for_previous_resolution(identity_source, profile_store) -> None:
    first = identity_source.add_account("a@x.com", "secret1", {"name": "Ana"})
    second = identity_source.add_account("b@x.com", "secret1", {"name": "Budi"})
    context = build_context(identity_source, profile_store)
    await context.start()

    await asyncio.gather(
        identity_source.emit(AuthChangeEvent.SIGNED_IN, identity_source.session_for(first)),
        identity_source.emit(AuthChangeEvent.SIGNED_IN, identity_source.session_for(second)),
    )

    assert context.snapshot.user.id == second.id
    assert context.snapshot.profile.name == "Budi"
    assert set(profile_store.rows) == {first.id, second.id}


@pytest.mark.asyncio
async def test_closed_context_ignores_in_flight_resolution(identity_source, profile_store) -> None:
    identity_source.add_account("d@x.com", "secret1")
    profile_store.select_gate = asyncio.Event()
    context = build_context(identity_source, profile_store)
    await context.start()

    sign_in = asyncio.create_task(context.sign_in("d@x.com", "secret1"))
    await _wait_for_phase(context, AuthPhase.AUTHENTICATED_BOOTSTRAPPING)
    await context.close()
    profile_store.select_gate.set()
    await sign_in

    assert context.snapshot.phase == AuthPhase.AUTHENTICATED_BOOTSTRAPPING
    assert identity_source.handlers == []


@pytest.mark.asyncio
async def test_retry_profile_after_store_outage(identity_source, profile_store) -> None:
    identity_source.add_account("d@x.com", "secret1", {"name": "Dina"})
    profile_store.select_error = StoreError(kind=StoreErrorKind.TRANSIENT, message="HTTP 503")
    profile_store.privileged_error = StoreError(kind=StoreErrorKind.TRANSIENT, message="HTTP 503")
    profile_store.insert_error = StoreError(kind=StoreErrorKind.TRANSIENT, message="HTTP 503")
    context = build_context(identity_source, profile_store)
    await context.start()
    await context.sign_in("d@x.com", "secret1")
    assert context.snapshot.profile is None
    assert context.snapshot.profile_error == "HTTP 503"

    profile_store.select_error = None
    profile_store.privileged_error = None
    profile_store.insert_error = None
    snapshot = await context.retry_profile()

    assert snapshot.profile is not None
    assert snapshot.profile.name == "Dina"


@pytest.mark.asyncio
async def test_sign_out_drops_sign_in_queued_behind_resolution(identity_source, profile_store) -> None:
    first = identity_source.add_account("a@x.com", "secret1", {"name": "Ana"})
    boss = identity_source.add_account("boss@x.com", "secret1")
    profile_store.rows[boss.id] = Profile(id=boss.id, name="Boss", role="admin")
    profile_store.select_gate = asyncio.Event()
    context = build_context(identity_source, profile_store)
    await context.start()

    pending_first = asyncio.create_task(
        identity_source.emit(AuthChangeEvent.SIGNED_IN, identity_source.session_for(first))
    )
    await _wait_for_phase(context, AuthPhase.AUTHENTICATED_BOOTSTRAPPING)
    queued_boss = asyncio.create_task(
        identity_source.emit(AuthChangeEvent.SIGNED_IN, identity_source.session_for(boss))
    )
    for _ in range(5):
        await asyncio.sleep(0)
    await context.sign_out()
    profile_store.select_gate.set()
    await asyncio.gather(pending_first, queued_boss)

    assert context.snapshot.phase == AuthPhase.UNAUTHENTICATED
    assert context.snapshot.is_admin is False
    assert context.snapshot.session is None


@pytest.mark.asyncio
async def test_sign_out_drops_queued_profile_retries(identity_source, profile_store) -> None:
    boss = identity_source.add_account("boss@x.com", "secret1")
    profile_store.rows[boss.id] = Profile(id=boss.id, name="Boss", role="admin")
    context = build_context(identity_source, profile_store)
    await context.start()
    await context.sign_in("boss@x.com", "secret1")
    assert context.snapshot.is_admin is True

    profile_store.select_gate = asyncio.Event()
    retries = [asyncio.create_task(context.retry_profile()) for _ in range(2)]
    await _wait_for_phase(context, AuthPhase.AUTHENTICATED_BOOTSTRAPPING)
    await context.sign_out()
    profile_store.select_gate.set()
    await asyncio.gather(*retries)

    assert context.snapshot.phase == AuthPhase.UNAUTHENTICATED
    assert context.snapshot.is_admin is False
    assert context.snapshot.session is None


@pytest.mark.asyncio
async def test_sign_in_after_sign_out_still_resolves(identity_source, profile_store) -> None:
    identity_source.add_account("d@x.com", "secret1", {"name": "Dina"})
    context = build_context(identity_source, profile_store)
    await context.start()
    await context.sign_in("d@x.com", "secret1")
    await context.sign_out()

    await context.sign_in("d@x.com", "secret1")

    assert context.snapshot.phase == AuthPhase.AUTHENTICATED_RESOLVED
    assert context.snapshot.profile.name == "Dina"
