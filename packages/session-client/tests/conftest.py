from __future__ import annotations

import asyncio
from typing import Any
from uuid import uuid4

import pytest

from session_client.errors import StoreError, StoreErrorKind, StoreResult
from session_client.identity import AuthChangeEvent, Identity, IdentityRequestError, Session
from session_client.profiles import Profile


class FakeProfileStore:
    """In-memory profile store with switchable failures per operation."""

    def __init__(self) -> None:
        self.rows: dict[str, Profile] = {}
        self.calls: list[str] = []
        self.select_error: StoreError | None = None
        self.privileged_error: StoreError | None = None
        self.insert_error: StoreError | None = None
        self.select_gate: asyncio.Event | None = None
        self.before_insert = None

    async def select_by_id(self, profile_id: str) -> StoreResult[Profile]:
        self.calls.append("select")
        if self.select_gate is not None:
            await self.select_gate.wait()
        if self.select_error is not None:
            return StoreResult.failure(self.select_error)
        return StoreResult.success(self.rows.get(profile_id))

    async def insert(self, profile: Profile) -> StoreResult[Profile]:
        self.calls.append("insert")
        if self.before_insert is not None:
            self.before_insert(profile)
        if profile.id in self.rows:
            return StoreResult.failure(StoreError(kind=StoreErrorKind.CONFLICT, message="duplicate", status_code=409))
        if self.insert_error is not None:
            return StoreResult.failure(self.insert_error)
        self.rows[profile.id] = profile
        return StoreResult.success(profile)

    async def upsert_via_privileged_call(self, profile_id: str, name: str, role: str) -> StoreResult[Profile]:
        self.calls.append("privileged")
        if self.privileged_error is not None:
            return StoreResult.failure(self.privileged_error)
        existing = self.rows.get(profile_id)
        saved = Profile(id=profile_id, name=name, role=existing.role if existing else "user")
        self.rows[profile_id] = saved
        return StoreResult.success(saved)


class FakeIdentitySource:
    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, Identity]] = {}
        self.session: Session | None = None
        self.handlers: list = []
        self.sign_out_error: IdentityRequestError | None = None

    def add_account(self, email: str, password: str, metadata: dict[str, Any] | None = None) -> Identity:
        identity = Identity(id=str(uuid4()), email=email, user_metadata=dict(metadata or {}))
        self.accounts[email] = (password, identity)
        return identity

    def session_for(self, identity: Identity) -> Session:
        return Session(access_token=f"access-{identity.id}", refresh_token=f"refresh-{identity.id}", user=identity)

    async def get_current_session(self) -> Session | None:
        return self.session

    def on_session_change(self, handler):
        self.handlers.append(handler)
        return lambda: self.handlers.remove(handler)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise IdentityRequestError("INVALID_CREDENTIALS", "Invalid login credentials", status_code=401)
        return await self._signed_in(account[1])

    async def sign_up(self, email: str, password: str, metadata: dict[str, Any]) -> Session:
        if email in self.accounts:
            raise IdentityRequestError("USER_ALREADY_EXISTS", "email already registered", status_code=409)
        return await self._signed_in(self.add_account(email, password, metadata))

    async def sign_out(self) -> None:
        self.session = None
        await self.emit(AuthChangeEvent.SIGNED_OUT, None)
        if self.sign_out_error is not None:
            raise self.sign_out_error

    async def emit(self, event: AuthChangeEvent, session: Session | None) -> None:
        for handler in list(self.handlers):
            await handler(event, session)

    async def _signed_in(self, identity: Identity) -> Session:
        self.session = self.session_for(identity)
        await self.emit(AuthChangeEvent.SIGNED_IN, self.session)
        return self.session


@pytest.fixture
def profile_store() -> FakeProfileStore:
    return FakeProfileStore()


@pytest.fixture
def identity_source() -> FakeIdentitySource:
    return FakeIdentitySource()
