from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import hmac
import secrets
from typing import Any
from uuid import NAMESPACE_URL, uuid4, uuid5

from devkit.db import AsyncDatabaseManager, Base, is_postgres_dsn, is_unique_violation
from devkit.timezone import now_wib_iso
from sqlalchemy import JSON, DateTime, String, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column

_AUTH_SCHEMA = "auth"
_PASSWORD_ALGO = "pbkdf2_sha256"
_PASSWORD_ITERATIONS = 310000


def hash_password(password: str) -> str:
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PASSWORD_ITERATIONS)
    return f"{_PASSWORD_ALGO}${_PASSWORD_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    parts = encoded.split("$")
    if len(parts) != 4 or parts[0] != _PASSWORD_ALGO:
        return False
    try:
        iterations = int(parts[1])
        salt = bytes.fromhex(parts[2])
        expected = bytes.fromhex(parts[3])
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(digest, expected)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def seeded_identity_id(email: str) -> str:
    """Stable id for configured dev identities so restarts keep their profiles."""
    return str(uuid5(NAMESPACE_URL, f"identity:{normalize_email(email)}"))


class IdentityAlreadyExistsError(RuntimeError):
    pass


@dataclass
class IdentityRecord:
    id: str
    email: str
    user_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=now_wib_iso)

    def to_public(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "user_metadata": dict(self.user_metadata),
            "created_at": self.created_at,
        }


class IdentityORM(Base):
    __tablename__ = "identities"
    __table_args__ = {"schema": _AUTH_SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    user_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class IdentityStore:
    def __init__(
        self,
        *,
        database_url: str | None = None,
        seed_users: list[dict[str, Any]] | None = None,
    ) -> None:
        self._seed_users = seed_users or []
        self._db = AsyncDatabaseManager(database_url) if is_postgres_dsn(database_url) and database_url else None
        self._orm_ready = False
        self._lock = asyncio.Lock()
        self._identities: dict[str, IdentityRecord] = {}
        self._password_hashes: dict[str, str] = {}
        self._id_by_email: dict[str, str] = {}
        if self._db is None:
            for item in self._seed_users:
                self._add_in_memory(
                    identity_id=seeded_identity_id(item["email"]),
                    email=item["email"],
                    password=item["password"],
                    metadata=dict(item.get("user_metadata") or {}),
                )

    async def ensure_ready(self) -> None:
        await self._ensure_orm_ready()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.disconnect()

    async def sign_up(self, *, email: str, password: str, metadata: dict[str, Any] | None = None) -> IdentityRecord:
        normalized_email = normalize_email(email)
        user_metadata = dict(metadata or {})
        if self._db is None:
            async with self._lock:
                if normalized_email in self._id_by_email:
                    raise IdentityAlreadyExistsError("User already registered")
                return self._add_in_memory(
                    identity_id=str(uuid4()),
                    email=normalized_email,
                    password=password,
                    metadata=user_metadata,
                )

        await self._ensure_orm_ready()

        async def _run(session):
            row = IdentityORM(
                id=str(uuid4()),
                email=normalized_email,
                password_hash=hash_password(password),
                user_metadata=user_metadata,
            )
            session.add(row)
            await session.flush()
            await session.refresh(row)
            return self._to_record(row)

        try:
            return await self._db.run_with_session(_run)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise IdentityAlreadyExistsError("User already registered") from exc
            raise

    async def authenticate(self, *, email: str, password: str) -> IdentityRecord | None:
        normalized_email = normalize_email(email)
        if self._db is None:
            identity_id = self._id_by_email.get(normalized_email)
            if identity_id is None:
                return None
            if not verify_password(password, self._password_hashes[identity_id]):
                return None
            return self._identities[identity_id]

        await self._ensure_orm_ready()

        async def _run(session):
            query = select(IdentityORM).where(IdentityORM.email == normalized_email)
            return (await session.scalars(query)).first()

        row = await self._db.run_with_session(_run)
        if row is None or not verify_password(password, row.password_hash):
            return None
        return self._to_record(row)

    async def get_by_id(self, identity_id: str) -> IdentityRecord | None:
        if self._db is None:
            return self._identities.get(identity_id)

        await self._ensure_orm_ready()

        async def _run(session):
            row = await session.get(IdentityORM, identity_id)
            return self._to_record(row) if row is not None else None

        return await self._db.run_with_session(_run)

    async def list_identities(self) -> list[IdentityRecord]:
        if self._db is None:
            return sorted(self._identities.values(), key=lambda item: item.created_at)

        await self._ensure_orm_ready()

        async def _run(session):
            rows = (await session.scalars(select(IdentityORM).order_by(IdentityORM.created_at))).all()
            return [self._to_record(row) for row in rows]

        return await self._db.run_with_session(_run)

    def _add_in_memory(
        self,
        *,
        identity_id: str,
        email: str,
        password: str,
        metadata: dict[str, Any],
    ) -> IdentityRecord:
        normalized_email = normalize_email(email)
        record = IdentityRecord(id=identity_id, email=normalized_email, user_metadata=metadata)
        self._identities[identity_id] = record
        self._password_hashes[identity_id] = hash_password(password)
        self._id_by_email[normalized_email] = identity_id
        return record

    async def _ensure_orm_ready(self) -> None:
        if self._db is None or self._orm_ready:
            return
        await self._db.prepare_schema(_AUTH_SCHEMA, Base.metadata)
        await self._seed_identities()
        self._orm_ready = True

    async def _seed_identities(self) -> None:
        if self._db is None or not self._seed_users:
            return

        async def _run(session):
            for item in self._seed_users:
                identity_id = seeded_identity_id(item["email"])
                if await session.get(IdentityORM, identity_id) is not None:
                    continue
                session.add(
                    IdentityORM(
                        id=identity_id,
                        email=normalize_email(item["email"]),
                        password_hash=hash_password(item["password"]),
                        user_metadata=dict(item.get("user_metadata") or {}),
                    )
                )

        await self._db.run_with_session(_run)

    def _to_record(self, row: IdentityORM) -> IdentityRecord:
        return IdentityRecord(
            id=row.id,
            email=row.email,
            user_metadata=dict(row.user_metadata or {}),
            created_at=row.created_at.isoformat() if row.created_at else now_wib_iso(),
        )
