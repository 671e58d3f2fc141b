from __future__ import annotations

import asyncio
from datetime import datetime

from devkit.db import AsyncDatabaseManager, Base, is_postgres_dsn, is_unique_violation
from devkit.timezone import now_wib, now_wib_iso, parse_iso_datetime
from sqlalchemy import DateTime, String, literal_column, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column

from profile_service.models import ProfileRecord
from shared.naming import DEFAULT_DISPLAY_NAME

_PROFILE_SCHEMA = "profile"


class ProfileAlreadyExistsError(RuntimeError):
    pass


class ProfileORM(Base):
    __tablename__ = "profiles"
    __table_args__ = {"schema": _PROFILE_SCHEMA}

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ProfileStore:
    """Profiles keyed by identity id.

    Every write is idempotent on the primary key. ``created_at`` is written
    once, by whichever writer creates the row.
    """

    def __init__(self, database_url: str | None = None) -> None:
        self._profiles: dict[str, ProfileRecord] = {}
        self._lock = asyncio.Lock()
        self._db = AsyncDatabaseManager(database_url) if is_postgres_dsn(database_url) and database_url else None
        self._orm_ready = False

    async def ensure_ready(self) -> None:
        await self._ensure_orm_ready()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.disconnect()

    async def get(self, profile_id: str) -> ProfileRecord | None:
        if self._db is None:
            return self._profiles.get(profile_id)

        await self._ensure_orm_ready()

        async def _run(session):
            row = await session.get(ProfileORM, profile_id)
            return self._to_record(row) if row is not None else None

        return await self._db.run_with_session(_run)

    async def list_profiles(self) -> list[ProfileRecord]:
        if self._db is None:
            return sorted(self._profiles.values(), key=lambda item: item.created_at)

        await self._ensure_orm_ready()

        async def _run(session):
            rows = (await session.scalars(select(ProfileORM).order_by(ProfileORM.created_at))).all()
            return [self._to_record(row) for row in rows]

        return await self._db.run_with_session(_run)

    async def insert(self, profile: ProfileRecord) -> ProfileRecord:
        if self._db is None:
            async with self._lock:
                if profile.id in self._profiles:
                    raise ProfileAlreadyExistsError(f"profile {profile.id} already exists")
                self._profiles[profile.id] = profile
                return profile

        await self._ensure_orm_ready()

        async def _run(session):
            now = now_wib()
            row = ProfileORM(
                id=profile.id,
                name=profile.name,
                role=profile.role,
                created_at=parse_iso_datetime(profile.created_at) or now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()
            return self._to_record(row)

        try:
            return await self._db.run_with_session(_run)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise ProfileAlreadyExistsError(f"profile {profile.id} already exists") from exc
            raise

    async def upsert(
        self,
        profile_id: str,
        name: str | None,
        role: str,
        *,
        update_role: bool = False,
    ) -> tuple[ProfileRecord, bool]:
        """Insert, or on conflict refresh the name (and the role only when
        ``update_role``). Returns ``(row, created)``.

        A missing ``name`` inserts ``"User"`` and leaves an existing name alone.
        """
        if self._db is None:
            async with self._lock:
                existing = self._profiles.get(profile_id)
                if existing is not None:
                    if name:
                        existing.name = name
                    if update_role:
                        existing.role = role
                    existing.updated_at = now_wib_iso()
                    return existing, False
                created = ProfileRecord(id=profile_id, name=name or DEFAULT_DISPLAY_NAME, role=role)
                self._profiles[profile_id] = created
                return created, True

        await self._ensure_orm_ready()

        async def _run(session):
            now = now_wib()
            conflict_updates: dict[str, object] = {"updated_at": now}
            if name:
                conflict_updates["name"] = name
            if update_role:
                conflict_updates["role"] = role
            stmt = (
                pg_insert(ProfileORM)
                .values(id=profile_id, name=name or DEFAULT_DISPLAY_NAME, role=role, created_at=now, updated_at=now)
                .on_conflict_do_update(index_elements=[ProfileORM.id], set_=conflict_updates)
                .returning(ProfileORM, literal_column("(xmax = 0)").label("inserted"))
            )
            row, inserted = (await session.execute(stmt)).one()
            return self._to_record(row), bool(inserted)

        return await self._db.run_with_session(_run)

    async def create_if_absent(
        self,
        profile_id: str,
        name: str,
        role: str = "user",
        *,
        created_at: str | None = None,
    ) -> tuple[ProfileRecord, bool]:
        if self._db is None:
            async with self._lock:
                existing = self._profiles.get(profile_id)
                if existing is not None:
                    return existing, False
                created = ProfileRecord(id=profile_id, name=name, role=role)
                if created_at and parse_iso_datetime(created_at) is not None:
                    created.created_at = created_at
                self._profiles[profile_id] = created
                return created, True

        await self._ensure_orm_ready()

        async def _run(session):
            now = now_wib()
            stmt = (
                pg_insert(ProfileORM)
                .values(
                    id=profile_id,
                    name=name,
                    role=role,
                    created_at=parse_iso_datetime(created_at) or now,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=[ProfileORM.id])
                .returning(ProfileORM.id)
            )
            inserted = (await session.execute(stmt)).first() is not None
            row = await session.get(ProfileORM, profile_id)
            return self._to_record(row), inserted

        return await self._db.run_with_session(_run)

    async def update_name(self, profile_id: str, name: str) -> ProfileRecord | None:
        return await self._update(profile_id, name=name)

    async def set_role(self, profile_id: str, role: str) -> ProfileRecord | None:
        return await self._update(profile_id, role=role)

    async def _update(self, profile_id: str, **changes: str) -> ProfileRecord | None:
        if self._db is None:
            async with self._lock:
                existing = self._profiles.get(profile_id)
                if existing is None:
                    return None
                for key, value in changes.items():
                    setattr(existing, key, value)
                existing.updated_at = now_wib_iso()
                return existing

        await self._ensure_orm_ready()

        async def _run(session):
            row = await session.get(ProfileORM, profile_id)
            if row is None:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = now_wib()
            return self._to_record(row)

        return await self._db.run_with_session(_run)

    async def _ensure_orm_ready(self) -> None:
        if self._db is None or self._orm_ready:
            return
        await self._db.prepare_schema(_PROFILE_SCHEMA, Base.metadata)
        self._orm_ready = True

    def _to_record(self, row: ProfileORM) -> ProfileRecord:
        return ProfileRecord(
            id=row.id,
            name=row.name,
            role=row.role,
            created_at=row.created_at.isoformat() if row.created_at else now_wib_iso(),
            updated_at=row.updated_at.isoformat() if row.updated_at else now_wib_iso(),
        )
