from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date, datetime, time
from typing import Any
from uuid import uuid4

from devkit.db import AsyncDatabaseManager, Base, is_postgres_dsn
from devkit.timezone import now_wib, now_wib_iso
from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, Text, Time, select
from sqlalchemy.orm import Mapped, mapped_column

from shared.events.schema import ChangeType, build_change_envelope
from shipment_service.feed import ShipmentChangeFeed
from shipment_service.models import CompanySummary, ShipmentRecord, StatusHistoryEntry

_SHIPMENT_SCHEMA = "shipment"
_TABLE = "shipments"
_DATE_FIELDS = ("ship_date", "arrival_date")


class ShipmentNotFoundError(LookupError):
    pass


class ShipmentORM(Base):
    __tablename__ = _TABLE
    __table_args__ = {"schema": _SHIPMENT_SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    delivery_note_no: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    company: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    destination: Mapped[str] = mapped_column(String(500), nullable=False)
    driver_name: Mapped[str] = mapped_column(String(255), nullable=False)
    driver_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    ship_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    arrival_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    arrival_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="tertunda", index=True)
    constraint_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    tracking_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


class StatusHistoryORM(Base):
    __tablename__ = "status_history"
    __table_args__ = {"schema": _SHIPMENT_SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    shipment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey(f"{_SHIPMENT_SCHEMA}.{_TABLE}.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    previous_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    new_status: Mapped[str] = mapped_column(String(16), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ShipmentStore:
    """Shipments plus their status history.

    Every committed write is published to ``feed`` after the commit, so
    subscribers never see a change that was rolled back.
    """

    def __init__(self, database_url: str | None = None, *, feed: ShipmentChangeFeed | None = None) -> None:
        self._shipments: dict[str, ShipmentRecord] = {}
        self._history: dict[str, list[StatusHistoryEntry]] = {}
        self._lock = asyncio.Lock()
        self._feed = feed
        self._db = AsyncDatabaseManager(database_url) if is_postgres_dsn(database_url) and database_url else None
        self._orm_ready = False

    async def ensure_ready(self) -> None:
        await self._ensure_orm_ready()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.disconnect()

    async def list_shipments(self, *, status: str | None = None, driver_id: str | None = None) -> list[ShipmentRecord]:
        if self._db is None:
            rows = [
                replace(item)
                for item in self._shipments.values()
                if (status is None or item.status == status) and (driver_id is None or item.driver_id == driver_id)
            ]
            return sorted(rows, key=lambda item: item.created_at, reverse=True)

        await self._ensure_orm_ready()

        async def _run(session):
            query = select(ShipmentORM).order_by(ShipmentORM.created_at.desc())
            if status is not None:
                query = query.where(ShipmentORM.status == status)
            if driver_id is not None:
                query = query.where(ShipmentORM.driver_id == driver_id)
            return [self._to_record(row) for row in (await session.scalars(query)).all()]

        return await self._db.run_with_session(_run)

    async def get(self, shipment_id: str) -> ShipmentRecord | None:
        if self._db is None:
            found = self._shipments.get(shipment_id)
            return replace(found) if found is not None else None

        await self._ensure_orm_ready()

        async def _run(session):
            row = await session.get(ShipmentORM, shipment_id)
            return self._to_record(row) if row is not None else None

        return await self._db.run_with_session(_run)

    async def create(self, values: dict[str, Any], *, actor_id: str | None) -> ShipmentRecord:
        record = ShipmentRecord(id=str(uuid4()), updated_by=actor_id, **_serialize(values))
        if self._db is None:
            async with self._lock:
                self._shipments[record.id] = record
                created = replace(record)
        else:
            await self._ensure_orm_ready()

            async def _run(session):
                row = ShipmentORM(**_orm_values(record.to_dict()))
                session.add(row)
                await session.flush()
                return self._to_record(row)

            created = await self._db.run_with_session(_run)
        await self._publish(ChangeType.INSERT, record=created)
        return created

    async def update(
        self,
        shipment_id: str,
        changes: dict[str, Any],
        *,
        actor_id: str | None,
        notes: str | None = None,
    ) -> ShipmentRecord:
        """Apply ``changes``; a status change also appends a history entry."""
        changes = _serialize(changes)
        if self._db is None:
            async with self._lock:
                current = self._shipments.get(shipment_id)
                if current is None:
                    raise ShipmentNotFoundError(shipment_id)
                before = replace(current)
                updated = replace(current, **changes, updated_at=now_wib_iso(), updated_by=actor_id)
                self._shipments[shipment_id] = updated
                if updated.status != before.status:
                    self._history.setdefault(shipment_id, []).append(
                        StatusHistoryEntry(
                            id=str(uuid4()),
                            shipment_id=shipment_id,
                            previous_status=before.status,
                            new_status=updated.status,
                            notes=notes,
                            created_by=actor_id,
                        )
                    )
                after = replace(updated)
        else:
            await self._ensure_orm_ready()

            async def _run(session):
                row = await session.get(ShipmentORM, shipment_id)
                if row is None:
                    raise ShipmentNotFoundError(shipment_id)
                previous = self._to_record(row)
                for key, value in _orm_values(changes).items():
                    setattr(row, key, value)
                now = now_wib()
                row.updated_at = now
                row.updated_by = actor_id
                if row.status != previous.status:
                    session.add(
                        StatusHistoryORM(
                            id=str(uuid4()),
                            shipment_id=shipment_id,
                            previous_status=previous.status,
                            new_status=row.status,
                            notes=notes,
                            created_by=actor_id,
                            created_at=now,
                        )
                    )
                await session.flush()
                return previous, self._to_record(row)

            before, after = await self._db.run_with_session(_run)
        await self._publish(ChangeType.UPDATE, record=after, old_record=before)
        return after

    async def delete(self, shipment_id: str) -> ShipmentRecord:
        if self._db is None:
            async with self._lock:
                removed = self._shipments.pop(shipment_id, None)
                if removed is None:
                    raise ShipmentNotFoundError(shipment_id)
                self._history.pop(shipment_id, None)
        else:
            await self._ensure_orm_ready()

            async def _run(session):
                row = await session.get(ShipmentORM, shipment_id)
                if row is None:
                    raise ShipmentNotFoundError(shipment_id)
                record = self._to_record(row)
                await session.delete(row)
                return record

            removed = await self._db.run_with_session(_run)
        await self._publish(ChangeType.DELETE, old_record=removed)
        return removed

    async def list_history(self, shipment_id: str) -> list[StatusHistoryEntry]:
        if self._db is None:
            return list(self._history.get(shipment_id, []))

        await self._ensure_orm_ready()

        async def _run(session):
            query = (
                select(StatusHistoryORM)
                .where(StatusHistoryORM.shipment_id == shipment_id)
                .order_by(StatusHistoryORM.created_at)
            )
            return [
                StatusHistoryEntry(
                    id=row.id,
                    shipment_id=row.shipment_id,
                    previous_status=row.previous_status,
                    new_status=row.new_status,
                    notes=row.notes,
                    created_by=row.created_by,
                    created_at=row.created_at.isoformat(),
                )
                for row in (await session.scalars(query)).all()
            ]

        return await self._db.run_with_session(_run)

    async def company_summaries(self) -> list[CompanySummary]:
        summaries: dict[str, CompanySummary] = {}
        for shipment in await self.list_shipments():
            summaries.setdefault(shipment.company, CompanySummary(company=shipment.company)).count(shipment.status)
        return [summaries[key] for key in sorted(summaries)]

    async def _publish(
        self,
        change_type: ChangeType,
        *,
        record: ShipmentRecord | None = None,
        old_record: ShipmentRecord | None = None,
    ) -> None:
        if self._feed is None:
            return
        await self._feed.publish(
            build_change_envelope(
                change_type,
                _TABLE,
                record=record.to_dict() if record is not None else None,
                old_record=old_record.to_dict() if old_record is not None else None,
            )
        )

    async def _ensure_orm_ready(self) -> None:
        if self._db is None or self._orm_ready:
            return
        await self._db.prepare_schema(_SHIPMENT_SCHEMA, Base.metadata)
        self._orm_ready = True

    def _to_record(self, row: ShipmentORM) -> ShipmentRecord:
        return ShipmentRecord(
            id=row.id,
            delivery_note_no=row.delivery_note_no,
            company=row.company,
            destination=row.destination,
            driver_name=row.driver_name,
            driver_id=row.driver_id,
            ship_date=row.ship_date.isoformat() if row.ship_date else None,
            arrival_date=row.arrival_date.isoformat() if row.arrival_date else None,
            arrival_time=row.arrival_time.strftime("%H:%M") if row.arrival_time else None,
            status=row.status,
            constraint_note=row.constraint_note,
            qty=row.qty,
            current_lat=row.current_lat,
            current_lng=row.current_lng,
            tracking_url=row.tracking_url,
            created_at=row.created_at.isoformat() if row.created_at else now_wib_iso(),
            updated_at=row.updated_at.isoformat() if row.updated_at else now_wib_iso(),
            updated_by=row.updated_by,
        )


def _serialize(values: dict[str, Any]) -> dict[str, Any]:
    """Request values (dates, times, enums) as the plain strings records hold."""
    serialized: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, date):
            serialized[key] = value.isoformat()
        elif isinstance(value, time):
            serialized[key] = value.strftime("%H:%M")
        elif hasattr(value, "value"):
            serialized[key] = value.value
        else:
            serialized[key] = value
    return serialized


def _orm_values(values: dict[str, Any]) -> dict[str, Any]:
    converted = dict(values)
    for key in _DATE_FIELDS:
        if converted.get(key):
            converted[key] = date.fromisoformat(converted[key])
    if converted.get("arrival_time"):
        converted["arrival_time"] = time.fromisoformat(converted["arrival_time"])
    for key in ("created_at", "updated_at"):
        if isinstance(converted.get(key), str):
            converted[key] = datetime.fromisoformat(converted[key])
    return converted
