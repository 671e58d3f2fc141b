from __future__ import annotations

from datetime import date, time

from pydantic import BaseModel, Field, field_validator

from shipment_service.models import ShipmentStatus


class ShipmentCreateRequest(BaseModel):
    delivery_note_no: str = Field(min_length=1, max_length=64)
    company: str = Field(min_length=1, max_length=255)
    destination: str = Field(min_length=1, max_length=500)
    driver_name: str = Field(min_length=1, max_length=255)
    driver_id: str | None = Field(default=None, max_length=64)
    ship_date: date | None = None
    arrival_date: date | None = None
    arrival_time: time | None = None
    status: ShipmentStatus = ShipmentStatus.PENDING
    constraint_note: str | None = Field(default=None, max_length=500)
    qty: int = Field(default=0, ge=0)
    tracking_url: str | None = Field(default=None, max_length=2048)


class ShipmentUpdateRequest(BaseModel):
    delivery_note_no: str | None = Field(default=None, min_length=1, max_length=64)
    company: str | None = Field(default=None, min_length=1, max_length=255)
    destination: str | None = Field(default=None, min_length=1, max_length=500)
    driver_name: str | None = Field(default=None, min_length=1, max_length=255)
    driver_id: str | None = Field(default=None, max_length=64)
    ship_date: date | None = None
    arrival_date: date | None = None
    arrival_time: time | None = None
    status: ShipmentStatus | None = None
    constraint_note: str | None = Field(default=None, max_length=500)
    qty: int | None = Field(default=None, ge=0)
    tracking_url: str | None = Field(default=None, max_length=2048)
    notes: str | None = Field(default=None, max_length=500)

    @field_validator("constraint_note", "notes")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class LocationUpdateRequest(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
