from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from devkit.timezone import now_wib_iso


class ShipmentStatus(StrEnum):
    PENDING = "tertunda"
    DELIVERED = "terkirim"
    FAILED = "gagal"


# Offered to drivers when reporting a failed delivery; free text is accepted too.
CONSTRAINT_OPTIONS = (
    "Cuaca buruk",
    "Kerusakan kendaraan",
    "Kemacetan parah",
    "Dokumen tidak lengkap",
    "Barang rusak",
    "Alamat tidak ditemukan",
    "Penerima tidak ada",
    "Akses jalan terblokir",
    "Kendala lainnya",
)


@dataclass
class ShipmentRecord:
    id: str
    delivery_note_no: str
    company: str
    destination: str
    driver_name: str
    driver_id: str | None = None
    ship_date: str | None = None
    arrival_date: str | None = None
    arrival_time: str | None = None
    status: str = ShipmentStatus.PENDING.value
    constraint_note: str | None = None
    qty: int = 0
    current_lat: float | None = None
    current_lng: float | None = None
    tracking_url: str | None = None
    created_at: str = field(default_factory=now_wib_iso)
    updated_at: str = field(default_factory=now_wib_iso)
    updated_by: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class StatusHistoryEntry:
    id: str
    shipment_id: str
    previous_status: str | None
    new_status: str
    notes: str | None = None
    created_by: str | None = None
    created_at: str = field(default_factory=now_wib_iso)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CompanySummary:
    company: str
    total: int = 0
    delivered: int = 0
    pending: int = 0
    failed: int = 0

    def count(self, status: str) -> None:
        self.total += 1
        if status == ShipmentStatus.DELIVERED:
            self.delivered += 1
        elif status == ShipmentStatus.FAILED:
            self.failed += 1
        else:
            self.pending += 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Caller:
    identity_id: str
    role: str = "user"
    access_token: str = field(default="", repr=False)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def is_assigned_to(self, shipment: ShipmentRecord) -> bool:
        return shipment.driver_id == self.identity_id
