"""Driver locations for the tracking map, kept current from the change channel."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
import logging
from typing import Any

import httpx

from shared.events.schema import ChangeEnvelope, ChangeType

logger = logging.getLogger(__name__)

DEFAULT_CENTER = (-6.2088, 106.8456)  # Jakarta
DEFAULT_STATUS_FILTER = "tertunda"


@dataclass(frozen=True)
class MapMarker:
    shipment_id: str
    lat: float
    lng: float
    delivery_note_no: str = ""
    company: str = ""
    destination: str = ""
    driver_name: str = ""
    status: str = ""
    updated_at: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> MapMarker | None:
        lat, lng = record.get("current_lat"), record.get("current_lng")
        if lat is None or lng is None:
            return None
        return cls(
            shipment_id=str(record["id"]),
            lat=float(lat),
            lng=float(lng),
            delivery_note_no=str(record.get("delivery_note_no") or ""),
            company=str(record.get("company") or ""),
            destination=str(record.get("destination") or ""),
            driver_name=str(record.get("driver_name") or ""),
            status=str(record.get("status") or ""),
            updated_at=record.get("updated_at"),
        )


class LiveShipmentMap:
    def __init__(
        self,
        *,
        status_filter: str | None = DEFAULT_STATUS_FILTER,
        on_change: Callable[[list[MapMarker]], None] | None = None,
    ) -> None:
        self._status_filter = status_filter
        self._on_change = on_change
        self._markers: dict[str, MapMarker] = {}
        self._closed = False

    @property
    def markers(self) -> list[MapMarker]:
        return list(self._markers.values())

    @property
    def center(self) -> tuple[float, float]:
        if not self._markers:
            return DEFAULT_CENTER
        first = next(iter(self._markers.values()))
        return (first.lat, first.lng)

    @property
    def closed(self) -> bool:
        return self._closed

    def load(self, shipments: Iterable[dict[str, Any]]) -> None:
        self._markers.clear()
        for record in shipments:
            if not self._matches(record):
                continue
            marker = MapMarker.from_record(record)
            if marker is not None:
                self._markers[marker.shipment_id] = marker
        self._notify()

    def apply(self, change: ChangeEnvelope | dict[str, Any]) -> bool:
        """Fold one change into the markers; True when the map changed."""
        if self._closed:
            return False
        envelope = change if isinstance(change, ChangeEnvelope) else ChangeEnvelope.from_dict(change)
        if envelope.change_type == ChangeType.DELETE:
            changed = self._markers.pop(str(envelope.row_id), None) is not None
        else:
            changed = self._upsert(envelope.record or {})
        if changed:
            self._notify()
        return changed

    def close(self) -> None:
        self._closed = True
        self._on_change = None

    def _upsert(self, record: dict[str, Any]) -> bool:
        shipment_id = record.get("id")
        if shipment_id is None:
            return False
        marker = MapMarker.from_record(record) if self._matches(record) else None
        if marker is None:
            # left the filter or lost its location
            return self._markers.pop(str(shipment_id), None) is not None
        if self._markers.get(marker.shipment_id) == marker:
            return False
        self._markers[marker.shipment_id] = marker
        return True

    def _matches(self, record: dict[str, Any]) -> bool:
        return self._status_filter is None or record.get("status") == self._status_filter

    def _notify(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self.markers)
        except Exception:
            logger.exception("live_map_redraw_failed")


async def fetch_located_shipments(
    base_url: str,
    access_token: str,
    *,
    status: str | None = DEFAULT_STATUS_FILTER,
    timeout_seconds: float = 5.0,
    client_factory: Callable[[], httpx.AsyncClient] | None = None,
) -> list[dict[str, Any]]:
    """Shipments with a known location, as the map's initial state."""
    params = {"status": status} if status else {}
    factory = client_factory or (lambda: httpx.AsyncClient(timeout=timeout_seconds))
    async with factory() as client:
        response = await client.get(
            f"{base_url.rstrip('/')}/v1/shipments",
            params=params,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
    rows = response.json().get("data") or []
    return [row for row in rows if row.get("current_lat") is not None and row.get("current_lng") is not None]
