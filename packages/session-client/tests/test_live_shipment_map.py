from session_client.realtime import DEFAULT_CENTER, LiveShipmentMap
from shared.events.schema import ChangeType, build_change_envelope


def _row(shipment_id: str, status: str = "tertunda", lat: float | None = -6.3, lng: float | None = 106.9) -> dict:
    return {
        "id": shipment_id,
        "delivery_note_no": f"SJ-{shipment_id}",
        "company": "PT Maju",
        "driver_name": "MULYADI",
        "status": status,
        "current_lat": lat,
        "current_lng": lng,
    }


def test_load_keeps_located_rows_matching_filter() -> None:
    live_map = LiveShipmentMap()

    live_map.load([_row("1"), _row("2", status="terkirim"), _row("3", lat=None)])

    assert [marker.shipment_id for marker in live_map.markers] == ["1"]
    assert live_map.center == (-6.3, 106.9)


def test_center_defaults_to_jakarta() -> None:
    assert LiveShipmentMap().center == DEFAULT_CENTER == (-6.2088, 106.8456)


def test_location_update_moves_marker_and_redraws() -> None:
    redraws: list[int] = []
    live_map = LiveShipmentMap(on_change=lambda markers: redraws.append(len(markers)))
    live_map.load([_row("1")])

    changed = live_map.apply(
        build_change_envelope(
            ChangeType.UPDATE,
            "shipments",
            record=_row("1", lat=-6.1, lng=106.7),
            old_record=_row("1"),
        )
    )

    assert changed is True
    assert (live_map.markers[0].lat, live_map.markers[0].lng) == (-6.1, 106.7)
    assert redraws == [1, 1]


def test_row_leaving_filter_is_removed() -> None:
    live_map = LiveShipmentMap()
    live_map.load([_row("1")])

    envelope = build_change_envelope(
        ChangeType.UPDATE,
        "shipments",
        record=_row("1", status="terkirim"),
        old_record=_row("1"),
    )

    assert live_map.apply(envelope.to_dict()) is True
    assert live_map.markers == []


def test_insert_without_location_is_ignored_and_delete_removes() -> None:
    live_map = LiveShipmentMap()
    live_map.load([_row("1")])

    assert live_map.apply(build_change_envelope(ChangeType.INSERT, "shipments", record=_row("2", lat=None))) is False
    assert live_map.apply(build_change_envelope(ChangeType.DELETE, "shipments", old_record=_row("1"))) is True
    assert live_map.markers == []


def test_closed_map_stops_applying_changes() -> None:
    redraws: list[int] = []
    live_map = LiveShipmentMap(on_change=lambda markers: redraws.append(len(markers)))
    live_map.close()

    assert live_map.apply(build_change_envelope(ChangeType.INSERT, "shipments", record=_row("1"))) is False
    assert live_map.markers == []
    assert redraws == []
