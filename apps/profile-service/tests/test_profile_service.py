import json
import time

import pytest
from fastapi.testclient import TestClient

from profile_service.app import create_app
from shared.security import JWTManager, build_event_signature

_SECRET = "test-jwt-secret"
_HMAC = "hmac-secret"
_ALICE = "aaaaaaaa-0000-0000-0000-000000000001"
_BOB = "bbbbbbbb-0000-0000-0000-000000000002"
_ROOT = "cccccccc-0000-0000-0000-000000000003"


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("JWT_SECRET_KEY", _SECRET)
    monkeypatch.setenv("INTERNAL_EVENT_HMAC_SECRET", _HMAC)
    return TestClient(create_app())


def _auth(identity_id: str) -> dict[str, str]:
    token = JWTManager(_SECRET).issue_access_token(identity_id, f"{identity_id}@x.com", f"sid-{identity_id}")
    return {"Authorization": f"Bearer {token}"}


def _signed_post(client: TestClient, path: str, payload: dict):
    body = json.dumps(payload)
    timestamp = str(int(time.time()))
    return client.post(
        path,
        content=body.encode("utf-8"),
        headers={
            "x-event-signature": build_event_signature(_HMAC, timestamp, body),
            "x-event-timestamp": timestamp,
            "content-type": "application/json",
        },
    )


def _make_admin(client: TestClient, identity_id: str = _ROOT) -> None:
    _signed_post(client, "/internal/profiles/on-identity-created", {"id": identity_id, "email": "root@x.com"})
    assigned = _signed_post(client, "/internal/profiles/assign-role", {"id": identity_id, "role": "admin"})
    assert assigned.status_code == 200


def test_owner_inserts_own_profile_as_user(client: TestClient) -> None:
    response = client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))

    assert response.status_code == 201
    assert response.json()["data"]["role"] == "user"

    fetched = client.get(f"/v1/profiles/{_ALICE}", headers=_auth(_ALICE))
    assert fetched.status_code == 200
    assert fetched.json()["data"]["name"] == "Alice"


def test_insert_for_someone_else_is_rejected_by_policy(client: TestClient) -> None:
    response = client.post("/v1/profiles", json={"id": _BOB, "name": "Bob"}, headers=_auth(_ALICE))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ROW_LEVEL_SECURITY"


def test_self_insert_cannot_claim_admin(client: TestClient) -> None:
    response = client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice", "role": "admin"}, headers=_auth(_ALICE))

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "ROW_LEVEL_SECURITY"


def test_duplicate_insert_returns_conflict(client: TestClient) -> None:
    client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))

    second = client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))

    assert second.status_code == 409
    assert second.json()["error"]["code"] == "DUPLICATE_PROFILE"


def test_reads_of_foreign_rows_look_absent(client: TestClient) -> None:
    client.post("/v1/profiles", json={"id": _BOB, "name": "Bob"}, headers=_auth(_BOB))

    response = client.get(f"/v1/profiles/{_BOB}", headers=_auth(_ALICE))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PROFILE_NOT_FOUND"


def test_missing_bearer_is_unauthorized(client: TestClient) -> None:
    response = client.get(f"/v1/profiles/{_ALICE}")

    assert response.status_code == 401


def test_privileged_call_creates_user_and_coerces_role(client: TestClient) -> None:
    response = client.post(
        "/v1/rpc/create_user_profile",
        json={"user_id": _ALICE, "user_name": "Alice", "user_role": "admin"},
        headers=_auth(_ALICE),
    )

    assert response.status_code == 200
    assert response.json()["data"]["role"] == "user"
    assert response.json()["meta"]["created"] is True


def test_privileged_call_conflict_updates_name_only(client: TestClient) -> None:
    first = client.post(
        "/v1/rpc/create_user_profile",
        json={"user_name": "Alice"},
        headers=_auth(_ALICE),
    ).json()["data"]

    second = client.post(
        "/v1/rpc/create_user_profile",
        json={"user_name": "Alice Renamed", "user_role": "admin"},
        headers=_auth(_ALICE),
    )

    data = second.json()["data"]
    assert second.json()["meta"]["created"] is False
    assert data["name"] == "Alice Renamed"
    assert data["role"] == "user"
    assert data["created_at"] == first["created_at"]


def test_privileged_call_cannot_target_other_identity(client: TestClient) -> None:
    response = client.post(
        "/v1/rpc/create_user_profile",
        json={"user_id": _BOB, "user_name": "Bob"},
        headers=_auth(_ALICE),
    )

    assert response.status_code == 403


def test_admin_creation_path(client: TestClient) -> None:
    _make_admin(client)

    response = client.post(
        "/v1/rpc/create_user_profile",
        json={"user_id": _BOB, "user_name": "Boss Bob", "user_role": "admin"},
        headers=_auth(_ROOT),
    )

    assert response.status_code == 200
    assert response.json()["data"]["role"] == "admin"


def test_admin_lists_all_user_lists_own(client: TestClient) -> None:
    _make_admin(client)
    client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))
    client.post("/v1/profiles", json={"id": _BOB, "name": "Bob"}, headers=_auth(_BOB))

    as_admin = client.get("/v1/profiles", headers=_auth(_ROOT)).json()
    as_alice = client.get("/v1/profiles", headers=_auth(_ALICE)).json()

    assert as_admin["meta"]["total"] == 3
    assert [row["id"] for row in as_alice["data"]] == [_ALICE]


def test_role_assignment_is_admin_only(client: TestClient) -> None:
    _make_admin(client)
    client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))

    denied = client.put(f"/v1/profiles/{_ALICE}/role", json={"role": "admin"}, headers=_auth(_ALICE))
    granted = client.put(f"/v1/profiles/{_ALICE}/role", json={"role": "admin"}, headers=_auth(_ROOT))

    assert denied.status_code == 403
    assert granted.status_code == 200
    assert granted.json()["data"]["role"] == "admin"


def test_owner_can_rename_but_not_others(client: TestClient) -> None:
    client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))

    renamed = client.patch(f"/v1/profiles/{_ALICE}", json={"name": "Alicia"}, headers=_auth(_ALICE))
    foreign = client.patch(f"/v1/profiles/{_ALICE}", json={"name": "Hacked"}, headers=_auth(_BOB))

    assert renamed.json()["data"]["name"] == "Alicia"
    assert foreign.status_code == 404


def test_rename_rejects_blank_name_and_trims_padding(client: TestClient) -> None:
    client.post("/v1/profiles", json={"id": _ALICE, "name": "  Alice  "}, headers=_auth(_ALICE))

    blank = client.patch(f"/v1/profiles/{_ALICE}", json={"name": "   "}, headers=_auth(_ALICE))
    current = client.get(f"/v1/profiles/{_ALICE}", headers=_auth(_ALICE)).json()["data"]

    assert blank.status_code == 422
    assert current["name"] == "Alice"


def test_identity_created_trigger_applies_name_defaulting(client: TestClient) -> None:
    response = _signed_post(
        client,
        "/internal/profiles/on-identity-created",
        {"id": _ALICE, "email": "carol@x.com", "user_metadata": {"full_name": "Bob Lee"}},
    )
    repeat = _signed_post(
        client,
        "/internal/profiles/on-identity-created",
        {"id": _ALICE, "email": "carol@x.com", "user_metadata": {"name": "Other"}},
    )

    assert response.json()["data"]["name"] == "Bob Lee"
    assert response.json()["data"]["role"] == "user"
    assert repeat.json()["meta"]["created"] is False
    assert repeat.json()["data"]["name"] == "Bob Lee"


def test_identity_created_trigger_rejects_unsigned_calls(client: TestClient) -> None:
    response = client.post("/internal/profiles/on-identity-created", json={"id": _ALICE})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


def test_backfill_creates_only_missing_profiles(client: TestClient) -> None:
    client.post("/v1/profiles", json={"id": _ALICE, "name": "Alice"}, headers=_auth(_ALICE))

    response = _signed_post(
        client,
        "/internal/profiles/backfill",
        {"identities": [{"id": _ALICE, "email": "alice@x.com"}, {"id": _BOB, "email": "bob@x.com"}]},
    )

    assert response.json()["data"] == {"created": 1, "created_ids": [_BOB]}
    bob = client.get(f"/v1/profiles/{_BOB}", headers=_auth(_BOB)).json()["data"]
    assert bob["name"] == "bob"


def test_privileged_call_logs_upsert_outcome(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("INFO", logger="profile_service.app"):
        response = client.post(
            "/v1/rpc/create_user_profile",
            json={"user_name": "Alice"},
            headers=_auth(_ALICE),
        )

    assert response.status_code == 200
    assert response.json()["meta"]["created"] is True
    record = next(r for r in caplog.records if r.getMessage() == "profile_upserted_via_rpc")
    assert record.was_created is True
    assert record.profile_id == _ALICE


def test_backfill_logs_created_count(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level("INFO", logger="profile_service.app"):
        response = _signed_post(
            client,
            "/internal/profiles/backfill",
            {"identities": [{"id": _BOB, "email": "bob@x.com"}]},
        )

    assert response.status_code == 200
    record = next(r for r in caplog.records if r.getMessage() == "profile_backfill_handled")
    assert record.created_count == 1
