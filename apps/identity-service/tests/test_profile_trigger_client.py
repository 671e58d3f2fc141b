import json

import httpx
import pytest

from identity_service.profile_trigger import ProfileTriggerClient
from identity_service.store import IdentityRecord
from shared.security import SIGNATURE_HEADER, TIMESTAMP_HEADER, verify_event_signature

_IDENTITY = IdentityRecord(id="11111111-1111-1111-1111-111111111111", email="d@x.com", user_metadata={"name": "Dina"})


def build_client(handler, *, max_retries: int = 3) -> ProfileTriggerClient:
    transport = httpx.MockTransport(handler)
    return ProfileTriggerClient(
        base_url="https://profiles.example.com",
        hmac_secret="hmac-secret",
        max_retries=max_retries,
        base_delay_seconds=0.0,
        client_factory=lambda: httpx.AsyncClient(transport=transport, timeout=5.0),
    )


@pytest.mark.asyncio
async def test_trigger_disabled_without_config() -> None:
    client = ProfileTriggerClient(base_url=None, hmac_secret="")

    assert client.enabled is False
    assert await client.notify_identity_created(_IDENTITY) is False


@pytest.mark.asyncio
async def test_trigger_posts_signed_identity() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/internal/profiles/on-identity-created"
        body = request.content.decode("utf-8")
        verify_event_signature(
            secret="hmac-secret",
            timestamp=request.headers[TIMESTAMP_HEADER],
            payload=body,
            signature=request.headers[SIGNATURE_HEADER],
        )
        seen.append(json.loads(body))
        return httpx.Response(200, json={"success": True, "data": {"created": True}})

    assert await build_client(handler).notify_identity_created(_IDENTITY) is True
    assert seen == [{"id": _IDENTITY.id, "email": "d@x.com", "user_metadata": {"name": "Dina"}}]


@pytest.mark.asyncio
async def test_trigger_retries_server_errors_then_succeeds() -> None:
    calls = {"count": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            return httpx.Response(503, json={"success": False})
        return httpx.Response(200, json={"success": True, "data": {}})

    assert await build_client(handler).notify_identity_created(_IDENTITY) is True
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_trigger_gives_up_without_raising() -> None:
    calls = {"count": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("profile-service down")

    assert await build_client(handler, max_retries=2).notify_identity_created(_IDENTITY) is False
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_trigger_does_not_retry_rejections() -> None:
    calls = {"count": 0}

    def handler(_: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(401, json={"success": False})

    assert await build_client(handler).notify_identity_created(_IDENTITY) is False
    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_backfill_returns_created_count() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/internal/profiles/backfill"
        assert len(json.loads(request.content)["identities"]) == 1
        return httpx.Response(200, json={"success": True, "data": {"created": 1}})

    assert await build_client(handler).request_backfill([_IDENTITY]) == 1


@pytest.mark.asyncio
async def test_backfill_logs_created_count(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "data": {"created": 2}})

    with caplog.at_level("INFO", logger="identity_service.profile_trigger"):
        assert await build_client(handler).request_backfill([_IDENTITY]) == 2

    record = next(r for r in caplog.records if r.getMessage() == "profile_backfill_completed")
    assert record.created_count == 2
