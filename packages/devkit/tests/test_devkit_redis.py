import pytest

from devkit.redis import AsyncRedisManager, create_redis_client, create_revoked_session_store
from shared.security import InMemoryRevokedSessionStore, RedisRevokedSessionStore


def test_create_redis_client_none() -> None:
    assert create_redis_client(None) is None


def test_create_revoked_session_store_fallback() -> None:
    assert isinstance(create_revoked_session_store(None), InMemoryRevokedSessionStore)


def test_create_revoked_session_store_uses_redis_manager() -> None:
    manager = AsyncRedisManager("redis://example:6379/0", client_factory=lambda _url: None)
    assert isinstance(create_revoked_session_store(manager), RedisRevokedSessionStore)


@pytest.mark.asyncio
async def test_async_redis_manager_reconnects_on_failure() -> None:
    class FakeClient:
        def __init__(self, fail_once: bool) -> None:
            self.fail_once = fail_once
            self.values: dict[str, str] = {}

        async def ping(self) -> bool:
            return True

        async def setex(self, key: str, _seconds: int, value: str) -> bool:
            if self.fail_once:
                self.fail_once = False
                raise ConnectionError("transient")
            self.values[key] = value
            return True

        async def close(self) -> None:
            return None

    created: list[FakeClient] = []

    def factory(_url: str) -> FakeClient:
        client = FakeClient(fail_once=not created)
        created.append(client)
        return client

    manager = AsyncRedisManager("redis://example:6379/0", base_delay_seconds=0.0, client_factory=factory)
    assert await manager.setex("identity:revoked:abc", 60, "1") is True
    assert len(created) == 2
    assert created[-1].values == {"identity:revoked:abc": "1"}
