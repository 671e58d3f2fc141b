from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from shared.security import InMemoryRevokedSessionStore, RedisRevokedSessionStore, RevokedSessionStore

from devkit.retry import backoff_delay

logger = logging.getLogger(__name__)


class AsyncRedisManager:
    """Lazily connected redis client that reconnects and retries failed commands."""

    def __init__(
        self,
        url: str,
        *,
        max_retries: int = 3,
        base_delay_seconds: float = 0.2,
        client_factory: Callable[[str], Any] | None = None,
    ) -> None:
        self._url = url
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._client_factory = client_factory
        self._client: Any | None = None
        self._lock = asyncio.Lock()

    async def get_client(self) -> Any:
        async with self._lock:
            if self._client is None:
                self._client = self._new_client()
                await self._client.ping()
            return self._client

    async def reconnect(self) -> Any:
        async with self._lock:
            if self._client is not None:
                try:
                    await self._client.close()
                except Exception:
                    logger.debug("redis_close_failed", extra={"component": "devkit.redis"})
            self._client = self._new_client()
            await self._client.ping()
            return self._client

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                try:
                    await self._client.close()
                finally:
                    self._client = None

    async def execute(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            client = await self.get_client()
            try:
                return await getattr(client, operation)(*args, **kwargs)
            except Exception:
                attempt += 1
                if attempt >= self._max_retries:
                    raise
                logger.warning(
                    "redis_command_retrying",
                    extra={"component": "devkit.redis", "operation": operation, "attempt": attempt},
                )
                await self.reconnect()
                await asyncio.sleep(backoff_delay(attempt, self._base_delay_seconds))

    async def setex(self, key: str, seconds: int, value: str) -> Any:
        return await self.execute("setex", key, seconds, value)

    async def exists(self, key: str) -> int:
        return await self.execute("exists", key)

    def _new_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory(self._url)
        import redis.asyncio as redis

        return redis.from_url(
            self._url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )


def create_redis_client(url: str | None) -> AsyncRedisManager | None:
    if not url:
        return None
    return AsyncRedisManager(url)


def create_revoked_session_store(redis_client: AsyncRedisManager | None) -> RevokedSessionStore:
    if redis_client is None:
        return InMemoryRevokedSessionStore()
    return RedisRevokedSessionStore(redis_client)
