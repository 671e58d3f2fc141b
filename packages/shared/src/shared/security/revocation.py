from __future__ import annotations

import time
from typing import Protocol


class RedisLike(Protocol):
    async def setex(self, key: str, seconds: int, value: str) -> object: ...

    async def exists(self, key: str) -> int: ...


class RevokedSessionStore:
    """Remembers signed-out session ids until their tokens would have expired anyway."""

    async def revoke(self, session_id: str, ttl_seconds: int) -> None:
        raise NotImplementedError

    async def is_revoked(self, session_id: str) -> bool:
        raise NotImplementedError


class InMemoryRevokedSessionStore(RevokedSessionStore):
    def __init__(self, clock=time.time) -> None:
        self._clock = clock
        self._expiry_by_session: dict[str, float] = {}

    async def revoke(self, session_id: str, ttl_seconds: int) -> None:
        self._expiry_by_session[session_id] = self._clock() + max(ttl_seconds, 0)

    async def is_revoked(self, session_id: str) -> bool:
        expiry = self._expiry_by_session.get(session_id)
        if expiry is None:
            return False
        if expiry < self._clock():
            self._expiry_by_session.pop(session_id, None)
            return False
        return True


class RedisRevokedSessionStore(RevokedSessionStore):
    def __init__(self, redis_client: RedisLike, key_prefix: str = "identity:revoked:") -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix

    async def revoke(self, session_id: str, ttl_seconds: int) -> None:
        # redis rejects SETEX with a zero ttl
        await self._redis.setex(f"{self._key_prefix}{session_id}", max(ttl_seconds, 1), "1")

    async def is_revoked(self, session_id: str) -> bool:
        return (await self._redis.exists(f"{self._key_prefix}{session_id}")) > 0
