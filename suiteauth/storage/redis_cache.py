from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

from suiteauth.logging import get_logger
from suiteauth.storage.models import SessionRecord

logger = get_logger(__name__)

SESSION_KEY_PREFIX = "session:"


def session_key(session_id: str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def _decode_record(session_id: str, raw: Optional[str]) -> Optional[SessionRecord]:
    if raw is None:
        return None
    try:
        return SessionRecord.from_json(session_id, raw)
    except (ValueError, KeyError, TypeError) as exc:
        # An unreadable entry cannot vouch for a login
        logger.warning("session_record_corrupt", session_id=session_id, error=str(exc))
        return None


class RedisSessionStore:
    """Session records in Redis; expiry is left to Redis key TTLs."""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before accepting logins."""
        # A short-lived sync client avoids binding the async pool to a startup loop.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put(self, session_id: str, record: SessionRecord, ttl_seconds: int) -> None:
        await self.client.set(session_key(session_id), record.to_json(), ex=max(1, ttl_seconds))

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        raw = await self.client.get(session_key(session_id))
        return _decode_record(session_id, raw)

    async def delete(self, session_id: str) -> None:
        await self.client.delete(session_key(session_id))

    async def close(self) -> None:
        """Close the connection pool when shutting down or resetting the runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


class SyncRedisSessionStore:
    """Redis session store backed by a synchronous client.

    Used under TEST_MODE: the async methods call the blocking client so the
    store is not tied to whichever event loop a test happened to create.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self._client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self._client.ping()

    async def put(self, session_id: str, record: SessionRecord, ttl_seconds: int) -> None:
        self._client.set(session_key(session_id), record.to_json(), ex=max(1, ttl_seconds))

    async def get(self, session_id: str) -> Optional[SessionRecord]:
        return _decode_record(session_id, self._client.get(session_key(session_id)))

    async def delete(self, session_id: str) -> None:
        self._client.delete(session_key(session_id))

    def disconnect(self) -> None:
        self._client.close()

    async def close(self) -> None:
        self.disconnect()


__all__ = ["RedisSessionStore", "SyncRedisSessionStore", "session_key"]
