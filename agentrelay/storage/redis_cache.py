from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, List, Optional

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from agentrelay.logging import get_logger, preview
from agentrelay.storage.base import SLOT_TTL_SECONDS, SlotStoreStats

logger = get_logger(__name__)

# Failures that mean "cache unavailable" rather than a programming error
_STORE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisSlotStore:
    """Slot store shared through Redis, usable from any server instance.

    ``put`` is a single ``SET ... PX``. ``get`` is ``GET`` followed by
    ``DEL``; two pollers racing on the same key can both read the value
    before either deletes it. The fetchresponse caller is a single serial
    poller per conversation, so this is accepted.

    Every backend failure is logged and counted, then reported as an
    absent slot (reads) or dropped (writes).
    """

    backend = "redis"
    durable = True
    KEY_PREFIX = "ai_response:"

    def __init__(
        self,
        redis_url: str,
        *,
        token: Optional[str] = None,
        socket_timeout: float = 5.0,
        ttl_seconds: float = SLOT_TTL_SECONDS,
        client: Any = None,
    ) -> None:
        self.redis_url = redis_url
        self.token = token
        self.socket_timeout = socket_timeout
        self.ttl_seconds = ttl_seconds
        self.stats = SlotStoreStats()
        self.client = client or aioredis.from_url(
            redis_url,
            password=token or None,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    def _ttl_ms(self) -> int:
        return max(1, int(self.ttl_seconds * 1000))

    def _record_failure(self, event: str, key: Optional[str], exc: BaseException) -> None:
        self.stats.failures += 1
        logger.error(
            event,
            backend=self.backend,
            key=key,
            error_type=type(exc).__name__,
            error=str(exc),
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before serving traffic."""
        # Use a short-lived synchronous client so the async client is not bound
        # to a temporary event loop during startup checks.
        sync_client = Redis.from_url(
            self.redis_url,
            password=self.token or None,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put(self, key: str, value: str) -> None:
        try:
            await self.client.set(self._key(key), value, px=self._ttl_ms())
        except _STORE_ERRORS as exc:
            self._record_failure("slot_store_put_failed", key, exc)
            return
        self.stats.puts += 1
        logger.info("slot_stored", backend=self.backend, key=key, preview=preview(value))

    async def get(self, key: str) -> Optional[str]:
        cache_key = self._key(key)
        try:
            value = await self.client.get(cache_key)
        except _STORE_ERRORS as exc:
            self._record_failure("slot_store_get_failed", key, exc)
            return None
        if value is None:
            self.stats.misses += 1
            return None
        try:
            await self.client.delete(cache_key)
        except _STORE_ERRORS as exc:
            # The reply is still delivered; the stale slot lingers until its TTL
            self._record_failure("slot_store_delete_failed", key, exc)
        self.stats.hits += 1
        logger.info("slot_consumed", backend=self.backend, key=key, preview=preview(value))
        return str(value)

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except _STORE_ERRORS as exc:
            self._record_failure("slot_store_delete_failed", key, exc)

    async def list_pending_keys(self) -> List[str]:
        keys: List[str] = []
        try:
            async for raw in self.client.scan_iter(match=f"{self.KEY_PREFIX}*"):
                keys.append(str(raw)[len(self.KEY_PREFIX):])
        except _STORE_ERRORS as exc:
            self._record_failure("slot_store_list_failed", None, exc)
            return []
        return keys

    async def close(self) -> None:
        """Close the Redis connection pool."""
        await self.client.aclose()


class _SyncClientAdapter:
    """Wraps a sync Redis client with the async method signatures used above."""

    def __init__(self, sync_client: Redis):
        self._sync = sync_client

    async def get(self, key: str) -> Optional[str]:
        return self._sync.get(key)

    async def set(self, key: str, value: str, px: Optional[int] = None) -> bool:
        return self._sync.set(key, value, px=px)

    async def delete(self, key: str) -> int:
        return self._sync.delete(key)

    async def scan_iter(self, match: Optional[str] = None) -> AsyncIterator[str]:
        for key in self._sync.scan_iter(match=match):
            yield key

    async def aclose(self) -> None:
        self._sync.close()


class SyncRedisSlotStore(RedisSlotStore):
    """Redis slot store backed by a synchronous client.

    Used in test mode to avoid binding an async connection pool to the
    short-lived event loops pytest creates.
    """

    def __init__(
        self,
        redis_url: str,
        *,
        token: Optional[str] = None,
        socket_timeout: float = 5.0,
        ttl_seconds: float = SLOT_TTL_SECONDS,
    ) -> None:
        self._sync_client = Redis.from_url(
            redis_url,
            password=token or None,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        super().__init__(
            redis_url,
            token=token,
            socket_timeout=socket_timeout,
            ttl_seconds=ttl_seconds,
            client=_SyncClientAdapter(self._sync_client),
        )

    def verify_connection(self) -> None:
        self._sync_client.ping()


__all__ = ["RedisSlotStore", "SyncRedisSlotStore"]
