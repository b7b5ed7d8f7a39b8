from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import redis.asyncio as redis

from .config import get_settings


class RedisClient:
    """Owns the Redis connection that backs the persisted price snapshot."""

    def __init__(self, *, factory: Callable[..., redis.Redis] | None = None) -> None:
        self._client: redis.Redis | None = None
        self._factory = factory or redis.from_url
        self._logger = logging.getLogger("pricecache.redis")

    async def connect(self, *, url: str | None = None) -> None:
        redis_url = url or get_settings().redis_url
        if not redis_url:
            self._logger.warning("Redis URL not configured; price snapshot kept in memory only")
            return
        client = self._factory(redis_url, encoding="utf-8", decode_responses=True)
        try:
            await client.ping()
        except Exception as exc:
            self._logger.error("Redis unreachable at startup: %s", exc)
            if hasattr(client, "aclose"):
                await client.aclose()
            raise
        self._client = client
        self._logger.info("Connected to Redis for price snapshots")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_connection(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not initialized")
        return self._client

    async def health_check(self) -> dict[str, Optional[float] | bool]:
        if self._client is None:
            return {"alive": False, "latency_ms": None}
        start = time.perf_counter()
        try:
            await self._client.ping()
        except Exception as exc:  # pragma: no cover - ping failure
            self._logger.warning("Redis health check failed: %s", exc)
            return {"alive": False, "latency_ms": None}
        return {"alive": True, "latency_ms": (time.perf_counter() - start) * 1000}

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[redis.Redis]:
        yield self.get_connection()

    @property
    def is_connected(self) -> bool:
        return self._client is not None


_redis = RedisClient()


def get_redis() -> RedisClient:
    return _redis
