from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from .models import PriceSnapshot


class SnapshotStoreError(RuntimeError):
    pass


class SnapshotStore(Protocol):
    async def load(self) -> PriceSnapshot | None:
        ...

    async def save(self, snapshot: PriceSnapshot) -> None:
        ...


class RedisSnapshotStore:
    """Keeps the latest snapshot under one Redis key with a TTL."""

    def __init__(self, redis_client: Any, *, key: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("Snapshot TTL must be positive")
        self._redis = redis_client
        self._key = key
        self._ttl_seconds = ttl_seconds
        self._logger = logging.getLogger("pricecache.snapshot_store")

    @property
    def key(self) -> str:
        return self._key

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    async def load(self) -> PriceSnapshot | None:
        try:
            raw = await self._redis.get(self._key)
        except Exception as exc:
            raise SnapshotStoreError(f"Failed to read snapshot {self._key}: {exc}") from exc
        if not raw:
            return None
        try:
            return PriceSnapshot.from_payload(json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            self._logger.warning("Discarding undecodable snapshot under %s: %s", self._key, exc)
            return None

    async def save(self, snapshot: PriceSnapshot) -> None:
        payload = json.dumps(snapshot.to_payload())
        try:
            await self._redis.set(self._key, payload, ex=self._ttl_seconds)
        except Exception as exc:
            raise SnapshotStoreError(f"Failed to write snapshot {self._key}: {exc}") from exc


__all__ = ["RedisSnapshotStore", "SnapshotStore", "SnapshotStoreError"]
