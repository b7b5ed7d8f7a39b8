from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

import asyncpg

from .config import get_settings

logger = logging.getLogger("pricecache.db")

PoolFactory = Callable[..., Awaitable[Any]]


class Database:
    """asyncpg pool for the asset table that receives fresh prices."""

    def __init__(self, *, pool_factory: PoolFactory | None = None) -> None:
        self._pool: Any = None
        self._pool_factory = pool_factory or asyncpg.create_pool

    async def connect(self, *, dsn: str | None = None) -> None:
        db_url = dsn or get_settings().db_url
        if not db_url:
            logger.warning("Database URL not configured; prices will not be written to the asset store")
            return
        self._pool = await self._pool_factory(
            str(db_url),
            min_size=1,
            max_size=3,
            statement_cache_size=0,
        )
        logger.info("Asset store pool initialized")

    async def disconnect(self) -> None:
        if self._pool is None:
            return
        try:
            await asyncio.wait_for(self._pool.close(), timeout=5.0)
        except asyncio.TimeoutError:
            self._pool.terminate()
        finally:
            self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        if self._pool is None:
            raise RuntimeError("Database pool is not initialized")
        async with self._pool.acquire() as connection:
            yield connection

    @property
    def is_connected(self) -> bool:
        return self._pool is not None


_db = Database()


def get_db() -> Database:
    return _db
