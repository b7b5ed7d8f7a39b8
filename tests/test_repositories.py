import asyncio
from contextlib import asynccontextmanager
from decimal import Decimal

import pytest

from price_cache_service.repositories import (
    UPDATE_ASSET_PRICE_SQL,
    AssetPriceRepository,
    AssetStoreError,
)


class FakeConnection:
    def __init__(self, status: str = "UPDATE 2", error: Exception | None = None) -> None:
        self.status = status
        self.error = error
        self.executed: list[tuple] = []

    async def execute(self, sql, *args):
        if self.error is not None:
            raise self.error
        self.executed.append((sql, *args))
        return self.status


class FakeDatabase:
    def __init__(self, connection: FakeConnection | None) -> None:
        self.connection = connection

    @property
    def is_connected(self) -> bool:
        return self.connection is not None

    @asynccontextmanager
    async def acquire(self):
        yield self.connection


def test_persist_price_updates_matching_assets():
    async def _run() -> None:
        conn = FakeConnection()
        repo = AssetPriceRepository(FakeDatabase(conn))

        rows = await repo.persist_price("btc", Decimal("51000.5"))

        assert rows == 2
        assert conn.executed == [(UPDATE_ASSET_PRICE_SQL, "51000.5", "BTC")]

    asyncio.run(_run())


def test_persist_price_rejects_non_positive_values():
    async def _run() -> None:
        conn = FakeConnection()
        repo = AssetPriceRepository(FakeDatabase(conn))

        with pytest.raises(AssetStoreError):
            await repo.persist_price("ETH", Decimal("0"))
        assert conn.executed == []

    asyncio.run(_run())


def test_persist_price_requires_connection():
    async def _run() -> None:
        repo = AssetPriceRepository(FakeDatabase(None))
        assert not repo.available
        with pytest.raises(AssetStoreError):
            await repo.persist_price("ETH", Decimal("3000"))

    asyncio.run(_run())


def test_database_errors_are_wrapped():
    async def _run() -> None:
        repo = AssetPriceRepository(FakeDatabase(FakeConnection(error=OSError("disk full"))))
        with pytest.raises(AssetStoreError, match="disk full"):
            await repo.persist_price("SOL", Decimal("140.5"))

    asyncio.run(_run())
