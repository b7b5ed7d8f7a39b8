from __future__ import annotations

import logging
from decimal import Decimal

from .db import Database, get_db

logger = logging.getLogger("pricecache.repositories")

UPDATE_ASSET_PRICE_SQL = """
UPDATE assets
   SET price = $1,
       last_updated = NOW()
 WHERE upper(symbol) = $2
"""


class AssetStoreError(RuntimeError):
    pass


def _rows_affected(status: str | None) -> int:
    # asyncpg returns the command tag, e.g. "UPDATE 3".
    if not status:
        return 0
    try:
        return int(status.rsplit(" ", 1)[-1])
    except ValueError:
        return 0


class AssetPriceRepository:
    """Writes the latest USD price onto every asset row holding a symbol."""

    def __init__(self, db: Database | None = None) -> None:
        self._db = db or get_db()

    @property
    def available(self) -> bool:
        return self._db.is_connected

    async def persist_price(self, symbol: str, price: Decimal) -> int:
        if price <= 0:
            raise AssetStoreError(f"Refusing to store non-positive price for {symbol}: {price}")
        if not self._db.is_connected:
            raise AssetStoreError("Asset store is not connected")
        try:
            async with self._db.acquire() as conn:
                status = await conn.execute(UPDATE_ASSET_PRICE_SQL, str(price), symbol.upper())
        except Exception as exc:
            raise AssetStoreError(f"Failed to update price for {symbol}: {exc}") from exc
        rows = _rows_affected(status)
        logger.debug("Stored %s price %s on %s asset rows", symbol, price, rows)
        return rows


__all__ = ["AssetPriceRepository", "AssetStoreError", "UPDATE_ASSET_PRICE_SQL"]
