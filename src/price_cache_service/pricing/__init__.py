"""
Price acquisition and caching: models, multi-source resolution, the cache core.
"""

from .cache import PriceCache, PriceCacheStatus, RefreshOutcome
from .models import (
    UNKNOWN,
    KnownPrice,
    Price,
    PriceSnapshot,
    SourceResult,
    SymbolMapping,
    UnknownPrice,
    parse_price,
)
from .resolver import MultiSourceResolver
from .snapshot_store import RedisSnapshotStore, SnapshotStore, SnapshotStoreError
from .valuation import Holding, HoldingValue, PortfolioValuation, value_holdings

__all__ = [
    "Holding",
    "HoldingValue",
    "KnownPrice",
    "MultiSourceResolver",
    "PortfolioValuation",
    "Price",
    "PriceCache",
    "PriceCacheStatus",
    "PriceSnapshot",
    "RedisSnapshotStore",
    "RefreshOutcome",
    "SnapshotStore",
    "SnapshotStoreError",
    "SourceResult",
    "SymbolMapping",
    "UNKNOWN",
    "UnknownPrice",
    "parse_price",
    "value_holdings",
]
