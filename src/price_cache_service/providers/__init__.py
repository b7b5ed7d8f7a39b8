from .binance import BinanceTickerEndpoint
from .blockchain_info import BlockchainInfoEndpoint
from .coincap import CoinCapEndpoint
from .coingecko import CoinGeckoEndpoint
from .factory import ENDPOINTS, build_sources, configured_source_names
from .geckoterminal import GeckoTerminalEndpoint, GeckoTerminalPriceSource, PoolRef
from .http_source import (
    BackoffPolicy,
    HttpPriceSource,
    PriceEndpoint,
    PriceSource,
    SourceConfig,
    SourceError,
)

__all__ = [
    "BackoffPolicy",
    "BinanceTickerEndpoint",
    "BlockchainInfoEndpoint",
    "CoinCapEndpoint",
    "CoinGeckoEndpoint",
    "ENDPOINTS",
    "GeckoTerminalEndpoint",
    "GeckoTerminalPriceSource",
    "HttpPriceSource",
    "PriceEndpoint",
    "PoolRef",
    "PriceSource",
    "SourceConfig",
    "SourceError",
    "build_sources",
    "configured_source_names",
]
