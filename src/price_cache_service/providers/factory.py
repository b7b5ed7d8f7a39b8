from __future__ import annotations

import logging
from typing import Callable, Mapping

import httpx

from ..config import Settings, get_settings
from ..pricing.models import SymbolMapping
from .binance import BinanceTickerEndpoint
from .blockchain_info import BlockchainInfoEndpoint
from .coincap import CoinCapEndpoint
from .coingecko import CoinGeckoEndpoint
from .geckoterminal import GeckoTerminalEndpoint, GeckoTerminalPriceSource
from .http_source import BackoffPolicy, HttpPriceSource, PriceEndpoint, SleepFn, SourceConfig, build_headers

logger = logging.getLogger("pricecache.providers.factory")

ENDPOINTS: Mapping[str, Callable[[], PriceEndpoint]] = {
    "coincap": CoinCapEndpoint,
    "coingecko": CoinGeckoEndpoint,
    "binance": BinanceTickerEndpoint,
    "blockchain_info": BlockchainInfoEndpoint,
    "geckoterminal": GeckoTerminalEndpoint,
}


def _source_settings(settings: Settings, name: str) -> tuple[str, dict[str, str], dict[str, str]]:
    base_url = getattr(settings, f"{name}_base_url")
    if name == "geckoterminal":
        symbol_ids = settings.geckoterminal_networks
    else:
        symbol_ids = getattr(settings, f"{name}_symbol_ids") or {}
    extra: dict[str, str] = {}
    if name == "coincap" and settings.coincap_api_key:
        extra["Authorization"] = f"Bearer {settings.coincap_api_key}"
    return base_url, symbol_ids, extra


def configured_source_names(settings: Settings) -> list[str]:
    """Every provider referenced by the default order, overrides or batch setting."""
    names: list[str] = []
    candidates = list(settings.price_source_order)
    for order in settings.price_source_overrides.values():
        candidates.extend(order)
    if settings.price_batch_source:
        candidates.append(settings.price_batch_source)
    for name in candidates:
        if name not in names:
            names.append(name)
    return names


def build_sources(
    *,
    settings: Settings | None = None,
    client: httpx.AsyncClient,
    sleep_fn: SleepFn | None = None,
) -> dict[str, HttpPriceSource]:
    """Instantiate one HttpPriceSource per configured provider, sharing ``client``."""

    settings = settings or get_settings()
    backoff = BackoffPolicy(
        base_seconds=settings.source_backoff_seconds,
        max_seconds=settings.source_backoff_max_seconds,
        max_retries=settings.source_max_retries,
    )
    sources: dict[str, HttpPriceSource] = {}
    for name in configured_source_names(settings):
        endpoint_factory = ENDPOINTS.get(name)
        if endpoint_factory is None:
            logger.warning("Unknown price source %s in configuration; ignoring", name)
            continue
        base_url, symbol_ids, extra = _source_settings(settings, name)
        config = SourceConfig(
            name=name,
            base_url=base_url,
            symbol_ids=SymbolMapping(symbol_ids),
            timeout_seconds=settings.source_timeout_seconds,
            min_interval_seconds=settings.source_min_interval_seconds,
            backoff=backoff,
            headers=build_headers(settings.source_user_agent, extra),
        )
        if name == "geckoterminal":
            sources[name] = GeckoTerminalPriceSource(
                config,
                endpoint_factory(),
                client=client,
                sleep_fn=sleep_fn,
                pool_ttl_seconds=settings.geckoterminal_pool_ttl_seconds,
            )
        else:
            sources[name] = HttpPriceSource(config, endpoint_factory(), client=client, sleep_fn=sleep_fn)
    logger.info("Configured price sources: %s", ", ".join(sources) or "none")
    return sources


__all__ = ["ENDPOINTS", "build_sources", "configured_source_names"]
