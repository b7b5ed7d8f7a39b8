from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRICECACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    service_name: str = "price-cache-service"
    service_port: int = 8086

    price_symbols: list[str] = Field(default_factory=lambda: ["BTC", "ETH", "SOL", "USDC", "XMR"])
    price_pegged_symbols: dict[str, float] = Field(default_factory=lambda: {"USDC": 1.0})
    price_stale_threshold_seconds: float = 300.0
    price_refresh_interval_seconds: float = 120.0
    price_background_refresh_enabled: bool = True
    price_propagate_to_asset_store: bool = True
    price_require_store_on_force: bool = False

    # Provider order is tried left to right; overrides replace it for one symbol.
    price_source_order: list[str] = Field(
        default_factory=lambda: ["coincap", "coingecko", "binance", "geckoterminal"]
    )
    price_source_overrides: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "BTC": ["blockchain_info", "coincap", "coingecko", "binance"],
        }
    )
    price_batch_source: str | None = None

    source_timeout_seconds: float = 5.0
    source_min_interval_seconds: float = 1.0
    source_max_retries: int = 3
    source_backoff_seconds: float = 1.0
    source_backoff_max_seconds: float = 8.0
    source_user_agent: str = "price-cache-service/0.1"

    coincap_base_url: str = "https://api.coincap.io/v2"
    coincap_api_key: str | None = None
    coincap_symbol_ids: dict[str, str] = Field(
        default_factory=lambda: {
            "BTC": "bitcoin",
            "ETH": "ethereum",
            "SOL": "solana",
            "USDC": "usd-coin",
            "XMR": "monero",
        }
    )
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_symbol_ids: dict[str, str] = Field(
        default_factory=lambda: {
            "BTC": "bitcoin",
            "ETH": "ethereum",
            "SOL": "solana",
            "USDC": "usd-coin",
            "XMR": "monero",
        }
    )
    binance_base_url: str = "https://api.binance.com"
    binance_symbol_ids: dict[str, str] = Field(
        default_factory=lambda: {
            "BTC": "BTCUSDT",
            "ETH": "ETHUSDT",
            "SOL": "SOLUSDT",
        }
    )
    blockchain_info_base_url: str = "https://blockchain.info"
    blockchain_info_symbol_ids: dict[str, str] = Field(default_factory=lambda: {"BTC": "USD"})
    geckoterminal_base_url: str = "https://api.geckoterminal.com/api/v2"
    geckoterminal_networks: dict[str, str] = Field(
        default_factory=lambda: {
            "ETH": "ethereum",
            "SOL": "solana",
        }
    )
    geckoterminal_pool_ttl_seconds: float = 3600.0

    redis_url: str | None = None
    snapshot_key: str = "prices:snapshot"
    snapshot_ttl_seconds: int = 3600

    db_url: str | None = None

    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    log_dir: str | None = "logs"

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
        ]
    )

    def resolved_snapshot_ttl_seconds(self) -> int:
        """
        TTL used for the persisted snapshot.
        Never shorter than the stale threshold so a restarted process can inherit it.
        """
        return max(int(self.snapshot_ttl_seconds), int(self.price_stale_threshold_seconds) + 1)

    def tracked_symbols(self) -> list[str]:
        seen: list[str] = []
        for symbol in self.price_symbols:
            normalized = symbol.strip().upper()
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = ["Settings", "get_settings"]
