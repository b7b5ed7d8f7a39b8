from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(slots=True)
class BinanceTickerEndpoint:
    """Binance spot ticker, quoted in USDT and treated as USD."""

    supports_batch: bool = False

    def request(self, provider_id: str) -> tuple[str, dict[str, Any] | None]:
        return "/api/v3/ticker/price", {"symbol": provider_id}

    def batch_request(self, provider_ids: Sequence[str]) -> tuple[str, dict[str, Any] | None]:
        raise NotImplementedError("Binance price source is queried one market at a time")

    def extract(self, payload: Any, provider_id: str) -> Any:
        if payload.get("symbol") not in (None, provider_id):
            return None
        return payload.get("price")


__all__ = ["BinanceTickerEndpoint"]
