from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(slots=True)
class CoinGeckoEndpoint:
    """CoinGecko ``/simple/price``; one call answers any number of ids."""

    vs_currency: str = "usd"
    supports_batch: bool = True

    def request(self, provider_id: str) -> tuple[str, dict[str, Any] | None]:
        return self.batch_request([provider_id])

    def batch_request(self, provider_ids: Sequence[str]) -> tuple[str, dict[str, Any] | None]:
        return "/simple/price", {"ids": ",".join(provider_ids), "vs_currencies": self.vs_currency}

    def extract(self, payload: Any, provider_id: str) -> Any:
        entry = payload.get(provider_id)
        if not isinstance(entry, dict):
            return None
        return entry.get(self.vs_currency)


__all__ = ["CoinGeckoEndpoint"]
