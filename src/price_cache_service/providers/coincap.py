from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(slots=True)
class CoinCapEndpoint:
    """CoinCap v2 assets API (``/assets/{id}`` and ``/assets?ids=a,b``)."""

    supports_batch: bool = True

    def request(self, provider_id: str) -> tuple[str, dict[str, Any] | None]:
        return f"/assets/{provider_id}", None

    def batch_request(self, provider_ids: Sequence[str]) -> tuple[str, dict[str, Any] | None]:
        return "/assets", {"ids": ",".join(provider_ids)}

    def extract(self, payload: Any, provider_id: str) -> Any:
        data = payload.get("data")
        if isinstance(data, list):
            for asset in data:
                if isinstance(asset, dict) and asset.get("id") == provider_id:
                    return asset.get("priceUsd")
            return None
        return data.get("priceUsd")


__all__ = ["CoinCapEndpoint"]
