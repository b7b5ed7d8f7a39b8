from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(slots=True)
class BlockchainInfoEndpoint:
    """
    Blockchain.info ``/ticker``: bitcoin only, keyed by fiat currency.

    The provider id is the currency code (``USD``), not an asset id.
    """

    supports_batch: bool = False

    def request(self, provider_id: str) -> tuple[str, dict[str, Any] | None]:
        return "/ticker", None

    def batch_request(self, provider_ids: Sequence[str]) -> tuple[str, dict[str, Any] | None]:
        raise NotImplementedError("Blockchain.info only quotes bitcoin")

    def extract(self, payload: Any, provider_id: str) -> Any:
        return payload[provider_id]["last"]


__all__ = ["BlockchainInfoEndpoint"]
