from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Sequence

from ..pricing.models import SourceResult
from .http_source import HttpPriceSource, SourceError

_MALFORMED = (KeyError, IndexError, TypeError, AttributeError, ValueError)


@dataclass(frozen=True, slots=True)
class PoolRef:
    network: str
    address: str

    @property
    def key(self) -> str:
        return f"{self.network}/{self.address}"


def _liquidity(raw: Any) -> Decimal:
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return Decimal(0)
    return value if value.is_finite() else Decimal(0)


@dataclass(slots=True)
class GeckoTerminalEndpoint:
    """
    GeckoTerminal v2 DEX data.

    A price is read from a pool, so lookups go search -> token pools -> pool.
    ``request`` and ``extract`` cover the last step: the provider id is a
    ``network/pool_address`` key and prices are matched by token symbol.
    """

    pool_page_size: int = 50
    supports_batch: bool = False

    def search_request(self, symbol: str, network: str) -> tuple[str, dict[str, Any] | None]:
        return "/search", {"query": symbol, "network": network}

    def token_address(self, payload: Any) -> str | None:
        tokens = payload["data"].get("tokens") or []
        if not tokens:
            return None
        return tokens[0]["attributes"]["address"]

    def pools_request(self, network: str, token_address: str) -> tuple[str, dict[str, Any] | None]:
        return f"/networks/{network}/tokens/{token_address}/pools", {"page": 1, "limit": self.pool_page_size}

    def most_liquid_pool(self, payload: Any) -> str | None:
        best: str | None = None
        best_liquidity = Decimal(0)
        for pool in payload.get("data") or []:
            attributes = pool.get("attributes") or {}
            liquidity = _liquidity(attributes.get("reserve_in_usd"))
            if liquidity > best_liquidity and attributes.get("address"):
                best, best_liquidity = attributes["address"], liquidity
        return best

    def request(self, provider_id: str) -> tuple[str, dict[str, Any] | None]:
        network, address = provider_id.split("/", 1)
        return f"/networks/{network}/pools/{address}", None

    def batch_request(self, provider_ids: Sequence[str]) -> tuple[str, dict[str, Any] | None]:
        raise NotImplementedError("GeckoTerminal prices are read one pool at a time")

    def extract(self, payload: Any, provider_id: str) -> Any:
        attributes = payload["data"]["attributes"]
        symbol = provider_id.upper()
        for side in ("base", "quote"):
            token = attributes.get(f"{side}_token") or {}
            if str(token.get("symbol") or "").upper() == symbol:
                return attributes.get(f"{side}_token_price_usd")
        return None


class GeckoTerminalPriceSource(HttpPriceSource):
    """
    DEX fallback source. Symbol ids in its config are network names.

    Finding a pool costs two requests, so the most liquid pool per symbol is
    remembered for ``pool_ttl_seconds`` and forgotten when reading it fails.
    """

    def __init__(self, *args: Any, pool_ttl_seconds: float = 3600.0, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._pool_ttl = pool_ttl_seconds
        self._pools: dict[str, tuple[PoolRef, float]] = {}

    def cached_pool(self, symbol: str) -> PoolRef | None:
        entry = self._pools.get(symbol.upper())
        if entry is None or self._clock() - entry[1] >= self._pool_ttl:
            return None
        return entry[0]

    async def fetch_price(self, symbol: str) -> SourceResult:
        symbol = symbol.upper()
        if not self.supports(symbol):
            return SourceResult(symbol=symbol, source=self.name, error="unsupported symbol")
        network = self._config.symbol_ids[symbol]
        try:
            pool = await self._find_pool(symbol, network)
            path, params = self._endpoint.request(pool.key)
            try:
                payload = await self._get_json(path, params, label=pool.key)
            except SourceError:
                self._pools.pop(symbol, None)
                raise
            result = self._to_result(symbol, symbol, payload)
        except SourceError as exc:
            result = SourceResult(symbol=symbol, source=self.name, error=exc.reason)
        self._record(result)
        return result

    async def _find_pool(self, symbol: str, network: str) -> PoolRef:
        pool = self.cached_pool(symbol)
        if pool is not None:
            return pool

        path, params = self._endpoint.search_request(symbol, network)
        search = await self._get_json(path, params, label=symbol)
        try:
            token_address = self._endpoint.token_address(search)
        except _MALFORMED as exc:
            raise SourceError("malformed search response") from exc
        if not token_address:
            raise SourceError(f"token not found on {network}")

        path, params = self._endpoint.pools_request(network, token_address)
        listing = await self._get_json(path, params, label=token_address)
        try:
            address = self._endpoint.most_liquid_pool(listing)
        except _MALFORMED as exc:
            raise SourceError("malformed pool listing") from exc
        if not address:
            raise SourceError(f"no liquid pool on {network}")

        pool = PoolRef(network=network, address=address)
        self._pools[symbol] = (pool, self._clock())
        self._logger.info("Using %s pool %s for %s", self.name, pool.key, symbol)
        return pool


__all__ = ["GeckoTerminalEndpoint", "GeckoTerminalPriceSource", "PoolRef"]
