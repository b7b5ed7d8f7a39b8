from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Sequence

import httpx

from ..observability import record_source_request
from ..pricing.models import UNKNOWN, SourceResult, SymbolMapping, parse_price


class SourceError(RuntimeError):
    """Raised inside a source when one request cannot produce a usable body."""

    def __init__(self, reason: str, *, status_code: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


@dataclass(slots=True)
class BackoffPolicy:
    base_seconds: float = 1.0
    max_seconds: float = 8.0
    max_retries: int = 3

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (zero based)."""
        return min(self.base_seconds * (2**attempt), self.max_seconds)


@dataclass(slots=True)
class SourceConfig:
    name: str
    base_url: str
    symbol_ids: SymbolMapping
    timeout_seconds: float = 5.0
    min_interval_seconds: float = 1.0
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    headers: dict[str, str] | None = None


class PriceEndpoint(Protocol):
    """Provider specific request layout and body parsing."""

    supports_batch: bool

    def request(self, provider_id: str) -> tuple[str, dict[str, Any] | None]:
        ...

    def batch_request(self, provider_ids: Sequence[str]) -> tuple[str, dict[str, Any] | None]:
        ...

    def extract(self, payload: Any, provider_id: str) -> Any:
        ...


class PriceSource(Protocol):
    @property
    def name(self) -> str:
        ...

    @property
    def supports_batch(self) -> bool:
        ...

    def supports(self, symbol: str) -> bool:
        ...

    async def fetch_price(self, symbol: str) -> SourceResult:
        ...

    async def fetch_prices(self, symbols: Sequence[str]) -> dict[str, SourceResult]:
        ...


SleepFn = Callable[[float], Awaitable[None]]


class HttpPriceSource:
    """
    One upstream price API behind a shared retry, pacing and validation layer.

    Every outcome is returned as a SourceResult. Rate-limit responses (429) are
    retried with exponential backoff; every other failure is reported at once so
    the resolver can move on to the next provider.
    """

    def __init__(
        self,
        config: SourceConfig,
        endpoint: PriceEndpoint,
        *,
        client: httpx.AsyncClient,
        sleep_fn: SleepFn | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config
        self._endpoint = endpoint
        headers = {"Accept": "application/json"}
        if config.headers:
            headers.update(config.headers)
        self._headers = headers
        self._client = client
        self._sleep = sleep_fn or asyncio.sleep
        self._clock = clock or time.monotonic
        self._pace_lock = asyncio.Lock()
        self._last_call_at: float | None = None
        self._logger = logging.getLogger(f"pricecache.providers.{config.name}")

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> SourceConfig:
        return self._config

    @property
    def supports_batch(self) -> bool:
        return bool(getattr(self._endpoint, "supports_batch", False))

    @property
    def last_call_at(self) -> float | None:
        return self._last_call_at

    def supports(self, symbol: str) -> bool:
        return symbol in self._config.symbol_ids

    async def fetch_price(self, symbol: str) -> SourceResult:
        symbol = symbol.upper()
        if not self.supports(symbol):
            return SourceResult(symbol=symbol, source=self.name, error="unsupported symbol")
        provider_id = self._config.symbol_ids[symbol]
        path, params = self._endpoint.request(provider_id)
        try:
            payload = await self._get_json(path, params, label=provider_id)
            result = self._to_result(symbol, provider_id, payload)
        except SourceError as exc:
            result = SourceResult(symbol=symbol, source=self.name, error=exc.reason)
        self._record(result)
        return result

    async def fetch_prices(self, symbols: Sequence[str]) -> dict[str, SourceResult]:
        wanted = [symbol.upper() for symbol in symbols]
        supported = [symbol for symbol in wanted if self.supports(symbol)]
        results = {
            symbol: SourceResult(symbol=symbol, source=self.name, error="unsupported symbol")
            for symbol in wanted
            if symbol not in supported
        }
        if not supported:
            return results
        if not self.supports_batch:
            for symbol in supported:
                results[symbol] = await self.fetch_price(symbol)
            return results

        ids = {symbol: self._config.symbol_ids[symbol] for symbol in supported}
        path, params = self._endpoint.batch_request(list(dict.fromkeys(ids.values())))
        try:
            payload = await self._get_json(path, params, label=",".join(ids.values()))
        except SourceError as exc:
            for symbol in supported:
                results[symbol] = SourceResult(symbol=symbol, source=self.name, error=exc.reason)
                self._record(results[symbol])
            return results
        for symbol in supported:
            results[symbol] = self._to_result(symbol, ids[symbol], payload)
            self._record(results[symbol])
        return results

    def _to_result(self, symbol: str, provider_id: str, payload: Any) -> SourceResult:
        try:
            raw = self._endpoint.extract(payload, provider_id)
        except (KeyError, IndexError, TypeError, AttributeError, ValueError):
            raw = None
        price = parse_price(raw)
        if price is UNKNOWN:
            return SourceResult(symbol=symbol, source=self.name, error=f"invalid price field: {raw!r}")
        self._logger.debug("%s price for %s (%s): %s", self.name, symbol, provider_id, price.value)
        return SourceResult(symbol=symbol, source=self.name, price=price)

    def _record(self, result: SourceResult) -> None:
        outcome = "success" if result.ok else "failure"
        record_source_request(self.name, outcome)
        if not result.ok:
            self._logger.info("%s unavailable for %s: %s", self.name, result.symbol, result.error)

    async def _get_json(self, path: str, params: Mapping[str, Any] | None, *, label: str) -> Any:
        url = f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"
        policy = self._config.backoff
        attempt = 0
        while True:
            await self._respect_min_interval()
            try:
                response = await self._client.get(
                    url,
                    params=params,
                    headers=self._headers,
                    timeout=self._config.timeout_seconds,
                )
            except httpx.TimeoutException as exc:
                raise SourceError(f"timeout: {exc.__class__.__name__}") from exc
            except httpx.HTTPError as exc:
                raise SourceError(f"network error: {exc}") from exc

            if response.status_code == 429:
                if attempt >= policy.max_retries:
                    raise SourceError("rate limited: retries exhausted", status_code=429)
                delay = policy.delay_for(attempt)
                attempt += 1
                self._logger.warning(
                    "%s rate limit hit for %s, backing off %.2fs before retry %s/%s",
                    self.name,
                    label,
                    delay,
                    attempt,
                    policy.max_retries,
                )
                await self._sleep(delay)
                continue
            if response.status_code >= 400:
                raise SourceError(f"HTTP {response.status_code}", status_code=response.status_code)
            try:
                return response.json()
            except ValueError as exc:
                raise SourceError("malformed JSON body") from exc

    async def _respect_min_interval(self) -> None:
        interval = self._config.min_interval_seconds
        async with self._pace_lock:
            now = self._clock()
            if self._last_call_at is None or interval <= 0:
                slot = now
            else:
                slot = max(now, self._last_call_at + interval)
            self._last_call_at = slot
        wait = slot - now
        if wait > 0:
            self._logger.debug("Pacing %s call by %.3fs", self.name, wait)
            await self._sleep(wait)


def build_headers(user_agent: str, extra: Mapping[str, str] | None = None) -> dict[str, str]:
    headers = {"User-Agent": user_agent}
    if extra:
        headers.update(extra)
    return headers


__all__ = [
    "BackoffPolicy",
    "HttpPriceSource",
    "PriceEndpoint",
    "PriceSource",
    "SourceConfig",
    "SourceError",
    "build_headers",
]
