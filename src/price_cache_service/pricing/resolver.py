from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable, Mapping, Sequence

from .models import KnownPrice, SourceResult

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..providers.http_source import PriceSource


logger = logging.getLogger("pricecache.resolver")


class MultiSourceResolver:
    """
    Resolves a symbol by walking its providers in priority order.

    Pegged symbols never touch the network. Every symbol comes back as a
    SourceResult: a price from the first provider that had one, or an
    unresolved result listing why each provider failed.
    """

    def __init__(
        self,
        sources: Mapping[str, "PriceSource"] | Sequence["PriceSource"],
        *,
        default_order: Sequence[str] | None = None,
        overrides: Mapping[str, Sequence[str]] | None = None,
        pegged: Mapping[str, float | Decimal | str] | None = None,
        batch_source: str | None = None,
    ) -> None:
        if isinstance(sources, Mapping):
            self._sources = dict(sources)
        else:
            self._sources = {source.name: source for source in sources}
        self._default_order = list(default_order) if default_order is not None else list(self._sources)
        self._overrides = {symbol.upper(): list(order) for symbol, order in (overrides or {}).items()}
        self._pegged = {symbol.upper(): Decimal(str(value)) for symbol, value in (pegged or {}).items()}
        if batch_source is not None and batch_source not in self._sources:
            logger.warning("Batch source %s is not configured; batch mode disabled", batch_source)
            batch_source = None
        self._batch_source = batch_source

    @property
    def pegged(self) -> Mapping[str, Decimal]:
        return dict(self._pegged)

    def order_for(self, symbol: str) -> list[str]:
        order = self._overrides.get(symbol.upper(), self._default_order)
        return [name for name in order if name in self._sources]

    async def resolve(self, symbol: str) -> SourceResult:
        return await self._resolve_one(symbol.upper(), skip=())

    async def resolve_many(self, symbols: Iterable[str]) -> dict[str, SourceResult]:
        wanted = list(dict.fromkeys(symbol.upper() for symbol in symbols))
        results: dict[str, SourceResult] = {}
        pending: list[str] = []
        for symbol in wanted:
            if symbol in self._pegged:
                results[symbol] = self._pegged_result(symbol)
            else:
                pending.append(symbol)

        batched: set[str] = set()
        if self._batch_source and pending:
            source = self._sources[self._batch_source]
            covered = [symbol for symbol in pending if source.supports(symbol)]
            if covered:
                batch_results = await self._safe_batch(source, covered)
                for symbol in covered:
                    result = batch_results.get(symbol)
                    if result is not None and result.ok:
                        results[symbol] = result
                    else:
                        batched.add(symbol)
                pending = [symbol for symbol in pending if symbol not in results]

        if pending:
            resolved = await asyncio.gather(
                *(
                    self._resolve_one(symbol, skip=(self._batch_source,) if symbol in batched else ())
                    for symbol in pending
                )
            )
            for symbol, result in zip(pending, resolved):
                results[symbol] = result
        return {symbol: results[symbol] for symbol in wanted}

    async def probe(self, symbol: str) -> list[SourceResult]:
        """Ask every provider for ``symbol`` without stopping at the first success."""
        symbol = symbol.upper()
        results = []
        for name in self.order_for(symbol):
            source = self._sources[name]
            if source.supports(symbol):
                results.append(await self._safe_fetch(source, symbol))
        return results

    async def _resolve_one(self, symbol: str, *, skip: Sequence[str | None]) -> SourceResult:
        if symbol in self._pegged:
            return self._pegged_result(symbol)
        failures: list[str] = []
        for name in self.order_for(symbol):
            if name in skip:
                continue
            source = self._sources[name]
            if not source.supports(symbol):
                continue
            result = await self._safe_fetch(source, symbol)
            if result.ok:
                if failures:
                    logger.info("Resolved %s from fallback source %s after: %s", symbol, name, "; ".join(failures))
                return result
            failures.append(f"{name}: {result.error}")
        if not failures:
            failures.append("no source configured")
        logger.warning("All price sources failed for %s (%s)", symbol, "; ".join(failures))
        return SourceResult(symbol=symbol, source=None, error="; ".join(failures))

    def _pegged_result(self, symbol: str) -> SourceResult:
        return SourceResult(symbol=symbol, source="peg", price=KnownPrice(self._pegged[symbol]))

    async def _safe_fetch(self, source: "PriceSource", symbol: str) -> SourceResult:
        try:
            return await source.fetch_price(symbol)
        except Exception as exc:
            logger.error("Price source %s raised for %s: %s", source.name, symbol, exc)
            return SourceResult(symbol=symbol, source=source.name, error=f"unexpected error: {exc}")

    async def _safe_batch(self, source: "PriceSource", symbols: Sequence[str]) -> dict[str, SourceResult]:
        try:
            return await source.fetch_prices(symbols)
        except Exception as exc:
            logger.error("Batch price source %s raised: %s", source.name, exc)
            return {}


__all__ = ["MultiSourceResolver"]
