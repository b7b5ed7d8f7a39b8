from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Literal, Mapping, Protocol

from ..metrics import record_refresh_latency
from ..observability import record_price_refresh, update_snapshot_age
from .models import PriceSnapshot, SourceResult
from .snapshot_store import SnapshotStore, SnapshotStoreError

logger = logging.getLogger("pricecache.cache")

CacheState = Literal["empty", "fresh", "stale"]
RefreshResult = Literal["success", "partial", "failed"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PriceResolver(Protocol):
    async def resolve_many(self, symbols: Iterable[str]) -> Mapping[str, SourceResult]:
        ...


class AssetPriceSink(Protocol):
    async def persist_price(self, symbol: str, price: Decimal) -> Any:
        ...


@dataclass(slots=True)
class RefreshOutcome:
    snapshot: PriceSnapshot
    result: RefreshResult
    updated: dict[str, Decimal] = field(default_factory=dict)
    retained: list[str] = field(default_factory=list)
    store_error: str | None = None


@dataclass(slots=True)
class PriceCacheStatus:
    last_refresh_at: datetime | None = None
    last_duration_seconds: float | None = None
    last_result: RefreshResult | None = None
    last_error: str | None = None
    last_store_error: str | None = None
    refresh_count: int = 0
    updated_symbols: list[str] = field(default_factory=list)
    retained_symbols: list[str] = field(default_factory=list)


class PriceCache:
    """
    Last-known-good price snapshot with single-flight background refresh.

    Reads return whatever snapshot is held, stale or not, and schedule a
    refresh when it is stale or missing. At most one refresh runs at a time;
    concurrent triggers join it. A refresh resolves every tracked symbol,
    keeps the previous price for symbols that could not be resolved, then
    swaps the new snapshot in at once and writes it to the snapshot store.
    """

    def __init__(
        self,
        resolver: PriceResolver,
        *,
        symbols: Iterable[str],
        stale_threshold_seconds: float = 300.0,
        pegged: Mapping[str, float | Decimal | str] | None = None,
        store: SnapshotStore | None = None,
        asset_store: AssetPriceSink | None = None,
        require_store_on_force: bool = False,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._resolver = resolver
        self._symbols = list(dict.fromkeys(symbol.upper() for symbol in symbols))
        self._stale_threshold = stale_threshold_seconds
        self._pegged = {symbol.upper(): Decimal(str(value)) for symbol, value in (pegged or {}).items()}
        self._store = store
        self._asset_store = asset_store
        self._require_store_on_force = require_store_on_force
        self._now = now_fn or _utcnow
        self._snapshot: PriceSnapshot | None = None
        self._store_checked = store is None
        self._refresh_task: asyncio.Task[RefreshOutcome] | None = None
        self._propagation_tasks: set[asyncio.Task[None]] = set()
        self.status = PriceCacheStatus()

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    @property
    def stale_threshold_seconds(self) -> float:
        return self._stale_threshold

    @property
    def snapshot(self) -> PriceSnapshot | None:
        return self._snapshot

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    @property
    def state(self) -> CacheState:
        snapshot = self._snapshot
        if snapshot is None:
            return "empty"
        return "stale" if snapshot.is_stale(self._now(), self._stale_threshold) else "fresh"

    async def initialize(self) -> PriceSnapshot | None:
        """Adopt a snapshot left in the store by an earlier or sibling process."""
        return await self._inherit_from_store()

    async def get_prices(self) -> PriceSnapshot | None:
        snapshot = self._snapshot
        if snapshot is None and not self._store_checked:
            snapshot = await self._inherit_from_store()
        if snapshot is None or snapshot.is_stale(self._now(), self._stale_threshold):
            self.trigger_refresh()
        return snapshot

    async def get_fresh_prices(self) -> PriceSnapshot:
        task = self.trigger_refresh()
        outcome = await asyncio.shield(task)
        if self._require_store_on_force:
            if self._store is None:
                raise SnapshotStoreError("Snapshot store is required but not configured")
            if outcome.store_error:
                raise SnapshotStoreError(outcome.store_error)
        return outcome.snapshot

    def trigger_refresh(self) -> asyncio.Task[RefreshOutcome]:
        task = self._refresh_task
        if task is not None and not task.done():
            logger.debug("Price refresh already in flight; joining it")
            return task
        task = asyncio.create_task(self._run_refresh(), name="price-cache-refresh")
        self._refresh_task = task
        task.add_done_callback(self._on_refresh_done)
        return task

    async def wait_for_refresh(self) -> PriceSnapshot | None:
        task = self._refresh_task
        if task is not None and not task.done():
            await asyncio.shield(task)
        return self._snapshot

    async def aclose(self) -> None:
        task = self._refresh_task
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:  # pragma: no cover - shutdown race
                pass
        if self._propagation_tasks:
            await asyncio.gather(*self._propagation_tasks, return_exceptions=True)

    async def _run_refresh(self) -> RefreshOutcome:
        started_at = self._now()
        start = time.perf_counter()
        try:
            outcome = await self._refresh()
            self.status.last_error = None
        except Exception as exc:
            logger.exception("Price refresh failed: %s", exc)
            self.status.last_error = str(exc)
            outcome = await self._restamp_after_crash()
        finally:
            if self._refresh_task is asyncio.current_task():
                self._refresh_task = None
        duration = time.perf_counter() - start
        self.status.last_refresh_at = started_at
        self.status.last_duration_seconds = duration
        self.status.last_result = outcome.result
        self.status.refresh_count += 1
        self.status.updated_symbols = sorted(outcome.updated)
        self.status.retained_symbols = list(outcome.retained)
        record_price_refresh(outcome.result, duration)
        record_refresh_latency(duration * 1000)
        logger.info(
            "Price refresh %s in %.2fs (updated=%s retained=%s)",
            outcome.result,
            duration,
            len(outcome.updated),
            len(outcome.retained),
        )
        return outcome

    async def _refresh(self) -> RefreshOutcome:
        if self._snapshot is None and not self._store_checked:
            await self._inherit_from_store()

        results = await self._resolver.resolve_many(self._symbols)

        previous = self._snapshot
        prices: dict[str, Decimal | None] = dict(previous.prices) if previous is not None else {}
        updated: dict[str, Decimal] = {}
        retained: list[str] = []
        for symbol in self._symbols:
            peg = self._pegged.get(symbol)
            if peg is not None:
                prices[symbol] = peg
                updated[symbol] = peg
                continue
            source_result = results.get(symbol)
            value = source_result.value if source_result is not None else None
            if value is not None and value > 0:
                prices[symbol] = value
                updated[symbol] = value
                continue
            prior = prices.get(symbol)
            prices[symbol] = prior
            retained.append(symbol)
            logger.warning(
                "No fresh price for %s (%s); keeping previous value %s",
                symbol,
                source_result.error if source_result is not None else "not resolved",
                prior,
            )

        snapshot = PriceSnapshot.stamped(prices, self._now())
        self._snapshot = snapshot
        update_snapshot_age(0.0)

        store_error = await self._persist_snapshot(snapshot)
        self._propagate(updated)

        fetched = [symbol for symbol in updated if symbol not in self._pegged]
        unpegged = [symbol for symbol in self._symbols if symbol not in self._pegged]
        refresh_result: RefreshResult
        if not retained:
            refresh_result = "success"
        elif fetched or not unpegged:
            refresh_result = "partial"
        else:
            refresh_result = "failed"
        return RefreshOutcome(
            snapshot=snapshot,
            result=refresh_result,
            updated=updated,
            retained=retained,
            store_error=store_error,
        )

    async def _restamp_after_crash(self) -> RefreshOutcome:
        # Same staleness reset as a refresh where every source failed.
        previous = self._snapshot
        prices: dict[str, Decimal | None] = dict(previous.prices) if previous is not None else {}
        retained: list[str] = []
        for symbol in self._symbols:
            peg = self._pegged.get(symbol)
            if peg is not None:
                prices[symbol] = peg
            else:
                prices.setdefault(symbol, None)
                retained.append(symbol)
        snapshot = PriceSnapshot.stamped(prices, self._now())
        self._snapshot = snapshot
        update_snapshot_age(0.0)
        store_error = await self._persist_snapshot(snapshot)
        return RefreshOutcome(snapshot=snapshot, result="failed", retained=retained, store_error=store_error)

    async def _inherit_from_store(self) -> PriceSnapshot | None:
        if self._store is None:
            return self._snapshot
        self._store_checked = True
        try:
            stored = await self._store.load()
        except SnapshotStoreError as exc:
            logger.warning("Snapshot store unavailable; continuing in memory: %s", exc)
            self.status.last_store_error = str(exc)
            return self._snapshot
        if stored is None:
            return self._snapshot
        current = self._snapshot
        if current is None or (current.last_updated or 0) < (stored.last_updated or 0):
            self._snapshot = stored
            logger.info("Inherited price snapshot from store (lastUpdated=%s)", stored.last_updated)
        return self._snapshot

    async def _persist_snapshot(self, snapshot: PriceSnapshot) -> str | None:
        if self._store is None:
            return None
        try:
            await self._store.save(snapshot)
        except SnapshotStoreError as exc:
            logger.warning("Could not persist price snapshot: %s", exc)
            self.status.last_store_error = str(exc)
            return str(exc)
        self.status.last_store_error = None
        return None

    def _propagate(self, updated: Mapping[str, Decimal]) -> None:
        if not updated or self._asset_store is None:
            return
        task = asyncio.create_task(self._persist_prices(dict(updated)), name="price-cache-propagate")
        self._propagation_tasks.add(task)
        task.add_done_callback(self._propagation_tasks.discard)

    async def _persist_prices(self, updated: Mapping[str, Decimal]) -> None:
        assert self._asset_store is not None
        for symbol, price in updated.items():
            try:
                await self._asset_store.persist_price(symbol, price)
            except Exception as exc:
                logger.warning("Failed to persist %s price to asset store: %s", symbol, exc)

    def _on_refresh_done(self, task: asyncio.Task[RefreshOutcome]) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if task.cancelled():
            logger.warning("Price refresh task was cancelled")
            return
        exc = task.exception()
        if exc is not None:  # pragma: no cover - _run_refresh absorbs errors
            logger.error("Price refresh task crashed: %s", exc)

    def snapshot_age_seconds(self) -> float | None:
        snapshot = self._snapshot
        if snapshot is None:
            return None
        age = snapshot.age_seconds(self._now())
        if age is not None:
            update_snapshot_age(age)
        return age


__all__ = [
    "AssetPriceSink",
    "CacheState",
    "PriceCache",
    "PriceCacheStatus",
    "PriceResolver",
    "RefreshOutcome",
]
