from __future__ import annotations

import asyncio
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from price_cache_service.pricing import PriceCache, PriceSnapshot, SnapshotStoreError
from price_cache_service.pricing.models import KnownPrice, SourceResult

START = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StubResolver:
    def __init__(self, prices: dict[str, object] | None = None, *, gate: asyncio.Event | None = None) -> None:
        self.prices = prices or {}
        self.gate = gate
        self.calls = 0
        self.error: Exception | None = None

    async def resolve_many(self, symbols):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        results = {}
        for symbol in symbols:
            value = self.prices.get(symbol)
            if value is None:
                results[symbol] = SourceResult(symbol=symbol, source=None, error="all sources failed")
            else:
                results[symbol] = SourceResult(symbol=symbol, source="stub", price=KnownPrice(Decimal(str(value))))
        return results


class MemoryStore:
    def __init__(self, snapshot: PriceSnapshot | None = None) -> None:
        self.snapshot = snapshot
        self.loads = 0
        self.saved: list[PriceSnapshot] = []
        self.fail_load = False
        self.fail_save = False

    async def load(self):
        self.loads += 1
        if self.fail_load:
            raise SnapshotStoreError("redis down")
        return self.snapshot

    async def save(self, snapshot):
        if self.fail_save:
            raise SnapshotStoreError("redis down")
        self.saved.append(snapshot)
        self.snapshot = snapshot


class RecordingAssetStore:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.persisted: dict[str, Decimal] = {}

    async def persist_price(self, symbol, price):
        if symbol in self.failing:
            raise RuntimeError("db locked")
        self.persisted[symbol] = price
        return 1


def _cache(resolver, clock, **kwargs) -> PriceCache:
    kwargs.setdefault("symbols", ["BTC", "ETH", "SOL", "USDC", "XMR"])
    kwargs.setdefault("pegged", {"USDC": 1.0})
    return PriceCache(resolver, stale_threshold_seconds=300, now_fn=clock, **kwargs)


def _stored(prices: dict[str, object], at: datetime) -> PriceSnapshot:
    return PriceSnapshot.stamped(
        {symbol: Decimal(str(value)) if value is not None else None for symbol, value in prices.items()},
        at,
    )


@pytest.mark.asyncio
async def test_cold_read_returns_nothing_and_starts_a_refresh():
    resolver = StubResolver({"BTC": 50000, "ETH": 3000, "SOL": 140, "XMR": 160})
    cache = _cache(resolver, FakeClock())

    assert await cache.get_prices() is None
    assert cache.is_refreshing

    snapshot = await cache.wait_for_refresh()
    assert snapshot.price("BTC") == Decimal("50000")
    assert snapshot.price("USDC") == Decimal("1.0")
    assert snapshot.last_updated == int(START.timestamp() * 1000)
    assert cache.state == "fresh"
    assert cache.status.last_result == "success"


@pytest.mark.asyncio
async def test_fresh_snapshot_is_served_without_refresh():
    clock = FakeClock()
    resolver = StubResolver({"BTC": 50000})
    cache = _cache(resolver, clock, symbols=["BTC"])
    await cache.trigger_refresh()

    clock.advance(120)
    snapshot = await cache.get_prices()

    assert snapshot.price("BTC") == Decimal("50000")
    assert resolver.calls == 1
    assert not cache.is_refreshing


@pytest.mark.asyncio
async def test_stale_read_returns_immediately_while_refresh_runs():
    clock = FakeClock()
    gate = asyncio.Event()
    store = MemoryStore(_stored({"BTC": 50000, "ETH": 3000}, START - timedelta(minutes=10)))
    resolver = StubResolver({"BTC": 51000, "ETH": 3100}, gate=gate)
    cache = _cache(resolver, clock, symbols=["BTC", "ETH"], store=store)
    await cache.initialize()

    started = time.perf_counter()
    snapshot = await cache.get_prices()
    elapsed = time.perf_counter() - started

    assert elapsed < 0.05
    assert snapshot.price("BTC") == Decimal("50000")
    assert cache.state == "stale"
    assert cache.is_refreshing

    gate.set()
    refreshed = await cache.wait_for_refresh()
    assert refreshed.price("BTC") == Decimal("51000")
    assert cache.state == "fresh"


@pytest.mark.asyncio
async def test_concurrent_reads_share_one_refresh():
    gate = asyncio.Event()
    resolver = StubResolver({"BTC": 50000}, gate=gate)
    cache = _cache(resolver, FakeClock(), symbols=["BTC"])

    await asyncio.gather(*(cache.get_prices() for _ in range(10)))
    first = cache.trigger_refresh()
    second = cache.trigger_refresh()
    await asyncio.sleep(0)
    gate.set()
    await first

    assert first is second
    assert resolver.calls == 1


@pytest.mark.asyncio
async def test_failed_symbol_keeps_last_known_price():
    clock = FakeClock()
    store = MemoryStore(_stored({"BTC": 50000, "ETH": None}, START - timedelta(minutes=6)))
    resolver = StubResolver({"BTC": 51000})
    cache = _cache(resolver, clock, symbols=["BTC", "ETH"], store=store)
    await cache.initialize()

    outcome = await cache.trigger_refresh()

    assert dict(outcome.snapshot.prices) == {"BTC": Decimal("51000"), "ETH": None}
    assert outcome.retained == ["ETH"]
    assert outcome.result == "partial"


@pytest.mark.asyncio
async def test_forced_refresh_keeps_price_of_failing_symbol_and_restamps():
    clock = FakeClock()
    resolver = StubResolver({"BTC": 50000, "SOL": 140.5})
    cache = _cache(resolver, clock, symbols=["BTC", "SOL"])
    await cache.get_fresh_prices()

    clock.advance(30)
    resolver.prices = {"BTC": 50500}
    snapshot = await cache.get_fresh_prices()

    assert snapshot.price("SOL") == Decimal("140.5")
    assert snapshot.price("BTC") == Decimal("50500")
    assert snapshot.last_updated_at == clock.now
    assert cache.status.retained_symbols == ["SOL"]


@pytest.mark.asyncio
async def test_pegged_symbol_ignores_resolved_value():
    resolver = StubResolver({"BTC": 50000, "USDC": 0.97})
    cache = _cache(resolver, FakeClock(), symbols=["BTC", "USDC"])

    snapshot = await cache.get_fresh_prices()

    assert snapshot.price("USDC") == Decimal("1.0")


@pytest.mark.asyncio
async def test_total_outage_is_reported_as_failed_but_snapshot_survives():
    clock = FakeClock()
    resolver = StubResolver({"BTC": 50000, "ETH": 3000})
    cache = _cache(resolver, clock, symbols=["BTC", "ETH", "USDC"])
    await cache.get_fresh_prices()

    resolver.prices = {}
    outcome = await cache.trigger_refresh()

    assert outcome.result == "failed"
    assert outcome.snapshot.price("BTC") == Decimal("50000")
    assert outcome.snapshot.price("USDC") == Decimal("1.0")


@pytest.mark.asyncio
async def test_resolver_crash_restamps_prior_prices_and_clears_flag():
    clock = FakeClock()
    resolver = StubResolver({"BTC": 50000})
    store = MemoryStore()
    cache = _cache(resolver, clock, symbols=["BTC", "USDC"], store=store)
    first = await cache.get_fresh_prices()

    clock.advance(400)
    resolver.error = RuntimeError("resolver exploded")
    outcome = await cache.trigger_refresh()

    assert outcome.result == "failed"
    assert not cache.is_refreshing
    assert dict(cache.snapshot.prices) == dict(first.prices)
    assert cache.snapshot.last_updated_at == clock.now
    assert cache.state == "fresh"
    assert store.saved[-1] is cache.snapshot
    assert cache.status.last_error == "resolver exploded"
    assert cache.status.retained_symbols == ["BTC"]

    await cache.get_prices()
    assert not cache.is_refreshing
    assert resolver.calls == 2

    resolver.error = None
    resolver.prices = {"BTC": 52000}
    clock.advance(1)
    assert (await cache.get_fresh_prices()).price("BTC") == Decimal("52000")


@pytest.mark.asyncio
async def test_refresh_writes_snapshot_to_store():
    store = MemoryStore()
    resolver = StubResolver({"BTC": 50000})
    cache = _cache(resolver, FakeClock(), symbols=["BTC", "USDC"], store=store)

    snapshot = await cache.get_fresh_prices()

    assert store.saved == [snapshot]
    assert store.snapshot.to_payload()["lastUpdated"] == snapshot.last_updated


@pytest.mark.asyncio
async def test_newer_in_memory_snapshot_is_not_replaced_by_older_stored_one():
    clock = FakeClock()
    store = MemoryStore(_stored({"BTC": 1}, START - timedelta(minutes=1)))
    cache = _cache(StubResolver({"BTC": 50000}), clock, symbols=["BTC"], store=store)
    await cache.get_fresh_prices()
    store.snapshot = _stored({"BTC": 2}, START - timedelta(hours=1))

    await cache.initialize()

    assert cache.snapshot.price("BTC") == Decimal("50000")


@pytest.mark.asyncio
async def test_store_outage_degrades_to_memory():
    store = MemoryStore()
    store.fail_load = True
    store.fail_save = True
    resolver = StubResolver({"BTC": 50000})
    cache = _cache(resolver, FakeClock(), symbols=["BTC"], store=store)

    assert await cache.initialize() is None
    snapshot = await cache.get_fresh_prices()

    assert snapshot.price("BTC") == Decimal("50000")
    assert cache.status.last_store_error == "redis down"


@pytest.mark.asyncio
async def test_cold_read_checks_the_store_only_once():
    store = MemoryStore()
    gate = asyncio.Event()
    cache = _cache(StubResolver({"BTC": 1}, gate=gate), FakeClock(), symbols=["BTC"], store=store)

    await cache.get_prices()
    await cache.get_prices()
    gate.set()
    await cache.wait_for_refresh()

    assert store.loads == 1


@pytest.mark.asyncio
async def test_required_store_failure_raises_on_forced_refresh():
    store = MemoryStore()
    store.fail_save = True
    cache = _cache(StubResolver({"BTC": 1}), FakeClock(), symbols=["BTC"], store=store, require_store_on_force=True)

    with pytest.raises(SnapshotStoreError):
        await cache.get_fresh_prices()
    assert cache.snapshot.price("BTC") == Decimal("1")

    missing = _cache(StubResolver({"BTC": 1}), FakeClock(), symbols=["BTC"], require_store_on_force=True)
    with pytest.raises(SnapshotStoreError):
        await missing.get_fresh_prices()


@pytest.mark.asyncio
async def test_updated_prices_are_propagated_to_asset_store():
    assets = RecordingAssetStore(failing={"ETH"})
    resolver = StubResolver({"BTC": 50000, "ETH": 3000})
    cache = _cache(resolver, FakeClock(), symbols=["BTC", "ETH", "SOL", "USDC"], asset_store=assets)

    snapshot = await cache.get_fresh_prices()
    await cache.aclose()

    assert assets.persisted == {"BTC": Decimal("50000"), "USDC": Decimal("1.0")}
    assert snapshot.price("ETH") == Decimal("3000")


@pytest.mark.asyncio
async def test_snapshot_age_tracks_clock():
    clock = FakeClock()
    cache = _cache(StubResolver({"BTC": 1}), clock, symbols=["BTC"])
    assert cache.snapshot_age_seconds() is None
    assert cache.state == "empty"

    await cache.get_fresh_prices()
    clock.advance(301)

    assert cache.snapshot_age_seconds() == pytest.approx(301)
    assert cache.state == "stale"
