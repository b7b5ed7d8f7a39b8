from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from ..metrics import get_refresh_latency_stats
from ..pricing import (
    Holding,
    MultiSourceResolver,
    PortfolioValuation,
    PriceCache,
    PriceSnapshot,
    SnapshotStoreError,
    value_holdings,
)

router = APIRouter()


class HoldingIn(BaseModel):
    symbol: str
    balance: Decimal
    wallet: str | None = None


class ValuationRequest(BaseModel):
    holdings: list[HoldingIn] = Field(default_factory=list)
    fresh: bool = False


def _to_camel_case(snake_str: str) -> str:
    components = snake_str.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {_to_camel_case(str(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _snapshot_payload(snapshot: PriceSnapshot | None) -> dict[str, Any] | None:
    return snapshot.to_payload() if snapshot is not None else None


def get_price_cache(request: Request) -> PriceCache:
    cache = getattr(request.app.state, "price_cache", None)
    if cache is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Price cache not ready")
    return cache


def get_price_resolver(request: Request) -> MultiSourceResolver:
    resolver = getattr(request.app.state, "price_resolver", None)
    if resolver is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Price resolver not ready")
    return resolver


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/prices")
async def read_prices(cache: PriceCache = Depends(get_price_cache)) -> dict[str, Any]:
    snapshot = await cache.get_prices()
    return {
        "snapshot": _snapshot_payload(snapshot),
        "state": cache.state,
        "refreshing": cache.is_refreshing,
    }


@router.post("/prices/refresh")
async def refresh_prices(cache: PriceCache = Depends(get_price_cache)) -> dict[str, Any]:
    try:
        snapshot = await cache.get_fresh_prices()
    except SnapshotStoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"snapshot": _snapshot_payload(snapshot), "state": cache.state}


@router.get("/prices/status")
async def price_status(cache: PriceCache = Depends(get_price_cache)) -> dict[str, Any]:
    return {
        "state": cache.state,
        "refreshing": cache.is_refreshing,
        "ageSeconds": cache.snapshot_age_seconds(),
        "staleThresholdSeconds": cache.stale_threshold_seconds,
        "symbols": cache.symbols,
        "lastRefresh": _jsonable(asdict(cache.status)),
    }


@router.get("/prices/{symbol}/sources")
async def probe_sources(symbol: str, resolver: MultiSourceResolver = Depends(get_price_resolver)) -> dict[str, Any]:
    normalized = symbol.upper()
    pegged = resolver.pegged.get(normalized)
    if pegged is not None:
        return {"symbol": normalized, "pegged": float(pegged), "sources": []}
    if not resolver.order_for(normalized):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No price source for {normalized}")
    results = await resolver.probe(normalized)
    return {
        "symbol": normalized,
        "pegged": None,
        "sources": [
            {
                "source": result.source,
                "price": float(result.value) if result.value is not None else None,
                "error": result.error,
            }
            for result in results
        ],
    }


@router.post("/valuation")
async def value_portfolio(
    payload: ValuationRequest,
    cache: PriceCache = Depends(get_price_cache),
) -> dict[str, Any]:
    if payload.fresh:
        try:
            snapshot: PriceSnapshot | None = await cache.get_fresh_prices()
        except SnapshotStoreError as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    else:
        snapshot = await cache.get_prices()
    valuation: PortfolioValuation = value_holdings(
        (Holding(symbol=item.symbol, balance=item.balance, wallet=item.wallet) for item in payload.holdings),
        snapshot,
    )
    return _jsonable(asdict(valuation))


@router.get("/metrics/latency/refresh")
async def refresh_latency() -> dict[str, float]:
    stats = get_refresh_latency_stats()
    if stats is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No refresh latency samples yet")
    return stats
