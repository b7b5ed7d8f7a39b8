from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .api import api_router
from .config import Settings, get_settings
from .db import get_db
from .observability import PROMETHEUS_CONTENT_TYPE, generate_prometheus_metrics
from .pricing import MultiSourceResolver, PriceCache, RedisSnapshotStore
from .providers import HttpPriceSource, build_sources
from .redis_client import get_redis
from .repositories import AssetPriceRepository
from .schedulers import PriceRefreshScheduler


def build_resolver(settings: Settings, sources: dict[str, HttpPriceSource]) -> MultiSourceResolver:
    return MultiSourceResolver(
        sources,
        default_order=settings.price_source_order,
        overrides=settings.price_source_overrides,
        pegged=settings.price_pegged_symbols,
        batch_source=settings.price_batch_source,
    )


def build_price_cache(
    settings: Settings,
    resolver: MultiSourceResolver,
    *,
    store: RedisSnapshotStore | None = None,
    asset_store: AssetPriceRepository | None = None,
) -> PriceCache:
    return PriceCache(
        resolver,
        symbols=settings.tracked_symbols(),
        stale_threshold_seconds=settings.price_stale_threshold_seconds,
        pegged=settings.price_pegged_symbols,
        store=store,
        asset_store=asset_store,
        require_store_on_force=settings.price_require_store_on_force,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger = logging.getLogger(settings.service_name)
    logger.info("Starting %s", settings.service_name)

    redis_client = get_redis()
    try:
        await redis_client.connect()
    except Exception as exc:
        logger.warning("Redis unavailable; price snapshot will not survive restarts: %s", exc)
    db = get_db()
    try:
        await db.connect()
    except Exception as exc:
        logger.warning("Asset store unavailable; fresh prices will not be persisted: %s", exc)

    http_client = httpx.AsyncClient(timeout=settings.source_timeout_seconds)
    resolver = build_resolver(settings, build_sources(settings=settings, client=http_client))
    store = None
    if redis_client.is_connected:
        store = RedisSnapshotStore(
            redis_client.get_connection(),
            key=settings.snapshot_key,
            ttl_seconds=settings.resolved_snapshot_ttl_seconds(),
        )
    asset_store = None
    if settings.price_propagate_to_asset_store and db.is_connected:
        asset_store = AssetPriceRepository(db)
    cache = build_price_cache(settings, resolver, store=store, asset_store=asset_store)
    await cache.initialize()

    scheduler: PriceRefreshScheduler | None = None
    if settings.price_background_refresh_enabled:
        scheduler = PriceRefreshScheduler(cache, interval_seconds=settings.price_refresh_interval_seconds)
        await scheduler.start()

    app.state.price_cache = cache
    app.state.price_resolver = resolver
    app.state.refresh_scheduler = scheduler
    yield

    logger.info("Stopping %s", settings.service_name)
    if scheduler is not None:
        await scheduler.stop()
    await cache.aclose()
    await http_client.aclose()
    app.state.price_cache = None
    app.state.price_resolver = None
    app.state.refresh_scheduler = None
    await get_db().disconnect()
    await get_redis().disconnect()
    logger.info("%s stopped", settings.service_name)


def configure_logging(settings: Settings) -> None:
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    if not settings.log_dir:
        return
    log_path = Path(settings.log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path / "price_cache_service.log")
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root_logger.addHandler(file_handler)


settings = get_settings()
configure_logging(settings)

app = FastAPI(title="Price Cache Service", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix="/internal/prices")


@app.get("/metrics")
async def prometheus_metrics() -> Response:
    payload = generate_prometheus_metrics()
    return Response(content=payload, media_type=PROMETHEUS_CONTENT_TYPE)


@app.get("/healthz")
async def healthz(request: Request) -> dict[str, object]:
    redis_status = await get_redis().health_check()
    cache: PriceCache | None = getattr(request.app.state, "price_cache", None)
    return {
        "status": "ok",
        "redis": redis_status,
        "priceCache": cache.state if cache is not None else "uninitialized",
    }


@app.get("/readyz")
async def readyz(request: Request) -> dict[str, object]:
    cache: PriceCache | None = getattr(request.app.state, "price_cache", None)
    if cache is None or cache.snapshot is None:
        return {"status": "degraded", "priceCache": cache.state if cache is not None else "uninitialized"}
    return {"status": "ok", "priceCache": cache.state}
