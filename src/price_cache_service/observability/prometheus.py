from __future__ import annotations

from typing import Literal

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

PROMETHEUS_CONTENT_TYPE = CONTENT_TYPE_LATEST

RefreshResult = Literal["success", "partial", "failed"]
SourceOutcome = Literal["success", "failure"]


def _build_registry() -> tuple[CollectorRegistry, Counter, Counter, Histogram, Gauge]:
    registry = CollectorRegistry()
    source_counter = Counter(
        "price_source_requests_total",
        "Price lookups against upstream sources by outcome",
        labelnames=("source", "outcome"),
        registry=registry,
    )
    refresh_counter = Counter(
        "price_refresh_total",
        "Completed price cache refreshes grouped by result",
        labelnames=("result",),
        registry=registry,
    )
    refresh_duration = Histogram(
        "price_refresh_duration_seconds",
        "Wall time of a full price cache refresh",
        buckets=(
            0.1,
            0.25,
            0.5,
            1.0,
            2.5,
            5.0,
            10.0,
            30.0,
        ),
        registry=registry,
    )
    snapshot_age = Gauge(
        "price_snapshot_age_seconds",
        "Age of the price snapshot when last observed",
        registry=registry,
    )
    return registry, source_counter, refresh_counter, refresh_duration, snapshot_age


_registry, _source_counter, _refresh_counter, _refresh_duration, _snapshot_age = _build_registry()


def record_source_request(source: str, outcome: SourceOutcome) -> None:
    _source_counter.labels(source=source, outcome=outcome).inc()


def record_price_refresh(result: RefreshResult, duration_seconds: float | None = None) -> None:
    _refresh_counter.labels(result=result).inc()
    if duration_seconds is not None and duration_seconds >= 0:
        _refresh_duration.observe(duration_seconds)


def update_snapshot_age(age_seconds: float) -> None:
    try:
        value = float(age_seconds)
    except (TypeError, ValueError):
        return
    _snapshot_age.set(value)


def generate_prometheus_metrics() -> bytes:
    return generate_latest(_registry)


def reset_prometheus_metrics() -> None:
    global _registry, _source_counter, _refresh_counter, _refresh_duration, _snapshot_age
    _registry, _source_counter, _refresh_counter, _refresh_duration, _snapshot_age = _build_registry()
