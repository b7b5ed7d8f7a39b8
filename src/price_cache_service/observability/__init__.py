"""
Observability helpers (metrics, logging instrumentation, etc.).
"""

from .prometheus import (
    PROMETHEUS_CONTENT_TYPE,
    generate_prometheus_metrics,
    record_price_refresh,
    record_source_request,
    reset_prometheus_metrics,
    update_snapshot_age,
)

__all__ = [
    "PROMETHEUS_CONTENT_TYPE",
    "generate_prometheus_metrics",
    "record_price_refresh",
    "record_source_request",
    "reset_prometheus_metrics",
    "update_snapshot_age",
]
