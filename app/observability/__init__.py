"""
============================================================================
Centennial Activity Map v1.2.0
Observability Module - Prometheus Metrics
============================================================================

Reliability Level: L4 Operational
Input Constraints: None
Side Effects: Exposes Prometheus metrics

============================================================================
"""

from app.observability.metrics import (
    SYNC_ATTEMPTS,
    CACHE_RECORDS_GAUGE,
    STREAM_SUBSCRIBERS_GAUGE,
    RECORDS_NORMALIZED,
    COORDINATES_DROPPED,
    MISSING_COORDINATES,
    UPSTREAM_FETCHES_GAUGE,
    UPSTREAM_ERRORS_GAUGE,
    UPSTREAM_LAST_RECORDS_GAUGE,
    CHANGE_EVENTS_GAUGE,
    SUBSCRIBER_FAILURES_GAUGE,
    record_sync_attempt,
    record_normalization,
    update_cache_records,
    update_stream_subscribers,
    update_adapter_health,
    update_notifier_statistics,
)

__all__ = [
    "SYNC_ATTEMPTS",
    "CACHE_RECORDS_GAUGE",
    "STREAM_SUBSCRIBERS_GAUGE",
    "RECORDS_NORMALIZED",
    "COORDINATES_DROPPED",
    "MISSING_COORDINATES",
    "UPSTREAM_FETCHES_GAUGE",
    "UPSTREAM_ERRORS_GAUGE",
    "UPSTREAM_LAST_RECORDS_GAUGE",
    "CHANGE_EVENTS_GAUGE",
    "SUBSCRIBER_FAILURES_GAUGE",
    "record_sync_attempt",
    "record_normalization",
    "update_cache_records",
    "update_stream_subscribers",
    "update_adapter_health",
    "update_notifier_statistics",
]
