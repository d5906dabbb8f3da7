"""
============================================================================
Centennial Activity Map v1.2.0
Prometheus Metrics - Sync Engine Observability
============================================================================

Reliability Level: L4 Operational
Input Constraints: None
Side Effects: Updates Prometheus metrics registry

METRICS EXPOSED
---------------
- project_sync_attempts_total: Counter of sync evaluations by mode/kind/outcome
- project_cache_records: Records currently held in the local cache
- project_stream_subscribers: Connected push-update stream clients
- project_records_normalized_total / project_coordinates_dropped_total /
  project_records_missing_coordinates_total: Normalizer counters by mode
- project_upstream_fetches / project_upstream_errors /
  project_upstream_last_fetch_records: Source adapter health by mode
- project_change_events_published / project_change_subscriber_failures:
  Change notifier delivery counters

Recording helpers never raise; a metrics failure is logged and ignored.

============================================================================
"""

import logging

from prometheus_client import Counter, Gauge

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

# Counter: every sync evaluation, including fresh cache hits
SYNC_ATTEMPTS = Counter(
    "project_sync_attempts_total",
    "Sync evaluations by source mode, sync kind and outcome",
    ["mode", "kind", "outcome"]
)

CACHE_RECORDS_GAUGE = Gauge(
    "project_cache_records",
    "Number of project records in the local cache"
)

STREAM_SUBSCRIBERS_GAUGE = Gauge(
    "project_stream_subscribers",
    "Number of connected projects-updated stream clients"
)

# Normalizer
RECORDS_NORMALIZED = Counter(
    "project_records_normalized_total",
    "Upstream records normalized into project records",
    ["mode"]
)

COORDINATES_DROPPED = Counter(
    "project_coordinates_dropped_total",
    "Records whose upstream coordinates were present but unusable",
    ["mode"]
)

MISSING_COORDINATES = Counter(
    "project_records_missing_coordinates_total",
    "Normalized records without a coordinate pair",
    ["mode"]
)

# Source adapter health, mirrored from AdapterHealth
UPSTREAM_FETCHES_GAUGE = Gauge(
    "project_upstream_fetches",
    "Completed upstream fetches of the active adapter",
    ["mode"]
)

UPSTREAM_ERRORS_GAUGE = Gauge(
    "project_upstream_errors",
    "Failed upstream fetches of the active adapter",
    ["mode"]
)

UPSTREAM_LAST_RECORDS_GAUGE = Gauge(
    "project_upstream_last_fetch_records",
    "Records returned by the most recent successful upstream fetch",
    ["mode"]
)

# Change notifier
CHANGE_EVENTS_GAUGE = Gauge(
    "project_change_events_published",
    "projects-updated events published by the change notifier"
)

SUBSCRIBER_FAILURES_GAUGE = Gauge(
    "project_change_subscriber_failures",
    "Subscriber deliveries that raised and were skipped"
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_sync_attempt(mode: str, kind: str, outcome: str) -> None:
    """
    Count one sync evaluation.

    Args:
        mode: Source mode ("airtable" or "csv")
        kind: "full", "incremental" or "none"
        outcome: "synced", "fresh" or "error"
    """
    try:
        SYNC_ATTEMPTS.labels(mode=mode, kind=kind, outcome=outcome).inc()
        logger.debug(
            "Metric: sync_attempt | mode=%s | kind=%s | outcome=%s",
            mode, kind, outcome
        )
    except Exception as e:
        logger.error(
            "[OBS-001] Failed to record sync_attempt metric | error=%s",
            str(e)
        )


def update_cache_records(count: int) -> None:
    try:
        CACHE_RECORDS_GAUGE.set(count)
    except Exception as e:
        logger.error(
            "[OBS-002] Failed to update cache_records metric | error=%s",
            str(e)
        )


def update_stream_subscribers(count: int) -> None:
    try:
        STREAM_SUBSCRIBERS_GAUGE.set(count)
    except Exception as e:
        logger.error(
            "[OBS-003] Failed to update stream_subscribers metric | error=%s",
            str(e)
        )


def record_normalization(mode: str, normalized: int, dropped: int, missing: int) -> None:
    """
    Count one normalized batch.

    Args:
        mode: Source mode ("airtable" or "csv")
        normalized: Records normalized in the batch
        dropped: Records whose coordinates were present but unusable
        missing: Records left without a coordinate pair
    """
    try:
        RECORDS_NORMALIZED.labels(mode=mode).inc(normalized)
        COORDINATES_DROPPED.labels(mode=mode).inc(dropped)
        MISSING_COORDINATES.labels(mode=mode).inc(missing)
    except Exception as e:
        logger.error(
            "[OBS-004] Failed to record normalization metrics | error=%s",
            str(e)
        )


def update_adapter_health(mode: str, fetches: int, errors: int, last_records: int) -> None:
    try:
        UPSTREAM_FETCHES_GAUGE.labels(mode=mode).set(fetches)
        UPSTREAM_ERRORS_GAUGE.labels(mode=mode).set(errors)
        UPSTREAM_LAST_RECORDS_GAUGE.labels(mode=mode).set(last_records)
    except Exception as e:
        logger.error(
            "[OBS-005] Failed to update adapter health metrics | error=%s",
            str(e)
        )


def update_notifier_statistics(published: int, failures: int) -> None:
    try:
        CHANGE_EVENTS_GAUGE.set(published)
        SUBSCRIBER_FAILURES_GAUGE.set(failures)
    except Exception as e:
        logger.error(
            "[OBS-006] Failed to update notifier metrics | error=%s",
            str(e)
        )
