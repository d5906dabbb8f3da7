"""
============================================================================
Centennial Activity Map v1.2.0
Sync Scheduler - Request-Driven Cache Freshness State Machine
============================================================================

Reliability Level: L5 Core
Input Constraints: One adapter, one store, one notifier per process
Side Effects: Upstream fetches, cache writes, change notifications

STATE MACHINE (evaluated on every sync_if_stale call):

    now          = clock()
    ttl_expired  = force_sync or (now - lastSync) > ttl_ms
    full_expired = (now - lastFullResync) > full_resync_ms
    do_full      = force_full or no lastSync or adapter has no
                   incremental mode or full_expired

    1. FRESH        not ttl_expired and not do_full -> nothing happens
    2. FULL         do_full -> fetch all, replace_all, new fingerprint,
                    advance lastSync and lastFullResync, publish
    3. INCREMENTAL  otherwise -> fetch since lastSync, upsert by id,
                    advance lastSync, publish

    FULL wins whenever both FULL and INCREMENTAL conditions hold.

FAILURE POLICY:
    - UpstreamFetchError / ParseError: caught here, reported in the outcome,
      no metadata or cache write happens. The next request is the retry.
    - PersistenceError: propagates to the caller.

CONCURRENCY:
    No mutual exclusion by default; two concurrent stale checks may both
    sync. single_flight=True serializes evaluation behind a lock shared by
    all schedulers of the same source kind.

ERROR CODES:
    - SYNC-001: Upstream fetch failed, cache left untouched
    - SYNC-002: Upstream data could not be parsed, cache left untouched

============================================================================
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import logging
import threading
import time
import uuid

from app.observability.metrics import (
    record_normalization,
    record_sync_attempt,
    update_adapter_health,
    update_cache_records,
    update_notifier_statistics,
)
from data_ingestion.adapters.base_adapter import BaseAdapter, ParseError, UpstreamFetchError
from data_ingestion.field_normalizer import FieldNormalizer
from data_ingestion.schemas import ProjectRecord, SourceKind
from services.cache_store import (
    META_LAST_FULL_RESYNC,
    META_LAST_SYNC,
    META_VIEW_HASH,
    ProjectCacheStore,
)
from services.change_notifier import ChangeNotifier
from services.fingerprint import compute_view_fingerprint

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

class SyncErrorCode:
    """Scheduler error codes for audit logging."""
    FETCH_FAIL = "SYNC-001"
    PARSE_FAIL = "SYNC-002"


class SyncMode:
    """Which path a sync evaluation took."""
    FULL = "full"
    INCREMENTAL = "incremental"
    NONE = "none"


SYNC_HEADER_FULL = "FULL"
SYNC_HEADER_INCREMENTAL = "INCR"
SYNC_HEADER_HIT = "HIT"

REASON_FRESH = "fresh"

Clock = Callable[[], int]


def system_clock() -> int:
    """Wall-clock epoch millis."""
    return int(time.time() * 1000)


# Shared by every scheduler of the same source kind when single_flight is on
_single_flight_locks = {
    SourceKind.AIRTABLE: threading.Lock(),
    SourceKind.CSV: threading.Lock(),
}


# =============================================================================
# Outcome
# =============================================================================

@dataclass
class SyncOutcome:
    """
    Result of one sync_if_stale evaluation.

    synced=False with reason="fresh" is a cache hit; synced=False with an
    error is a failed attempt that changed nothing.
    """
    synced: bool
    mode: str
    full: Optional[bool] = None
    changed: Optional[int] = None
    fingerprint: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def sync_header(self) -> str:
        """Value for the X-Sync response header."""
        if not self.synced:
            return SYNC_HEADER_HIT
        return SYNC_HEADER_FULL if self.full else SYNC_HEADER_INCREMENTAL

    def to_dict(self) -> Dict[str, Any]:
        result = {"synced": self.synced, "mode": self.mode}  # type: Dict[str, Any]
        for key in ("full", "changed", "fingerprint", "reason", "error"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


# =============================================================================
# SyncScheduler Class
# =============================================================================

class SyncScheduler:
    """
    Decides per request whether the cache is fresh, needs an incremental
    merge, or needs a full replace, and carries the sync out.

    Reliability Level: L5 Core
    Input Constraints: ttl_ms > 0, full_resync_ms >= 0
    Side Effects: Upstream fetches, cache writes, notifications
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        store: ProjectCacheStore,
        notifier: ChangeNotifier,
        view_name: str = "",
        ttl_ms: int = 10 * 60 * 1000,
        full_resync_ms: int = 24 * 60 * 60 * 1000,
        clock: Optional[Clock] = None,
        single_flight: bool = False,
        normalizer: Optional[FieldNormalizer] = None,
        correlation_id: Optional[str] = None
    ) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got: {ttl_ms}")
        if full_resync_ms < 0:
            raise ValueError(f"full_resync_ms must be non-negative, got: {full_resync_ms}")

        self._adapter = adapter
        self._store = store
        self._notifier = notifier
        self._view_name = view_name or ""
        self._ttl_ms = ttl_ms
        self._full_resync_ms = full_resync_ms
        self._clock = clock or system_clock
        self._single_flight = single_flight
        self._correlation_id = correlation_id or str(uuid.uuid4())
        self._normalizer = normalizer or FieldNormalizer(correlation_id=self._correlation_id)

        logger.info(
            f"SyncScheduler initialized | "
            f"mode={self.mode} | "
            f"view={self._view_name or '-'} | "
            f"ttl_ms={ttl_ms} | "
            f"full_resync_ms={full_resync_ms} | "
            f"single_flight={single_flight} | "
            f"correlation_id={self._correlation_id}"
        )

    @property
    def mode(self) -> str:
        return self._adapter.source_kind.value

    @property
    def store(self) -> ProjectCacheStore:
        return self._store

    # =========================================================================
    # Public API
    # =========================================================================

    def sync_if_stale(self, force_full: bool = False, force_sync: bool = False) -> SyncOutcome:
        """
        Evaluate staleness and sync if needed.

        Args:
            force_full: Run a full resync regardless of timestamps
            force_sync: Treat the TTL as expired

        Returns:
            SyncOutcome describing what happened

        Raises:
            PersistenceError: If the local store cannot be read or written
        """
        if not self._single_flight:
            return self._evaluate(force_full, force_sync)

        with _single_flight_locks[self._adapter.source_kind]:
            return self._evaluate(force_full, force_sync)

    # =========================================================================
    # Internals
    # =========================================================================

    def _evaluate(self, force_full: bool, force_sync: bool) -> SyncOutcome:
        correlation_id = str(uuid.uuid4())
        now = self._clock()
        meta = self._store.get_sync_meta()
        last_sync = meta.last_sync or 0
        last_full = meta.last_full_resync or 0

        ttl_expired = force_sync or (now - last_sync) > self._ttl_ms
        full_expired = (now - last_full) > self._full_resync_ms
        do_full = (
            force_full
            or not meta.last_sync
            or not self._adapter.supports_incremental
            or full_expired
        )

        if not ttl_expired and not do_full:
            logger.debug(
                f"Cache fresh | mode={self.mode} | "
                f"age_ms={now - last_sync} | correlation_id={correlation_id}"
            )
            record_sync_attempt(self.mode, SyncMode.NONE, "fresh")
            return SyncOutcome(synced=False, mode=self.mode, reason=REASON_FRESH)

        kind = SyncMode.FULL if do_full else SyncMode.INCREMENTAL
        try:
            if do_full:
                outcome = self._full_sync(now, meta.last_fingerprint, correlation_id)
            else:
                outcome = self._incremental_sync(now, meta.last_sync, correlation_id)
        except UpstreamFetchError as e:
            return self._failed(kind, SyncErrorCode.FETCH_FAIL, e, correlation_id)
        except ParseError as e:
            return self._failed(kind, SyncErrorCode.PARSE_FAIL, e, correlation_id)
        finally:
            self._export_adapter_health()

        record_sync_attempt(self.mode, kind, "synced")
        update_cache_records(self._store.count())
        self._notifier.publish(correlation_id=correlation_id)
        notifier_stats = self._notifier.get_statistics()
        update_notifier_statistics(
            notifier_stats["publish_count"],
            notifier_stats["failure_count"],
        )
        return outcome

    def _fetch_records(self, since_ms: Optional[int]) -> List[ProjectRecord]:
        raws = self._adapter.fetch(since_ms=since_ms)

        before = self._normalizer.get_statistics()
        records = self._normalizer.normalize(raws)
        after = self._normalizer.get_statistics()
        record_normalization(
            self.mode,
            normalized=after["records_normalized"] - before["records_normalized"],
            dropped=after["coordinates_dropped"] - before["coordinates_dropped"],
            missing=after["missing_coordinates"] - before["missing_coordinates"],
        )
        return records

    def _export_adapter_health(self) -> None:
        health = self._adapter.get_health()
        update_adapter_health(
            self.mode,
            fetches=health.fetches_completed,
            errors=health.errors_count,
            last_records=health.last_record_count,
        )

    def _full_sync(
        self,
        now: int,
        previous_fingerprint: Optional[str],
        correlation_id: str
    ) -> SyncOutcome:
        records = self._fetch_records(since_ms=None)
        fingerprint = compute_view_fingerprint(records, self._view_name)

        self._store.replace_all(records)
        self._store.set_meta(META_VIEW_HASH, fingerprint)
        self._store.set_meta(META_LAST_FULL_RESYNC, now)
        self._store.set_meta(META_LAST_SYNC, now)

        fingerprint_moved = fingerprint != previous_fingerprint
        logger.info(
            f"Full resync complete | "
            f"mode={self.mode} | "
            f"records={len(records)} | "
            f"fingerprint_moved={fingerprint_moved} | "
            f"fingerprint={fingerprint[:12]}... | "
            f"correlation_id={correlation_id}"
        )
        return SyncOutcome(
            synced=True,
            mode=self.mode,
            full=True,
            changed=len(records),
            fingerprint=fingerprint,
        )

    def _incremental_sync(self, now: int, since_ms: int, correlation_id: str) -> SyncOutcome:
        records = self._fetch_records(since_ms=since_ms)

        self._store.upsert_many(records)
        self._store.set_meta(META_LAST_SYNC, now)

        logger.info(
            f"Incremental sync complete | "
            f"mode={self.mode} | "
            f"since_ms={since_ms} | "
            f"records={len(records)} | "
            f"correlation_id={correlation_id}"
        )
        return SyncOutcome(
            synced=True,
            mode=self.mode,
            full=False,
            changed=len(records),
        )

    def _failed(
        self,
        kind: str,
        error_code: str,
        error: Exception,
        correlation_id: str
    ) -> SyncOutcome:
        logger.error(
            f"[{error_code}] Sync failed, serving cached data | "
            f"mode={self.mode} | "
            f"kind={kind} | "
            f"error={error} | "
            f"correlation_id={correlation_id}"
        )
        record_sync_attempt(self.mode, kind, "error")
        return SyncOutcome(synced=False, mode=self.mode, error=str(error))
