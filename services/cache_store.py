"""
============================================================================
Centennial Activity Map v1.2.0
Project Cache Store - Local Persistence Layer
============================================================================

Reliability Level: L5 Core
Input Constraints: Normalized ProjectRecords
Side Effects: Writes to the projects and sync_meta tables

OWNERSHIP:
    - projects: canonical records, written only through upsert/replace_all
    - sync_meta: small key/value table (lastSync, lastFullResync, viewHash)
      owned by the sync scheduler

REPLACE-ALL LIMITATION:
    replace_all() deletes every row (committed) and then inserts the new set
    (committed). A crash between the two leaves the cache empty or partly
    filled until the next full resync. Single-row upserts are atomic.

ERROR CODES:
    - STORE-001: Schema initialization failed
    - STORE-002: Project read/write failed
    - STORE-003: Metadata read/write failed

============================================================================
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import json
import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from data_ingestion.schemas import ProjectRecord

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

META_LAST_SYNC = "lastSync"
META_LAST_FULL_RESYNC = "lastFullResync"
META_VIEW_HASH = "viewHash"

STORE_ERROR_SCHEMA_FAIL = "STORE-001"
STORE_ERROR_PROJECTS_FAIL = "STORE-002"
STORE_ERROR_META_FAIL = "STORE-003"


SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS projects (
        id            TEXT PRIMARY KEY,
        name          TEXT NOT NULL DEFAULT '',
        phase         TEXT NOT NULL DEFAULT '',
        address       TEXT NOT NULL DEFAULT '',
        lat           REAL,
        lng           REAL,
        last_modified TEXT,
        all_fields    TEXT NOT NULL DEFAULT '{}',
        updated_at    TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_projects_name ON projects (name)",
    """
    CREATE TABLE IF NOT EXISTS sync_meta (
        key        TEXT PRIMARY KEY,
        value      TEXT,
        updated_at TEXT NOT NULL
    )
    """,
)

UPSERT_PROJECT_SQL = text("""
    INSERT INTO projects (
        id, name, phase, address, lat, lng, last_modified, all_fields, updated_at
    ) VALUES (
        :id, :name, :phase, :address, :lat, :lng, :last_modified, :all_fields, :updated_at
    )
    ON CONFLICT (id) DO UPDATE SET
        name = excluded.name,
        phase = excluded.phase,
        address = excluded.address,
        lat = excluded.lat,
        lng = excluded.lng,
        last_modified = excluded.last_modified,
        all_fields = excluded.all_fields,
        updated_at = excluded.updated_at
""")

UPSERT_META_SQL = text("""
    INSERT INTO sync_meta (key, value, updated_at)
    VALUES (:key, :value, :updated_at)
    ON CONFLICT (key) DO UPDATE SET
        value = excluded.value,
        updated_at = excluded.updated_at
""")


# =============================================================================
# Exceptions & Data Classes
# =============================================================================

class PersistenceError(Exception):
    """Raised when a local store operation fails."""

    def __init__(self, message: str, error_code: str = STORE_ERROR_PROJECTS_FAIL):
        self.error_code = error_code
        super().__init__(f"[{error_code}] {message}")


@dataclass
class SyncMeta:
    """
    Persisted scheduler metadata.

    Timestamps are epoch millis; None means the sync kind never completed.
    """
    last_sync: Optional[int] = None
    last_full_resync: Optional[int] = None
    last_fingerprint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            META_LAST_SYNC: self.last_sync,
            META_LAST_FULL_RESYNC: self.last_full_resync,
            META_VIEW_HASH: self.last_fingerprint,
        }


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _record_params(record: ProjectRecord, updated_at: str) -> Dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "phase": record.phase,
        "address": record.address,
        "lat": record.lat,
        "lng": record.lng,
        "last_modified": record.last_modified,
        "all_fields": json.dumps(record.all_fields, ensure_ascii=False, default=str),
        "updated_at": updated_at,
    }


def _row_to_record(row: Any) -> ProjectRecord:
    try:
        all_fields = json.loads(row.all_fields or "{}", object_pairs_hook=OrderedDict)
    except ValueError:
        all_fields = OrderedDict()
    return ProjectRecord(
        id=row.id,
        name=row.name or "",
        phase=row.phase or "",
        address=row.address or "",
        lat=row.lat,
        lng=row.lng,
        last_modified=row.last_modified,
        all_fields=all_fields,
    )


# =============================================================================
# Project Cache Store Class
# =============================================================================

class ProjectCacheStore:
    """
    SQLite-backed store of canonical project records plus sync metadata.

    Reliability Level: L5 Core
    Input Constraints: Engine bound to a writable database
    Side Effects: Database writes
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self.init_schema()
        logger.info("[CACHE-STORE-INIT] Project cache store initialized")

    def init_schema(self) -> None:
        """Create tables and indexes if missing."""
        try:
            with self._engine.begin() as conn:
                for statement in SCHEMA_STATEMENTS:
                    conn.execute(text(statement))
        except SQLAlchemyError as e:
            logger.error(f"{STORE_ERROR_SCHEMA_FAIL} Schema initialization failed: {e}")
            raise PersistenceError(
                f"Schema initialization failed: {e}", STORE_ERROR_SCHEMA_FAIL
            ) from e

    # =========================================================================
    # Projects
    # =========================================================================

    def upsert(self, record: ProjectRecord) -> None:
        """Insert or overwrite one record by id."""
        self.upsert_many([record])

    def upsert_many(self, records: Iterable[ProjectRecord]) -> int:
        """
        Insert or overwrite records by id. Never deletes.

        Returns:
            Number of records written
        """
        updated_at = _utc_now_iso()
        params = [_record_params(r, updated_at) for r in records]
        if not params:
            return 0
        try:
            with self._engine.begin() as conn:
                conn.execute(UPSERT_PROJECT_SQL, params)
        except SQLAlchemyError as e:
            logger.error(
                f"{STORE_ERROR_PROJECTS_FAIL} Upsert failed: {e} | records={len(params)}"
            )
            raise PersistenceError(f"Upsert failed: {e}") from e

        logger.debug(f"[CACHE-STORE] Upserted | records={len(params)}")
        return len(params)

    def replace_all(self, records: Iterable[ProjectRecord]) -> int:
        """
        Delete every record, then insert the given set.

        Not crash-atomic: the delete commits before the insert starts.

        Returns:
            Number of records written
        """
        records = list(records)
        try:
            with self._engine.begin() as conn:
                removed = conn.execute(text("DELETE FROM projects")).rowcount
        except SQLAlchemyError as e:
            logger.error(f"{STORE_ERROR_PROJECTS_FAIL} Delete-all failed: {e}")
            raise PersistenceError(f"Delete-all failed: {e}") from e

        written = self.upsert_many(records)
        logger.info(
            f"[CACHE-STORE] Replaced all records | removed={removed} | inserted={written}"
        )
        return written

    def find_all_sorted_by_name(self) -> List[ProjectRecord]:
        """All records ordered by name (id breaks ties)."""
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(text(
                    "SELECT id, name, phase, address, lat, lng, last_modified, all_fields "
                    "FROM projects ORDER BY name ASC, id ASC"
                )).fetchall()
        except SQLAlchemyError as e:
            logger.error(f"{STORE_ERROR_PROJECTS_FAIL} Read failed: {e}")
            raise PersistenceError(f"Read failed: {e}") from e
        return [_row_to_record(row) for row in rows]

    def find_ids(self) -> List[str]:
        """All record ids, sorted."""
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(text("SELECT id FROM projects ORDER BY id")).fetchall()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Read failed: {e}") from e
        return [row.id for row in rows]

    def count(self) -> int:
        try:
            with self._engine.connect() as conn:
                return int(conn.execute(text("SELECT COUNT(*) FROM projects")).scalar() or 0)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Count failed: {e}") from e

    # =========================================================================
    # Metadata
    # =========================================================================

    def get_meta(self, key: str) -> Any:
        """Return the stored value for key, or None."""
        try:
            with self._engine.connect() as conn:
                row = conn.execute(
                    text("SELECT value FROM sync_meta WHERE key = :key"),
                    {"key": key},
                ).fetchone()
        except SQLAlchemyError as e:
            logger.error(f"{STORE_ERROR_META_FAIL} Meta read failed: {e} | key={key}")
            raise PersistenceError(f"Meta read failed: {e}", STORE_ERROR_META_FAIL) from e

        if row is None or row.value is None:
            return None
        try:
            return json.loads(row.value)
        except ValueError:
            return row.value

    def set_meta(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under key."""
        try:
            with self._engine.begin() as conn:
                conn.execute(UPSERT_META_SQL, {
                    "key": key,
                    "value": json.dumps(value),
                    "updated_at": _utc_now_iso(),
                })
        except SQLAlchemyError as e:
            logger.error(f"{STORE_ERROR_META_FAIL} Meta write failed: {e} | key={key}")
            raise PersistenceError(f"Meta write failed: {e}", STORE_ERROR_META_FAIL) from e

    def get_sync_meta(self) -> SyncMeta:
        """Read all scheduler metadata at once."""
        last_sync = self.get_meta(META_LAST_SYNC)
        last_full = self.get_meta(META_LAST_FULL_RESYNC)
        return SyncMeta(
            last_sync=int(last_sync) if last_sync else None,
            last_full_resync=int(last_full) if last_full else None,
            last_fingerprint=self.get_meta(META_VIEW_HASH),
        )
