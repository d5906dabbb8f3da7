# ============================================================================
# Centennial Activity Map v1.2.0
# Projects API Endpoints - Cached Records, Health & Browser Config
# ============================================================================
#
# Reliability Level: L5 Core
# Purpose: Serve the local cache, syncing lazily on each read
#
# Endpoints:
#   GET /api/projects - run the sync scheduler, then return all records
#   GET /api/health   - sync timestamps and view fingerprint
#   GET /api/config   - browser boot configuration
#
# Query flags (/api/projects):
#   full=1  - force a full resync
#   force=1 - treat the TTL as expired
#
# Response headers (/api/projects):
#   X-Sync: FULL | INCR | HIT
#   X-Mode: AIRTABLE | CSV
#
# Error Codes:
#   STORE-001..003: Local cache unreadable or unwritable (HTTP 500)
#
# ============================================================================

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from services.cache_store import PersistenceError, ProjectCacheStore
from services.sync_config import SyncConfig
from services.sync_scheduler import SyncScheduler, system_clock

logger = logging.getLogger(__name__)


CACHE_SOURCE = "sqlite"
FLAG_ON = "1"


# ============================================================================
# Router
# ============================================================================

router = APIRouter()


# ============================================================================
# Response Models
# ============================================================================

class ProjectsResponse(BaseModel):
    """Response model for the project list."""
    source: str
    count: int
    records: List[Dict[str, Any]]
    sync: Dict[str, Any]


class HealthResponse(BaseModel):
    """Response model for health."""
    ok: bool
    mode: str
    lastSync: Optional[int]
    lastFull: Optional[int]
    viewHash: Optional[str]
    now: int


class BrowserConfigResponse(BaseModel):
    """Response model for browser boot configuration."""
    GMAPS_API_KEY: str = Field("", description="Maps key handed to the browser")


# ============================================================================
# Dependencies
# ============================================================================

def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.services.scheduler


def get_store(request: Request) -> ProjectCacheStore:
    return request.app.state.services.store


def get_config(request: Request) -> SyncConfig:
    return request.app.state.services.config


def _persistence_failure(e: PersistenceError, correlation_id: str) -> HTTPException:
    logger.error(
        f"[PROJECTS-API] Local cache failure: {str(e)} | "
        f"error_code={e.error_code} | "
        f"correlation_id={correlation_id}"
    )
    return HTTPException(
        status_code=500,
        detail={
            "error_code": e.error_code,
            "message": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "correlation_id": correlation_id,
        }
    )


# ============================================================================
# Endpoints
# ============================================================================

@router.get(
    "/projects",
    response_model=ProjectsResponse,
    summary="List Projects",
    description=(
        "Re-evaluates cache freshness (fresh, incremental or full sync) and "
        "returns every cached project ordered by name.\n\n"
        "Upstream failures are not errors: the cached set is served with "
        "`X-Sync: HIT` and the failure is reported in `sync.error`."
    ),
    responses={
        200: {"description": "Cached projects"},
        500: {"description": "Local cache unavailable (STORE-001..003)"}
    },
    tags=["Projects"]
)
def list_projects(
    request: Request,
    response: Response,
    full: Optional[str] = Query(None, description="'1' forces a full resync"),
    force: Optional[str] = Query(None, description="'1' treats the TTL as expired"),
) -> ProjectsResponse:
    """Runs in the threadpool since the scheduler blocks on upstream I/O."""
    correlation_id = str(uuid.uuid4())
    scheduler = get_scheduler(request)
    store = get_store(request)

    try:
        outcome = scheduler.sync_if_stale(
            force_full=full == FLAG_ON,
            force_sync=force == FLAG_ON,
        )
        records = store.find_all_sorted_by_name()
    except PersistenceError as e:
        raise _persistence_failure(e, correlation_id)

    response.headers["X-Mode"] = scheduler.mode.upper()
    response.headers["X-Sync"] = outcome.sync_header

    logger.info(
        f"[PROJECTS-API] GET /projects | "
        f"x_sync={outcome.sync_header} | "
        f"count={len(records)} | "
        f"correlation_id={correlation_id}"
    )
    return ProjectsResponse(
        source=CACHE_SOURCE,
        count=len(records),
        records=[record.to_dict() for record in records],
        sync=outcome.to_dict(),
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Sync Health",
    tags=["Projects"]
)
def health(request: Request) -> HealthResponse:
    correlation_id = str(uuid.uuid4())
    try:
        meta = get_store(request).get_sync_meta()
    except PersistenceError as e:
        raise _persistence_failure(e, correlation_id)

    return HealthResponse(
        ok=True,
        mode=get_scheduler(request).mode,
        lastSync=meta.last_sync,
        lastFull=meta.last_full_resync,
        viewHash=meta.last_fingerprint,
        now=system_clock(),
    )


@router.get(
    "/config",
    response_model=BrowserConfigResponse,
    summary="Browser Configuration",
    tags=["Projects"]
)
async def browser_config(request: Request) -> BrowserConfigResponse:
    return BrowserConfigResponse(GMAPS_API_KEY=get_config(request).gmaps_api_key)
