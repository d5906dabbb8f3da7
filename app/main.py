"""
============================================================================
Centennial Activity Map v1.2.0
FastAPI Application Entry Point - Project Cache Service
============================================================================

Reliability Level: L5 Core
Input Constraints: Configuration from environment (.env supported)
Side Effects: Local cache writes, upstream fetches on request

SERVICE SHAPE:
- One process, one source adapter, one local cache, one change notifier
- Syncing is lazy: GET /api/projects re-evaluates freshness, nothing runs
  on a timer
- Browser clients refresh on "projects-updated" pushed over /api/stream
- Non-/api paths serve the single-page bundle from PUBLIC_DIR

============================================================================
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import requests
from fastapi import FastAPI, Request, Response
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.engine import Engine

from app.api.projects import router as projects_router
from app.api.stream import router as stream_router
from app.database.session import check_database_connection, create_cache_engine
from app.observability.metrics import update_cache_records
from data_ingestion.adapters.base_adapter import BaseAdapter
from data_ingestion.provider_factory import create_source_adapter
from services.cache_store import PersistenceError, ProjectCacheStore
from services.change_notifier import ChangeNotifier, get_change_notifier
from services.sync_config import SyncConfig, get_sync_config
from services.sync_scheduler import Clock, SyncScheduler

logger = logging.getLogger(__name__)


VERSION = "1.2.0"
INDEX_FILE = "index.html"
STATIC_BUNDLE_MISSING = "Static bundle missing"

# Bodies smaller than this go out uncompressed
GZIP_MINIMUM_SIZE = 1000


# ============================================================================
# SERVICE WIRING
# ============================================================================

@dataclass
class AppServices:
    """Everything a request handler needs, built once per process."""
    config: SyncConfig
    engine: Engine
    store: ProjectCacheStore
    adapter: BaseAdapter
    notifier: ChangeNotifier
    scheduler: SyncScheduler


def build_app_services(
    config: SyncConfig,
    adapter: Optional[BaseAdapter] = None,
    notifier: Optional[ChangeNotifier] = None,
    clock: Optional[Clock] = None,
    session: Optional[requests.Session] = None
) -> AppServices:
    """
    Wire config, cache, adapter, notifier and scheduler together.

    Args:
        config: Loaded SyncConfig
        adapter: Source adapter; built from config when omitted
        notifier: Change notifier; the process singleton when omitted
        clock: Epoch-millis clock for the scheduler
        session: Shared requests.Session for the built adapter
    """
    engine = create_cache_engine(config.data_dir)
    store = ProjectCacheStore(engine)
    adapter = adapter or create_source_adapter(config, session=session)
    notifier = notifier or get_change_notifier()
    scheduler = SyncScheduler(
        adapter=adapter,
        store=store,
        notifier=notifier,
        view_name=config.view_name,
        ttl_ms=config.sync_ttl_ms,
        full_resync_ms=config.full_resync_ms,
        clock=clock,
        single_flight=config.single_flight,
    )
    return AppServices(
        config=config,
        engine=engine,
        store=store,
        adapter=adapter,
        notifier=notifier,
        scheduler=scheduler,
    )


# ============================================================================
# APPLICATION LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
        - Load configuration (fails fast on invalid values)
        - Open the local cache and verify connectivity
        - Build the source adapter and scheduler

    Shutdown:
        - Dispose the cache engine
    """
    print("=" * 60)
    print(f"CENTENNIAL ACTIVITY MAP v{VERSION} - PROJECT CACHE SERVICE")
    print("=" * 60)
    print(f"Startup Time: {datetime.now(timezone.utc).isoformat()}")

    if app.state.services is None:
        app.state.services = build_app_services(get_sync_config())
    services = app.state.services

    try:
        check_database_connection(services.engine)
        print(f"[OK] Local cache ready ({services.config.data_dir})")
    except Exception as e:
        print(f"[CRITICAL] Local cache unavailable: {e}")
        raise

    update_cache_records(services.store.count())
    logger.info(f"[STARTUP] Configuration | {services.config.to_dict()}")
    print(f"[OK] Source mode: {services.config.mode.upper()}")
    print(f"     TTL: {services.config.sync_ttl_ms}ms")
    print(f"     Full resync: every {services.config.full_resync_hours}h")
    if (services.config.public_dir / INDEX_FILE).is_file():
        print(f"[OK] Serving static from: {services.config.public_dir}")
    else:
        print("[WARN] public/ bundle not found. Static UI will not load.")
    print("=" * 60)

    yield

    print("=" * 60)
    print("CENTENNIAL ACTIVITY MAP - SHUTDOWN")
    print(f"Shutdown Time: {datetime.now(timezone.utc).isoformat()}")
    services.engine.dispose()
    print("[OK] Local cache closed")
    print("=" * 60)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built services; wired from the environment at startup
                  when omitted
    """
    app = FastAPI(
        title="Centennial Activity Map",
        description=(
            "Project records synced from Airtable (API or shared CSV export), "
            "cached locally and pushed to the map UI."
        ),
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.services = services

    # ========================================================================
    # MIDDLEWARE
    # ========================================================================

    app.add_middleware(GZipMiddleware, minimum_size=GZIP_MINIMUM_SIZE)

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(request: Request, exc: PersistenceError):
        logger.error(f"[{exc.error_code}] Local cache failure: {exc} | path={request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error_code": exc.error_code,
                "message": str(exc),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    app.include_router(projects_router, prefix="/api", tags=["Projects"])
    app.include_router(stream_router, prefix="/api", tags=["Projects"])

    @app.get(
        "/metrics",
        summary="Prometheus Metrics",
        description="Exposes Prometheus metrics for observability.",
        tags=["Observability"]
    )
    async def metrics():
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    # Registered last so every API route wins
    @app.get("/{full_path:path}", include_in_schema=False)
    async def static_bundle(full_path: str, request: Request):
        if full_path == "api" or full_path.startswith("api/"):
            return JSONResponse(status_code=404, content={"detail": "Not Found"})
        return serve_static(request.app.state.services.config.public_dir, full_path)

    return app


def serve_static(public_dir: Path, full_path: str) -> Response:
    """
    Serve a file from the bundle, falling back to index.html for client-side
    routes. 500 when the bundle is not installed.
    """
    root = Path(public_dir).resolve()
    index = root / INDEX_FILE
    if not index.is_file():
        return PlainTextResponse(STATIC_BUNDLE_MISSING, status_code=500)

    if full_path:
        candidate = (root / full_path).resolve()
        if candidate.is_file() and root in candidate.parents:
            return FileResponse(candidate)
    return FileResponse(index)


app = create_app()
