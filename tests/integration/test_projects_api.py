"""
============================================================================
Centennial Activity Map v1.2.0
Integration Test: Projects API, Static Bundle and Update Stream
============================================================================

Reliability Level: L5 Core
Input Constraints: FastAPI TestClient, scripted source adapter, fake clock
Side Effects: SQLite cache and static files under pytest's tmp_path

COVERAGE:
- GET /api/projects sync headers (FULL / INCR / HIT) and flags
- Upstream failure still serves the cached set
- GET /api/health and GET /api/config
- /metrics exposition, including adapter, normalizer and notifier statistics
- Static bundle fallback and 404 for unknown /api paths
- Local cache failure maps to HTTP 500
- SSE frames: one projects-updated frame per successful sync

Python 3.8 Compatible
============================================================================
"""

import asyncio
from collections import OrderedDict
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

# Add project root to path
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from app.api.stream import (
    KEEPALIVE_FRAME,
    STREAM_HEADERS,
    ProjectUpdateStream,
    format_sse_event,
    stream_events,
)
from app.main import STATIC_BUNDLE_MISSING, build_app_services, create_app
from data_ingestion.adapters.base_adapter import BaseAdapter, UpstreamFetchError
from data_ingestion.schemas import RawRecord, SourceKind
from services.cache_store import PersistenceError, STORE_ERROR_PROJECTS_FAIL
from services.change_notifier import ChangeNotifier, PROJECTS_UPDATED_EVENT
from services.sync_config import SyncConfig


TTL_MS = 10 * 60 * 1000
START_MS = 1700000000000


# ============================================================================
# Test Doubles
# ============================================================================

class FakeClock:
    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now


class ScriptedAdapter(BaseAdapter):

    def __init__(self, source_kind: SourceKind = SourceKind.AIRTABLE):
        super().__init__(source_kind=source_kind, correlation_id="integration")
        self.full_rows = []  # type: List[dict]
        self.changed_rows = []  # type: List[dict]
        self.error = None  # type: Optional[Exception]

    def _fetch(self, since_ms: Optional[int] = None) -> List[RawRecord]:
        if self.error is not None:
            raise self.error
        rows = self.changed_rows if since_ms is not None and self.supports_incremental else self.full_rows
        return [
            RawRecord(
                source=self.source_kind,
                fields=OrderedDict(row["fields"]),
                native_id=row["id"],
            )
            for row in rows
        ]


def row(record_id: str, name: str, **fields) -> dict:
    data = {"Project Name": name}
    data.update(fields)
    return {"id": record_id, "fields": data}


class FakeRequest:
    """Reports a live connection for `live_checks` polls, then disconnects."""

    def __init__(self, live_checks: int):
        self.live_checks = live_checks

    async def is_disconnected(self) -> bool:
        if self.live_checks <= 0:
            return True
        self.live_checks -= 1
        return False


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def config(tmp_path) -> SyncConfig:
    return SyncConfig(
        base_id="appBASE",
        api_token="pat-secret",
        view_name="Grid view",
        sync_ttl_ms=TTL_MS,
        data_dir=tmp_path / "data",
        public_dir=tmp_path / "public",
        gmaps_api_key="maps-key",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def adapter() -> ScriptedAdapter:
    adapter = ScriptedAdapter()
    adapter.full_rows = [
        row("rec2", "Bravo Park", **{"Phase": "Build", "Latitude": "40.1", "Longitude": "-75.2"}),
        row("rec1", "Alpha Yard", **{"Address": "1 Main St"}),
    ]
    return adapter


@pytest.fixture
def services(config, adapter, clock):
    services = build_app_services(config, adapter=adapter, notifier=ChangeNotifier(), clock=clock)
    yield services
    services.engine.dispose()


@pytest.fixture
def client(services):
    app = create_app(services)
    with TestClient(app) as client:
        yield client


# ============================================================================
# GET /api/projects
# ============================================================================

class TestListProjects:

    def test_first_request_runs_full_sync(self, client):
        response = client.get("/api/projects")

        assert response.status_code == 200
        assert response.headers["X-Sync"] == "FULL"
        assert response.headers["X-Mode"] == "AIRTABLE"

        body = response.json()
        assert body["source"] == "sqlite"
        assert body["count"] == 2
        assert [r["name"] for r in body["records"]] == ["Alpha Yard", "Bravo Park"]
        assert body["sync"]["synced"] is True
        assert body["sync"]["full"] is True
        assert body["sync"]["changed"] == 2
        assert len(body["sync"]["fingerprint"]) == 40

    def test_record_wire_shape(self, client):
        records = client.get("/api/projects").json()["records"]
        bravo = records[1]

        assert bravo["id"] == "rec2"
        assert bravo["phase"] == "Build"
        assert bravo["lat"] == 40.1
        assert bravo["lng"] == -75.2
        assert bravo["allFields"]["Phase"] == "Build"
        assert records[0]["lat"] is None

    def test_second_request_is_cache_hit(self, client):
        client.get("/api/projects")
        response = client.get("/api/projects")

        assert response.headers["X-Sync"] == "HIT"
        body = response.json()
        assert body["sync"] == {"synced": False, "mode": "airtable", "reason": "fresh"}
        assert body["count"] == 2

    def test_expired_ttl_runs_incremental(self, client, adapter, clock):
        client.get("/api/projects")
        adapter.changed_rows = [row("rec3", "Charlie Lot")]
        clock.now += TTL_MS + 1

        response = client.get("/api/projects")

        assert response.headers["X-Sync"] == "INCR"
        body = response.json()
        assert body["count"] == 3
        assert body["sync"]["full"] is False
        assert body["sync"]["changed"] == 1

    def test_force_flag(self, client, adapter):
        client.get("/api/projects")
        adapter.changed_rows = [row("rec1", "Alpha Renamed")]

        response = client.get("/api/projects", params={"force": "1"})

        assert response.headers["X-Sync"] == "INCR"
        names = [r["name"] for r in response.json()["records"]]
        assert "Alpha Renamed" in names

    def test_full_flag(self, client, adapter):
        client.get("/api/projects")
        adapter.full_rows = [row("rec9", "Only One")]

        response = client.get("/api/projects", params={"full": "1"})

        assert response.headers["X-Sync"] == "FULL"
        assert [r["id"] for r in response.json()["records"]] == ["rec9"]

    def test_flag_values_other_than_one_ignored(self, client):
        client.get("/api/projects")
        response = client.get("/api/projects", params={"full": "true", "force": "yes"})
        assert response.headers["X-Sync"] == "HIT"

    def test_upstream_failure_serves_cache(self, client, adapter):
        client.get("/api/projects")
        adapter.error = UpstreamFetchError("Airtable 503", status=503)

        response = client.get("/api/projects", params={"full": "1"})

        assert response.status_code == 200
        assert response.headers["X-Sync"] == "HIT"
        body = response.json()
        assert body["count"] == 2
        assert body["sync"]["synced"] is False
        assert "Airtable 503" in body["sync"]["error"]

    def test_upstream_failure_on_empty_cache(self, client, adapter):
        adapter.error = UpstreamFetchError("unreachable")

        response = client.get("/api/projects")

        assert response.status_code == 200
        assert response.json()["count"] == 0
        assert response.headers["X-Sync"] == "HIT"

    def test_local_cache_failure_is_500(self, client, services, monkeypatch):
        def broken():
            raise PersistenceError("disk I/O error")

        monkeypatch.setattr(services.store, "find_all_sorted_by_name", broken)

        response = client.get("/api/projects")

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert detail["error_code"] == STORE_ERROR_PROJECTS_FAIL
        assert "correlation_id" in detail

    def test_csv_mode_header(self, config, clock):
        adapter = ScriptedAdapter(SourceKind.CSV)
        adapter.full_rows = [row("csv_1", "Alpha")]
        services = build_app_services(config, adapter=adapter, notifier=ChangeNotifier(), clock=clock)

        with TestClient(create_app(services)) as client:
            first = client.get("/api/projects")
            clock.now += TTL_MS + 1
            second = client.get("/api/projects")

        services.engine.dispose()
        assert first.headers["X-Mode"] == "CSV"
        assert second.headers["X-Sync"] == "FULL"


# ============================================================================
# GET /api/health, GET /api/config, /metrics
# ============================================================================

class TestHealthAndConfig:

    def test_health_before_first_sync(self, client):
        body = client.get("/api/health").json()

        assert body["ok"] is True
        assert body["mode"] == "airtable"
        assert body["lastSync"] is None
        assert body["lastFull"] is None
        assert body["viewHash"] is None
        assert isinstance(body["now"], int)

    def test_health_after_sync(self, client):
        sync = client.get("/api/projects").json()["sync"]
        body = client.get("/api/health").json()

        assert body["lastSync"] == START_MS
        assert body["lastFull"] == START_MS
        assert body["viewHash"] == sync["fingerprint"]

    def test_browser_config(self, client):
        assert client.get("/api/config").json() == {"GMAPS_API_KEY": "maps-key"}

    def test_metrics_exposition(self, client):
        client.get("/api/projects")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "project_sync_attempts_total" in response.text
        assert "project_cache_records" in response.text

    def test_metrics_export_sync_statistics(self, client):
        normalized_before = REGISTRY.get_sample_value(
            "project_records_normalized_total", {"mode": "airtable"}
        ) or 0.0
        missing_before = REGISTRY.get_sample_value(
            "project_records_missing_coordinates_total", {"mode": "airtable"}
        ) or 0.0

        client.get("/api/projects")
        text = client.get("/metrics").text

        assert 'project_upstream_fetches{mode="airtable"} 1.0' in text
        assert 'project_upstream_errors{mode="airtable"} 0.0' in text
        assert 'project_upstream_last_fetch_records{mode="airtable"} 2.0' in text
        assert "project_change_events_published 1.0" in text
        assert "project_change_subscriber_failures 0.0" in text
        assert REGISTRY.get_sample_value(
            "project_records_normalized_total", {"mode": "airtable"}
        ) == normalized_before + 2
        # rec1 carries only an address
        assert REGISTRY.get_sample_value(
            "project_records_missing_coordinates_total", {"mode": "airtable"}
        ) == missing_before + 1

    def test_metrics_export_upstream_failures(self, client, adapter):
        adapter.error = UpstreamFetchError("upstream down")
        client.get("/api/projects")
        text = client.get("/metrics").text

        assert 'project_upstream_fetches{mode="airtable"} 0.0' in text
        assert 'project_upstream_errors{mode="airtable"} 1.0' in text


# ============================================================================
# Response Compression
# ============================================================================

class TestCompression:

    def test_large_project_list_is_gzipped(self, client, adapter):
        adapter.full_rows = [
            row(f"rec{n:03d}", f"Project {n:03d}", **{"Address": f"{n} Main St"})
            for n in range(50)
        ]

        response = client.get("/api/projects", headers={"Accept-Encoding": "gzip"})

        assert response.status_code == 200
        assert response.headers["Content-Encoding"] == "gzip"
        assert response.json()["count"] == 50

    def test_small_body_is_not_compressed(self, client):
        response = client.get("/api/config", headers={"Accept-Encoding": "gzip"})
        assert "Content-Encoding" not in response.headers

    def test_no_compression_without_accept_encoding(self, client, adapter):
        adapter.full_rows = [row(f"rec{n:03d}", f"Project {n:03d}") for n in range(50)]

        response = client.get("/api/projects", headers={"Accept-Encoding": "identity"})

        assert "Content-Encoding" not in response.headers

    def test_stream_opts_out_of_compression(self):
        assert STREAM_HEADERS["Content-Encoding"] == "identity"


# ============================================================================
# Static Bundle
# ============================================================================

class TestStaticBundle:

    def test_missing_bundle_is_500(self, client):
        response = client.get("/")
        assert response.status_code == 500
        assert response.text == STATIC_BUNDLE_MISSING

    def test_index_and_spa_fallback(self, client, config):
        config.public_dir.mkdir(parents=True)
        (config.public_dir / "index.html").write_text("<html>map</html>")
        (config.public_dir / "app.js").write_text("console.log('map')")

        assert client.get("/").text == "<html>map</html>"
        assert client.get("/projects/rec1").text == "<html>map</html>"
        assert client.get("/app.js").text == "console.log('map')"

    def test_unknown_api_path_is_404(self, client, config):
        config.public_dir.mkdir(parents=True)
        (config.public_dir / "index.html").write_text("<html>map</html>")

        assert client.get("/api/unknown").status_code == 404
        assert client.get("/api").status_code == 404


# ============================================================================
# Update Stream
# ============================================================================

class TestUpdateStream:

    def test_frame_format(self):
        assert format_sse_event() == "event: projects-updated\ndata: {}\n\n"

    def test_published_event_becomes_frame(self):
        async def scenario():
            notifier = ChangeNotifier()
            stream = ProjectUpdateStream(notifier, keepalive_seconds=1.0)
            stream.open()
            notifier.publish()
            frame = await stream.next_frame()
            stream.close()
            return frame

        assert asyncio.run(scenario()) == format_sse_event(PROJECTS_UPDATED_EVENT)

    def test_keepalive_when_quiet(self):
        async def scenario():
            stream = ProjectUpdateStream(ChangeNotifier(), keepalive_seconds=0.05)
            stream.open()
            frame = await stream.next_frame()
            stream.close()
            return frame

        assert asyncio.run(scenario()) == KEEPALIVE_FRAME

    def test_close_is_idempotent(self):
        async def scenario():
            notifier = ChangeNotifier()
            stream = ProjectUpdateStream(notifier)
            stream.open()
            stream.close()
            stream.close()
            return notifier.get_subscriber_count()

        assert asyncio.run(scenario()) == 0

    def test_disconnect_detaches_subscriber(self):
        async def scenario():
            notifier = ChangeNotifier()
            stream = ProjectUpdateStream(notifier, keepalive_seconds=0.05)
            frames = []
            async for frame in stream_events(FakeRequest(live_checks=2), stream):
                frames.append(frame)
            return frames, notifier.get_subscriber_count()

        frames, subscribers = asyncio.run(scenario())
        assert frames == [KEEPALIVE_FRAME, KEEPALIVE_FRAME]
        assert subscribers == 0

    def test_full_resync_pushes_exactly_one_frame(self, services):
        async def scenario():
            stream = ProjectUpdateStream(services.notifier, keepalive_seconds=0.05)
            stream.open()
            outcome = services.scheduler.sync_if_stale(force_full=True)
            first = await stream.next_frame()
            second = await stream.next_frame()
            stream.close()
            return outcome, first, second

        outcome, first, second = asyncio.run(scenario())
        assert outcome.synced is True and outcome.full is True
        assert first == format_sse_event(PROJECTS_UPDATED_EVENT)
        assert second == KEEPALIVE_FRAME

    def test_fresh_request_pushes_nothing(self, services):
        async def scenario():
            services.scheduler.sync_if_stale()
            stream = ProjectUpdateStream(services.notifier, keepalive_seconds=0.05)
            stream.open()
            outcome = services.scheduler.sync_if_stale()
            frame = await stream.next_frame()
            stream.close()
            return outcome, frame

        outcome, frame = asyncio.run(scenario())
        assert outcome.synced is False
        assert frame == KEEPALIVE_FRAME
