# ============================================================================
# Centennial Activity Map v1.2.0
# Project Update Stream - Server-Sent Events
# ============================================================================
#
# Reliability Level: L4 Operational
# Purpose: Push "projects-updated" to connected browsers
#
# Endpoints:
#   GET /api/stream - text/event-stream, one frame per cache change
#
# Wire format per change:
#   event: projects-updated
#   data: {}
#
# A ": keep-alive" comment is written when no event arrived for
# KEEPALIVE_SECONDS. Each client is a ChangeNotifier subscriber and is
# detached when the connection closes.
#
# ============================================================================

import asyncio
import logging
import uuid
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from app.observability.metrics import update_stream_subscribers
from services.change_notifier import ChangeNotifier, PROJECTS_UPDATED_EVENT

logger = logging.getLogger(__name__)


KEEPALIVE_SECONDS = 15.0
KEEPALIVE_FRAME = ": keep-alive\n\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
    # Keeps GZipMiddleware from buffering frames
    "Content-Encoding": "identity",
}


# ============================================================================
# Router
# ============================================================================

router = APIRouter()


def format_sse_event(event_type: str = PROJECTS_UPDATED_EVENT, data: str = "{}") -> str:
    """Render one SSE frame."""
    return f"event: {event_type}\ndata: {data}\n\n"


# ============================================================================
# Stream Subscriber
# ============================================================================

class ProjectUpdateStream:
    """
    Bridges one SSE client onto the ChangeNotifier.

    publish() runs on whichever thread completed the sync; frames are handed
    to the client's event loop with call_soon_threadsafe.
    """

    def __init__(
        self,
        notifier: ChangeNotifier,
        keepalive_seconds: float = KEEPALIVE_SECONDS,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        self._notifier = notifier
        self._keepalive_seconds = keepalive_seconds
        self._loop = loop or asyncio.get_running_loop()
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._closed = False
        self.stream_id = str(uuid.uuid4())

    def __call__(self, event_type: str) -> None:
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, format_sse_event(event_type))

    def open(self) -> None:
        self._notifier.subscribe(self)
        update_stream_subscribers(self._notifier.get_subscriber_count())
        logger.info(f"[STREAM] Client connected | stream_id={self.stream_id}")

    def close(self) -> None:
        """Detach from the notifier. Safe to call more than once."""
        self._closed = True
        if self._notifier.unsubscribe(self):
            update_stream_subscribers(self._notifier.get_subscriber_count())
            logger.info(f"[STREAM] Client disconnected | stream_id={self.stream_id}")

    async def next_frame(self) -> str:
        """Next event frame, or a keep-alive comment after a quiet period."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=self._keepalive_seconds)
        except asyncio.TimeoutError:
            return KEEPALIVE_FRAME


async def stream_events(request: Request, stream: ProjectUpdateStream) -> AsyncIterator[str]:
    stream.open()
    try:
        while not await request.is_disconnected():
            yield await stream.next_frame()
    finally:
        stream.close()


# ============================================================================
# Endpoints
# ============================================================================

@router.get(
    "/stream",
    summary="Project Update Stream",
    description="Server-sent events; one `projects-updated` frame per cache change.",
    tags=["Projects"]
)
async def project_stream(request: Request) -> StreamingResponse:
    notifier: ChangeNotifier = request.app.state.services.notifier
    stream = ProjectUpdateStream(notifier)
    return StreamingResponse(
        stream_events(request, stream),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
