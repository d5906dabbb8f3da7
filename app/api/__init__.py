# ============================================================================
# Centennial Activity Map v1.2.0
# API Routes Module
# ============================================================================

from app.api.projects import router as projects_router
from app.api.stream import router as stream_router

__all__ = ["projects_router", "stream_router"]
