# ============================================================================
# Centennial Activity Map v1.2.0
# Database Module - SQLAlchemy Engine for the Local Cache
# ============================================================================

from app.database.session import (
    DB_FILENAME,
    check_database_connection,
    create_cache_engine,
)

__all__ = [
    "DB_FILENAME",
    "check_database_connection",
    "create_cache_engine",
]
