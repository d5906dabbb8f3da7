"""
============================================================================
Centennial Activity Map v1.2.0
Database Session - SQLAlchemy Engine for the Local Cache
============================================================================

Reliability Level: L5 Core
Input Constraints: Writable runtime data directory (DATA_DIR)
Side Effects: Creates the data directory and the SQLite file

LOCAL CACHE:
- One SQLite file under DATA_DIR, never inside the install location
- Survives process restarts
- Multithreaded access: request handlers run in the server threadpool

============================================================================
"""

from pathlib import Path
from typing import Union
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


DB_FILENAME = "projects.sqlite3"


# ============================================================================
# ENGINE FACTORY
# ============================================================================

def get_database_url(data_dir: Union[str, Path]) -> str:
    """
    Build the SQLite URL inside the data directory.

    Args:
        data_dir: Writable runtime data directory

    Returns:
        str: sqlite:/// URL
    """
    path = Path(data_dir).expanduser().resolve() / DB_FILENAME
    return f"sqlite:///{path.as_posix()}"


def create_cache_engine(data_dir: Union[str, Path], echo: bool = False) -> Engine:
    """
    Create the engine for the local cache, creating DATA_DIR if needed.

    Args:
        data_dir: Writable runtime data directory
        echo: Echo SQL for debugging

    Returns:
        Engine: SQLAlchemy engine
    """
    Path(data_dir).mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        get_database_url(data_dir),
        echo=echo,
        future=True,
        # Requests are served from a threadpool
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)

    logger.info(f"[DB] Cache engine created | data_dir={data_dir}")
    return engine


# ============================================================================
# CONNECTION EVENT LISTENERS
# ============================================================================

def _set_sqlite_pragmas(dbapi_connection, connection_record):
    """Readers never block the single writer."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


# ============================================================================
# HEALTH CHECK
# ============================================================================

def check_database_connection(engine: Engine) -> bool:
    """
    Verify database connectivity.

    Raises:
        Exception: If database connection fails
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        raise Exception(f"Database connection failed: {e}")
