#!/usr/bin/env python3
"""
============================================================================
Centennial Activity Map v1.2.0
Service Launcher
============================================================================

Reliability Level: L5 Core

Loads .env, configures logging, validates configuration and serves the
FastAPI app with uvicorn on PORT (default 5174). Exits 1 when the
configuration is invalid; uvicorn exits 1 itself when the port cannot be
bound.

USAGE:
    python main.py

============================================================================
"""

import logging
import sys

import uvicorn
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("LAUNCHER")


def main() -> int:
    """
    USAGE: python main.py
    """
    from services.sync_config import SyncConfigurationError, get_sync_config

    try:
        config = get_sync_config()
    except SyncConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        print(f"\n[CRITICAL] {e}. Exiting.")
        return 1

    from app.main import app

    logger.info(
        f"Centennial Activity Map starting | "
        f"url=http://localhost:{config.port} | "
        f"mode={config.mode.upper()}"
    )
    # uvicorn logs a failed bind and exits with status 1 on its own
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_level="info")
    return 0


if __name__ == "__main__":
    sys.exit(main())
