"""
============================================================================
Project Sync - Configuration
============================================================================

Reliability Level: L5 Core
Traceability: Configuration loading is logged (secrets are not)

This module provides configuration management for the sync service:
- Environment variable parsing with type safety (.env honoured)
- Default values for optional configuration
- Validation of required configuration
- Fail-closed behavior on invalid configuration (CFG-001)

SOURCE MODE:
    AIRTABLE_SHARED_CSV_URL blank -> PAT mode (paged API, incremental)
    AIRTABLE_SHARED_CSV_URL set   -> CSV mode (shared export, full only)

ENVIRONMENT VARIABLES:
    - PORT (default: 5174)
    - AIRTABLE_BASE_ID, AIRTABLE_API_TOKEN, AIRTABLE_VIEW_NAME
    - AIRTABLE_TABLE_NAME (default: MIPP)
    - AIRTABLE_FIELDS: comma-separated field projection
    - AIRTABLE_API_URL (default: https://api.airtable.com/v0)
    - AIRTABLE_SHARED_CSV_URL
    - SYNC_TTL_MS (default: 600000)
    - FULL_RESYNC_HOURS (default: 24)
    - SYNC_SINGLE_FLIGHT (default: false)
    - HTTP_TIMEOUT_SECONDS (default: 30)
    - DATA_DIR (default: ./data)
    - PUBLIC_DIR (default: ./public)
    - GMAPS_API_KEY

============================================================================
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import os

from dotenv import load_dotenv

from data_ingestion.schemas import SourceKind

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Default Values
# =============================================================================

DEFAULT_PORT = 5174
DEFAULT_TABLE_NAME = "MIPP"
DEFAULT_API_URL = "https://api.airtable.com/v0"
DEFAULT_SYNC_TTL_MS = 10 * 60 * 1000
DEFAULT_FULL_RESYNC_HOURS = 24.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0

TRUTHY = ("true", "1", "yes", "on")


# =============================================================================
# Error Codes
# =============================================================================

class SyncConfigErrorCode:
    """Configuration-specific error codes for audit logging."""
    CONFIG_INVALID = "CFG-001"


class SyncConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, error_code: str = SyncConfigErrorCode.CONFIG_INVALID):
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{error_code}] {message}")


# =============================================================================
# Parsing Helpers
# =============================================================================

def _env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(float(raw))
    except ValueError:
        logger.warning(
            f"[SYNC-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            f"[SYNC-CONFIG] Invalid {name} value: {raw}, using default: {default}"
        )
        return default


def parse_field_list(raw: str) -> List[str]:
    """Split a comma-separated list, dropping blanks."""
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


# =============================================================================
# SyncConfig Class
# =============================================================================

@dataclass
class SyncConfig:
    """
    Sync service configuration.

    Reliability Level: L5 Core
    Input Constraints: PAT mode needs base_id and api_token
    Side Effects: None
    """
    port: int = DEFAULT_PORT
    base_id: str = ""
    table_name: str = DEFAULT_TABLE_NAME
    api_token: str = ""
    view_name: str = ""
    fields: List[str] = field(default_factory=list)
    api_url: str = DEFAULT_API_URL
    csv_url: str = ""
    sync_ttl_ms: int = DEFAULT_SYNC_TTL_MS
    full_resync_hours: float = DEFAULT_FULL_RESYNC_HOURS
    single_flight: bool = False
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    data_dir: Path = field(default_factory=lambda: Path.cwd() / "data")
    public_dir: Path = field(default_factory=lambda: Path.cwd() / "public")
    gmaps_api_key: str = ""

    @property
    def source_kind(self) -> SourceKind:
        """Blank CSV URL means PAT mode."""
        return SourceKind.CSV if self.csv_url else SourceKind.AIRTABLE

    @property
    def mode(self) -> str:
        return self.source_kind.value

    @property
    def full_resync_ms(self) -> int:
        return int(self.full_resync_hours * 3600 * 1000)

    def validate(self) -> None:
        """
        Validate configuration completeness.

        Raises:
            SyncConfigurationError: If configuration is invalid (CFG-001)
        """
        errors = []  # type: List[str]

        if self.sync_ttl_ms <= 0:
            errors.append(f"SYNC_TTL_MS must be positive, got: {self.sync_ttl_ms}")

        if self.full_resync_hours < 0:
            errors.append(
                f"FULL_RESYNC_HOURS must be non-negative, got: {self.full_resync_hours}"
            )

        if self.http_timeout_seconds <= 0:
            errors.append(
                f"HTTP_TIMEOUT_SECONDS must be positive, got: {self.http_timeout_seconds}"
            )

        if not (0 < self.port < 65536):
            errors.append(f"PORT must be a valid TCP port, got: {self.port}")

        if self.source_kind is SourceKind.AIRTABLE:
            if not self.base_id:
                errors.append("AIRTABLE_BASE_ID must be set in PAT mode")
            if not self.api_token:
                errors.append("AIRTABLE_API_TOKEN must be set in PAT mode")
            if not self.table_name:
                errors.append("AIRTABLE_TABLE_NAME must not be blank")

        if errors:
            error_msg = "Sync configuration validation failed: " + "; ".join(errors)
            logger.error(f"[{SyncConfigErrorCode.CONFIG_INVALID}] {error_msg}")
            raise SyncConfigurationError(error_msg)

        logger.info(
            f"[SYNC-CONFIG] Configuration validated | "
            f"mode={self.mode} | "
            f"sync_ttl_ms={self.sync_ttl_ms} | "
            f"full_resync_hours={self.full_resync_hours}"
        )

    @classmethod
    def from_environment(cls, validate: bool = True) -> "SyncConfig":
        """
        Load configuration from environment variables (and .env).

        Args:
            validate: Whether to validate after loading

        Raises:
            SyncConfigurationError: If validation fails (CFG-001)
        """
        load_dotenv()

        data_dir = _env_str("DATA_DIR")
        public_dir = _env_str("PUBLIC_DIR")

        config = cls(
            port=_env_int("PORT", DEFAULT_PORT),
            base_id=_env_str("AIRTABLE_BASE_ID"),
            table_name=_env_str("AIRTABLE_TABLE_NAME", DEFAULT_TABLE_NAME) or DEFAULT_TABLE_NAME,
            api_token=_env_str("AIRTABLE_API_TOKEN"),
            view_name=_env_str("AIRTABLE_VIEW_NAME"),
            fields=parse_field_list(os.environ.get("AIRTABLE_FIELDS", "")),
            api_url=_env_str("AIRTABLE_API_URL", DEFAULT_API_URL) or DEFAULT_API_URL,
            csv_url=_env_str("AIRTABLE_SHARED_CSV_URL"),
            sync_ttl_ms=_env_int("SYNC_TTL_MS", DEFAULT_SYNC_TTL_MS),
            full_resync_hours=_env_float("FULL_RESYNC_HOURS", DEFAULT_FULL_RESYNC_HOURS),
            single_flight=_env_str("SYNC_SINGLE_FLIGHT", "false").lower() in TRUTHY,
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS),
            data_dir=Path(data_dir) if data_dir else Path.cwd() / "data",
            public_dir=Path(public_dir) if public_dir else Path.cwd() / "public",
            gmaps_api_key=_env_str("GMAPS_API_KEY"),
        )

        logger.info(
            f"[SYNC-CONFIG] Loading configuration from environment | "
            f"mode={config.mode} | "
            f"table={config.table_name} | "
            f"view={config.view_name or '-'} | "
            f"fields={len(config.fields)} | "
            f"data_dir={config.data_dir}"
        )

        if validate:
            config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Non-secret configuration values for logging/health."""
        return {
            "mode": self.mode,
            "table_name": self.table_name,
            "view_name": self.view_name,
            "fields": list(self.fields),
            "sync_ttl_ms": self.sync_ttl_ms,
            "full_resync_hours": self.full_resync_hours,
            "single_flight": self.single_flight,
            "data_dir": str(self.data_dir),
        }


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

_config_instance = None  # type: Optional[SyncConfig]


def get_sync_config(validate: bool = True) -> SyncConfig:
    """Get the global configuration, loading it on first access."""
    global _config_instance
    if _config_instance is None:
        _config_instance = SyncConfig.from_environment(validate=validate)
    return _config_instance


def reset_sync_config() -> None:
    """Reset the global configuration instance (for testing)."""
    global _config_instance
    _config_instance = None
    logger.debug("[SYNC-CONFIG] Configuration instance reset")


__all__ = [
    "SyncConfig",
    "SyncConfigurationError",
    "SyncConfigErrorCode",
    "DEFAULT_SYNC_TTL_MS",
    "DEFAULT_FULL_RESYNC_HOURS",
    "parse_field_list",
    "get_sync_config",
    "reset_sync_config",
]
