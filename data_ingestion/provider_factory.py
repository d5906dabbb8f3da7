"""
============================================================================
Provider Factory - Source Adapter Selection
============================================================================

Reliability Level: L5 Core
Traceability: All operations include correlation_id for audit

PROVIDER FACTORY PATTERN:
    Downstream code (the sync scheduler) only sees BaseAdapter. The factory
    picks the concrete source from configuration:

    1. AIRTABLE_SHARED_CSV_URL set   -> CsvExportAdapter
    2. otherwise (PAT mode)          -> AirtableAdapter
============================================================================
"""

from typing import Optional
import logging
import uuid

import requests

from data_ingestion.adapters.airtable_adapter import AirtableAdapter
from data_ingestion.adapters.base_adapter import BaseAdapter
from data_ingestion.adapters.csv_export_adapter import CsvExportAdapter
from data_ingestion.schemas import SourceKind
from services.sync_config import SyncConfig

# Configure module logger
logger = logging.getLogger(__name__)


def create_source_adapter(
    config: SyncConfig,
    session: Optional[requests.Session] = None,
    correlation_id: Optional[str] = None
) -> BaseAdapter:
    """
    Build the adapter for the configured source mode.

    Args:
        config: Loaded SyncConfig
        session: Optional shared requests.Session
        correlation_id: Audit trail identifier

    Returns:
        A ready-to-use BaseAdapter
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    if config.source_kind is SourceKind.CSV:
        adapter = CsvExportAdapter(
            csv_url=config.csv_url,
            timeout_seconds=config.http_timeout_seconds,
            session=session,
            correlation_id=correlation_id,
        )  # type: BaseAdapter
    else:
        adapter = AirtableAdapter(
            base_id=config.base_id,
            table_name=config.table_name,
            api_token=config.api_token,
            view_name=config.view_name,
            fields=config.fields,
            api_url=config.api_url,
            timeout_seconds=config.http_timeout_seconds,
            session=session,
            correlation_id=correlation_id,
        )

    logger.info(
        f"Source adapter created | "
        f"mode={config.mode} | "
        f"adapter={type(adapter).__name__} | "
        f"incremental={adapter.supports_incremental} | "
        f"correlation_id={correlation_id}"
    )
    return adapter
