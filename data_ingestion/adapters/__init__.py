"""
============================================================================
Data Ingestion Adapters Package
============================================================================

Reliability Level: L5 Core

ADAPTERS:
    1. AirtableAdapter - Airtable REST API, paged, incremental capable
    2. CsvExportAdapter - Shared CSV export, full reload only

All adapters implement the BaseAdapter interface for consistency.
============================================================================
"""

from data_ingestion.adapters.base_adapter import (
    BaseAdapter,
    AdapterErrorCode,
    ParseError,
    UpstreamFetchError,
)
from data_ingestion.adapters.airtable_adapter import AirtableAdapter
from data_ingestion.adapters.csv_export_adapter import (
    CsvExportAdapter,
    parse_delimited_text,
)

__all__ = [
    "BaseAdapter",
    "AdapterErrorCode",
    "ParseError",
    "UpstreamFetchError",
    "AirtableAdapter",
    "CsvExportAdapter",
    "parse_delimited_text",
]
