"""
============================================================================
Field Normalizer - Upstream Columns to Canonical Project Records
============================================================================

Reliability Level: L5 Core
Traceability: All operations include correlation_id for audit

FIELD NORMALIZER:
    The API and the CSV export name their columns loosely ("Project Name",
    "name ", "LAT", ...). Each canonical attribute resolves through an
    ordered alias list; the first alias that matches a non-blank upstream
    value wins. Matching tries the exact key first, then a case-insensitive
    comparison with surrounding whitespace trimmed.

IDENTITY:
    1. Native upstream id (API record id)
    2. "Record ID" column -> rec_<value>
    3. Content hash -> csv_<sha1(name|address)>

DEGRADATION:
    normalize_record() never raises. A sparse or malformed record becomes a
    mostly-empty ProjectRecord instead of aborting the batch.
============================================================================
"""

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import hashlib
import logging
import math
import uuid

from data_ingestion.schemas import ProjectRecord, RawRecord, SourceKind

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Alias Registry
# =============================================================================

NAME_ALIASES = ("Project Name", "Name", "Project")
PHASE_ALIASES = ("Phase", "Project Phase")
ADDRESS_ALIASES = (
    "Address", "Site Address", "Project Address", "Location", "Street Address",
)
LAT_ALIASES = ("Latitude", "Lat", "LAT", "Y", "Y (lat)")
LNG_ALIASES = ("Longitude", "Lng", "LONG", "X", "X (lng)")
LAST_MODIFIED_ALIASES = (
    "Last Modified", "Last modified", "LastModified", "Last Modified Time",
)
RECORD_ID_ALIASES = ("Record ID",)

RECORD_ID_PREFIX = "rec_"
CONTENT_HASH_PREFIXES = {
    SourceKind.CSV: "csv_",
    SourceKind.AIRTABLE: "airtable_",
}


# =============================================================================
# Error Codes
# =============================================================================

class NormalizerErrorCode:
    """Normalizer-specific error codes."""
    DEGRADED = "NORM-001"
    COORDINATE_INVALID = "NORM-002"


# =============================================================================
# Value Coercion
# =============================================================================

def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return all(_is_blank(v) for v in value)
    return False


def _match_key(key: Any, alias: str) -> bool:
    return isinstance(key, str) and key.strip().lower() == alias.strip().lower()


def resolve_alias(fields: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """
    Return the first non-blank value found under any alias, else None.

    >>> resolve_alias({" project name ": "Acme"}, NAME_ALIASES)
    'Acme'
    """
    for alias in aliases:
        if alias in fields and not _is_blank(fields[alias]):
            return fields[alias]
        for key, value in fields.items():
            if _match_key(key, alias) and not _is_blank(value):
                return value
    return None


def to_text(value: Any) -> str:
    """Coerce an upstream value to a display string ("" when absent)."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        parts = [to_text(v) for v in value]
        return ", ".join(p for p in parts if p)
    if isinstance(value, dict):
        # Linked/collaborator cells come through as objects
        for key in ("name", "text", "email", "url"):
            if isinstance(value.get(key), str):
                return value[key].strip()
        return ""
    return str(value).strip()


def to_coordinate(value: Any) -> Optional[float]:
    """Parse a coordinate; anything non-numeric or non-finite becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (list, tuple)):
        return to_coordinate(value[0]) if len(value) == 1 else None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def content_hash(name: str, address: str) -> str:
    """SHA-1 of name|address, the identity of records without a native id."""
    return hashlib.sha1(f"{name}|{address}".encode("utf-8")).hexdigest()


def derive_record_id(raw: RawRecord, name: str, address: str) -> str:
    """Deterministic identity for a raw record."""
    if raw.native_id:
        return str(raw.native_id)

    record_id = to_text(resolve_alias(raw.fields, RECORD_ID_ALIASES))
    if record_id:
        return f"{RECORD_ID_PREFIX}{record_id}"

    prefix = CONTENT_HASH_PREFIXES.get(raw.source, "csv_")
    return f"{prefix}{content_hash(name, address)}"


def _resolve_coordinates(fields: Mapping[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    lat = to_coordinate(resolve_alias(fields, LAT_ALIASES))
    lng = to_coordinate(resolve_alias(fields, LNG_ALIASES))
    if lat is None or lng is None:
        return None, None
    return lat, lng


# =============================================================================
# Normalization
# =============================================================================

def normalize_record(raw: RawRecord) -> ProjectRecord:
    """
    Map one raw upstream record onto the canonical ProjectRecord.

    Never raises: on unexpected input the record degrades to its identity
    plus whatever could be read.
    """
    fields = raw.fields if isinstance(raw.fields, Mapping) else {}
    try:
        name = to_text(resolve_alias(fields, NAME_ALIASES))
        phase = to_text(resolve_alias(fields, PHASE_ALIASES))
        address = to_text(resolve_alias(fields, ADDRESS_ALIASES))
        lat, lng = _resolve_coordinates(fields)
        last_modified = to_text(resolve_alias(fields, LAST_MODIFIED_ALIASES)) or None

        return ProjectRecord(
            id=derive_record_id(raw, name, address),
            name=name,
            phase=phase,
            address=address,
            lat=lat,
            lng=lng,
            last_modified=last_modified,
            all_fields=OrderedDict(fields.items()),
        )
    except Exception as e:
        logger.warning(
            f"{NormalizerErrorCode.DEGRADED} Record degraded to identity only: {str(e)} | "
            f"source={raw.source.value} | "
            f"native_id={raw.native_id}"
        )
        return ProjectRecord(
            id=str(raw.native_id) if raw.native_id else
            f"{CONTENT_HASH_PREFIXES.get(raw.source, 'csv_')}{content_hash('', '')}",
        )


def normalize_records(raws: Iterable[RawRecord]) -> List[ProjectRecord]:
    """Normalize a batch, preserving order."""
    return [normalize_record(raw) for raw in raws]


# =============================================================================
# Field Normalizer Class
# =============================================================================

class FieldNormalizer:
    """
    Stateful wrapper around normalize_record() that keeps counters for
    health reporting.

    Reliability Level: L5 Core
    Side Effects: None beyond counters
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self._correlation_id = correlation_id or str(uuid.uuid4())
        self._normalized_count = 0
        self._coordinates_dropped = 0
        self._missing_coordinates = 0

        logger.info(
            f"FieldNormalizer initialized | "
            f"correlation_id={self._correlation_id}"
        )

    def normalize(self, raws: Iterable[RawRecord]) -> List[ProjectRecord]:
        """
        Normalize a batch of raw records.

        Args:
            raws: Raw records from a Source Adapter

        Returns:
            Canonical records in input order
        """
        records = []  # type: List[ProjectRecord]
        dropped = 0
        for raw in raws:
            record = normalize_record(raw)
            if not record.has_coordinates:
                self._missing_coordinates += 1
                fields = raw.fields if isinstance(raw.fields, Mapping) else {}
                if (resolve_alias(fields, LAT_ALIASES) is not None
                        or resolve_alias(fields, LNG_ALIASES) is not None):
                    dropped += 1
            records.append(record)

        self._normalized_count += len(records)
        self._coordinates_dropped += dropped

        if dropped:
            logger.warning(
                f"{NormalizerErrorCode.COORDINATE_INVALID} Unusable coordinates cleared | "
                f"records={dropped} | "
                f"correlation_id={self._correlation_id}"
            )
        return records

    def get_statistics(self) -> Dict[str, Any]:
        """Get normalizer statistics."""
        return {
            "records_normalized": self._normalized_count,
            "coordinates_dropped": self._coordinates_dropped,
            "missing_coordinates": self._missing_coordinates,
            "correlation_id": self._correlation_id,
        }
