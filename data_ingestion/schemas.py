"""
============================================================================
Centennial Activity Map v1.2.0
Data Ingestion Schemas - Canonical Project Record
============================================================================

Reliability Level: L5 Core
Input Constraints: Records produced by a Source Adapter + Field Normalizer
Side Effects: None (data containers only)

CANONICAL SHAPE:
    Every upstream record, whichever source produced it, is reduced to one
    ProjectRecord with a fixed set of named attributes plus an ordered bag of
    every raw upstream field (all_fields) kept for display.

    - id: stable identity, unique within the cache
    - name / phase / address: strings, "" means absent
    - lat / lng: floats, both present or both absent
    - last_modified: upstream modification timestamp (watermark only)
    - all_fields: upstream attribute name -> raw value, upstream order

============================================================================
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


# =============================================================================
# Enums
# =============================================================================

class SourceKind(Enum):
    """
    Upstream source kinds.

    AIRTABLE: paged token API (supports incremental fetch)
    CSV: flat delimited-text export (full reload only)
    """
    AIRTABLE = "airtable"
    CSV = "csv"

    @property
    def supports_incremental(self) -> bool:
        """Only the paged API carries change-watermark semantics."""
        return self is SourceKind.AIRTABLE


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class RawRecord:
    """
    One upstream record before normalization.

    Attributes:
        source: Source kind that produced the record
        fields: Upstream attribute name -> raw value, in upstream order
        native_id: Upstream record id when the source has one
    """
    source: SourceKind
    fields: Dict[str, Any] = field(default_factory=OrderedDict)
    native_id: Optional[str] = None


@dataclass(frozen=True)
class ProjectRecord:
    """
    Normalized project record.

    ============================================================================
    INVARIANTS:
    ============================================================================
    - id is non-empty and derived deterministically from upstream identity
    - name, phase, address are never None ("" is the absent sentinel)
    - lat and lng are both floats or both None
    - all_fields preserves upstream field order
    ============================================================================

    Reliability Level: L5 Core
    Side Effects: None (immutable)
    """
    id: str
    name: str = ""
    phase: str = ""
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    last_modified: Optional[str] = None
    all_fields: Mapping[str, Any] = field(
        default_factory=OrderedDict, hash=False, compare=False
    )

    def __post_init__(self):
        """Validate identity and the coordinate pairing."""
        if not self.id:
            raise ValueError("Invalid project record: id must be non-empty")

        if (self.lat is None) != (self.lng is None):
            raise ValueError(
                f"Invalid project record: lat/lng must be paired. "
                f"id={self.id}, lat={self.lat}, lng={self.lng}"
            )

    @property
    def has_coordinates(self) -> bool:
        """True when the record is a renderable map point."""
        return self.lat is not None and self.lng is not None

    @property
    def needs_geocoding(self) -> bool:
        """True when coordinates are missing but an address is available."""
        return not self.has_coordinates and self.address != ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire shape served by /api/projects."""
        return {
            "id": self.id,
            "name": self.name,
            "phase": self.phase,
            "address": self.address,
            "lat": self.lat,
            "lng": self.lng,
            "lastModified": self.last_modified,
            "allFields": OrderedDict(self.all_fields),
        }
