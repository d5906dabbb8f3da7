"""
============================================================================
Unit Tests for the Field Normalizer
============================================================================

Reliability Level: L5 Core

This module tests:
- Alias resolution (order, case-insensitive trimmed keys, blank skipping)
- Coordinate parsing and pairing
- Record identity derivation
- Degradation on malformed input (never raises)

============================================================================
"""

from collections import OrderedDict

import pytest

# Add project root to path
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from data_ingestion.field_normalizer import (
    FieldNormalizer,
    NAME_ALIASES,
    content_hash,
    normalize_record,
    resolve_alias,
    to_coordinate,
    to_text,
)
from data_ingestion.schemas import ProjectRecord, RawRecord, SourceKind


def csv_raw(**fields) -> RawRecord:
    return RawRecord(source=SourceKind.CSV, fields=OrderedDict(fields))


# =============================================================================
# Alias Resolution
# =============================================================================

class TestResolveAlias:

    def test_first_alias_wins(self):
        fields = {"Name": "Second", "Project Name": "First"}
        assert resolve_alias(fields, NAME_ALIASES) == "First"

    def test_case_insensitive_trimmed_match(self):
        assert resolve_alias({"  project NAME ": "Acme"}, NAME_ALIASES) == "Acme"

    def test_blank_value_falls_through(self):
        fields = {"Project Name": "  ", "Name": "Fallback"}
        assert resolve_alias(fields, NAME_ALIASES) == "Fallback"

    def test_no_match(self):
        assert resolve_alias({"Other": "x"}, NAME_ALIASES) is None


class TestCoercion:

    @pytest.mark.parametrize("value,expected", [
        ("40.1", 40.1),
        (" -75.2 ", -75.2),
        (12, 12.0),
        ([3.5], 3.5),
        ("north", None),
        ("", None),
        (None, None),
        (True, None),
        ("nan", None),
        ("inf", None),
        ([1.0, 2.0], None),
    ])
    def test_to_coordinate(self, value, expected):
        assert to_coordinate(value) == expected

    def test_to_text(self):
        assert to_text(None) == ""
        assert to_text("  x ") == "x"
        assert to_text(["a", "", "b"]) == "a, b"
        assert to_text({"name": "Pat"}) == "Pat"
        assert to_text(7) == "7"


# =============================================================================
# normalize_record
# =============================================================================

class TestNormalizeRecord:

    def test_canonical_fields(self):
        record = normalize_record(csv_raw(**{
            "Project Name": "Acme Solar",
            "Project Phase": "Operating",
            "Site Address": "123 Main, Unit 2",
            "Y (lat)": "40.1",
            "X (lng)": "-75.2",
            "Last Modified": "2024-01-02T03:04:05.000Z",
        }))

        assert record.name == "Acme Solar"
        assert record.phase == "Operating"
        assert record.address == "123 Main, Unit 2"
        assert record.lat == 40.1
        assert record.lng == -75.2
        assert record.last_modified == "2024-01-02T03:04:05.000Z"

    def test_all_fields_preserved_in_order(self):
        record = normalize_record(csv_raw(Zeta="1", Name="A", Extra="e"))
        assert list(record.all_fields.keys()) == ["Zeta", "Name", "Extra"]

    def test_non_numeric_coordinate_nulls_pair(self):
        record = normalize_record(csv_raw(Name="A", Latitude="north", Longitude="-75.2"))
        assert record.lat is None
        assert record.lng is None
        assert record.name == "A"

    def test_single_coordinate_nulls_pair(self):
        record = normalize_record(csv_raw(Name="A", Latitude="40.1"))
        assert record.lat is None and record.lng is None

    def test_missing_aliases_yield_sentinels(self):
        record = normalize_record(csv_raw(Unrelated="x"))
        assert record.name == ""
        assert record.phase == ""
        assert record.address == ""
        assert record.lat is None
        assert record.lng is None
        assert record.last_modified is None
        assert record.id

    def test_native_id_is_identity(self):
        raw = RawRecord(source=SourceKind.AIRTABLE, fields={"Name": "A"}, native_id="recXYZ")
        assert normalize_record(raw).id == "recXYZ"

    def test_record_id_column(self):
        assert normalize_record(csv_raw(**{"Record ID": "42", "Name": "A"})).id == "rec_42"

    def test_content_hash_identity_is_deterministic(self):
        first = normalize_record(csv_raw(Name="A", Address="1 Main"))
        second = normalize_record(csv_raw(Address="1 Main", Name="A", Phase="Other"))
        assert first.id == second.id == "csv_" + content_hash("A", "1 Main")

    def test_content_hash_differs_by_address(self):
        first = normalize_record(csv_raw(Name="A", Address="1 Main"))
        second = normalize_record(csv_raw(Name="A", Address="2 Main"))
        assert first.id != second.id

    def test_api_record_without_native_id(self):
        raw = RawRecord(source=SourceKind.AIRTABLE, fields={"Name": "A"})
        assert normalize_record(raw).id.startswith("airtable_")

    @pytest.mark.parametrize("fields", [
        None,
        {"Name": object()},
        {1: "numeric key", "Latitude": {"nested": True}},
        {"Name": ["a", None, 3]},
    ])
    def test_malformed_input_never_raises(self, fields):
        record = normalize_record(RawRecord(source=SourceKind.CSV, fields=fields))
        assert isinstance(record, ProjectRecord)
        assert record.id


# =============================================================================
# FieldNormalizer
# =============================================================================

class TestFieldNormalizer:

    def test_statistics(self):
        normalizer = FieldNormalizer(correlation_id="test")
        records = normalizer.normalize([
            csv_raw(Name="A", Latitude="1", Longitude="2"),
            csv_raw(Name="B", Latitude="bad", Longitude="2"),
            csv_raw(Name="C"),
        ])

        assert len(records) == 3
        stats = normalizer.get_statistics()
        assert stats["records_normalized"] == 3
        assert stats["coordinates_dropped"] == 1
        assert stats["missing_coordinates"] == 2


class TestProjectRecord:

    def test_unpaired_coordinates_rejected(self):
        with pytest.raises(ValueError):
            ProjectRecord(id="a", lat=1.0)

    def test_empty_id_rejected(self):
        with pytest.raises(ValueError):
            ProjectRecord(id="")

    def test_wire_shape(self):
        record = ProjectRecord(
            id="rec1", name="A", lat=1.0, lng=2.0,
            last_modified="t", all_fields=OrderedDict(Name="A"),
        )
        data = record.to_dict()
        assert data["lastModified"] == "t"
        assert data["allFields"] == {"Name": "A"}
        assert list(data.keys()) == [
            "id", "name", "phase", "address", "lat", "lng", "lastModified", "allFields",
        ]

    def test_needs_geocoding(self):
        assert ProjectRecord(id="a", address="1 Main").needs_geocoding is True
        assert ProjectRecord(id="a", address="1 Main", lat=1.0, lng=2.0).needs_geocoding is False
