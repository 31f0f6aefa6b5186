"""
Unit tests for raw result records and review snapshots.
"""

from datetime import date

from runmatch.runners.snapshot import (
    SNAPSHOT_SCHEMA,
    OpaqueSnapshot,
    RawResultRecord,
    decode_snapshot,
    encode_snapshot,
    normalize_record,
)


class TestResultKey:
    """Tests for RawResultRecord.result_key."""

    def test_uses_source_id(self):
        record = RawResultRecord(provider="runsignup", source_result_id="rsu-1", raw_name="Ann Lee")

        assert record.result_key == "rsu-1"

    def test_derived_key_is_stable(self):
        first = RawResultRecord(provider="generic", race_ref="r1", raw_name="Ann Lee", finish_time="0:25:00")
        second = RawResultRecord(provider="generic", race_ref="r1", raw_name="Ann Lee", finish_time="0:25:00")
        other = RawResultRecord(provider="generic", race_ref="r1", raw_name="Ann Lee", finish_time="0:25:01")

        assert first.result_key.startswith("derived:")
        assert first.result_key == second.result_key
        assert first.result_key != other.result_key


class TestDisplayLocation:
    """Tests for RawResultRecord.display_location."""

    def test_prefers_raw_location(self):
        record = RawResultRecord(provider="x", raw_location="Austin TX", raw_city="Dallas", raw_state="TX")

        assert record.display_location == "Austin TX"

    def test_joins_city_and_state(self):
        assert RawResultRecord(provider="x", raw_city="Austin", raw_state="TX").display_location == "Austin, TX"
        assert RawResultRecord(provider="x", raw_state="TX").display_location == "TX"
        assert RawResultRecord(provider="x").display_location is None


class TestLenientFields:
    """Noisy provider values degrade to missing data."""

    def test_unusable_age_and_birth_date(self):
        record = RawResultRecord(provider="x", raw_name="Jane Doe", raw_age="N/A", raw_birth_date="unknown")

        assert record.raw_age is None
        assert record.raw_birth_date is None

    def test_numeric_strings_are_parsed(self):
        record = RawResultRecord(provider="x", raw_age=" 34 ", raw_birth_date="1990-06-01T00:00:00", overall_place="12")

        assert record.raw_age == 34
        assert record.raw_birth_date == date(1990, 6, 1)
        assert record.overall_place == 12

    def test_placement_markers_are_dropped(self):
        record = RawResultRecord(provider="x", overall_place="DNF", gender_place=0, age_group_place="DQ")

        assert record.overall_place is None
        assert record.gender_place is None
        assert record.age_group_place is None


class TestSnapshots:
    """Tests for encode_snapshot() / decode_snapshot()."""

    def test_decodes_current_schema(self, make_record):
        record = make_record(extra={"bib": "4411"}, raw_birth_date=date(1990, 6, 1))

        schema, payload = encode_snapshot(record)

        assert schema == SNAPSHOT_SCHEMA
        assert payload["race_date"] == "2025-03-15"
        assert decode_snapshot(schema, payload) == record

    def test_unknown_schema_is_opaque(self):
        snapshot = decode_snapshot("raw_result/v9", {"anything": 1})

        assert snapshot == OpaqueSnapshot(schema="raw_result/v9", payload={"anything": 1})

    def test_invalid_payload_is_opaque(self):
        snapshot = decode_snapshot(SNAPSHOT_SCHEMA, {"raw_name": "Ann Lee"})

        assert isinstance(snapshot, OpaqueSnapshot)
        assert snapshot.schema == SNAPSHOT_SCHEMA


class TestNormalizeRecord:
    """Tests for normalize_record()."""

    def test_uses_race_date_as_reference(self, make_record):
        identity = normalize_record(make_record(raw_name="Dr. Robert Smith Jr.", raw_age=34))

        assert identity.reference_date == date(2025, 3, 15)
        assert identity.name.first == "robert"
        assert identity.name.last == "smith"
        assert identity.state == "TX"
        assert identity.age == 34
