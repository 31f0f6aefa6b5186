"""
Raw result records and their persisted snapshots.

A RawResultRecord is one imported result before identity resolution. When a
record goes to the review queue, a snapshot of it is stored on the review
entry so the reviewer's decision can later write the Result exactly as it
was imported.

Snapshots are tagged with a schema name. Known schemas decode back into a
RawResultRecord; anything else (payloads written by a newer version, or by
an importer we don't know) is kept as an OpaqueSnapshot and only decoded
when someone looks at it.
"""

import hashlib
from dataclasses import dataclass
from datetime import date
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from runmatch.runners.normalize import NormalizedIdentity, normalize, parse_age, parse_date

SNAPSHOT_SCHEMA = "raw_result/v1"


def parse_place(value: Any) -> Optional[int]:
    """Parse a finishing place, returning None for DNF/DQ markers and non-positive values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        place = int(value)
    except (TypeError, ValueError):
        return None
    return place if place > 0 else None


class RawResultRecord(BaseModel):
    """
    One imported result prior to resolution.

    Immutable: provenance fields are never rewritten after import. Identity
    fields are optional at this level; MalformedInputError is raised by the
    identity service, not by the model, so a broken record still reaches the
    caller as a Rejected outcome.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    source_result_id: Optional[str] = None
    race_ref: Optional[str] = None
    race_date: Optional[date] = None

    raw_name: Optional[str] = None
    raw_location: Optional[str] = None
    raw_city: Optional[str] = None
    raw_state: Optional[str] = None
    raw_age: Optional[int] = None
    raw_birth_date: Optional[date] = None
    gender: Optional[str] = None

    finish_time: Optional[str] = None
    overall_place: Optional[int] = None
    gender_place: Optional[int] = None
    age_group_place: Optional[int] = None

    # Provider fields we don't interpret (bib, pace, splits...)
    extra: dict[str, Any] = Field(default_factory=dict)

    # Noisy identity and placement data degrades to "no data" instead of
    # failing the record; only a missing name or race reference rejects it.
    @field_validator("raw_age", mode="before")
    @classmethod
    def validate_raw_age(cls, v: Any) -> Optional[int]:
        return parse_age(v)

    @field_validator("raw_birth_date", mode="before")
    @classmethod
    def validate_raw_birth_date(cls, v: Any) -> Optional[date]:
        return parse_date(v)

    @field_validator("overall_place", "gender_place", "age_group_place", mode="before")
    @classmethod
    def validate_places(cls, v: Any) -> Optional[int]:
        return parse_place(v)

    @property
    def result_key(self) -> str:
        """
        Source result id, or a stable digest when the provider sent none.

        The digest covers provider, race, name, finish time and place so
        re-importing the same file yields the same key.
        """
        if self.source_result_id:
            return self.source_result_id
        basis = "|".join(
            str(part or "")
            for part in (
                self.provider,
                self.race_ref,
                self.raw_name,
                self.finish_time,
                self.overall_place,
            )
        )
        return "derived:" + hashlib.sha1(basis.encode("utf-8")).hexdigest()[:20]

    @property
    def display_location(self) -> Optional[str]:
        """The raw location as stored on the result row."""
        if self.raw_location:
            return self.raw_location
        parts = [part for part in (self.raw_city, self.raw_state) if part]
        return ", ".join(parts) if parts else None


@dataclass(frozen=True)
class OpaqueSnapshot:
    """A stored payload whose schema this version can't decode."""
    schema: str
    payload: dict[str, Any]


Snapshot = Union[RawResultRecord, OpaqueSnapshot]


def encode_snapshot(record: RawResultRecord) -> tuple[str, dict[str, Any]]:
    """Serialize a record for storage on a review entry."""
    return SNAPSHOT_SCHEMA, record.model_dump(mode="json")


def decode_snapshot(schema: str, payload: dict[str, Any]) -> Snapshot:
    """
    Decode a stored snapshot.

    Returns an OpaqueSnapshot instead of raising when the schema is unknown
    or the payload no longer validates.
    """
    if schema != SNAPSHOT_SCHEMA:
        return OpaqueSnapshot(schema=schema, payload=payload)
    try:
        return RawResultRecord.model_validate(payload)
    except ValidationError:
        return OpaqueSnapshot(schema=schema, payload=payload)


def normalize_record(record: RawResultRecord) -> NormalizedIdentity:
    """Normalize the identity fields of a raw record, as of its race date."""
    return normalize(
        record.raw_name,
        record.raw_location,
        record.raw_age,
        record.raw_birth_date,
        gender=record.gender,
        city=record.raw_city,
        state=record.raw_state,
        reference_date=record.race_date,
    )
