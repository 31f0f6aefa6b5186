"""
Mapping of provider result payloads onto RawResultRecord.

Each timing provider names its fields differently:
- RunSignup: first_name / last_name, chip_time or clock_time, place, result_id
- RaceRoster: name (or first/last), finish_time or time, overall_place or place

Fields we don't interpret are kept in RawResultRecord.extra so they survive
into review snapshots.
"""

from datetime import date
from typing import Any, Callable, Optional

from runmatch.runners.normalize import parse_age, parse_date
from runmatch.runners.snapshot import RawResultRecord, parse_place


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _join_name(first: Any, last: Any) -> Optional[str]:
    return _text(" ".join(part for part in (_text(first), _text(last)) if part))


def from_runsignup(result: dict[str, Any], race_ref: str, race_date: Optional[date] = None) -> RawResultRecord:
    """Map one RunSignup result row."""
    known = {
        "result_id", "first_name", "last_name", "gender", "age", "dob", "city", "state",
        "chip_time", "clock_time", "place", "gender_place", "age_group_place",
    }
    return RawResultRecord(
        provider="runsignup",
        source_result_id=_text(result.get("result_id")),
        race_ref=race_ref,
        race_date=race_date,
        raw_name=_join_name(result.get("first_name"), result.get("last_name")),
        raw_city=_text(result.get("city")),
        raw_state=_text(result.get("state")),
        raw_age=parse_age(result.get("age")),
        raw_birth_date=parse_date(result.get("dob")),
        gender=_text(result.get("gender")),
        finish_time=_text(result.get("chip_time")) or _text(result.get("clock_time")),
        overall_place=parse_place(result.get("place")),
        gender_place=parse_place(result.get("gender_place")),
        age_group_place=parse_place(result.get("age_group_place")),
        extra={key: value for key, value in result.items() if key not in known},
    )


def from_raceroster(result: dict[str, Any], race_ref: str, race_date: Optional[date] = None) -> RawResultRecord:
    """Map one RaceRoster result row."""
    known = {
        "id", "name", "first_name", "last_name", "gender", "age", "city", "state",
        "finish_time", "time", "overall_place", "place", "gender_place", "age_group_place",
    }
    name = _text(result.get("name")) or _join_name(result.get("first_name"), result.get("last_name"))
    return RawResultRecord(
        provider="raceroster",
        source_result_id=_text(result.get("id")),
        race_ref=race_ref,
        race_date=race_date,
        raw_name=name,
        raw_city=_text(result.get("city")),
        raw_state=_text(result.get("state")),
        raw_age=parse_age(result.get("age")),
        gender=_text(result.get("gender")),
        finish_time=_text(result.get("finish_time")) or _text(result.get("time")),
        overall_place=parse_place(result.get("overall_place")) or parse_place(result.get("place")),
        gender_place=parse_place(result.get("gender_place")),
        age_group_place=parse_place(result.get("age_group_place")),
        extra={key: value for key, value in result.items() if key not in known},
    )


def from_generic(
    result: dict[str, Any],
    race_ref: str,
    race_date: Optional[date] = None,
    provider: str = "generic",
) -> RawResultRecord:
    """Map a row that already uses our field names (CSV exports, manual entry)."""
    known = {
        "id", "source_result_id", "name", "runner_name", "location", "city", "state",
        "age", "dob", "birth_date", "gender", "sex", "finish_time", "time",
        "overall_place", "place", "gender_place", "age_group_place",
    }
    return RawResultRecord(
        provider=provider,
        source_result_id=_text(result.get("source_result_id")) or _text(result.get("id")),
        race_ref=race_ref,
        race_date=race_date,
        raw_name=_text(result.get("name")) or _text(result.get("runner_name")),
        raw_location=_text(result.get("location")),
        raw_city=_text(result.get("city")),
        raw_state=_text(result.get("state")),
        raw_age=parse_age(result.get("age")),
        raw_birth_date=parse_date(result.get("dob") or result.get("birth_date")),
        gender=_text(result.get("gender")) or _text(result.get("sex")),
        finish_time=_text(result.get("finish_time")) or _text(result.get("time")),
        overall_place=parse_place(result.get("overall_place")) or parse_place(result.get("place")),
        gender_place=parse_place(result.get("gender_place")),
        age_group_place=parse_place(result.get("age_group_place")),
        extra={key: value for key, value in result.items() if key not in known},
    )


PROVIDER_MAPPERS: dict[str, Callable[..., RawResultRecord]] = {
    "runsignup": from_runsignup,
    "raceroster": from_raceroster,
    "generic": from_generic,
}


def map_provider_results(
    provider: str,
    results: list[dict[str, Any]],
    race_ref: str,
    race_date: Optional[date] = None,
) -> list[RawResultRecord]:
    """
    Map a list of provider rows into raw records.

    Unknown providers fall back to the generic mapping, tagged with the
    provider name.
    """
    mapper = PROVIDER_MAPPERS.get(provider)
    if mapper is None:
        return [from_generic(row, race_ref, race_date, provider=provider) for row in results]
    return [mapper(row, race_ref, race_date) for row in results]
