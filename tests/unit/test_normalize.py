"""
Unit tests for runner identity normalization.

Covers the name, location, gender and age handling that turns raw provider
fields into comparable values.
"""

from datetime import date, datetime

import pytest

from runmatch.runners.normalize import (
    compare_names,
    compare_tokens,
    estimate_age,
    normalize,
    normalize_city,
    normalize_gender,
    normalize_name,
    normalize_state,
    parse_age,
    parse_date,
    parse_location,
    split_name,
    token_overlap,
)


class TestNormalizeName:
    """Tests for name normalization."""

    def test_lowercase_and_punctuation(self):
        assert normalize_name("Robert J. Smith") == "robert j smith"

    def test_remove_accents(self):
        assert normalize_name("José Núñez") == "jose nunez"

    def test_last_first_format(self):
        """Test handling of 'SMITH, Robert' exports."""
        assert normalize_name("SMITH, Robert") == "robert smith"

    def test_trailing_suffix_after_comma(self):
        assert normalize_name("Robert Smith, Jr.") == "robert smith"

    def test_remove_suffixes_and_honorifics(self):
        assert normalize_name("Dr. Robert Smith III") == "robert smith"
        assert normalize_name("Robert Smith Jr") == "robert smith"

    def test_hyphenated_names_split(self):
        assert normalize_name("Anna Garcia-Lopez") == "anna garcia lopez"

    def test_whitespace_cleanup(self):
        assert normalize_name("  Robert    Smith ") == "robert smith"

    def test_empty_values(self):
        assert normalize_name("") == ""
        assert normalize_name(None) == ""
        assert normalize_name("...") == ""


class TestCompareTokens:
    """Tests for token-level comparison weights."""

    def test_identical(self):
        assert compare_tokens("smith", "smith") == 1.0

    def test_initial(self):
        assert compare_tokens("r", "robert") == 0.5
        assert compare_tokens("j", "robert") == 0.0

    def test_nickname(self):
        assert compare_tokens("bob", "robert") == 0.9
        assert compare_tokens("robert", "bob") == 0.9

    def test_shared_nickname(self):
        # Both short forms of a formal name
        assert compare_tokens("bob", "rob") == 0.9

    def test_phonetic(self):
        assert compare_tokens("smyth", "smith") == 0.8

    def test_unrelated(self):
        assert compare_tokens("smith", "jones") == 0.0


class TestCompareNames:
    """Tests for name scores (0-100)."""

    def test_exact_match(self):
        assert compare_names(split_name("Robert Smith"), split_name("ROBERT SMITH")) == 100.0

    def test_first_and_last_match(self):
        assert compare_names(split_name("Robert J. Smith"), split_name("Robert Smith")) == 95.0

    def test_initial_and_last_name(self):
        # smith=1.0, r~robert=0.5 -> 1.5 / (2 + 2 - 1.5) = 0.6
        assert compare_names(split_name("R. Smith"), split_name("Robert Smith")) == 54.0

    def test_partial_scores_below_first_last(self):
        score = compare_names(split_name("Bob Smith"), split_name("Robert Smith"))
        assert 70.0 < score < 95.0

    def test_completely_different(self):
        assert compare_names(split_name("Robert Smith"), split_name("Maria Lopez")) == 0.0

    def test_empty_name(self):
        assert compare_names(split_name(""), split_name("Robert Smith")) == 0.0

    def test_symmetric_overlap(self):
        a, b = split_name("Bob J Smith").tokens, split_name("Robert Smith").tokens
        assert token_overlap(a, b) == pytest.approx(token_overlap(b, a))


class TestLocation:
    """Tests for city/state parsing."""

    def test_city_state(self):
        assert parse_location("Austin, TX") == ("austin", "TX")

    def test_full_state_name(self):
        assert parse_location("Austin, Texas") == ("austin", "TX")

    def test_trailing_country(self):
        assert parse_location("Austin, TX, USA") == ("austin", "TX")

    def test_california_is_not_a_country(self):
        assert parse_location("Los Angeles, CA") == ("los angeles", "CA")

    def test_zip_and_no_comma(self):
        assert parse_location("Austin TX 78701") == ("austin", "TX")

    def test_two_word_state(self):
        assert parse_location("Albany New York") == ("albany", "NY")

    def test_bare_state(self):
        assert parse_location("Ontario") == (None, "ON")

    def test_city_only(self):
        assert parse_location("Springfield") == ("springfield", None)

    def test_empty(self):
        assert parse_location("") == (None, None)
        assert parse_location(None) == (None, None)

    def test_normalize_state(self):
        assert normalize_state("texas") == "TX"
        assert normalize_state(" tx ") == "TX"
        assert normalize_state("Bavaria") == "Bavaria"
        assert normalize_state("  ") is None

    def test_normalize_city_prefixes(self):
        assert normalize_city("St. Louis") == "saint louis"
        assert normalize_city("Ft Worth") == "fort worth"
        assert normalize_city(None) is None


class TestGenderAndAge:
    """Tests for gender and age handling."""

    def test_gender_values(self):
        assert normalize_gender("Male") == "M"
        assert normalize_gender("f") == "F"
        assert normalize_gender("X") == "NB"
        assert normalize_gender("unknown") is None
        assert normalize_gender(None) is None

    def test_parse_age(self):
        assert parse_age("34") == 34
        assert parse_age(34.0) == 34
        assert parse_age("") is None
        assert parse_age("abc") is None
        assert parse_age(0) is None
        assert parse_age(150) is None
        assert parse_age(True) is None

    def test_parse_date(self):
        assert parse_date("1990-05-01") == date(1990, 5, 1)
        assert parse_date("1990-05-01T00:00:00") == date(1990, 5, 1)
        assert parse_date(datetime(1990, 5, 1, 8, 30)) == date(1990, 5, 1)
        assert parse_date("05/01/1990") is None
        assert parse_date(19900501) is None

    def test_birth_date_is_exact(self):
        assert estimate_age(None, date(1990, 6, 1), date(2025, 3, 15)) == (34, 0)

    def test_reported_age_has_tolerance(self):
        assert estimate_age("34", None, date(2025, 3, 15), tolerance_years=1) == (34, 1)

    def test_no_age_data(self):
        assert estimate_age(None, None, date(2025, 3, 15)) == (None, 0)


class TestNormalize:
    """Tests for the full identity normalization."""

    def test_explicit_fields_override_location(self):
        identity = normalize(
            "SMITH, Robert",
            "Dallas, TX",
            "34",
            gender="M",
            city="Austin",
            reference_date=date(2025, 3, 15),
        )
        assert identity.name.full == "robert smith"
        assert identity.city == "austin"
        assert identity.state == "TX"
        assert identity.age == 34
        assert identity.gender == "M"
        assert identity.has_location

    def test_missing_everything_degrades_to_none(self):
        identity = normalize("Robert Smith", reference_date=date(2025, 3, 15))
        assert identity.city is None
        assert identity.state is None
        assert identity.age is None
        assert identity.gender is None
        assert not identity.has_location
