"""
Runner identity normalization and name comparison utilities.

Race results arrive from timing companies and race organizers in many shapes:
- RunSignup: first_name="ROBERT", last_name="Smith", city="Austin", state="TX"
- RaceRoster: name="Smith, Robert J.", city="Austin", state="Texas"
- Hand-typed CSVs: "Bob Smith Jr", location="Austin TX 78701"

This module turns those raw fields into comparable values. Nothing in here
raises on bad data: a field that can't be understood becomes None, which the
scorer treats as "no data" (neither a match nor a mismatch).
"""

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

import jellyfish
from rapidfuzz import fuzz

from runmatch.config import settings


# =============================================================================
# Names
# =============================================================================

HONORIFICS = {"mr", "mrs", "ms", "miss", "dr"}
SUFFIXES = {"jr", "sr", "ii", "iii", "iv"}

# Token weights used by compare_tokens()
INITIAL_WEIGHT = 0.5
NICKNAME_WEIGHT = 0.9
PHONETIC_WEIGHT = 0.8
TYPO_MIN_RATIO = 0.85

# Name scores (0-100) used by compare_names()
FIRST_LAST_SCORE = 95.0
TOKEN_OVERLAP_SCALE = 90.0

# Formal name -> common short forms
NICKNAMES: dict[str, set[str]] = {
    "alexander": {"alex", "xander"},
    "alexandra": {"alex", "lexi"},
    "andrew": {"andy", "drew"},
    "anthony": {"tony"},
    "benjamin": {"ben"},
    "catherine": {"cathy", "cat", "kate"},
    "christine": {"chris", "chrissy"},
    "christopher": {"chris"},
    "daniel": {"dan", "danny"},
    "david": {"dave"},
    "deborah": {"deb", "debbie"},
    "edward": {"ed", "eddie", "ted"},
    "elizabeth": {"liz", "beth", "betty", "lizzie", "eliza"},
    "gregory": {"greg"},
    "james": {"jim", "jimmy", "jamie"},
    "jeffrey": {"jeff"},
    "jennifer": {"jen", "jenny"},
    "john": {"jack", "johnny"},
    "jonathan": {"jon"},
    "joseph": {"joe", "joey"},
    "joshua": {"josh"},
    "katherine": {"kate", "katie", "kathy", "kat"},
    "kimberly": {"kim"},
    "margaret": {"maggie", "meg", "peggy"},
    "matthew": {"matt"},
    "michael": {"mike", "mikey", "mick"},
    "nicholas": {"nick"},
    "patricia": {"pat", "patty", "trish"},
    "patrick": {"pat"},
    "rebecca": {"becky"},
    "richard": {"rick", "ricky", "rich", "dick"},
    "robert": {"bob", "bobby", "rob", "robbie", "bert"},
    "samantha": {"sam"},
    "samuel": {"sam"},
    "stephen": {"steve"},
    "steven": {"steve"},
    "susan": {"sue", "suzy"},
    "thomas": {"tom", "tommy"},
    "timothy": {"tim"},
    "william": {"bill", "billy", "will", "willie", "liam"},
    "zachary": {"zach"},
}


@dataclass(frozen=True)
class NameParts:
    """A normalized name split into tokens for partial matching."""
    full: str
    tokens: tuple[str, ...]

    @property
    def first(self) -> str:
        return self.tokens[0] if self.tokens else ""

    @property
    def last(self) -> str:
        return self.tokens[-1] if self.tokens else ""

    @property
    def token_set(self) -> frozenset[str]:
        return frozenset(self.tokens)


def _fold_accents(value: str) -> str:
    # NFD splits "é" into "e" + combining accent; drop the combining marks
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(char for char in decomposed if unicodedata.category(char) != "Mn")


def _strip_punctuation(value: str) -> str:
    value = re.sub(r"[-_/]", " ", value)
    return re.sub(r"[^\w\s]", "", value)


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a runner name for storage and comparison.

    Normalization steps:
    1. Convert to lowercase and remove accents
    2. Handle "Lastname, Firstname" format
    3. Remove punctuation (hyphens become spaces)
    4. Remove honorifics (Dr., Mrs.) and suffixes (Jr., III)
    5. Collapse whitespace

    Examples:
        >>> normalize_name("Robert J. Smith")
        'robert j smith'
        >>> normalize_name("SMITH, Robert")
        'robert smith'
        >>> normalize_name("Pete Sampras Jr.")
        'pete sampras'
        >>> normalize_name("José Núñez-García")
        'jose nunez garcia'
    """
    if not name:
        return ""

    normalized = _fold_accents(name.lower().strip())

    if "," in normalized:
        head, tail = (part.strip() for part in normalized.split(",", 1))
        tail_tokens = _strip_punctuation(tail).split()
        if tail_tokens and not all(token in SUFFIXES for token in tail_tokens):
            # "smith, robert" -> "robert smith"
            normalized = f"{tail} {head}"
        else:
            # "robert smith, jr." -> "robert smith"
            normalized = head

    tokens = _strip_punctuation(normalized).split()

    if len(tokens) > 1 and tokens[0] in HONORIFICS:
        tokens = tokens[1:]
    if tokens:
        tokens = [tokens[0]] + [token for token in tokens[1:] if token not in SUFFIXES]

    return " ".join(tokens)


def split_name(name: Optional[str]) -> NameParts:
    """Normalize a name and split it into tokens."""
    normalized = normalize_name(name)
    return NameParts(full=normalized, tokens=tuple(normalized.split()))


def _name_roots(token: str) -> set[str]:
    roots = {token}
    for formal, short_forms in NICKNAMES.items():
        if token in short_forms:
            roots.add(formal)
    return roots


def compare_tokens(a: str, b: str) -> float:
    """
    Compare two name tokens and return a weight between 0.0 and 1.0.

    - identical tokens: 1.0
    - an initial against a token with the same first letter ("r" / "robert"): 0.5
    - nickname of the same formal name ("bob" / "robert"): 0.9
    - same Metaphone code ("smyth" / "smith"): 0.8
    - a likely typo (RapidFuzz ratio >= 85): the ratio itself
    """
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    if len(a) == 1 or len(b) == 1:
        return INITIAL_WEIGHT if a[0] == b[0] else 0.0

    if _name_roots(a) & _name_roots(b):
        return NICKNAME_WEIGHT

    if len(a) > 2 and len(b) > 2 and jellyfish.metaphone(a) == jellyfish.metaphone(b):
        return PHONETIC_WEIGHT

    ratio = fuzz.ratio(a, b) / 100.0
    return ratio if ratio >= TYPO_MIN_RATIO else 0.0


def token_overlap(tokens_a: tuple[str, ...], tokens_b: tuple[str, ...]) -> float:
    """
    Weighted Jaccard overlap between two token sequences.

    Each token is paired with its best unused partner on the other side
    (longest tokens first, so full names claim their exact partners before
    initials do). The summed pair weights play the role of the intersection.
    """
    if not tokens_a or not tokens_b:
        return 0.0

    remaining = list(tokens_b)
    matched = 0.0
    for token in sorted(tokens_a, key=len, reverse=True):
        best_index = None
        best_weight = 0.0
        for index, other in enumerate(remaining):
            weight = compare_tokens(token, other)
            if weight > best_weight:
                best_index, best_weight = index, weight
        if best_index is not None:
            matched += best_weight
            remaining.pop(best_index)

    union = len(tokens_a) + len(tokens_b) - matched
    return matched / union if union > 0 else 0.0


def compare_names(a: NameParts, b: NameParts) -> float:
    """
    Compare two normalized names and return a score from 0 to 100.

    - identical normalized names: 100
    - same first and last token, middle names/initials differ: 95
    - otherwise the weighted token overlap, scaled to at most 90

    Examples:
        >>> compare_names(split_name("Robert Smith"), split_name("robert smith"))
        100.0
        >>> compare_names(split_name("Robert J. Smith"), split_name("Robert Smith"))
        95.0
    """
    if not a.full or not b.full:
        return 0.0
    if a.full == b.full:
        return 100.0
    if len(a.tokens) >= 2 and len(b.tokens) >= 2 and a.first == b.first and a.last == b.last:
        return FIRST_LAST_SCORE
    return round(token_overlap(a.tokens, b.tokens) * TOKEN_OVERLAP_SCALE, 2)


# =============================================================================
# Locations
# =============================================================================

STATE_CODES: dict[str, str] = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "florida": "FL", "georgia": "GA", "hawaii": "HI", "idaho": "ID",
    "illinois": "IL", "indiana": "IN", "iowa": "IA", "kansas": "KS",
    "kentucky": "KY", "louisiana": "LA", "maine": "ME", "maryland": "MD",
    "massachusetts": "MA", "michigan": "MI", "minnesota": "MN", "mississippi": "MS",
    "missouri": "MO", "montana": "MT", "nebraska": "NE", "nevada": "NV",
    "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM", "new york": "NY",
    "north carolina": "NC", "north dakota": "ND", "ohio": "OH", "oklahoma": "OK",
    "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI", "south carolina": "SC",
    "south dakota": "SD", "tennessee": "TN", "texas": "TX", "utah": "UT",
    "vermont": "VT", "virginia": "VA", "washington": "WA", "west virginia": "WV",
    "wisconsin": "WI", "wyoming": "WY",
    "district of columbia": "DC", "washington dc": "DC",
    "puerto rico": "PR", "guam": "GU", "us virgin islands": "VI",
    "american samoa": "AS", "northern mariana islands": "MP",
    # Canadian provinces and territories (RaceRoster events)
    "alberta": "AB", "british columbia": "BC", "manitoba": "MB", "new brunswick": "NB",
    "newfoundland and labrador": "NL", "nova scotia": "NS", "ontario": "ON",
    "prince edward island": "PE", "quebec": "QC", "saskatchewan": "SK",
    "yukon": "YT", "northwest territories": "NT", "nunavut": "NU",
    # Common short forms
    "calif": "CA", "fla": "FL", "mass": "MA", "penn": "PA", "tenn": "TN",
    "wash": "WA", "wisc": "WI",
}
KNOWN_STATE_CODES = frozenset(STATE_CODES.values())

CITY_PREFIXES = {"st": "saint", "ste": "sainte", "ft": "fort", "mt": "mount"}
TRAILING_COUNTRIES = {"usa", "us", "united states", "canada", "ca"}


def _lookup_state(value: str) -> Optional[str]:
    """Return the two-letter code for a known state name or code, else None."""
    key = " ".join(re.sub(r"[^a-z\s]", "", _fold_accents(value.lower())).split())
    if not key:
        return None
    if key in STATE_CODES:
        return STATE_CODES[key]
    if key.upper() in KNOWN_STATE_CODES:
        return key.upper()
    return None


def normalize_state(state: Optional[str]) -> Optional[str]:
    """
    Normalize a state to its two-letter form.

    Unknown values pass through unchanged (stripped) so foreign regions
    can still be compared against themselves.

    Examples:
        >>> normalize_state("Texas")
        'TX'
        >>> normalize_state("tx")
        'TX'
        >>> normalize_state("Bavaria")
        'Bavaria'
    """
    if not state or not state.strip():
        return None
    return _lookup_state(state) or state.strip()


def normalize_city(city: Optional[str]) -> Optional[str]:
    """
    Normalize a city for comparison.

    Examples:
        >>> normalize_city("St. Louis")
        'saint louis'
        >>> normalize_city("  FORT   Worth ")
        'fort worth'
    """
    if not city:
        return None
    tokens = _strip_punctuation(_fold_accents(city.lower())).split()
    if not tokens:
        return None
    tokens[0] = CITY_PREFIXES.get(tokens[0], tokens[0])
    return " ".join(tokens)


def parse_location(location: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """
    Split a free-form location into (city, state).

    Handles "City, ST", "City, State, USA", "City ST 78701" and a bare
    state name. Returns normalized values; either side may be None.

    Examples:
        >>> parse_location("Austin, TX")
        ('austin', 'TX')
        >>> parse_location("New York New York")
        ('new york', 'NY')
        >>> parse_location("Ontario")
        (None, 'ON')
    """
    if not location or not location.strip():
        return None, None

    # Drop postal codes ("78701", "78701-1234")
    cleaned = re.sub(r"\b\d{5}(?:-\d{4})?\b", " ", location)
    parts = [part.strip() for part in cleaned.split(",") if part.strip()]
    # "CA" is a country after a state but California after a city
    while (
        len(parts) > 1
        and parts[-1].lower() in TRAILING_COUNTRIES
        and (len(parts) > 2 or _lookup_state(parts[-1]) is None)
    ):
        parts.pop()
    if not parts:
        return None, None

    if len(parts) >= 2:
        return normalize_city(parts[0]), normalize_state(parts[1])

    single = parts[0]
    whole_state = _lookup_state(single)
    if whole_state:
        return None, whole_state

    tokens = single.split()
    # Try a two-word state name first ("new york"), then a single token
    for width in (2, 1):
        if len(tokens) > width:
            state = _lookup_state(" ".join(tokens[-width:]))
            if state:
                return normalize_city(" ".join(tokens[:-width])), state

    return normalize_city(single), None


# =============================================================================
# Gender and age
# =============================================================================

_GENDER_VALUES = {
    "M": {"m", "male", "man", "men", "boy"},
    "F": {"f", "female", "woman", "women", "w", "girl"},
    "NB": {"nb", "x", "nonbinary", "non binary", "non-binary"},
}


def normalize_gender(gender: Optional[str]) -> Optional[str]:
    """Map provider gender values onto M / F / NB, or None if unknown."""
    if not gender:
        return None
    value = gender.strip().lower()
    for code, values in _GENDER_VALUES.items():
        if value in values:
            return code
    return None


def age_on(birth_date: date, reference_date: date) -> int:
    """Whole years between a birth date and a reference date."""
    before_birthday = (reference_date.month, reference_date.day) < (birth_date.month, birth_date.day)
    return reference_date.year - birth_date.year - int(before_birthday)


def parse_age(raw_age: Union[int, float, str, None]) -> Optional[int]:
    """Parse a raw age, returning None for missing or implausible values."""
    if raw_age is None or isinstance(raw_age, bool):
        return None
    try:
        age = int(float(str(raw_age).strip()))
    except ValueError:
        return None
    if age <= 0 or age > 120:
        return None
    return age


def parse_date(raw: Union[date, str, None]) -> Optional[date]:
    """Parse an ISO date (or pass a date through), returning None when unusable."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        return None
    try:
        return date.fromisoformat(raw.strip()[:10])
    except ValueError:
        return None


def estimate_age(
    raw_age: Union[int, float, str, None],
    birth_date: Union[date, str, None],
    reference_date: date,
    tolerance_years: Optional[int] = None,
) -> tuple[Optional[int], int]:
    """
    Estimate a runner's age on the race date.

    A date of birth gives an exact age (tolerance 0). A self-reported age is
    used as-is with an error margin of +/- tolerance_years. No usable data
    gives (None, 0).

    Returns:
        Tuple of (age_estimate, age_tolerance_years)
    """
    if tolerance_years is None:
        tolerance_years = settings.match_age_tolerance_years

    dob = parse_date(birth_date)
    if dob is not None and dob <= reference_date:
        return age_on(dob, reference_date), 0

    age = parse_age(raw_age)
    if age is None:
        return None, 0
    return age, tolerance_years


# =============================================================================
# Normalized identity
# =============================================================================

@dataclass(frozen=True)
class NormalizedIdentity:
    """
    Comparable form of a raw result's identity fields.

    None on any field means "no data" for that attribute.
    """
    raw_name: str
    name: NameParts
    city: Optional[str]
    state: Optional[str]
    age: Optional[int]
    age_tolerance: int
    gender: Optional[str]
    birth_date: Optional[date]
    reference_date: date

    @property
    def has_location(self) -> bool:
        return self.city is not None or self.state is not None

    def __repr__(self) -> str:
        return (
            f"<NormalizedIdentity(name='{self.name.full}', city={self.city!r}, "
            f"state={self.state!r}, age={self.age}±{self.age_tolerance}, gender={self.gender!r})>"
        )


def normalize(
    raw_name: Optional[str],
    raw_location: Optional[str] = None,
    raw_age: Union[int, float, str, None] = None,
    birth_date: Union[date, str, None] = None,
    *,
    gender: Optional[str] = None,
    city: Optional[str] = None,
    state: Optional[str] = None,
    reference_date: Optional[date] = None,
) -> NormalizedIdentity:
    """
    Canonicalize raw identity fields into a NormalizedIdentity.

    Explicit city/state values (some providers send them separately)
    take precedence over whatever is parsed from raw_location.

    Args:
        raw_name: Runner name as imported
        raw_location: Free-form "City, ST" string
        raw_age: Self-reported age
        birth_date: Date of birth (date or ISO string)
        gender: Provider gender value
        city: Separate city field
        state: Separate state field
        reference_date: Race date used to derive age (defaults to today)
    """
    reference = reference_date or date.today()
    parsed_city, parsed_state = parse_location(raw_location)
    age, tolerance = estimate_age(raw_age, birth_date, reference)

    return NormalizedIdentity(
        raw_name=(raw_name or "").strip(),
        name=split_name(raw_name),
        city=normalize_city(city) or parsed_city,
        state=normalize_state(state) or parsed_state,
        age=age,
        age_tolerance=tolerance,
        gender=normalize_gender(gender),
        birth_date=parse_date(birth_date),
        reference_date=reference,
    )
