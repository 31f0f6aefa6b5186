"""
Similarity scoring between a raw result's identity and a candidate runner.

Each attribute is scored independently on a 0-100 scale and combined as a
weighted sum (weights add up to 1, so the total is also 0-100):

    name        45%   exact / alternate name = 100, first+last = 95,
                      otherwise weighted token overlap scaled to 90
    location    20%   city+state = 100, state only = 50, different state = 0
    age         20%   within tolerance = 100, linear down to 0 at max diff
    gender      10%   same = 100, different = 0
    history      5%   the runner's stored matching confidence

Missing data on either side scores a neutral 50 for that attribute, so a
record without an age is neither helped nor hurt by it.

Everything here is pure computation over already-loaded profiles.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from runmatch.config import settings
from runmatch.matching.search import CandidateProfile
from runmatch.runners.normalize import NormalizedIdentity, compare_names

ATTRIBUTE_WEIGHTS: dict[str, float] = {
    "name": 0.45,
    "location": 0.20,
    "age": 0.20,
    "gender": 0.10,
    "history": 0.05,
}

NEUTRAL_SCORE = 50.0
CITY_ONLY_SCORE = 75.0
CITY_MISMATCH_NO_STATE_SCORE = 25.0

# Reason codes shown to reviewers
REASON_EXACT_NAME = "exact_name"
REASON_ALTERNATE_NAME = "alternate_name"
REASON_SIMILAR_NAME = "similar_name"
REASON_CITY_MATCH = "city_match"
REASON_STATE_MATCH = "state_match"
REASON_EXACT_AGE = "exact_age"
REASON_AGE_MATCH = "age_match"
REASON_GENDER_MATCH = "gender_match"
REASON_TRUSTED_HISTORY = "trusted_history"


@dataclass(frozen=True)
class AttributeScores:
    """Per-attribute scores (each 0-100) for one candidate."""
    name: float
    location: float
    age: float
    gender: float
    history: float

    def weighted_total(self) -> float:
        total = sum(
            getattr(self, attribute) * weight
            for attribute, weight in ATTRIBUTE_WEIGHTS.items()
        )
        return round(min(100.0, max(0.0, total)), 2)


@dataclass(frozen=True)
class MatchCandidate:
    """
    A candidate runner paired with its match score and reasons.

    Ephemeral: built per raw record and discarded after the decision,
    except for the top candidate's score and reasons on a review entry.
    """
    profile: CandidateProfile
    score: float
    reasons: frozenset[str]
    attributes: AttributeScores

    @property
    def runner_id(self) -> int:
        return self.profile.runner_id

    def __repr__(self) -> str:
        return f"<MatchCandidate(runner_id={self.runner_id}, score={self.score:.2f}, reasons={sorted(self.reasons)})>"


def ranking_key(candidate: MatchCandidate) -> tuple[float, float, int, int]:
    """
    Sort key for candidates, best first.

    Ties on score are broken by higher matching confidence, then more
    results on file, then the lowest runner id.
    """
    return (
        -candidate.score,
        -candidate.profile.matching_confidence,
        -candidate.profile.result_count,
        candidate.runner_id,
    )


class SimilarityScorer:
    """
    Scores normalized identities against candidate profiles.

    Usage:
        scorer = SimilarityScorer()
        total, reasons = scorer.score(identity, profile)
        ranked = scorer.rank(identity, search_result.candidates)
    """

    def __init__(
        self,
        age_max_diff: Optional[int] = None,
        strong_threshold: Optional[float] = None,
    ):
        """
        Args:
            age_max_diff: Age difference at which the age score reaches 0
            strong_threshold: Attribute score at which a reason is recorded
        """
        self.age_max_diff = age_max_diff if age_max_diff is not None else settings.match_age_max_diff
        self.strong_threshold = (
            strong_threshold if strong_threshold is not None else settings.match_strong_threshold
        )

    # =========================================================================
    # Main Public Methods
    # =========================================================================

    def score(
        self, identity: NormalizedIdentity, profile: CandidateProfile
    ) -> tuple[float, frozenset[str]]:
        """Total score (0-100) and reasons for one candidate."""
        candidate = self.score_candidate(identity, profile)
        return candidate.score, candidate.reasons

    def score_candidate(
        self, identity: NormalizedIdentity, profile: CandidateProfile
    ) -> MatchCandidate:
        """Score one candidate and keep the per-attribute breakdown."""
        name, name_reasons = self.name_score(identity, profile)
        location, location_reasons = self.location_score(identity, profile)
        age, age_reasons = self.age_score(identity, profile)
        gender, gender_reasons = self.gender_score(identity, profile)
        history, history_reasons = self.history_score(profile)

        attributes = AttributeScores(
            name=name,
            location=location,
            age=age,
            gender=gender,
            history=history,
        )
        reasons = name_reasons | location_reasons | age_reasons | gender_reasons | history_reasons
        return MatchCandidate(
            profile=profile,
            score=attributes.weighted_total(),
            reasons=frozenset(reasons),
            attributes=attributes,
        )

    def rank(
        self, identity: NormalizedIdentity, profiles: Iterable[CandidateProfile]
    ) -> list[MatchCandidate]:
        """Score all candidates and sort them best first (see ranking_key)."""
        candidates = [self.score_candidate(identity, profile) for profile in profiles]
        candidates.sort(key=ranking_key)
        return candidates

    # =========================================================================
    # Attribute Scores
    # =========================================================================

    def name_score(
        self, identity: NormalizedIdentity, profile: CandidateProfile
    ) -> tuple[float, set[str]]:
        """
        Best name score against the canonical name and every alternate name.

        Adding an alternate name can only keep or raise this score.
        """
        best = compare_names(identity.name, profile.canonical_name)
        via_alternate = False
        for alternate in profile.alternate_names:
            score = compare_names(identity.name, alternate)
            if score > best:
                best, via_alternate = score, True

        reasons = set()
        if best >= 100.0:
            reasons.add(REASON_ALTERNATE_NAME if via_alternate else REASON_EXACT_NAME)
        elif best >= self.strong_threshold:
            reasons.add(REASON_SIMILAR_NAME)
        return best, reasons

    def location_score(
        self, identity: NormalizedIdentity, profile: CandidateProfile
    ) -> tuple[float, set[str]]:
        if not identity.has_location or (profile.city is None and profile.state is None):
            return NEUTRAL_SCORE, set()

        same_city = (
            identity.city is not None
            and profile.city is not None
            and identity.city == profile.city
        )

        if identity.state and profile.state:
            if identity.state != profile.state:
                return 0.0, set()
            if same_city:
                return 100.0, {REASON_CITY_MATCH, REASON_STATE_MATCH}
            return 50.0, {REASON_STATE_MATCH}

        # State unknown on one side: fall back to the city alone
        if identity.city and profile.city:
            if same_city:
                return CITY_ONLY_SCORE, {REASON_CITY_MATCH}
            return CITY_MISMATCH_NO_STATE_SCORE, set()
        return NEUTRAL_SCORE, set()

    def age_score(
        self, identity: NormalizedIdentity, profile: CandidateProfile
    ) -> tuple[float, set[str]]:
        if identity.age is None or profile.age is None:
            return NEUTRAL_SCORE, set()

        diff = abs(identity.age - profile.age)
        tolerance = max(identity.age_tolerance, profile.age_tolerance)

        if diff <= tolerance:
            score = 100.0
        elif diff >= self.age_max_diff:
            score = 0.0
        else:
            score = round(100.0 * (self.age_max_diff - diff) / (self.age_max_diff - tolerance), 2)

        reasons = set()
        if diff == 0:
            reasons.add(REASON_EXACT_AGE)
        elif score >= self.strong_threshold:
            reasons.add(REASON_AGE_MATCH)
        return score, reasons

    def gender_score(
        self, identity: NormalizedIdentity, profile: CandidateProfile
    ) -> tuple[float, set[str]]:
        if identity.gender is None or profile.gender is None:
            return NEUTRAL_SCORE, set()
        if identity.gender == profile.gender:
            return 100.0, {REASON_GENDER_MATCH}
        return 0.0, set()

    def history_score(self, profile: CandidateProfile) -> tuple[float, set[str]]:
        score = min(100.0, max(0.0, profile.matching_confidence))
        if score >= self.strong_threshold:
            return score, {REASON_TRUSTED_HISTORY}
        return score, set()
