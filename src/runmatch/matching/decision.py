"""
Match decision policy.

Takes the ranked candidates for one raw record and decides what happens:

- auto_matched:   top score >= auto-accept threshold and no other candidate
                  within the tie band of it
- pending_review: top score in [review threshold, auto-accept), or several
                  candidates above the review threshold within the tie band
- new_identity:   no candidate reaches the review threshold (or none found)

Also holds the matching-confidence update used when a reviewer confirms a
match. Both are pure functions; persistence is the identity service's job.
"""

from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from runmatch.config import settings
from runmatch.matching.scoring import MatchCandidate
from runmatch.matching.search import SearchStrategy

DecisionOutcome = Literal["auto_matched", "pending_review", "new_identity"]

REASON_AMBIGUOUS = "ambiguous_match"
REASON_LOOSE_SEARCH = "loose_search"


@dataclass(frozen=True)
class MatchPolicy:
    """Acceptance thresholds, all on the 0-100 score scale."""
    auto_accept: float
    review_threshold: float
    tie_band: float

    @classmethod
    def from_settings(cls) -> "MatchPolicy":
        return cls(
            auto_accept=settings.match_auto_accept_threshold,
            review_threshold=settings.match_review_threshold,
            tie_band=settings.match_tie_band,
        )


@dataclass(frozen=True)
class MatchDecision:
    """Outcome of the policy for one raw record."""
    outcome: DecisionOutcome
    candidates: tuple[MatchCandidate, ...]
    strategy: SearchStrategy
    ambiguous: bool = False

    @property
    def top(self) -> Optional[MatchCandidate]:
        return self.candidates[0] if self.candidates else None

    @property
    def top_score(self) -> float:
        return self.top.score if self.top else 0.0

    @property
    def reasons(self) -> list[str]:
        """Top candidate's reasons plus decision markers, sorted for storage."""
        reasons = set(self.top.reasons) if self.top else set()
        if self.ambiguous:
            reasons.add(REASON_AMBIGUOUS)
        if self.strategy == "loose":
            reasons.add(REASON_LOOSE_SEARCH)
        return sorted(reasons)

    def __repr__(self) -> str:
        top = self.top.runner_id if self.top else None
        return f"<MatchDecision(outcome='{self.outcome}', top={top}, score={self.top_score:.2f})>"


def decide(
    ranked: Sequence[MatchCandidate],
    policy: Optional[MatchPolicy] = None,
    strategy: SearchStrategy = "blocked",
) -> MatchDecision:
    """
    Apply the acceptance policy to candidates ranked best first.

    Args:
        ranked: Candidates sorted by scoring.ranking_key
        policy: Thresholds (default from settings)
        strategy: Search pass that produced the candidates
    """
    policy = policy or MatchPolicy.from_settings()
    candidates = tuple(ranked)

    if not candidates or candidates[0].score < policy.review_threshold:
        return MatchDecision(outcome="new_identity", candidates=candidates, strategy=strategy)

    top = candidates[0]
    ambiguous = (
        len(candidates) > 1
        and candidates[1].score >= policy.review_threshold
        and top.score - candidates[1].score <= policy.tie_band
    )

    if top.score >= policy.auto_accept and not ambiguous:
        outcome: DecisionOutcome = "auto_matched"
    else:
        outcome = "pending_review"

    return MatchDecision(
        outcome=outcome,
        candidates=candidates,
        strategy=strategy,
        ambiguous=ambiguous,
    )


def updated_confidence(
    previous: float,
    confirmed_matches: int,
    match_score: float,
    floor: Optional[float] = None,
    window: Optional[int] = None,
) -> float:
    """
    Blend a newly confirmed match into a runner's matching confidence.

    Bounded moving average: the previous value stands in for the last
    min(confirmed_matches + 1, window - 1) observations and match_score is
    the new one. The result is clamped to [floor, 100]; the floor applies
    because the runner now has at least one confirmed match.

    Args:
        previous: Current matching confidence (0-100)
        confirmed_matches: Confirmed matches before this one
        match_score: Score of the match being confirmed (0-100)
        floor: Lower bound (default settings.confidence_floor)
        window: Averaging window (default settings.confidence_window)

    Examples:
        >>> updated_confidence(70.0, 0, 60.0, floor=50.0, window=10)
        65.0
        >>> updated_confidence(70.0, 0, 10.0, floor=50.0, window=10)
        50.0
    """
    floor = settings.confidence_floor if floor is None else floor
    window = settings.confidence_window if window is None else window

    prior_weight = max(1, min(confirmed_matches + 1, window - 1))
    blended = (previous * prior_weight + match_score) / (prior_weight + 1)
    return round(min(100.0, max(floor, blended)), 2)
