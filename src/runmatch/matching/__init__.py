"""
Matching engine: candidate search, similarity scoring and the decision policy.

    search.CandidateSearch    -> candidate profiles for an identity
    scoring.SimilarityScorer  -> scored and ranked MatchCandidates
    decision.decide           -> auto_matched / pending_review / new_identity
"""

from runmatch.matching.decision import MatchDecision, MatchPolicy, decide, updated_confidence
from runmatch.matching.scoring import MatchCandidate, SimilarityScorer
from runmatch.matching.search import CandidateProfile, CandidateSearch

__all__ = [
    "CandidateSearch",
    "CandidateProfile",
    "SimilarityScorer",
    "MatchCandidate",
    "MatchPolicy",
    "MatchDecision",
    "decide",
    "updated_confidence",
]
