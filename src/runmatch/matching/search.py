"""
Candidate search: narrow the runner table down to plausible matches.

Scoring every raw result against every runner doesn't scale, so candidates
are pulled by blocking key instead:

1. Blocked pass - runners (or aliases) sharing the normalized last-name
   token. Runners in the same state come first and are always returned in
   full; the rest fill up to the candidate limit.
2. Loose pass - only when the blocked pass finds nothing: runners sharing
   the first-name token in the same state. This catches people whose last
   name changed, at the cost of more noise, so decisions made from it are
   tagged 'loose' on the review entry.

Known limitation: a runner whose last name changed AND who moved state is
only found if an alias carries the new last name.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from runmatch.config import settings
from runmatch.db.models import Result, Runner, RunnerAlias
from runmatch.runners.normalize import NameParts, NormalizedIdentity, age_on, split_name

logger = logging.getLogger(__name__)

SearchStrategy = Literal["blocked", "loose", "none"]


@dataclass(frozen=True)
class CandidateProfile:
    """
    Read-only snapshot of a runner, as seen from one race date.

    Scoring runs on these rather than on ORM objects so it stays pure and
    can run in parallel across records.
    """
    runner_id: int
    name: str
    canonical_name: NameParts
    alternate_names: tuple[NameParts, ...]
    city: Optional[str]
    state: Optional[str]
    age: Optional[int]
    age_tolerance: int
    gender: Optional[str]
    matching_confidence: float
    result_count: int

    def __repr__(self) -> str:
        return f"<CandidateProfile(runner_id={self.runner_id}, name='{self.name}')>"


def runner_age_on(
    runner: Runner,
    reference_date: date,
    tolerance_years: Optional[int] = None,
) -> tuple[Optional[int], int]:
    """
    A runner's age on a given date, with its tolerance.

    Birth dates give an exact age. A stored age is carried forward (or
    back) from the date it was recorded.
    """
    if tolerance_years is None:
        tolerance_years = settings.match_age_tolerance_years

    if runner.birth_date is not None:
        return age_on(runner.birth_date, reference_date), 0
    if runner.age is None:
        return None, 0
    if runner.age_recorded_on is None:
        return runner.age, tolerance_years

    if reference_date >= runner.age_recorded_on:
        elapsed = age_on(runner.age_recorded_on, reference_date)
    else:
        elapsed = -age_on(reference_date, runner.age_recorded_on)
    return runner.age + elapsed, tolerance_years


def build_profile(runner: Runner, reference_date: date, result_count: int = 0) -> CandidateProfile:
    """Build a CandidateProfile from a runner and its loaded aliases."""
    age, tolerance = runner_age_on(runner, reference_date)
    canonical = split_name(runner.normalized_name)
    alternates = tuple(
        NameParts(full=alias.normalized, tokens=tuple(alias.normalized.split()))
        for alias in runner.aliases
        if alias.normalized != canonical.full
    )
    return CandidateProfile(
        runner_id=runner.id,
        name=runner.name,
        canonical_name=canonical,
        alternate_names=alternates,
        city=runner.city,
        state=runner.state,
        age=age,
        age_tolerance=tolerance,
        gender=runner.gender,
        matching_confidence=float(runner.matching_confidence),
        result_count=result_count,
    )


@dataclass(frozen=True)
class CandidateSearchResult:
    """Candidates found for one raw record and the pass that found them."""
    candidates: tuple[CandidateProfile, ...]
    strategy: SearchStrategy

    def __len__(self) -> int:
        return len(self.candidates)


class CandidateSearch:
    """
    Retrieves a bounded set of candidate runners for a normalized identity.

    Usage:
        search = CandidateSearch(db_session)
        found = search.find_candidates(identity)
        for profile in found.candidates:
            ...
    """

    def __init__(self, db: Session, limit: Optional[int] = None):
        """
        Args:
            db: SQLAlchemy session (only read from)
            limit: Maximum candidates per record (default from settings)
        """
        self.db = db
        self.limit = limit if limit is not None else settings.match_candidate_limit

    def find_candidates(self, identity: NormalizedIdentity) -> CandidateSearchResult:
        """
        Find candidate runners for a normalized identity.

        Returns:
            CandidateSearchResult with strategy 'blocked', 'loose', or 'none'
            (no candidates at all)
        """
        last_name = identity.name.last
        if last_name:
            runners = self._blocked_pass(last_name, identity.state)
            if runners:
                return self._to_result(runners, identity.reference_date, "blocked")

        first_name = identity.name.first
        if first_name and identity.state:
            runners = self._loose_pass(first_name, identity.state)
            if runners:
                logger.info(
                    "Loose search used for '%s' (%s): %d candidates by first name + state",
                    identity.name.full, identity.state, len(runners),
                )
                return self._to_result(runners, identity.reference_date, "loose")

        return CandidateSearchResult(candidates=(), strategy="none")

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _blocked_pass(self, last_name: str, state: Optional[str]) -> list[Runner]:
        """Runners sharing the last-name token, same state first."""
        alias_runner_ids = select(RunnerAlias.runner_id).where(
            RunnerAlias.last_name_key == last_name
        )
        query = self.db.query(Runner).options(selectinload(Runner.aliases)).filter(
            Runner.merged_into_id.is_(None),
            or_(Runner.last_name_key == last_name, Runner.id.in_(alias_runner_ids)),
        )

        if not state:
            return query.order_by(Runner.id).limit(self.limit).all()

        # Same last name + same state is never cut by the limit
        same_state = query.filter(Runner.state == state).order_by(Runner.id).all()
        if len(same_state) > self.limit:
            logger.warning(
                "Blocked search for '%s' (%s) returned %d same-state runners, above limit %d",
                last_name, state, len(same_state), self.limit,
            )

        remaining = self.limit - len(same_state)
        if remaining <= 0:
            return same_state

        others = (
            query.filter(or_(Runner.state.is_(None), Runner.state != state))
            .order_by(Runner.id)
            .limit(remaining)
            .all()
        )
        return same_state + others

    def _loose_pass(self, first_name: str, state: str) -> list[Runner]:
        """Runners sharing the first-name token in the same state."""
        alias_runner_ids = select(RunnerAlias.runner_id).where(
            RunnerAlias.first_name_key == first_name
        )
        return (
            self.db.query(Runner)
            .options(selectinload(Runner.aliases))
            .filter(
                Runner.merged_into_id.is_(None),
                Runner.state == state,
                or_(Runner.first_name_key == first_name, Runner.id.in_(alias_runner_ids)),
            )
            .order_by(Runner.id)
            .limit(self.limit)
            .all()
        )

    def _result_counts(self, runner_ids: list[int]) -> dict[int, int]:
        rows = (
            self.db.query(Result.runner_id, func.count(Result.id))
            .filter(Result.runner_id.in_(runner_ids))
            .group_by(Result.runner_id)
            .all()
        )
        return {runner_id: count for runner_id, count in rows}

    def _to_result(
        self,
        runners: list[Runner],
        reference_date: date,
        strategy: SearchStrategy,
    ) -> CandidateSearchResult:
        counts = self._result_counts([runner.id for runner in runners])
        profiles = tuple(
            build_profile(runner, reference_date, counts.get(runner.id, 0))
            for runner in runners
        )
        return CandidateSearchResult(candidates=profiles, strategy=strategy)
