"""
Runner identity service: resolves imported race results to runners.

This is the entry point for every raw result. For each record it:
- Rejects records that can't be matched at all (no name or race reference)
- Returns the earlier outcome if the (provider, source result id) was
  already ingested, without re-matching
- Normalizes the identity fields, pulls candidates, scores and ranks them
- Applies the decision policy and persists the result of it:

    auto_matched   Result linked to the top candidate, audit review entry
    new_identity   new Runner + Result
    pending_review review entry holding the raw record; the Result is written
                   when a reviewer resolves it (see runners/review.py)

Each record is resolved in its own transaction while holding a lock on its
last-name blocking key, so two imports of the same new person can't both
create a runner.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Literal, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from runmatch.config import settings
from runmatch.db.models import Result, Runner, RunnerAlias, RunnerMatch, to_decimal
from runmatch.errors import MalformedInputError
from runmatch.matching.decision import MatchDecision, MatchPolicy, decide
from runmatch.matching.scoring import SimilarityScorer
from runmatch.matching.search import CandidateSearch
from runmatch.runners.normalize import NameParts, NormalizedIdentity, normalize
from runmatch.runners.snapshot import RawResultRecord, encode_snapshot, normalize_record
from runmatch.tasks.locks import identity_lock

logger = logging.getLogger(__name__)

OutcomeKind = Literal["auto_matched", "pending_review", "new_identity", "rejected"]


@dataclass
class ResolutionOutcome:
    """
    What happened to one raw result.

    - auto_matched:   runner_id is the matched runner, entry_id the audit entry
    - pending_review: entry_id is the review entry
    - new_identity:   runner_id is the runner created for this result
    - rejected:       reason says why the record was refused (nothing stored)

    replayed is True when the outcome was read back from an earlier ingest
    of the same source result; it doesn't take part in equality.
    """
    kind: OutcomeKind
    runner_id: Optional[int] = None
    entry_id: Optional[int] = None
    match_score: float = 0.0
    reason: Optional[str] = None
    replayed: bool = field(default=False, compare=False)

    @classmethod
    def rejected(cls, reason: str) -> "ResolutionOutcome":
        return cls(kind="rejected", reason=reason)

    def __repr__(self) -> str:
        return (
            f"<ResolutionOutcome(kind='{self.kind}', runner_id={self.runner_id}, "
            f"entry_id={self.entry_id}, score={self.match_score:.2f})>"
        )


class RunnerIdentityService:
    """
    Service for resolving raw results to runner identities.

    Usage:
        service = RunnerIdentityService(db_session)

        outcome = service.ingest_raw_result(record)
        if outcome.kind == "pending_review":
            # A reviewer picks it up from the review queue
        elif outcome.kind == "rejected":
            logger.warning(outcome.reason)
    """

    def __init__(
        self,
        db: Session,
        scorer: Optional[SimilarityScorer] = None,
        policy: Optional[MatchPolicy] = None,
        candidate_limit: Optional[int] = None,
    ):
        """
        Initialize the identity service.

        Args:
            db: SQLAlchemy session; the service commits per record
            scorer: Similarity scorer (default thresholds from settings)
            policy: Decision thresholds (default from settings)
            candidate_limit: Maximum candidates per record
        """
        self.db = db
        self.search = CandidateSearch(db, limit=candidate_limit)
        self.scorer = scorer or SimilarityScorer()
        self.policy = policy or MatchPolicy.from_settings()

    # =========================================================================
    # Main Public Methods
    # =========================================================================

    def ingest_raw_result(self, record: RawResultRecord) -> ResolutionOutcome:
        """
        Resolve one raw result, reporting malformed input as an outcome.

        Storage errors propagate; only MalformedInputError is turned into a
        'rejected' outcome.
        """
        try:
            return self.resolve(record)
        except MalformedInputError as exc:
            logger.warning(
                "Rejected result %s from %s: %s",
                exc.source_result_id or "<no id>", record.provider or "<no provider>", exc.reason,
            )
            return ResolutionOutcome.rejected(exc.reason)

    def resolve(self, record: RawResultRecord) -> ResolutionOutcome:
        """
        Resolve one raw result and commit the outcome.

        Returns:
            ResolutionOutcome (never 'rejected')

        Raises:
            MalformedInputError: missing name, race reference or provider
        """
        identity = self._validated_identity(record)
        source_id = record.result_key

        prior = self.prior_outcome(record.provider, source_id)
        if prior is not None:
            logger.debug("Duplicate source result %s:%s, returning prior outcome", record.provider, source_id)
            return prior

        decision = self._decide(identity)

        try:
            with identity_lock(self.db, f"runner-identity:{identity.name.last}"):
                # Another worker may have resolved the same result meanwhile
                prior = self.prior_outcome(record.provider, source_id)
                if prior is not None:
                    self.db.rollback()
                    return prior

                # A runner for this person may have been created meanwhile
                if decision.outcome == "new_identity":
                    decision = self._decide(identity)

                outcome = self._apply(record, source_id, identity, decision)
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            prior = self.prior_outcome(record.provider, source_id)
            if prior is None:
                raise
            logger.debug("Lost insert race on %s:%s, returning prior outcome", record.provider, source_id)
            return prior
        except Exception:
            self.db.rollback()
            raise

        logger.debug(
            "Resolved %s:%s '%s' -> %s (runner=%s, entry=%s, score=%.2f, strategy=%s)",
            record.provider, source_id, identity.name.full, outcome.kind,
            outcome.runner_id, outcome.entry_id, outcome.match_score, decision.strategy,
        )
        return outcome

    def evaluate(self, record: RawResultRecord) -> MatchDecision:
        """
        Dry run: the decision the engine would make, without writing anything.

        Raises:
            MalformedInputError: missing name, race reference or provider
        """
        return self._decide(self._validated_identity(record))

    def prior_outcome(self, provider: str, source_result_id: str) -> Optional[ResolutionOutcome]:
        """
        Outcome of an earlier ingest of the same source result, if any.

        Results that went through review report the review entry, as the
        original ingest did.
        """
        result = self.db.query(Result).filter(
            Result.source_provider == provider,
            Result.source_result_id == source_result_id,
        ).first()
        entry = self.db.query(RunnerMatch).filter(
            RunnerMatch.source_provider == provider,
            RunnerMatch.source_result_id == source_result_id,
        ).first()

        if result is not None and result.resolution == "auto_matched":
            return ResolutionOutcome(
                kind="auto_matched",
                runner_id=result.runner_id,
                entry_id=entry.id if entry else None,
                match_score=float(result.matching_score),
                replayed=True,
            )
        if result is not None and result.resolution == "new_identity":
            return ResolutionOutcome(
                kind="new_identity",
                runner_id=result.runner_id,
                match_score=float(result.matching_score),
                replayed=True,
            )
        if entry is not None:
            return ResolutionOutcome(
                kind="pending_review",
                entry_id=entry.id,
                match_score=float(entry.match_score),
                replayed=True,
            )
        return None

    def register_runner(
        self,
        name: str,
        gender: Optional[str] = None,
        birth_date: Optional[date] = None,
        age: Optional[int] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        as_of: Optional[date] = None,
        source: str = "manual",
    ) -> Runner:
        """
        Create a runner explicitly (e.g. from a registration list).

        Args:
            name: Display name
            age: Age on as_of (defaults to today); ignored when birth_date is set
            source: Recorded on the runner's first alias

        Raises:
            MalformedInputError: name has no usable characters
        """
        identity = normalize(
            name, None, age, birth_date,
            gender=gender, city=city, state=state, reference_date=as_of,
        )
        if not identity.name.tokens:
            raise MalformedInputError("runner name is empty")

        runner = self.create_runner(identity, source)
        self.db.commit()
        logger.info("Registered runner %d '%s'", runner.id, runner.name)
        return runner

    def merge_runners(self, keep_id: int, merge_id: int) -> Runner:
        """
        Merge two runner records that turned out to be the same person.

        Results and aliases move to keep_id. The merged runner is kept with
        merged_into_id set so old references can be followed; it is never
        deleted and no longer shows up in candidate search.

        Raises:
            ValueError: If either runner doesn't exist, they are the same,
                        or merge_id was already merged
        """
        if keep_id == merge_id:
            raise ValueError("Cannot merge a runner into itself")

        keep = self._get_runner(keep_id, for_update=True)
        merged = self._get_runner(merge_id, for_update=True)
        if keep is None:
            raise ValueError(f"Runner {keep_id} not found")
        if merged is None:
            raise ValueError(f"Runner {merge_id} not found")
        if merged.merged_into_id is not None:
            raise ValueError(f"Runner {merge_id} was already merged into {merged.merged_into_id}")
        if keep.merged_into_id is not None:
            raise ValueError(f"Runner {keep_id} was merged into {keep.merged_into_id}")

        moved = self.db.query(Result).filter(Result.runner_id == merge_id).update(
            {"runner_id": keep_id}
        )

        # Move aliases (avoid duplicates)
        existing = {alias.normalized for alias in keep.aliases}
        for alias in list(merged.aliases):
            if alias.normalized not in existing:
                alias.runner = keep
                existing.add(alias.normalized)
        if merged.normalized_name not in existing:
            self._ensure_alias(keep, merged.name, NameParts(
                full=merged.normalized_name, tokens=tuple(merged.normalized_name.split())
            ), "merge")

        # Fill gaps on the surviving record
        for attribute in ("gender", "city", "state", "birth_date"):
            if getattr(keep, attribute) is None and getattr(merged, attribute) is not None:
                setattr(keep, attribute, getattr(merged, attribute))
        if keep.age is None and keep.birth_date is None and merged.age is not None:
            keep.age = merged.age
            keep.age_recorded_on = merged.age_recorded_on

        keep.confirmed_match_count += merged.confirmed_match_count
        merged.merged_into_id = keep_id
        self.db.commit()

        logger.info("Merged runner %d into %d (%d results moved)", merge_id, keep_id, moved)
        return keep

    # =========================================================================
    # Persistence helpers (no commit - caller owns the transaction)
    # =========================================================================

    def create_runner(self, identity: NormalizedIdentity, source: str) -> Runner:
        """Create a runner from a normalized identity, with its name as first alias."""
        display_name = identity.raw_name or identity.name.full
        runner = Runner(
            name=display_name,
            normalized_name=identity.name.full,
            first_name_key=identity.name.first,
            last_name_key=identity.name.last,
            gender=identity.gender,
            birth_date=identity.birth_date,
            age=identity.age if identity.birth_date is None else None,
            age_recorded_on=identity.reference_date if identity.age is not None else None,
            city=identity.city,
            state=identity.state,
            matching_confidence=to_decimal(settings.new_identity_confidence),
            confirmed_match_count=0,
        )
        self.db.add(runner)
        self.db.flush()  # Get the ID without committing

        self._ensure_alias(runner, display_name, identity.name, source)
        return runner

    def link_result(
        self,
        record: RawResultRecord,
        runner_id: int,
        match_score: float,
        resolution: str,
        needs_review: bool = False,
    ) -> Result:
        """Write the Result row for a record once its runner is known."""
        result = Result(
            runner_id=runner_id,
            race_ref=record.race_ref,
            finish_time=record.finish_time,
            overall_place=record.overall_place,
            gender_place=record.gender_place,
            age_group_place=record.age_group_place,
            source_provider=record.provider,
            source_result_id=record.result_key,
            raw_runner_name=record.raw_name,
            raw_location=record.display_location,
            raw_age=record.raw_age,
            matching_score=to_decimal(match_score),
            needs_review=needs_review,
            resolution=resolution,
        )
        self.db.add(result)
        self.db.flush()
        return result

    def absorb_identity(self, runner: Runner, identity: NormalizedIdentity, source: str) -> bool:
        """
        Record what a confirmed match taught us about a runner.

        Adds the name as an alias if it is new and fills attributes the
        runner doesn't have yet. Existing attributes are never overwritten.

        Returns:
            True if a new alias was added
        """
        added = self._ensure_alias(runner, identity.raw_name, identity.name, source)

        if runner.gender is None and identity.gender is not None:
            runner.gender = identity.gender
        if runner.state is None and identity.state is not None:
            runner.state = identity.state
            runner.city = runner.city or identity.city
        elif runner.city is None and identity.city is not None and runner.state == identity.state:
            runner.city = identity.city
        if runner.birth_date is None and identity.birth_date is not None:
            runner.birth_date = identity.birth_date
            runner.age = None
            runner.age_recorded_on = None
        elif runner.birth_date is None and runner.age is None and identity.age is not None:
            runner.age = identity.age
            runner.age_recorded_on = identity.reference_date
        return added

    def follow_merges(self, runner_id: int, for_update: bool = False) -> Optional[Runner]:
        """
        The runner a (possibly merged) runner id now refers to.

        With for_update the row is re-read with SELECT ... FOR UPDATE, so
        confidence and confirmed_match_count are updated from the committed
        values even when two transactions hold different identity locks.
        """
        runner = self._get_runner(runner_id, for_update)
        seen = set()
        while runner is not None and runner.merged_into_id is not None and runner.id not in seen:
            seen.add(runner.id)
            runner = self._get_runner(runner.merged_into_id, for_update)
        return runner

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _get_runner(self, runner_id: int, for_update: bool) -> Optional[Runner]:
        if not for_update:
            return self.db.get(Runner, runner_id)
        # populate_existing: don't trust a copy loaded before the row lock
        return self.db.get(Runner, runner_id, with_for_update=True, populate_existing=True)

    def _validated_identity(self, record: RawResultRecord) -> NormalizedIdentity:
        if not record.provider or not record.provider.strip():
            raise MalformedInputError("missing source provider", record.source_result_id)
        if not record.race_ref or not record.race_ref.strip():
            raise MalformedInputError("missing race reference", record.source_result_id)
        if not record.raw_name or not record.raw_name.strip():
            raise MalformedInputError("missing runner name", record.source_result_id)

        identity = normalize_record(record)
        if not identity.name.tokens:
            raise MalformedInputError(
                f"runner name '{record.raw_name}' has no usable characters",
                record.source_result_id,
            )
        return identity

    def _decide(self, identity: NormalizedIdentity) -> MatchDecision:
        found = self.search.find_candidates(identity)
        ranked = self.scorer.rank(identity, found.candidates)
        return decide(ranked, self.policy, found.strategy)

    def _apply(
        self,
        record: RawResultRecord,
        source_id: str,
        identity: NormalizedIdentity,
        decision: MatchDecision,
    ) -> ResolutionOutcome:
        if decision.outcome == "auto_matched":
            runner = self.follow_merges(decision.top.runner_id, for_update=True)
            self.absorb_identity(runner, identity, record.provider)
            result = self.link_result(record, runner.id, decision.top_score, "auto_matched")
            entry = self._write_entry(record, source_id, decision, status="auto_matched")
            entry.resolved_runner_id = runner.id
            entry.result_id = result.id
            self.db.flush()
            return ResolutionOutcome(
                kind="auto_matched",
                runner_id=runner.id,
                entry_id=entry.id,
                match_score=decision.top_score,
            )

        if decision.outcome == "pending_review":
            entry = self._write_entry(record, source_id, decision, status="pending")
            self.db.flush()
            return ResolutionOutcome(
                kind="pending_review",
                entry_id=entry.id,
                match_score=decision.top_score,
            )

        runner = self.create_runner(identity, record.provider)
        self.link_result(record, runner.id, decision.top_score, "new_identity")
        return ResolutionOutcome(
            kind="new_identity",
            runner_id=runner.id,
            match_score=decision.top_score,
        )

    def _write_entry(
        self,
        record: RawResultRecord,
        source_id: str,
        decision: MatchDecision,
        status: str,
    ) -> RunnerMatch:
        schema, payload = encode_snapshot(record)
        entry = RunnerMatch(
            candidate_runner_id=decision.top.runner_id if decision.top else None,
            raw_schema=schema,
            raw_payload=payload,
            match_score=to_decimal(decision.top_score),
            match_reasons=decision.reasons,
            search_strategy=decision.strategy,
            status=status,
            source_provider=record.provider,
            source_result_id=source_id,
            race_ref=record.race_ref,
            created_at=datetime.utcnow(),
        )
        self.db.add(entry)
        return entry

    def _ensure_alias(self, runner: Runner, display_name: str, parts: NameParts, source: str) -> bool:
        """
        Ensure an alias exists for a runner.

        Creates the alias if it doesn't exist, does nothing if it does.
        Don't commit here - let caller handle transaction.
        """
        if not parts.tokens:
            return False
        if any(alias.normalized == parts.full for alias in runner.aliases):
            return False

        runner.aliases.append(
            RunnerAlias(
                name=display_name or parts.full,
                normalized=parts.full,
                first_name_key=parts.first,
                last_name_key=parts.last,
                source=source,
            )
        )
        return True
