"""
Review queue for matches the engine wasn't sure about.

Entries are created by RunnerIdentityService with status 'pending'. A
reviewer then either:
- approves: the result is linked to the proposed runner (or one the reviewer
  picked), the raw name becomes an alias and the runner's matching
  confidence absorbs the confirmed match
- rejects: the result is linked to a brand new runner built from the raw
  record, so a rejection never drops a result

Status only moves forward. Two reviewers resolving the same entry race on a
conditional UPDATE ... WHERE status = 'pending'; the loser gets a
ReviewConflictError.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from runmatch.db.models import Runner, RunnerMatch, to_decimal
from runmatch.errors import ReviewConflictError, ReviewEntryNotFoundError, SnapshotDecodeError
from runmatch.matching.decision import updated_confidence
from runmatch.matching.scoring import MatchCandidate
from runmatch.matching.search import build_profile
from runmatch.runners.identity import RunnerIdentityService
from runmatch.runners.normalize import NormalizedIdentity
from runmatch.runners.snapshot import OpaqueSnapshot, RawResultRecord, Snapshot, decode_snapshot, normalize_record
from runmatch.tasks.locks import identity_lock

logger = logging.getLogger(__name__)


class ReviewQueueManager:
    """
    Lists and resolves pending review entries.

    Usage:
        queue = ReviewQueueManager(db_session)

        for entry in queue.list_pending(provider="runsignup"):
            print(entry.id, entry.match_score, entry.match_reasons)

        queue.approve(entry.id, reviewer_id="alice")
        queue.reject(other.id, reviewer_id="alice")
    """

    def __init__(self, db: Session, identity_service: Optional[RunnerIdentityService] = None):
        """
        Args:
            db: SQLAlchemy session; approve/reject commit
            identity_service: Used to create runners, aliases and results
        """
        self.db = db
        self.identities = identity_service or RunnerIdentityService(db)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_pending(
        self,
        provider: Optional[str] = None,
        race_ref: Optional[str] = None,
        min_score: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[RunnerMatch]:
        """Pending entries, oldest first."""
        query = self.db.query(RunnerMatch).filter(RunnerMatch.status == "pending")
        if provider:
            query = query.filter(RunnerMatch.source_provider == provider)
        if race_ref:
            query = query.filter(RunnerMatch.race_ref == race_ref)
        if min_score is not None:
            query = query.filter(RunnerMatch.match_score >= to_decimal(min_score))

        query = query.order_by(RunnerMatch.created_at, RunnerMatch.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_entry(self, entry_id: int) -> RunnerMatch:
        entry = self.db.get(RunnerMatch, entry_id)
        if entry is None:
            raise ReviewEntryNotFoundError(entry_id)
        return entry

    def raw_record(self, entry_id: int) -> Snapshot:
        """The entry's stored raw record (an OpaqueSnapshot if its schema is unknown)."""
        entry = self.get_entry(entry_id)
        return decode_snapshot(entry.raw_schema, entry.raw_payload)

    def candidates(self, entry_id: int) -> list[MatchCandidate]:
        """
        Re-score the entry's raw record against the current runner table.

        Only the top candidate is stored on the entry; the alternatives are
        recomputed here when a reviewer asks for them.
        """
        record = self._record(self.get_entry(entry_id))
        return list(self.identities.evaluate(record).candidates)

    # =========================================================================
    # Resolution
    # =========================================================================

    def approve(self, entry_id: int, reviewer_id: str, runner_id: Optional[int] = None) -> RunnerMatch:
        """
        Confirm a pending match and write its Result.

        Args:
            entry_id: Review entry to approve
            reviewer_id: Who approved it (stored on the entry)
            runner_id: Link to this runner instead of the proposed candidate

        Raises:
            ReviewEntryNotFoundError: no such entry
            ReviewConflictError: entry already resolved
            SnapshotDecodeError: raw record can't be decoded
            ValueError: runner_id doesn't exist
        """
        entry = self.get_entry(entry_id)
        record = self._record(entry)
        identity = normalize_record(record)
        target_id = runner_id if runner_id is not None else entry.candidate_runner_id

        try:
            with identity_lock(self.db, f"runner-identity:{identity.name.last}"):
                self._claim(entry_id, "approved", reviewer_id)
                self.db.refresh(entry)

                if target_id is None:
                    # Entry proposed a new identity and the reviewer agreed
                    runner = self.identities.create_runner(identity, record.provider)
                    score = float(entry.match_score)
                else:
                    runner = self.identities.follow_merges(target_id, for_update=True)
                    if runner is None:
                        raise ValueError(f"Runner {target_id} not found")
                    score = self._confirmed_score(entry, runner, identity)
                    self._confirm_match(runner, identity, score, record.provider)

                result = self.identities.link_result(record, runner.id, score, "approved", needs_review=True)
                entry.resolved_runner_id = runner.id
                entry.result_id = result.id
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Review entry %d approved by %s: %s:%s -> runner %d",
            entry_id, reviewer_id, entry.source_provider, entry.source_result_id, entry.resolved_runner_id,
        )
        return entry

    def reject(self, entry_id: int, reviewer_id: str) -> RunnerMatch:
        """
        Refuse a pending match; the result goes to a new runner instead.

        Raises:
            ReviewEntryNotFoundError: no such entry
            ReviewConflictError: entry already resolved
            SnapshotDecodeError: raw record can't be decoded
        """
        entry = self.get_entry(entry_id)
        record = self._record(entry)
        identity = normalize_record(record)

        try:
            with identity_lock(self.db, f"runner-identity:{identity.name.last}"):
                self._claim(entry_id, "rejected", reviewer_id)
                self.db.refresh(entry)

                runner = self.identities.create_runner(identity, record.provider)
                result = self.identities.link_result(
                    record, runner.id, float(entry.match_score), "rejected", needs_review=True
                )
                entry.resolved_runner_id = runner.id
                entry.result_id = result.id
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "Review entry %d rejected by %s: %s:%s -> new runner %d",
            entry_id, reviewer_id, entry.source_provider, entry.source_result_id, entry.resolved_runner_id,
        )
        return entry

    def resolve(
        self,
        entry_id: int,
        decision: str,
        reviewer_id: str,
        runner_id: Optional[int] = None,
    ) -> RunnerMatch:
        """Dispatch an 'approve' or 'reject' decision."""
        if decision == "approve":
            return self.approve(entry_id, reviewer_id, runner_id=runner_id)
        if decision == "reject":
            return self.reject(entry_id, reviewer_id)
        raise ValueError(f"Unknown decision: {decision}")

    # =========================================================================
    # Private Helper Methods
    # =========================================================================

    def _record(self, entry: RunnerMatch) -> RawResultRecord:
        snapshot = decode_snapshot(entry.raw_schema, entry.raw_payload)
        if isinstance(snapshot, OpaqueSnapshot):
            raise SnapshotDecodeError(
                f"Review entry {entry.id} holds an undecodable '{snapshot.schema}' payload"
            )
        return snapshot

    def _claim(self, entry_id: int, status: str, reviewer_id: str) -> None:
        """Move the entry out of 'pending', or fail if someone else already did."""
        claimed = (
            self.db.query(RunnerMatch)
            .filter(RunnerMatch.id == entry_id, RunnerMatch.status == "pending")
            .update(
                {
                    "status": status,
                    "reviewed_by": reviewer_id,
                    "reviewed_at": datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        if claimed == 1:
            return

        current = self.db.query(RunnerMatch.status).filter(RunnerMatch.id == entry_id).scalar()
        if current is None:
            raise ReviewEntryNotFoundError(entry_id)
        raise ReviewConflictError(entry_id, current)

    def _confirmed_score(self, entry: RunnerMatch, runner: Runner, identity: NormalizedIdentity) -> float:
        """The stored score for the proposed runner, a fresh one for any other."""
        if runner.id == entry.candidate_runner_id:
            return float(entry.match_score)
        profile = build_profile(runner, identity.reference_date)
        score, _ = self.identities.scorer.score(identity, profile)
        return score

    def _confirm_match(self, runner: Runner, identity: NormalizedIdentity, score: float, source: str) -> None:
        self.identities.absorb_identity(runner, identity, source)
        runner.matching_confidence = to_decimal(
            updated_confidence(
                float(runner.matching_confidence),
                runner.confirmed_match_count,
                score,
            )
        )
        runner.confirmed_match_count += 1
