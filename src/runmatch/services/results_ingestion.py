"""
Results ingestion service: imports a batch of raw results.

Each record is resolved by RunnerIdentityService in its own session and
transaction, so a failure (or a cancellation) never leaves a half-built
runner behind: a record is either fully resolved or untouched.

Records are spread over a small thread pool. Two records for the same
person are serialized by the identity lock on their last-name key, so the
pool can't create duplicate runners.

Usage:
    from runmatch.services.results_ingestion import ingest_batch

    records = map_provider_results("runsignup", rows, race_ref="rsu-1234")
    stats = ingest_batch(records)
    print(stats.summary())
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session, sessionmaker

from runmatch.config import settings
from runmatch.runners.identity import ResolutionOutcome, RunnerIdentityService
from runmatch.runners.snapshot import RawResultRecord

logger = logging.getLogger(__name__)

OutcomeCallback = Callable[[RawResultRecord, ResolutionOutcome], None]


@dataclass
class ImportStats:
    """Statistics from a batch import."""
    total: int = 0
    auto_matched: int = 0
    pending_review: int = 0
    new_identities: int = 0
    rejected: int = 0
    duplicates: int = 0
    cancelled: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return (
            self.auto_matched + self.pending_review + self.new_identities
            + self.rejected + self.duplicates + len(self.errors)
        )

    def record(self, outcome: ResolutionOutcome) -> None:
        """Count one outcome."""
        if outcome.replayed:
            self.duplicates += 1
        elif outcome.kind == "auto_matched":
            self.auto_matched += 1
        elif outcome.kind == "pending_review":
            self.pending_review += 1
        elif outcome.kind == "new_identity":
            self.new_identities += 1
        else:
            self.rejected += 1

    def summary(self) -> str:
        """Return a human-readable summary of the import."""
        lines = [
            "Results import complete:",
            f"  Total records:            {self.total}",
            f"  Auto-matched:             {self.auto_matched}",
            f"  Queued for review:        {self.pending_review}",
            f"  New runners:              {self.new_identities}",
            f"  Rejected (malformed):     {self.rejected}",
            f"  Skipped (already seen):   {self.duplicates}",
        ]
        if self.cancelled:
            lines.append(f"  Cancelled before start:   {self.cancelled}")
        if self.errors:
            lines.append(f"  Errors: {len(self.errors)}")
            for err in self.errors[:5]:
                lines.append(f"    - {err}")
            if len(self.errors) > 5:
                lines.append(f"    ... and {len(self.errors) - 5} more")
        return "\n".join(lines)


def ingest_single_record(session: Session, record: RawResultRecord) -> ResolutionOutcome:
    """Resolve one record with a fresh identity service on the given session."""
    return RunnerIdentityService(session).ingest_raw_result(record)


def ingest_batch(
    records: Iterable[RawResultRecord],
    session_factory: Optional[sessionmaker] = None,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    on_outcome: Optional[OutcomeCallback] = None,
) -> ImportStats:
    """
    Resolve a batch of raw results concurrently.

    Setting cancel_event stops the import between records: records already
    being resolved finish (and commit), the rest are counted as cancelled.

    Args:
        records: Raw results to import
        session_factory: Creates one session per record (default SessionLocal)
        max_workers: Thread pool size (default settings.import_max_workers)
        cancel_event: Set it to abort the import
        on_outcome: Called with (record, outcome) as records complete

    Returns:
        ImportStats with counts of what happened
    """
    if session_factory is None:
        from runmatch.db.session import SessionLocal
        session_factory = SessionLocal

    records = list(records)
    workers = max(1, max_workers or settings.import_max_workers)
    cancel_event = cancel_event or threading.Event()
    stats = ImportStats(total=len(records))
    stats_lock = threading.Lock()

    def process(record: RawResultRecord) -> None:
        if cancel_event.is_set():
            with stats_lock:
                stats.cancelled += 1
            return

        session = None
        try:
            session = session_factory()
            outcome = ingest_single_record(session, record)
        except Exception as exc:
            logger.error(
                "Failed to import %s:%s '%s': %s",
                record.provider, record.result_key, record.raw_name, exc,
            )
            with stats_lock:
                stats.errors.append(f"{record.provider}:{record.result_key}: {exc}")
            return
        finally:
            if session is not None:
                session.close()

        with stats_lock:
            stats.record(outcome)
        if on_outcome is not None:
            on_outcome(record, outcome)

    logger.info("Importing %d results with %d workers", len(records), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="runmatch-import") as pool:
        # list() re-raises anything process() didn't handle (e.g. a failing callback)
        list(pool.map(process, records))

    if cancel_event.is_set():
        logger.warning("Import cancelled: %d of %d records not started", stats.cancelled, stats.total)
    logger.info(stats.summary())
    return stats
