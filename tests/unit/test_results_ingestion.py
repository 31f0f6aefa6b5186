"""
Unit tests for batch result imports.
"""

import threading

from runmatch.db.models import Result, Runner, RunnerMatch
from runmatch.runners.identity import ResolutionOutcome, RunnerIdentityService
from runmatch.services.results_ingestion import ImportStats, ingest_batch


def _count(session_factory, model) -> int:
    session = session_factory()
    try:
        return session.query(model).count()
    finally:
        session.close()


class TestIngestBatch:
    """Tests for ingest_batch()."""

    def test_counts_each_outcome(self, file_session_factory, make_record):
        records = [
            make_record(raw_name="Jane Doe"),
            make_record(raw_name="Jane Doe"),  # same person, new source id -> auto-match
            make_record(raw_name=None),
            make_record(raw_name="Maria Lopez", raw_city="Denver", raw_state="CO"),
        ]

        stats = ingest_batch(records, session_factory=file_session_factory, max_workers=1)

        assert stats.total == 4
        assert stats.new_identities == 2
        assert stats.auto_matched == 1
        assert stats.rejected == 1
        assert stats.errors == []
        assert stats.processed == 4
        assert _count(file_session_factory, Runner) == 2
        assert _count(file_session_factory, Result) == 3

    def test_duplicates_in_batch_are_skipped(self, file_session_factory, make_record):
        record = make_record(raw_name="Jane Doe")

        stats = ingest_batch([record, record], session_factory=file_session_factory, max_workers=1)

        assert stats.new_identities == 1
        assert stats.duplicates == 1
        assert _count(file_session_factory, Result) == 1

    def test_parallel_import_creates_one_runner(self, file_session_factory, make_record):
        records = [
            make_record(raw_name="Pat Doe", gender="F", source_result_id=f"pd-{index}")
            for index in range(8)
        ]

        stats = ingest_batch(records, session_factory=file_session_factory, max_workers=4)

        assert stats.errors == []
        assert stats.new_identities == 1
        assert stats.auto_matched == 7
        assert _count(file_session_factory, Runner) == 1
        assert _count(file_session_factory, Result) == 8

    def test_cancel_before_start(self, file_session_factory, make_record):
        cancel = threading.Event()
        cancel.set()

        stats = ingest_batch(
            [make_record(), make_record()],
            session_factory=file_session_factory,
            cancel_event=cancel,
        )

        assert stats.cancelled == 2
        assert _count(file_session_factory, Result) == 0

    def test_cancel_between_records(self, file_session_factory, make_record):
        cancel = threading.Event()
        seen = []

        def stop_after_first(record, outcome):
            seen.append(outcome)
            cancel.set()

        stats = ingest_batch(
            [make_record(raw_name=f"Runner {name}") for name in ("Able", "Baker", "Charlie")],
            session_factory=file_session_factory,
            max_workers=1,
            cancel_event=cancel,
            on_outcome=stop_after_first,
        )

        assert len(seen) == 1
        assert stats.new_identities == 1
        assert stats.cancelled == 2
        assert _count(file_session_factory, Runner) == 1
        assert _count(file_session_factory, RunnerMatch) == 0

    def test_storage_errors_are_collected(self, make_record):
        def broken_factory():
            raise RuntimeError("database unavailable")

        stats = ingest_batch([make_record(source_result_id="x-1")], session_factory=broken_factory, max_workers=1)

        assert stats.processed == 1
        assert stats.errors == ["runsignup:x-1: database unavailable"]
        assert "Errors: 1" in stats.summary()


class TestImportStats:
    """Tests for ImportStats bookkeeping."""

    def test_replayed_outcomes_count_as_duplicates(self):
        stats = ImportStats(total=2)
        stats.record(ResolutionOutcome(kind="new_identity", runner_id=1))
        stats.record(ResolutionOutcome(kind="new_identity", runner_id=1, replayed=True))

        assert stats.new_identities == 1
        assert stats.duplicates == 1

    def test_summary_lists_first_errors_only(self):
        stats = ImportStats(total=7, errors=[f"error {index}" for index in range(7)])

        summary = stats.summary()

        assert "error 4" in summary
        assert "error 5" not in summary
        assert "... and 2 more" in summary


class TestPartialFailures:
    """Failures after some rows were flushed."""

    def test_failed_record_leaves_no_rows(self, file_session_factory, make_record, monkeypatch):
        def fail_link(self, *args, **kwargs):
            raise RuntimeError("results table unavailable")

        monkeypatch.setattr(RunnerIdentityService, "link_result", fail_link)

        stats = ingest_batch(
            [make_record(raw_name="Jane Doe", source_result_id="jd-1")],
            session_factory=file_session_factory,
            max_workers=1,
        )

        assert stats.errors == ["runsignup:jd-1: results table unavailable"]
        assert _count(file_session_factory, Runner) == 0
        assert _count(file_session_factory, Result) == 0
        assert _count(file_session_factory, RunnerMatch) == 0
