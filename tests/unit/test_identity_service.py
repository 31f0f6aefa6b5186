"""
Unit tests for RunnerIdentityService.
"""

from datetime import date
from decimal import Decimal

import pytest

from runmatch.db.models import Result, Runner, RunnerAlias, RunnerMatch
from runmatch.errors import MalformedInputError
from runmatch.runners.identity import ResolutionOutcome, RunnerIdentityService
from runmatch.runners.normalize import split_name

RACE_DATE = date(2025, 3, 15)


@pytest.fixture
def service(db_session):
    return RunnerIdentityService(db_session)


@pytest.fixture
def smith(service, db_session):
    """Robert Smith of Austin, TX, 34 on race day, also known as Bob Smith."""
    runner = service.register_runner("Robert Smith", city="Austin", state="TX", age=34, as_of=RACE_DATE)
    service._ensure_alias(runner, "Bob Smith", split_name("Bob Smith"), "manual")
    db_session.commit()
    return runner


class TestAutoMatch:
    """Records that match one stored runner clearly."""

    def test_middle_initial_auto_matches(self, service, db_session, smith, make_record):
        record = make_record(raw_name="Robert J. Smith", raw_city="Austin", raw_state="TX", raw_age=34)

        outcome = service.ingest_raw_result(record)

        assert outcome.kind == "auto_matched"
        assert outcome.runner_id == smith.id
        assert outcome.match_score == pytest.approx(91.25)

        result = db_session.query(Result).one()
        assert result.runner_id == smith.id
        assert result.resolution == "auto_matched"
        assert result.needs_review is False
        assert result.matching_score == Decimal("91.25")
        assert result.raw_runner_name == "Robert J. Smith"
        assert result.raw_location == "Austin, TX"
        assert result.source_provider == "runsignup"

        entry = db_session.get(RunnerMatch, outcome.entry_id)
        assert entry.status == "auto_matched"
        assert entry.resolved_runner_id == smith.id
        assert entry.result_id == result.id

    def test_auto_match_records_new_name_variant(self, service, db_session, smith, make_record):
        service.ingest_raw_result(make_record(raw_name="Robert J. Smith"))

        aliases = {alias.normalized for alias in db_session.query(RunnerAlias).filter_by(runner_id=smith.id)}
        assert aliases == {"robert smith", "bob smith", "robert j smith"}

    def test_exact_match_on_every_attribute(self, service, db_session, make_record):
        runner = service.register_runner(
            "Maria Lopez", gender="F", city="Denver", state="CO", age=41, as_of=RACE_DATE
        )

        outcome = service.ingest_raw_result(make_record(
            raw_name="Maria Lopez", raw_city="Denver", raw_state="CO", raw_age=41, gender="female",
        ))

        assert outcome == ResolutionOutcome(
            kind="auto_matched", runner_id=runner.id, entry_id=outcome.entry_id, match_score=98.5
        )


class TestPendingReview:
    """Records the engine isn't sure about."""

    def test_partial_match_goes_to_review(self, service, db_session, smith, make_record):
        record = make_record(raw_name="R. Smith", raw_city="Dallas", raw_state="TX", raw_age=36)

        outcome = service.ingest_raw_result(record)

        assert outcome.kind == "pending_review"
        assert outcome.runner_id is None
        entry = db_session.get(RunnerMatch, outcome.entry_id)
        assert entry.status == "pending"
        assert entry.candidate_runner_id == smith.id
        assert entry.match_score == Decimal("52.80")
        assert "state_match" in entry.match_reasons
        assert "city_match" not in entry.match_reasons
        assert "exact_age" not in entry.match_reasons
        assert entry.raw_schema == "raw_result/v1"
        assert entry.raw_payload["raw_name"] == "R. Smith"

        # The Result is only written once a reviewer decides
        assert db_session.query(Result).count() == 0

    def test_two_equally_good_runners_are_ambiguous(self, service, db_session, make_record):
        first = service.register_runner("Robert Smith", city="Austin", state="TX", age=34, as_of=RACE_DATE)
        service.register_runner("Robert Smith", city="Austin", state="TX", age=34, as_of=RACE_DATE)

        outcome = service.ingest_raw_result(make_record())

        assert outcome.kind == "pending_review"
        entry = db_session.get(RunnerMatch, outcome.entry_id)
        assert entry.candidate_runner_id == first.id
        assert "ambiguous_match" in entry.match_reasons


class TestNewIdentity:
    """Records that match nobody."""

    def test_empty_store_creates_runner(self, service, db_session, make_record):
        outcome = service.ingest_raw_result(make_record(raw_name="Jane Doe", gender="F"))

        assert outcome.kind == "new_identity"
        assert outcome.match_score == 0.0
        runner = db_session.get(Runner, outcome.runner_id)
        assert runner.name == "Jane Doe"
        assert runner.normalized_name == "jane doe"
        assert runner.gender == "F"
        assert runner.city == "austin"
        assert runner.state == "TX"
        assert runner.age == 34
        assert runner.age_recorded_on == RACE_DATE
        assert float(runner.matching_confidence) == 70.0
        assert runner.alternate_names == ["Jane Doe"]

        result = db_session.query(Result).one()
        assert result.runner_id == runner.id
        assert result.resolution == "new_identity"

    def test_low_scores_create_distinct_runner(self, service, db_session, smith, make_record):
        outcome = service.ingest_raw_result(make_record(
            raw_name="Zed Smith", raw_city="Seattle", raw_state="WA", raw_age=70, gender="F",
        ))

        assert outcome.kind == "new_identity"
        assert outcome.runner_id != smith.id
        assert 0.0 < outcome.match_score < 40.0
        assert db_session.query(Runner).count() == 2

    def test_birth_date_stored_instead_of_age(self, service, db_session, make_record):
        outcome = service.ingest_raw_result(make_record(
            raw_name="Jane Doe", raw_age=None, raw_birth_date=date(1990, 6, 1),
        ))

        runner = db_session.get(Runner, outcome.runner_id)
        assert runner.birth_date == date(1990, 6, 1)
        assert runner.age is None


class TestIdempotence:
    """Re-ingesting a source result returns the original outcome."""

    def test_auto_match_replayed(self, service, db_session, smith, make_record):
        record = make_record(raw_name="Robert J. Smith")

        first = service.ingest_raw_result(record)
        second = service.ingest_raw_result(record)

        assert first == second
        assert not first.replayed
        assert second.replayed
        assert db_session.query(Result).count() == 1

    def test_new_identity_replayed(self, service, db_session, make_record):
        record = make_record(raw_name="Jane Doe")

        first = service.ingest_raw_result(record)
        second = service.ingest_raw_result(record)

        assert first == second
        assert db_session.query(Runner).count() == 1
        assert db_session.query(Result).count() == 1

    def test_pending_replayed(self, service, db_session, smith, make_record):
        record = make_record(raw_name="R. Smith", raw_city="Dallas", raw_age=36)

        first = service.ingest_raw_result(record)
        second = service.ingest_raw_result(record)

        assert first == second
        assert db_session.query(RunnerMatch).count() == 1

    def test_missing_source_id_uses_stable_key(self, service, db_session, make_record):
        record = make_record(raw_name="Jane Doe", source_result_id=None)
        again = make_record(raw_name="Jane Doe", source_result_id=None)

        first = service.ingest_raw_result(record)
        second = service.ingest_raw_result(again)

        assert first == second
        assert db_session.query(Result).one().source_result_id.startswith("derived:")


class TestMalformedInput:
    """Records that can't be matched at all are refused without writes."""

    @pytest.mark.parametrize(
        "overrides, reason",
        [
            ({"raw_name": None}, "missing runner name"),
            ({"raw_name": "   "}, "missing runner name"),
            ({"race_ref": None}, "missing race reference"),
            ({"provider": ""}, "missing source provider"),
        ],
    )
    def test_rejected_outcome(self, service, db_session, make_record, overrides, reason):
        outcome = service.ingest_raw_result(make_record(**overrides))

        assert outcome == ResolutionOutcome.rejected(reason)
        assert db_session.query(Result).count() == 0
        assert db_session.query(RunnerMatch).count() == 0
        assert db_session.query(Runner).count() == 0

    def test_punctuation_only_name(self, service, make_record):
        outcome = service.ingest_raw_result(make_record(raw_name="--."))
        assert outcome.kind == "rejected"
        assert "no usable characters" in outcome.reason

    def test_resolve_raises(self, service, make_record):
        with pytest.raises(MalformedInputError):
            service.resolve(make_record(raw_name=None))


class TestEvaluate:
    """Dry-run evaluation."""

    def test_writes_nothing(self, service, db_session, smith, make_record):
        decision = service.evaluate(make_record(raw_name="Robert J. Smith"))

        assert decision.outcome == "auto_matched"
        assert decision.top.runner_id == smith.id
        assert db_session.query(Result).count() == 0
        assert db_session.query(RunnerMatch).count() == 0


class TestRegisterAndMerge:
    """Explicit registration and merging of runners."""

    def test_register_rejects_empty_name(self, service):
        with pytest.raises(MalformedInputError):
            service.register_runner("  ")

    def test_merge_moves_results_and_aliases(self, service, db_session, smith, make_record):
        duplicate = service.register_runner("Bobby Smith", city="Austin", state="TX", as_of=RACE_DATE)
        db_session.add(Result(
            runner_id=duplicate.id,
            race_ref="race-1",
            source_provider="raceroster",
            source_result_id="rr-1",
            raw_runner_name="Bobby Smith",
            matching_score=0,
            resolution="new_identity",
        ))
        db_session.commit()

        keep = service.merge_runners(smith.id, duplicate.id)

        assert keep.id == smith.id
        merged = db_session.get(Runner, duplicate.id)
        assert merged is not None
        assert merged.merged_into_id == smith.id
        assert db_session.query(Result).one().runner_id == smith.id
        assert "bobby smith" in {alias.normalized for alias in keep.aliases}
        assert service.follow_merges(duplicate.id).id == smith.id

    def test_merge_errors(self, service, smith):
        with pytest.raises(ValueError):
            service.merge_runners(smith.id, smith.id)
        with pytest.raises(ValueError):
            service.merge_runners(smith.id, 9999)

        other = service.register_runner("Bobby Smith")
        service.merge_runners(smith.id, other.id)
        with pytest.raises(ValueError):
            service.merge_runners(smith.id, other.id)


class TestStorageFailures:
    """A failure part-way through a record leaves nothing behind."""

    @staticmethod
    def _fail_link(*args, **kwargs):
        raise RuntimeError("results table unavailable")

    def test_new_identity_rolled_back(self, service, db_session, make_record, monkeypatch):
        monkeypatch.setattr(service, "link_result", self._fail_link)

        with pytest.raises(RuntimeError):
            service.ingest_raw_result(make_record(raw_name="Jane Doe"))

        assert db_session.query(Runner).count() == 0
        assert db_session.query(RunnerAlias).count() == 0
        assert db_session.query(Result).count() == 0
        assert db_session.query(RunnerMatch).count() == 0

    def test_auto_match_rolled_back(self, service, db_session, smith, make_record, monkeypatch):
        monkeypatch.setattr(service, "link_result", self._fail_link)

        with pytest.raises(RuntimeError):
            service.ingest_raw_result(make_record(raw_name="Robert J. Smith"))

        aliases = {alias.normalized for alias in db_session.query(RunnerAlias).filter_by(runner_id=smith.id)}
        assert aliases == {"robert smith", "bob smith"}
        assert db_session.query(Runner).count() == 1
        assert db_session.query(Result).count() == 0
        assert db_session.query(RunnerMatch).count() == 0

    def test_failed_record_can_be_retried(self, service, db_session, make_record, monkeypatch):
        record = make_record(raw_name="Jane Doe")
        monkeypatch.setattr(service, "link_result", self._fail_link)
        with pytest.raises(RuntimeError):
            service.ingest_raw_result(record)

        monkeypatch.undo()
        outcome = service.ingest_raw_result(record)

        assert outcome.kind == "new_identity"
        assert outcome.replayed is False
        assert db_session.query(Runner).count() == 1
        assert db_session.query(Result).count() == 1
