"""
SQLAlchemy ORM models for runmatch.

The schema is built around a canonical runner identity: every imported race
result is linked to exactly one runner, and every way a runner's name has
appeared in provider data is kept as an alias for future matching.

Key design decisions:
- Runners are never deleted; duplicates are merged by pointing merged_into_id
  at the surviving record
- Blocking keys (first/last name token, state) are stored on runners and
  aliases so candidate search is an indexed lookup, not a table scan
- Results keep their provenance (provider, source result id, raw fields)
  and are unique per (provider, source result id)
- Every engine decision that touches the review workflow is recorded in
  runner_matches, including auto-matches for the audit trail

Tables:
- runners: Canonical runner identities
- runner_aliases: Alternate name strings per runner
- results: Race results linked to a runner
- runner_matches: Review entries (pending, approved, rejected, auto_matched)
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

REVIEW_STATUSES = ("pending", "approved", "rejected", "auto_matched")
RESULT_RESOLUTIONS = ("auto_matched", "new_identity", "approved", "rejected")


def to_decimal(value: float) -> Decimal:
    """Convert a 0-100 score to the Decimal stored in Numeric(5, 2) columns."""
    return Decimal(str(round(value, 2)))


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Runner Models
# =============================================================================

class Runner(Base):
    """
    Canonical runner identity.

    One record per real person across all races. The display name is kept
    as first seen; matching uses normalized_name, the blocking keys and the
    aliases table.

    matching_confidence (0-100) reflects how reliably this identity has been
    matched historically. It is recomputed from confirmed_match_count by
    matching.decision.updated_confidence(), never edited ad hoc.
    """
    __tablename__ = "runners"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Blocking keys for candidate search
    first_name_key: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name_key: Mapped[str] = mapped_column(String(100), nullable=False)

    gender: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)  # 'M', 'F', 'NB'

    # Either an exact birth date, or an age observed on age_recorded_on
    birth_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_recorded_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)  # normalized
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # two-letter when known

    matching_confidence: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    confirmed_match_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Set when this identity was merged into another one
    merged_into_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("runners.id"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    aliases: Mapped[list["RunnerAlias"]] = relationship(
        back_populates="runner", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_runners_last_name_state", "last_name_key", "state"),
        Index("idx_runners_first_name_state", "first_name_key", "state"),
        CheckConstraint(
            "matching_confidence >= 0 AND matching_confidence <= 100",
            name="ck_runner_confidence_range",
        ),
    )

    @property
    def alternate_names(self) -> list[str]:
        """Alternate names as they appeared in provider data."""
        return [alias.name for alias in self.aliases]

    def __repr__(self) -> str:
        return f"<Runner(id={self.id}, name='{self.name}', state={self.state!r})>"


class RunnerAlias(Base):
    """
    Alternate name of a runner.

    Provider data spells the same person many ways ("Robert Smith",
    "Bob Smith", "R. Smith", "SMITH, Robert J."). Each distinct normalized
    variant is stored once per runner, with its own blocking keys so a
    search on "bob" or "smith" finds the runner through the alias too.
    """
    __tablename__ = "runner_aliases"

    id: Mapped[int] = mapped_column(primary_key=True)
    runner_id: Mapped[int] = mapped_column(ForeignKey("runners.id", ondelete="CASCADE"))

    # As seen in provider data (display) and normalized (matching)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name_key: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name_key: Mapped[str] = mapped_column(String(100), nullable=False)

    # Provider or workflow that introduced this alias
    source: Mapped[str] = mapped_column(String(50), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    runner: Mapped["Runner"] = relationship(back_populates="aliases")

    __table_args__ = (
        UniqueConstraint("runner_id", "normalized", name="uq_runner_alias_normalized"),
        Index("idx_runner_aliases_last_name", "last_name_key"),
        Index("idx_runner_aliases_first_name", "first_name_key"),
    )

    def __repr__(self) -> str:
        return f"<RunnerAlias(alias='{self.normalized}', source='{self.source}')>"


# =============================================================================
# Result Models
# =============================================================================

class Result(Base):
    """
    A race result linked to its resolved runner.

    Written only once the runner is known: immediately for auto-matches and
    new identities, on resolution for entries that went through review.
    The raw_* columns and provenance are never overwritten.
    """
    __tablename__ = "results"

    id: Mapped[int] = mapped_column(primary_key=True)
    runner_id: Mapped[int] = mapped_column(ForeignKey("runners.id"), nullable=False)

    # Race metadata lives elsewhere; this is its opaque reference
    race_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    finish_time: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # HH:MM:SS
    overall_place: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    gender_place: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    age_group_place: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Provenance and raw identity fields as imported
    source_provider: Mapped[str] = mapped_column(String(50), nullable=False)
    source_result_id: Mapped[str] = mapped_column(String(100), nullable=False)
    raw_runner_name: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    raw_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    matching_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    # True when the runner link was decided by a reviewer
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolution: Mapped[str] = mapped_column(String(20), nullable=False)

    imported_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    runner: Mapped["Runner"] = relationship()

    __table_args__ = (
        UniqueConstraint("source_provider", "source_result_id", name="uq_result_source"),
        Index("idx_results_runner", "runner_id"),
        Index("idx_results_race", "race_ref"),
        CheckConstraint(
            "resolution IN ('auto_matched', 'new_identity', 'approved', 'rejected')",
            name="ck_result_resolution",
        ),
    )

    def __repr__(self) -> str:
        return f"<Result(id={self.id}, runner_id={self.runner_id}, source='{self.source_provider}:{self.source_result_id}')>"


# =============================================================================
# Review Models
# =============================================================================

class RunnerMatch(Base):
    """
    Review entry for a raw result's proposed runner match.

    Status lifecycle (forward only):
    - 'pending': waiting for a reviewer
    - 'approved': reviewer confirmed the match, result linked to the runner
    - 'rejected': reviewer refused it, result linked to a new runner
    - 'auto_matched': engine matched it without review (audit only)

    candidate_runner_id may be None, meaning "propose a new identity".
    The raw record is kept as a versioned snapshot (raw_schema + raw_payload)
    so it can be decoded when the entry is reviewed.
    """
    __tablename__ = "runner_matches"

    id: Mapped[int] = mapped_column(primary_key=True)

    candidate_runner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("runners.id"), nullable=True
    )
    resolved_runner_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("runners.id"), nullable=True
    )
    result_id: Mapped[Optional[int]] = mapped_column(ForeignKey("results.id"), nullable=True)

    raw_schema: Mapped[str] = mapped_column(String(40), nullable=False)
    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    match_score: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    match_reasons: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    # 'blocked' or 'loose' (see matching/search.py)
    search_strategy: Mapped[str] = mapped_column(String(10), nullable=False, default="blocked")

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    source_provider: Mapped[str] = mapped_column(String(50), nullable=False)
    source_result_id: Mapped[str] = mapped_column(String(100), nullable=False)
    race_ref: Mapped[str] = mapped_column(String(100), nullable=False)

    reviewed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    candidate_runner: Mapped[Optional["Runner"]] = relationship(
        foreign_keys=[candidate_runner_id]
    )

    __table_args__ = (
        UniqueConstraint("source_provider", "source_result_id", name="uq_runner_match_source"),
        Index("idx_runner_matches_status", "status", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'auto_matched')",
            name="ck_runner_match_status",
        ),
        CheckConstraint(
            "match_score >= 0 AND match_score <= 100",
            name="ck_runner_match_score_range",
        ),
    )

    def __repr__(self) -> str:
        return f"<RunnerMatch(id={self.id}, status='{self.status}', score={self.match_score})>"
