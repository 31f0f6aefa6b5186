"""Create runner identity, result and review tables

Revision ID: 5a1f0c2d9e7b
Revises:
Create Date: 2026-10-17 09:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision: str = "5a1f0c2d9e7b"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "runners",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("normalized_name", sa.String(length=255), nullable=False),
        sa.Column("first_name_key", sa.String(length=100), nullable=False),
        sa.Column("last_name_key", sa.String(length=100), nullable=False),
        sa.Column("gender", sa.String(length=2), nullable=True),
        sa.Column("birth_date", sa.Date(), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("age_recorded_on", sa.Date(), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("state", sa.String(length=50), nullable=True),
        sa.Column("matching_confidence", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("confirmed_match_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("merged_into_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "matching_confidence >= 0 AND matching_confidence <= 100",
            name="ck_runner_confidence_range",
        ),
        sa.ForeignKeyConstraint(["merged_into_id"], ["runners.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_runners_last_name_state", "runners", ["last_name_key", "state"], unique=False)
    op.create_index("idx_runners_first_name_state", "runners", ["first_name_key", "state"], unique=False)

    op.create_table(
        "runner_aliases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("runner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("normalized", sa.String(length=255), nullable=False),
        sa.Column("first_name_key", sa.String(length=100), nullable=False),
        sa.Column("last_name_key", sa.String(length=100), nullable=False),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["runner_id"], ["runners.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("runner_id", "normalized", name="uq_runner_alias_normalized"),
    )
    op.create_index("idx_runner_aliases_last_name", "runner_aliases", ["last_name_key"], unique=False)
    op.create_index("idx_runner_aliases_first_name", "runner_aliases", ["first_name_key"], unique=False)

    op.create_table(
        "results",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("runner_id", sa.Integer(), nullable=False),
        sa.Column("race_ref", sa.String(length=100), nullable=False),
        sa.Column("finish_time", sa.String(length=20), nullable=True),
        sa.Column("overall_place", sa.Integer(), nullable=True),
        sa.Column("gender_place", sa.Integer(), nullable=True),
        sa.Column("age_group_place", sa.Integer(), nullable=True),
        sa.Column("source_provider", sa.String(length=50), nullable=False),
        sa.Column("source_result_id", sa.String(length=100), nullable=False),
        sa.Column("raw_runner_name", sa.String(length=255), nullable=False),
        sa.Column("raw_location", sa.String(length=255), nullable=True),
        sa.Column("raw_age", sa.Integer(), nullable=True),
        sa.Column("matching_score", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("resolution", sa.String(length=20), nullable=False),
        sa.Column("imported_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "resolution IN ('auto_matched', 'new_identity', 'approved', 'rejected')",
            name="ck_result_resolution",
        ),
        sa.ForeignKeyConstraint(["runner_id"], ["runners.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_provider", "source_result_id", name="uq_result_source"),
    )
    op.create_index("idx_results_runner", "results", ["runner_id"], unique=False)
    op.create_index("idx_results_race", "results", ["race_ref"], unique=False)

    op.create_table(
        "runner_matches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("candidate_runner_id", sa.Integer(), nullable=True),
        sa.Column("resolved_runner_id", sa.Integer(), nullable=True),
        sa.Column("result_id", sa.Integer(), nullable=True),
        sa.Column("raw_schema", sa.String(length=40), nullable=False),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("match_score", sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column("match_reasons", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("search_strategy", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("source_provider", sa.String(length=50), nullable=False),
        sa.Column("source_result_id", sa.String(length=100), nullable=False),
        sa.Column("race_ref", sa.String(length=100), nullable=False),
        sa.Column("reviewed_by", sa.String(length=100), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'auto_matched')",
            name="ck_runner_match_status",
        ),
        sa.CheckConstraint(
            "match_score >= 0 AND match_score <= 100",
            name="ck_runner_match_score_range",
        ),
        sa.ForeignKeyConstraint(["candidate_runner_id"], ["runners.id"]),
        sa.ForeignKeyConstraint(["resolved_runner_id"], ["runners.id"]),
        sa.ForeignKeyConstraint(["result_id"], ["results.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_provider", "source_result_id", name="uq_runner_match_source"),
    )
    op.create_index("idx_runner_matches_status", "runner_matches", ["status", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("idx_runner_matches_status", table_name="runner_matches")
    op.drop_table("runner_matches")
    op.drop_index("idx_results_race", table_name="results")
    op.drop_index("idx_results_runner", table_name="results")
    op.drop_table("results")
    op.drop_index("idx_runner_aliases_first_name", table_name="runner_aliases")
    op.drop_index("idx_runner_aliases_last_name", table_name="runner_aliases")
    op.drop_table("runner_aliases")
    op.drop_index("idx_runners_first_name_state", table_name="runners")
    op.drop_index("idx_runners_last_name_state", table_name="runners")
    op.drop_table("runners")
