"""Sync infrastructure and entity tables

Revision ID: 001_sync_infrastructure
Revises:
Create Date: 2026-10-19

Creates the PostgreSQL tables:
- sync_runs: append-only ingestion run ledger
- entity_hashes: last-seen fingerprints for change detection
- sync_queue: durable retry queue
- parties, districts, candidates, scores, news_mentions
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001_sync_infrastructure"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # =========================
    # Sync Runs
    # =========================
    op.create_table(
        "sync_runs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("records_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_created", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_skipped", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("started_at", sa.DateTime, nullable=False),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("log_output", sa.Text, nullable=True),
    )

    op.create_index("idx_sync_runs_source_started", "sync_runs", ["source", "started_at"])
    op.create_index("idx_sync_runs_status", "sync_runs", ["status"])
    op.create_index(
        "uq_sync_runs_unfinished_source",
        "sync_runs",
        ["source"],
        unique=True,
        postgresql_where=sa.text("status IN ('started', 'running')"),
    )

    # =========================
    # Entity Hashes
    # =========================
    op.create_table(
        "entity_hashes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("data_hash", sa.String(64), nullable=False),
        sa.Column("last_checked_at", sa.DateTime, nullable=False),
        sa.Column("last_changed_at", sa.DateTime, nullable=True),
        sa.UniqueConstraint(
            "entity_type", "entity_id", "source", name="uq_entity_hashes_entity_source"
        ),
    )

    op.create_index("idx_entity_hashes_entity", "entity_hashes", ["entity_type", "entity_id"])

    # =========================
    # Retry Queue
    # =========================
    op.create_table(
        "sync_queue",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="5"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("scheduled_at", sa.DateTime, nullable=False),
        sa.Column("started_at", sa.DateTime, nullable=True),
        sa.Column("completed_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("metadata", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.CheckConstraint(
            "attempts <= max_attempts", name="ck_sync_queue_attempts_within_max"
        ),
    )

    op.create_index("idx_sync_queue_status", "sync_queue", ["status", "scheduled_at"])
    op.create_index("idx_sync_queue_source", "sync_queue", ["source"])

    # =========================
    # Parties and Districts
    # =========================
    op.create_table(
        "parties",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("short_name", sa.String(50), nullable=True),
        sa.Column("slug", sa.String(200), nullable=False, unique=True),
    )

    op.create_table(
        "districts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False, unique=True),
        sa.Column("type", sa.String(30), nullable=False, server_default="electoral"),
    )

    # =========================
    # Candidates and Scores
    # =========================
    op.create_table(
        "candidates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False),
        sa.Column("cargo", sa.String(30), nullable=False),
        sa.Column(
            "party_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("parties.id"),
            nullable=True,
        ),
        sa.Column(
            "district_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("districts.id"),
            nullable=True,
        ),
        sa.Column("list_position", sa.Integer, nullable=True),
        sa.Column("dni", sa.String(20), nullable=True),
        sa.Column("jne_id", sa.String(50), nullable=True),
        sa.Column("photo_url", sa.Text, nullable=True),
        sa.Column("djhv_url", sa.Text, nullable=True),
        sa.Column("birth_date", sa.String(10), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("data_source", sa.String(50), nullable=True),
        sa.Column("data_verified", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("needs_review", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("review_notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, nullable=False),
        sa.Column("last_updated", sa.DateTime, nullable=False),
        sa.UniqueConstraint("normalized_name", "cargo", name="uq_candidates_natural_key"),
    )

    op.create_index("idx_candidates_party", "candidates", ["party_id"])

    op.create_table(
        "scores",
        sa.Column(
            "candidate_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("candidates.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("competence", sa.Float, nullable=False),
        sa.Column("integrity", sa.Float, nullable=False),
        sa.Column("transparency", sa.Float, nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("score_balanced", sa.Float, nullable=False),
        sa.Column("score_merit", sa.Float, nullable=False),
        sa.Column("score_integrity", sa.Float, nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # =========================
    # News Mentions
    # =========================
    op.create_table(
        "news_mentions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "candidate_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("candidates.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column(
            "party_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("parties.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("title", sa.Text, nullable=False),
        sa.Column("url", sa.Text, nullable=False, unique=True),
        sa.Column("excerpt", sa.Text, nullable=True),
        sa.Column("published_at", sa.DateTime, nullable=True),
        sa.Column("sentiment", sa.String(20), nullable=True),
        sa.Column("relevance_score", sa.Float, nullable=False, server_default="0.5"),
        sa.Column("keywords", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_index("idx_news_mentions_candidate", "news_mentions", ["candidate_id"])
    op.create_index("idx_news_mentions_published", "news_mentions", ["published_at"])


def downgrade() -> None:
    op.drop_table("news_mentions")
    op.drop_table("scores")
    op.drop_table("candidates")
    op.drop_table("districts")
    op.drop_table("parties")
    op.drop_table("sync_queue")
    op.drop_table("entity_hashes")
    op.drop_table("sync_runs")
