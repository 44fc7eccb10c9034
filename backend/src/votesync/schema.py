"""Relational tables for votesync.

Four logical groups:
- sync_runs: append-only audit trail of ingestion runs
- entity_hashes: last-seen fingerprint per (entity_type, entity_id, source)
- sync_queue: durable retry queue of deferred sync work
- parties, districts, candidates, scores, news_mentions: downstream
  entity tables written by the committers

Natural keys are enforced here with unique constraints so duplicate
inserts are rejected by the store even under concurrent commits.
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from .db import Base

metadata = Base.metadata

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


# =========================
# Sync infrastructure
# =========================

sync_runs = sa.Table(
    "sync_runs",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
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
    sa.Column("metadata", JSONType, nullable=False),
    sa.Column("log_output", sa.Text, nullable=True),
    sa.Index("idx_sync_runs_source_started", "source", "started_at"),
    sa.Index("idx_sync_runs_status", "status"),
    # At most one unfinished run per source
    sa.Index(
        "uq_sync_runs_unfinished_source",
        "source",
        unique=True,
        postgresql_where=sa.text("status IN ('started', 'running')"),
        sqlite_where=sa.text("status IN ('started', 'running')"),
    ),
)

entity_hashes = sa.Table(
    "entity_hashes",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
    sa.Column("entity_type", sa.String(50), nullable=False),
    sa.Column("entity_id", sa.String(255), nullable=False),
    sa.Column("source", sa.String(50), nullable=False),
    sa.Column("data_hash", sa.String(64), nullable=False),
    sa.Column("last_checked_at", sa.DateTime, nullable=False),
    sa.Column("last_changed_at", sa.DateTime, nullable=True),
    sa.UniqueConstraint(
        "entity_type", "entity_id", "source", name="uq_entity_hashes_entity_source"
    ),
    sa.Index("idx_entity_hashes_entity", "entity_type", "entity_id"),
)

sync_queue = sa.Table(
    "sync_queue",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
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
    sa.Column("metadata", JSONType, nullable=False),
    sa.CheckConstraint("attempts <= max_attempts", name="attempts_within_max"),
    sa.Index("idx_sync_queue_status", "status", "scheduled_at"),
    sa.Index("idx_sync_queue_source", "source"),
)


# =========================
# Downstream entities
# =========================

parties = sa.Table(
    "parties",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
    sa.Column("name", sa.String(200), nullable=False, unique=True),
    sa.Column("short_name", sa.String(50), nullable=True),
    sa.Column("slug", sa.String(200), nullable=False, unique=True),
)

districts = sa.Table(
    "districts",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
    sa.Column("name", sa.String(100), nullable=False),
    sa.Column("slug", sa.String(100), nullable=False, unique=True),
    sa.Column("type", sa.String(30), nullable=False, server_default="electoral"),
)

candidates = sa.Table(
    "candidates",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
    sa.Column("slug", sa.String(255), nullable=False, unique=True),
    sa.Column("full_name", sa.String(255), nullable=False),
    sa.Column("normalized_name", sa.String(255), nullable=False),
    sa.Column("cargo", sa.String(30), nullable=False),
    sa.Column("party_id", sa.Uuid, sa.ForeignKey("parties.id"), nullable=True),
    sa.Column("district_id", sa.Uuid, sa.ForeignKey("districts.id"), nullable=True),
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
    sa.Index("idx_candidates_party", "party_id"),
)

scores = sa.Table(
    "scores",
    metadata,
    sa.Column(
        "candidate_id",
        sa.Uuid,
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

news_mentions = sa.Table(
    "news_mentions",
    metadata,
    sa.Column("id", sa.Uuid, primary_key=True),
    sa.Column("candidate_id", sa.Uuid, sa.ForeignKey("candidates.id", ondelete="CASCADE"), nullable=True),
    sa.Column("party_id", sa.Uuid, sa.ForeignKey("parties.id", ondelete="CASCADE"), nullable=True),
    sa.Column("source", sa.String(50), nullable=False),
    sa.Column("title", sa.Text, nullable=False),
    sa.Column("url", sa.Text, nullable=False, unique=True),
    sa.Column("excerpt", sa.Text, nullable=True),
    sa.Column("published_at", sa.DateTime, nullable=True),
    sa.Column("sentiment", sa.String(20), nullable=True),
    sa.Column("relevance_score", sa.Float, nullable=False, server_default="0.5"),
    sa.Column("keywords", JSONType, nullable=False),
    sa.Column("created_at", sa.DateTime, nullable=False),
    sa.Index("idx_news_mentions_candidate", "candidate_id"),
    sa.Index("idx_news_mentions_published", "published_at"),
)
