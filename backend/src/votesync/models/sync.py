"""Models for sync runs, entity fingerprints and retry-queue tasks."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Lifecycle of a sync run."""

    STARTED = "started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


UNFINISHED_RUN_STATUSES = (RunStatus.STARTED.value, RunStatus.RUNNING.value)


class SyncCounts(BaseModel):
    """Counter delta or totals for a sync run."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0

    def __add__(self, other: "SyncCounts") -> "SyncCounts":
        return SyncCounts(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.processed or self.created or self.updated or self.skipped)


class SyncRun(BaseModel):
    """One invocation of one source's ingestion."""

    id: UUID
    source: str
    status: RunStatus
    counts: SyncCounts = Field(default_factory=SyncCounts)
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    log_output: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    def age_seconds(self, now: datetime) -> float:
        """Seconds elapsed since the run started."""
        return (now - self.started_at).total_seconds()


class SourceStatus(BaseModel):
    """Status query projection for one source."""

    source: str
    latest_run: SyncRun
    is_stale: bool = False
    window_days: int
    runs: int = 0
    completed_runs: int = 0
    failed_runs: int = 0
    totals: SyncCounts = Field(default_factory=SyncCounts)


class EntityHash(BaseModel):
    """Fingerprint of the last-seen upstream representation of an entity."""

    entity_type: str
    entity_id: str
    source: str
    data_hash: str
    last_checked_at: datetime
    last_changed_at: datetime | None = None


class ChangeCheck(BaseModel):
    """Result of asking the change detector whether to process a payload."""

    process: bool
    previous_hash: str | None = None
    data_hash: str


class TaskStatus(str, Enum):
    """Lifecycle of a retry-queue task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueTask(BaseModel):
    """One pending unit of sync work."""

    id: UUID
    source: str
    entity_type: str
    entity_id: str | None = None
    priority: int = 5
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    last_error: str | None = None
    scheduled_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts


class QueueStats(BaseModel):
    """Status counts for the retry queue."""

    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    by_source: dict[str, int] = Field(default_factory=dict)
