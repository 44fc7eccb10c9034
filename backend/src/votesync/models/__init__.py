"""Pydantic models for votesync."""

from .records import (
    CARGO_VALUES,
    CandidateRecord,
    Cargo,
    FeedItem,
    NewsItem,
    NewsMatch,
    Sentiment,
    fold_text,
    slugify,
)
from .sync import (
    UNFINISHED_RUN_STATUSES,
    ChangeCheck,
    EntityHash,
    QueueStats,
    QueueTask,
    RunStatus,
    SourceStatus,
    SyncCounts,
    SyncRun,
    TaskStatus,
)

__all__ = [
    "CARGO_VALUES",
    "CandidateRecord",
    "Cargo",
    "ChangeCheck",
    "EntityHash",
    "FeedItem",
    "NewsItem",
    "NewsMatch",
    "QueueStats",
    "QueueTask",
    "RunStatus",
    "Sentiment",
    "SourceStatus",
    "SyncCounts",
    "SyncRun",
    "TaskStatus",
    "UNFINISHED_RUN_STATUSES",
    "fold_text",
    "slugify",
]
