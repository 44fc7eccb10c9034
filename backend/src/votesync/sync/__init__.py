"""Sync infrastructure: run ledger, change detection and retry queue."""

from .changes import ChangeDetector, canonicalize, fingerprint
from .errors import (
    FetchError,
    ItemError,
    RunFinalizedError,
    RunInProgressError,
    RunNotFoundError,
    StaleRunError,
    SyncError,
    TaskNotFoundError,
    TaskStateError,
    UnfinishedRunError,
    UnknownSourceError,
)
from .ledger import SyncRunLedger
from .queue import RetryQueue, compute_backoff
from .ratelimit import RateLimiter, RateLimiterRegistry

__all__ = [
    "ChangeDetector",
    "FetchError",
    "ItemError",
    "RateLimiter",
    "RateLimiterRegistry",
    "RetryQueue",
    "RunFinalizedError",
    "RunInProgressError",
    "RunNotFoundError",
    "StaleRunError",
    "SyncError",
    "SyncRunLedger",
    "TaskNotFoundError",
    "TaskStateError",
    "UnfinishedRunError",
    "UnknownSourceError",
    "canonicalize",
    "compute_backoff",
    "fingerprint",
]
