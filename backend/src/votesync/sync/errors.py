"""Exceptions raised by the sync pipeline."""

from uuid import UUID


class SyncError(Exception):
    """Base class for sync pipeline errors."""


class RunNotFoundError(SyncError):
    def __init__(self, run_id: UUID):
        super().__init__(f"Sync run not found: {run_id}")
        self.run_id = run_id


class RunFinalizedError(SyncError):
    """A completed or failed run was asked to change."""

    def __init__(self, run_id: UUID, status: str):
        super().__init__(f"Sync run {run_id} is already {status}")
        self.run_id = run_id
        self.status = status


class UnfinishedRunError(SyncError):
    """Another run for the same source has not been closed."""

    def __init__(self, source: str, run_id: UUID, message: str):
        super().__init__(message)
        self.source = source
        self.run_id = run_id


class RunInProgressError(UnfinishedRunError):
    def __init__(self, source: str, run_id: UUID):
        super().__init__(
            source, run_id, f"Sync for {source} already in progress (run {run_id})"
        )


class StaleRunError(UnfinishedRunError):
    """An unfinished run outlived the staleness threshold.

    The ledger does not resolve this on its own; an operator has to
    abandon the stuck run first.
    """

    def __init__(self, source: str, run_id: UUID, age_minutes: float):
        super().__init__(
            source,
            run_id,
            f"Sync for {source} has a stuck run {run_id} "
            f"({age_minutes:.0f} min without completing); abandon it before starting a new one",
        )
        self.age_minutes = age_minutes


class TaskNotFoundError(SyncError):
    def __init__(self, task_id: UUID):
        super().__init__(f"Queue task not found: {task_id}")
        self.task_id = task_id


class TaskStateError(SyncError):
    """Illegal retry-queue transition."""

    def __init__(self, task_id: UUID, status: str, action: str):
        super().__init__(f"Cannot {action} task {task_id} in status {status}")
        self.task_id = task_id
        self.status = status
        self.action = action


class FetchError(SyncError):
    """Upstream source unreachable or returned a malformed response."""

    def __init__(self, source: str, message: str):
        super().__init__(f"Fetch failed for {source}: {message}")
        self.source = source


class ItemError(SyncError):
    """A single upstream item could not be normalized."""


class UnknownSourceError(SyncError):
    def __init__(self, source: str, known: list[str]):
        super().__init__(f"Unknown sync source: {source}. Must be one of {known}")
        self.source = source
