"""Sync API endpoints: triggers, status, run history and the retry queue."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..db import Database
from ..ingestion import QueueDrainer, TriggerRequest, TriggerResult, trigger
from ..ingestion.candidates import CANDIDATE_SOURCE
from ..models import CARGO_VALUES, QueueStats, QueueTask, RunStatus, SourceStatus, SyncRun, TaskStatus
from ..reconcile import CandidateCommitter, ImportStatus
from ..sync import RetryQueue, RunNotFoundError, SyncRunLedger
from ..sync.run_log import get_live_logs
from . import ErrorDetail, PaginatedResponse, ValidationError, get_db
from .auth import CronAuthorized

router = APIRouter(prefix="/sync")


# =========================
# Request / Response Models
# =========================


class TriggerBody(BaseModel):
    """Body of a sync trigger."""

    since_cursor: str | None = None
    limit: int | None = Field(default=None, ge=1)
    params: dict[str, Any] = Field(default_factory=dict)


class CandidateImportBody(BaseModel):
    """Candidate rows to import for one cargo."""

    cargo: str
    rows: list[dict[str, Any]] | None = None
    csv: str | None = None
    update_existing: bool = False


class RunSummary(BaseModel):
    """A sync run without its captured log."""

    id: UUID
    source: str
    status: RunStatus
    processed: int
    created: int
    updated: int
    skipped: int
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_run(cls, run: SyncRun) -> "RunSummary":
        return cls(
            id=run.id,
            source=run.source,
            status=run.status,
            processed=run.counts.processed,
            created=run.counts.created,
            updated=run.counts.updated,
            skipped=run.counts.skipped,
            error_message=run.error_message,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_ms=run.duration_ms,
            metadata=run.metadata,
        )


class RunDetail(RunSummary):
    log_lines: list[str] = Field(default_factory=list)


class SourceStatusResponse(BaseModel):
    source: str
    latest_run: RunSummary
    is_stale: bool
    window_days: int
    runs: int
    completed_runs: int
    failed_runs: int
    processed: int
    created: int
    updated: int
    skipped: int

    @classmethod
    def from_status(cls, status: SourceStatus) -> "SourceStatusResponse":
        return cls(
            source=status.source,
            latest_run=RunSummary.from_run(status.latest_run),
            is_stale=status.is_stale,
            window_days=status.window_days,
            runs=status.runs,
            completed_runs=status.completed_runs,
            failed_runs=status.failed_runs,
            processed=status.totals.processed,
            created=status.totals.created,
            updated=status.totals.updated,
            skipped=status.totals.skipped,
        )


class StatusResponse(BaseModel):
    sources: list[SourceStatusResponse]
    stale_sources: list[str]
    queue: QueueStats


class AbandonBody(BaseModel):
    reason: str = "Abandoned by operator"


class RequeueBody(BaseModel):
    priority: int | None = None


class DrainBody(BaseModel):
    source: str | None = None
    max_tasks: int = Field(default=50, ge=1, le=1000)


# =========================
# Helpers
# =========================


async def _run_trigger(db: Database, request: TriggerRequest) -> TriggerResult:
    """Run a trigger; bad params become a 422, pipeline errors propagate."""
    try:
        return await trigger(db, request)
    except ValueError as e:
        raise ValidationError(str(e))


# =========================
# Triggers
# =========================


@router.post("/candidates/import", response_model=TriggerResult)
async def import_candidates(
    body: CandidateImportBody,
    _: CronAuthorized,
    db: Database = Depends(get_db),
) -> TriggerResult:
    """Import a candidate list (JSON rows or CSV text) for one cargo."""
    if body.cargo not in CARGO_VALUES:
        raise ValidationError(
            f"Invalid cargo: {body.cargo}",
            details=[ErrorDetail(code="invalid_choice", message=", ".join(CARGO_VALUES), field="cargo")],
        )
    if body.rows is None and body.csv is None:
        raise ValidationError("Provide either rows or csv")

    params: dict[str, Any] = {"cargo": body.cargo, "update_existing": body.update_existing}
    if body.rows is not None:
        params["rows"] = body.rows
    else:
        params["csv"] = body.csv
    return await _run_trigger(db, TriggerRequest(source=CANDIDATE_SOURCE, params=params))


@router.get("/candidates/status", response_model=ImportStatus)
async def candidate_import_status(db: Database = Depends(get_db)) -> ImportStatus:
    """Counts of imported candidates by cargo, party and district."""
    return await CandidateCommitter(db).import_status()


@router.post("/{source}", response_model=TriggerResult)
async def trigger_sync(
    source: str,
    _: CronAuthorized,
    body: TriggerBody | None = None,
    db: Database = Depends(get_db),
) -> TriggerResult:
    """Run one sync of a source and return its counts."""
    body = body or TriggerBody()
    return await _run_trigger(
        db,
        TriggerRequest(
            source=source,
            since_cursor=body.since_cursor,
            limit=body.limit,
            params=body.params,
        ),
    )


# =========================
# Status and run history
# =========================


@router.get("/status", response_model=StatusResponse)
async def sync_status(
    window_days: int | None = Query(default=None, ge=1, le=365),
    db: Database = Depends(get_db),
) -> StatusResponse:
    """Latest run per source with recent aggregates. Read-only."""
    statuses = await SyncRunLedger(db).status_summary(window_days)
    return StatusResponse(
        sources=[SourceStatusResponse.from_status(s) for s in statuses],
        stale_sources=[s.source for s in statuses if s.is_stale],
        queue=await RetryQueue(db).stats(),
    )


@router.get("/runs", response_model=PaginatedResponse[RunSummary])
async def list_runs(
    source: str | None = None,
    status: RunStatus | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Database = Depends(get_db),
) -> PaginatedResponse[RunSummary]:
    """Run history, newest first."""
    runs, total = await SyncRunLedger(db).list_runs(source, status, limit, offset)
    return PaginatedResponse(
        results=[RunSummary.from_run(r) for r in runs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/runs/{run_id}", response_model=RunDetail)
async def get_run(
    run_id: UUID,
    offset: int = Query(default=0, ge=0),
    db: Database = Depends(get_db),
) -> RunDetail:
    """One run with its log (live buffer while the run is active)."""
    run = await SyncRunLedger(db).get_run(run_id)
    if run is None:
        raise RunNotFoundError(run_id)

    lines = get_live_logs(str(run_id), offset)
    if lines is None:
        lines = (run.log_output or "").splitlines()[offset:]
    return RunDetail(**RunSummary.from_run(run).model_dump(), log_lines=lines)


@router.post("/runs/{run_id}/abandon", response_model=RunSummary)
async def abandon_run(
    run_id: UUID,
    _: CronAuthorized,
    body: AbandonBody | None = None,
    db: Database = Depends(get_db),
) -> RunSummary:
    """Close a stuck run as failed so the source can run again."""
    body = body or AbandonBody()
    run = await SyncRunLedger(db).abandon(run_id, body.reason)
    return RunSummary.from_run(run)


# =========================
# Retry queue
# =========================


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats(
    source: str | None = None,
    db: Database = Depends(get_db),
) -> QueueStats:
    return await RetryQueue(db).stats(source)


@router.get("/queue/tasks", response_model=list[QueueTask])
async def list_queue_tasks(
    status: TaskStatus | None = None,
    source: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Database = Depends(get_db),
) -> list[QueueTask]:
    """Queued tasks in claim order."""
    return await RetryQueue(db).list_tasks(status, source, limit, offset)


@router.post("/queue/{task_id}/requeue", response_model=QueueTask)
async def requeue_task(
    task_id: UUID,
    _: CronAuthorized,
    body: RequeueBody | None = None,
    db: Database = Depends(get_db),
) -> QueueTask:
    """Reset a permanently failed task to pending with zero attempts."""
    body = body or RequeueBody()
    return await RetryQueue(db).requeue(task_id, body.priority)


@router.post("/queue/drain")
async def drain_queue(
    _: CronAuthorized,
    body: DrainBody | None = None,
    db: Database = Depends(get_db),
) -> dict[str, Any]:
    """Process due retry-queue tasks."""
    body = body or DrainBody()
    result = await QueueDrainer(db).drain(body.source, body.max_tasks)
    return result.model_dump()
