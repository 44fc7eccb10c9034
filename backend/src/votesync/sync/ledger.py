"""Sync run ledger for votesync.

Records the lifecycle of every ingestion run: start, counters,
completion or failure, duration and free-form metadata. Rows are never
deleted; the latest status per source is a read-only projection.
"""

from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError

from ..config import get_settings
from ..db import Database
from ..logging import get_logger
from ..models import (
    UNFINISHED_RUN_STATUSES,
    RunStatus,
    SourceStatus,
    SyncCounts,
    SyncRun,
)
from ..schema import sync_runs
from .errors import (
    RunFinalizedError,
    RunInProgressError,
    RunNotFoundError,
    StaleRunError,
)

logger = get_logger(__name__)


class SyncRunLedger:
    """Append-only audit trail of sync runs.

    The ledger refuses to start a run while another unfinished run
    exists for the same source. If that run is older than the staleness
    threshold it is reported as stuck (``StaleRunError``) and has to be
    abandoned by an operator; nothing is resolved automatically.
    """

    def __init__(
        self,
        db: Database,
        stale_after: timedelta | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        settings = get_settings()
        self.db = db
        self.stale_after = stale_after or timedelta(minutes=settings.run_stale_after_minutes)
        self._clock = clock

    # =========================
    # Lifecycle
    # =========================

    async def start(self, source: str, metadata: dict[str, Any] | None = None) -> UUID:
        """Open a new run for a source.

        Args:
            source: Source key (e.g. 'news', 'candidates')
            metadata: Initial run metadata

        Returns:
            The new run ID

        Raises:
            StaleRunError: An unfinished run exceeded the staleness threshold
            RunInProgressError: Another run for the source is still active
        """
        now = self._clock()
        existing = await self.find_unfinished(source)
        if existing is not None:
            age = existing.age_seconds(now)
            if age > self.stale_after.total_seconds():
                logger.error(
                    f"Refusing to start {source}: run {existing.id} is stuck",
                    extra={"source": source, "run_id": str(existing.id), "age_seconds": age},
                )
                raise StaleRunError(source, existing.id, age / 60)
            raise RunInProgressError(source, existing.id)

        run_id = uuid4()
        try:
            async with self.db.session() as session:
                await session.execute(
                    sync_runs.insert().values(
                        id=run_id,
                        source=source,
                        status=RunStatus.STARTED.value,
                        records_processed=0,
                        records_created=0,
                        records_updated=0,
                        records_skipped=0,
                        started_at=now,
                        metadata=metadata or {},
                    )
                )
        except IntegrityError:
            # Lost a race against a concurrent start for the same source
            winner = await self.find_unfinished(source)
            raise RunInProgressError(source, winner.id if winner else run_id)

        logger.info(
            f"Started sync run {run_id} for {source}",
            extra={"run_id": str(run_id), "source": source},
        )
        return run_id

    async def mark_running(self, run_id: UUID) -> None:
        """Move a started run to ``running``."""
        async with self.db.session() as session:
            result = await session.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id)
                .where(sync_runs.c.status.in_(UNFINISHED_RUN_STATUSES))
                .values(status=RunStatus.RUNNING.value)
            )
            if result.rowcount == 0:
                await self._raise_for_closed(session, run_id)

    async def increment_counters(self, run_id: UUID, delta: SyncCounts) -> None:
        """Add a counter delta to an unfinished run.

        Raises:
            RunFinalizedError: The run is already completed or failed
            RunNotFoundError: No such run
        """
        if delta.is_empty:
            return
        async with self.db.session() as session:
            result = await session.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id)
                .where(sync_runs.c.status.in_(UNFINISHED_RUN_STATUSES))
                .values(
                    records_processed=sync_runs.c.records_processed + delta.processed,
                    records_created=sync_runs.c.records_created + delta.created,
                    records_updated=sync_runs.c.records_updated + delta.updated,
                    records_skipped=sync_runs.c.records_skipped + delta.skipped,
                )
            )
            if result.rowcount == 0:
                await self._raise_for_closed(session, run_id)

    async def complete(
        self,
        run_id: UUID,
        metadata: dict[str, Any] | None = None,
        log_output: str | None = None,
    ) -> SyncRun:
        """Close a run as completed. Counters become immutable."""
        run = await self._finish(run_id, RunStatus.COMPLETED, None, metadata, log_output)
        logger.info(
            f"Completed sync run {run_id} for {run.source}",
            extra={
                "run_id": str(run_id),
                "source": run.source,
                "records_processed": run.counts.processed,
                "duration_ms": run.duration_ms,
            },
        )
        return run

    async def fail(
        self,
        run_id: UUID,
        error: BaseException | str,
        metadata: dict[str, Any] | None = None,
        log_output: str | None = None,
    ) -> SyncRun:
        """Close a run as failed, preserving the originating error."""
        message = error if isinstance(error, str) else (str(error) or type(error).__name__)
        run = await self._finish(run_id, RunStatus.FAILED, message, metadata, log_output)
        logger.warning(
            f"Sync run {run_id} for {run.source} failed: {message}",
            extra={"run_id": str(run_id), "source": run.source, "error": message},
        )
        return run

    async def abandon(self, run_id: UUID, reason: str = "Abandoned by operator") -> SyncRun:
        """Operator action: close a stuck run so the source can run again."""
        return await self.fail(run_id, reason, metadata={"abandoned": True})

    async def _finish(
        self,
        run_id: UUID,
        status: RunStatus,
        error_message: str | None,
        metadata: dict[str, Any] | None,
        log_output: str | None,
    ) -> SyncRun:
        now = self._clock()
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(sync_runs).where(sync_runs.c.id == run_id).with_for_update()
                )
            ).first()
            if row is None:
                raise RunNotFoundError(run_id)
            if row.status not in UNFINISHED_RUN_STATUSES:
                raise RunFinalizedError(run_id, row.status)

            merged = dict(row._mapping["metadata"] or {})
            merged.update(metadata or {})
            duration_ms = max(int((now - row.started_at).total_seconds() * 1000), 0)

            result = await session.execute(
                update(sync_runs)
                .where(sync_runs.c.id == run_id)
                .where(sync_runs.c.status.in_(UNFINISHED_RUN_STATUSES))
                .values(
                    status=status.value,
                    error_message=error_message,
                    completed_at=now,
                    duration_ms=duration_ms,
                    metadata=merged,
                    log_output=log_output,
                )
                .returning(*sync_runs.c)
            )
            updated = result.first()
            if updated is None:
                raise RunFinalizedError(run_id, "closed")
            return self._row_to_run(updated)

    async def _raise_for_closed(self, session, run_id: UUID) -> None:
        row = (
            await session.execute(select(sync_runs.c.status).where(sync_runs.c.id == run_id))
        ).first()
        if row is None:
            raise RunNotFoundError(run_id)
        raise RunFinalizedError(run_id, row.status)

    # =========================
    # Queries
    # =========================

    async def get_run(self, run_id: UUID) -> SyncRun | None:
        """Get a run by ID."""
        async with self.db.session() as session:
            row = (
                await session.execute(select(sync_runs).where(sync_runs.c.id == run_id))
            ).first()
            return self._row_to_run(row) if row else None

    async def find_unfinished(self, source: str) -> SyncRun | None:
        """Most recent run for a source that is still started or running."""
        async with self.db.session() as session:
            row = (
                await session.execute(
                    select(sync_runs)
                    .where(sync_runs.c.source == source)
                    .where(sync_runs.c.status.in_(UNFINISHED_RUN_STATUSES))
                    .order_by(sync_runs.c.started_at.desc())
                    .limit(1)
                )
            ).first()
            return self._row_to_run(row) if row else None

    async def stale_runs(self) -> list[SyncRun]:
        """Unfinished runs older than the staleness threshold."""
        cutoff = self._clock() - self.stale_after
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(sync_runs)
                    .where(sync_runs.c.status.in_(UNFINISHED_RUN_STATUSES))
                    .where(sync_runs.c.started_at < cutoff)
                    .order_by(sync_runs.c.started_at)
                )
            ).fetchall()
            return [self._row_to_run(r) for r in rows]

    async def list_runs(
        self,
        source: str | None = None,
        status: RunStatus | str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[SyncRun], int]:
        """Get run history, newest first.

        Args:
            source: Filter by source key
            status: Filter by run status
            limit: Page size
            offset: Pagination offset

        Returns:
            Tuple of (runs, total matching runs)
        """
        filters = []
        if source:
            filters.append(sync_runs.c.source == source)
        if status:
            filters.append(sync_runs.c.status == RunStatus(status).value)

        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(sync_runs)
                    .where(*filters)
                    .order_by(sync_runs.c.started_at.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).fetchall()
            total = (
                await session.execute(select(func.count()).select_from(sync_runs).where(*filters))
            ).scalar_one()
            return [self._row_to_run(r) for r in rows], total

    async def latest_runs(self) -> list[SyncRun]:
        """Most recent run per source, by started_at."""
        latest = (
            select(
                sync_runs.c.source,
                func.max(sync_runs.c.started_at).label("max_started"),
            )
            .group_by(sync_runs.c.source)
            .subquery()
        )
        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(sync_runs)
                    .join(
                        latest,
                        (sync_runs.c.source == latest.c.source)
                        & (sync_runs.c.started_at == latest.c.max_started),
                    )
                    .order_by(sync_runs.c.started_at.desc())
                )
            ).fetchall()

        by_source: dict[str, SyncRun] = {}
        for row in rows:
            by_source.setdefault(row.source, self._row_to_run(row))
        return list(by_source.values())

    async def status_summary(self, window_days: int | None = None) -> list[SourceStatus]:
        """Per-source status: latest run, staleness and recent aggregates.

        Read-only; used by the status endpoint and operational dashboards.
        """
        window_days = window_days or get_settings().status_window_days
        now = self._clock()
        since = now - timedelta(days=window_days)

        aggregate = (
            select(
                sync_runs.c.source,
                func.count().label("runs"),
                func.sum(case((sync_runs.c.status == RunStatus.COMPLETED.value, 1), else_=0)).label("completed"),
                func.sum(case((sync_runs.c.status == RunStatus.FAILED.value, 1), else_=0)).label("failed"),
                func.sum(sync_runs.c.records_processed).label("processed"),
                func.sum(sync_runs.c.records_created).label("created"),
                func.sum(sync_runs.c.records_updated).label("updated"),
                func.sum(sync_runs.c.records_skipped).label("skipped"),
            )
            .where(sync_runs.c.started_at >= since)
            .group_by(sync_runs.c.source)
        )
        async with self.db.session() as session:
            agg_rows = {r.source: r for r in (await session.execute(aggregate)).fetchall()}

        summaries = []
        for run in await self.latest_runs():
            agg = agg_rows.get(run.source)
            summaries.append(
                SourceStatus(
                    source=run.source,
                    latest_run=run,
                    is_stale=(
                        not run.is_finished
                        and run.age_seconds(now) > self.stale_after.total_seconds()
                    ),
                    window_days=window_days,
                    runs=agg.runs if agg else 0,
                    completed_runs=int(agg.completed or 0) if agg else 0,
                    failed_runs=int(agg.failed or 0) if agg else 0,
                    totals=SyncCounts(
                        processed=int(agg.processed or 0),
                        created=int(agg.created or 0),
                        updated=int(agg.updated or 0),
                        skipped=int(agg.skipped or 0),
                    )
                    if agg
                    else SyncCounts(),
                )
            )
        return sorted(summaries, key=lambda s: s.source)

    def _row_to_run(self, row) -> SyncRun:
        """Convert database row to SyncRun."""
        m = row._mapping
        return SyncRun(
            id=m["id"],
            source=m["source"],
            status=RunStatus(m["status"]),
            counts=SyncCounts(
                processed=m["records_processed"] or 0,
                created=m["records_created"] or 0,
                updated=m["records_updated"] or 0,
                skipped=m["records_skipped"] or 0,
            ),
            error_message=m["error_message"],
            started_at=m["started_at"],
            completed_at=m["completed_at"],
            duration_ms=m["duration_ms"],
            metadata=m["metadata"] or {},
            log_output=m["log_output"],
        )
