"""Retry queue for deferred sync work.

A durable, priority-ordered backlog of per-entity (or per-source) sync
tasks with bounded retries and exponential backoff.

Claiming is a single conditional UPDATE: the row is selected and moved
from ``pending`` to ``running`` in one statement (with ``SKIP LOCKED``
on PostgreSQL), so concurrent workers never receive the same task.
"""

from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy import func, select, update

from ..config import get_settings
from ..db import Database
from ..logging import get_context_logger, log_queue_event
from ..models import QueueStats, QueueTask, TaskStatus
from ..schema import sync_queue
from .errors import TaskNotFoundError, TaskStateError

logger = get_context_logger(__name__)


def compute_backoff(
    attempts: int,
    base_seconds: float,
    max_seconds: float,
) -> timedelta:
    """Delay before the next attempt: ``base * 2^attempts``, capped."""
    return timedelta(seconds=min(base_seconds * (2 ** attempts), max_seconds))


class RetryQueue:
    """Manages the retry queue.

    Provides methods for:
    - Enqueuing deferred work
    - Atomically claiming the most urgent eligible task
    - Completing and failing tasks (with backoff and permanent failure)
    - Operator requeue of permanently failed tasks
    - Queue statistics
    """

    def __init__(
        self,
        db: Database,
        max_attempts: int | None = None,
        default_priority: int | None = None,
        backoff_base_seconds: float | None = None,
        backoff_max_seconds: float | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        settings = get_settings()
        self.db = db
        self.max_attempts = max_attempts or settings.queue_max_attempts
        self.default_priority = (
            default_priority if default_priority is not None else settings.queue_default_priority
        )
        self.backoff_base_seconds = (
            backoff_base_seconds
            if backoff_base_seconds is not None
            else settings.queue_backoff_base_seconds
        )
        self.backoff_max_seconds = (
            backoff_max_seconds
            if backoff_max_seconds is not None
            else settings.queue_backoff_max_seconds
        )
        self._clock = clock

    async def enqueue(
        self,
        source: str,
        entity_type: str,
        entity_id: str | None = None,
        priority: int | None = None,
        metadata: dict[str, Any] | None = None,
        max_attempts: int | None = None,
        delay: timedelta | None = None,
    ) -> UUID:
        """Add a task to the queue.

        Args:
            source: Source key the work belongs to
            entity_type: Kind of entity the task concerns
            entity_id: Entity identifier; None for source-level tasks
            priority: Lower is more urgent
            metadata: Payload needed to redo the work
            max_attempts: Override of the configured attempt budget
            delay: Earliest execution offset from now

        Returns:
            The new task ID
        """
        now = self._clock()
        task_id = uuid4()
        attempts_budget = max_attempts or self.max_attempts
        if attempts_budget < 1:
            raise ValueError("max_attempts must be at least 1")

        async with self.db.session() as session:
            await session.execute(
                sync_queue.insert().values(
                    id=task_id,
                    source=source,
                    entity_type=entity_type,
                    entity_id=str(entity_id) if entity_id is not None else None,
                    priority=priority if priority is not None else self.default_priority,
                    status=TaskStatus.PENDING.value,
                    attempts=0,
                    max_attempts=attempts_budget,
                    scheduled_at=now + (delay or timedelta(0)),
                    created_at=now,
                    metadata=metadata or {},
                )
            )

        log_queue_event("enqueued", str(task_id), source)
        return task_id

    async def claim_next(self, source: str | None = None) -> QueueTask | None:
        """Atomically claim the most urgent eligible task.

        Picks the pending task with ``scheduled_at <= now`` ordered by
        priority ASC, then scheduled_at ASC (oldest first among equal
        priorities), and flips it to ``running`` in the same statement.

        Args:
            source: Restrict to tasks of one source

        Returns:
            The claimed task, or None if nothing is eligible
        """
        now = self._clock()
        candidate = (
            select(sync_queue.c.id)
            .where(sync_queue.c.status == TaskStatus.PENDING.value)
            .where(sync_queue.c.scheduled_at <= now)
            .order_by(
                sync_queue.c.priority.asc(),
                sync_queue.c.scheduled_at.asc(),
                sync_queue.c.created_at.asc(),
                sync_queue.c.id.asc(),
            )
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        if source is not None:
            candidate = candidate.where(sync_queue.c.source == source)

        stmt = (
            update(sync_queue)
            .where(sync_queue.c.id == candidate.scalar_subquery())
            .where(sync_queue.c.status == TaskStatus.PENDING.value)
            .values(status=TaskStatus.RUNNING.value, started_at=now)
            .returning(*sync_queue.c)
        )

        async with self.db.session() as session:
            row = (await session.execute(stmt)).first()

        if row is None:
            return None

        task = self._row_to_task(row)
        log_queue_event("claimed", str(task.id), task.source, task.attempts)
        return task

    async def complete(self, task_id: UUID) -> QueueTask:
        """Mark a running task as completed.

        Raises:
            TaskNotFoundError: No such task
            TaskStateError: The task is not running
        """
        now = self._clock()
        async with self.db.session() as session:
            row = (
                await session.execute(
                    update(sync_queue)
                    .where(sync_queue.c.id == task_id)
                    .where(sync_queue.c.status == TaskStatus.RUNNING.value)
                    .values(status=TaskStatus.COMPLETED.value, completed_at=now)
                    .returning(*sync_queue.c)
                )
            ).first()
            if row is None:
                await self._raise_for_state(session, task_id, "complete")

        task = self._row_to_task(row)
        log_queue_event("completed", str(task_id), task.source, task.attempts)
        return task

    async def fail(self, task_id: UUID, error: BaseException | str) -> QueueTask:
        """Record a failed attempt of a running task.

        Increments ``attempts``. Below ``max_attempts`` the task goes back
        to ``pending`` with ``scheduled_at`` pushed out by the backoff;
        otherwise it becomes permanently ``failed``.

        Raises:
            TaskNotFoundError: No such task
            TaskStateError: The task is not running
        """
        message = error if isinstance(error, str) else (str(error) or type(error).__name__)
        now = self._clock()

        async with self.db.session() as session:
            current = (
                await session.execute(
                    select(sync_queue).where(sync_queue.c.id == task_id).with_for_update()
                )
            ).first()
            if current is None:
                raise TaskNotFoundError(task_id)
            if current.status != TaskStatus.RUNNING.value:
                raise TaskStateError(task_id, current.status, "fail")

            attempts = min(current.attempts + 1, current.max_attempts)
            if attempts < current.max_attempts:
                values = {
                    "status": TaskStatus.PENDING.value,
                    "scheduled_at": now
                    + compute_backoff(attempts, self.backoff_base_seconds, self.backoff_max_seconds),
                    "started_at": None,
                }
                action = "retry"
            else:
                values = {"status": TaskStatus.FAILED.value, "completed_at": now}
                action = "failed"

            row = (
                await session.execute(
                    update(sync_queue)
                    .where(sync_queue.c.id == task_id)
                    .where(sync_queue.c.status == TaskStatus.RUNNING.value)
                    .values(attempts=attempts, last_error=message, **values)
                    .returning(*sync_queue.c)
                )
            ).first()
            if row is None:
                await self._raise_for_state(session, task_id, "fail")

        task = self._row_to_task(row)
        log_queue_event(action, str(task_id), task.source, task.attempts, message)
        return task

    async def requeue(self, task_id: UUID, priority: int | None = None) -> QueueTask:
        """Operator action: reset a permanently failed task.

        The only sanctioned way out of the ``failed`` terminal state:
        status back to ``pending``, attempts to 0, eligible immediately.

        Raises:
            TaskNotFoundError: No such task
            TaskStateError: The task is not failed
        """
        values: dict[str, Any] = {
            "status": TaskStatus.PENDING.value,
            "attempts": 0,
            "last_error": None,
            "scheduled_at": self._clock(),
            "started_at": None,
            "completed_at": None,
        }
        if priority is not None:
            values["priority"] = priority

        async with self.db.session() as session:
            row = (
                await session.execute(
                    update(sync_queue)
                    .where(sync_queue.c.id == task_id)
                    .where(sync_queue.c.status == TaskStatus.FAILED.value)
                    .values(**values)
                    .returning(*sync_queue.c)
                )
            ).first()
            if row is None:
                await self._raise_for_state(session, task_id, "requeue")

        task = self._row_to_task(row)
        log_queue_event("requeued", str(task_id), task.source)
        logger.info(f"Requeued task {task_id}", extra={"task_id": str(task_id)})
        return task

    async def recover_stalled(self, older_than: timedelta | None = None) -> int:
        """Return tasks stuck in ``running`` (crashed worker) to ``pending``.

        Args:
            older_than: Claim age after which a running task is considered
                abandoned; defaults to the configured claim timeout

        Returns:
            Number of tasks released
        """
        if older_than is None:
            older_than = timedelta(minutes=get_settings().queue_claim_timeout_minutes)
        now = self._clock()
        async with self.db.session() as session:
            result = await session.execute(
                update(sync_queue)
                .where(sync_queue.c.status == TaskStatus.RUNNING.value)
                .where(sync_queue.c.started_at < now - older_than)
                .values(status=TaskStatus.PENDING.value, started_at=None, scheduled_at=now)
            )
            released = result.rowcount

        if released:
            logger.warning(f"Released {released} stalled queue task(s)")
        return released

    async def get_task(self, task_id: UUID) -> QueueTask | None:
        """Get a specific task by ID."""
        async with self.db.session() as session:
            row = (
                await session.execute(select(sync_queue).where(sync_queue.c.id == task_id))
            ).first()
            return self._row_to_task(row) if row else None

    async def list_tasks(
        self,
        status: TaskStatus | str | None = None,
        source: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[QueueTask]:
        """List tasks in claim order.

        Args:
            status: Filter by task status
            source: Filter by source key
            limit: Maximum to return
            offset: Pagination offset
        """
        filters = []
        if status:
            filters.append(sync_queue.c.status == TaskStatus(status).value)
        if source:
            filters.append(sync_queue.c.source == source)

        async with self.db.session() as session:
            rows = (
                await session.execute(
                    select(sync_queue)
                    .where(*filters)
                    .order_by(
                        sync_queue.c.priority.asc(),
                        sync_queue.c.scheduled_at.asc(),
                        sync_queue.c.created_at.asc(),
                    )
                    .limit(limit)
                    .offset(offset)
                )
            ).fetchall()
            return [self._row_to_task(r) for r in rows]

    async def stats(self, source: str | None = None) -> QueueStats:
        """Get status counts for the queue."""
        filters = [sync_queue.c.source == source] if source else []
        async with self.db.session() as session:
            status_rows = (
                await session.execute(
                    select(sync_queue.c.status, func.count().label("count"))
                    .where(*filters)
                    .group_by(sync_queue.c.status)
                )
            ).fetchall()
            source_rows = (
                await session.execute(
                    select(sync_queue.c.source, func.count().label("count"))
                    .where(*filters)
                    .where(sync_queue.c.status.in_([TaskStatus.PENDING.value, TaskStatus.RUNNING.value]))
                    .group_by(sync_queue.c.source)
                )
            ).fetchall()

        status_counts = {r.status: r.count for r in status_rows}
        return QueueStats(
            total=sum(status_counts.values()),
            pending=status_counts.get(TaskStatus.PENDING.value, 0),
            running=status_counts.get(TaskStatus.RUNNING.value, 0),
            completed=status_counts.get(TaskStatus.COMPLETED.value, 0),
            failed=status_counts.get(TaskStatus.FAILED.value, 0),
            by_source={r.source: r.count for r in source_rows},
        )

    async def _raise_for_state(self, session, task_id: UUID, action: str) -> None:
        row = (
            await session.execute(select(sync_queue.c.status).where(sync_queue.c.id == task_id))
        ).first()
        if row is None:
            raise TaskNotFoundError(task_id)
        raise TaskStateError(task_id, row.status, action)

    def _row_to_task(self, row) -> QueueTask:
        """Convert database row to QueueTask."""
        m = row._mapping
        return QueueTask(
            id=m["id"],
            source=m["source"],
            entity_type=m["entity_type"],
            entity_id=m["entity_id"],
            priority=m["priority"],
            status=TaskStatus(m["status"]),
            attempts=m["attempts"],
            max_attempts=m["max_attempts"],
            last_error=m["last_error"],
            scheduled_at=m["scheduled_at"],
            started_at=m["started_at"],
            completed_at=m["completed_at"],
            created_at=m["created_at"],
            metadata=m["metadata"] or {},
        )
