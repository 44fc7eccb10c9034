"""Drains the retry queue.

Claims due tasks one at a time and dispatches each to the handler for
its entity type. A handler that returns completes the task; one that
raises records a failed attempt (the queue applies backoff or marks the
task permanently failed).
"""

from typing import Awaitable, Callable

from pydantic import BaseModel

from ..db import Database
from ..logging import get_context_logger
from ..models import CandidateRecord, NewsItem, QueueTask, TaskStatus
from ..reconcile import CandidateCommitter, NewsCommitter, validate
from ..resolution import EntityResolver, NewsMatcher
from ..sync.changes import ChangeDetector
from ..sync.errors import ItemError
from ..sync.queue import RetryQueue

logger = get_context_logger(__name__)

TaskHandler = Callable[[QueueTask], Awaitable[None]]


class DrainResult(BaseModel):
    claimed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    recovered: int = 0


class QueueDrainer:
    """Runs queued tasks through per-entity-type handlers."""

    def __init__(
        self,
        db: Database,
        queue: RetryQueue | None = None,
        handlers: dict[str, TaskHandler] | None = None,
    ):
        self.db = db
        self.queue = queue or RetryQueue(db)
        self._resolver: EntityResolver | None = None
        self._matcher: NewsMatcher | None = None
        self.handlers: dict[str, TaskHandler] = {
            "candidate": self.retry_candidate,
            "news_mention": self.retry_news_mention,
            "baseline_scores": self.seed_scores,
        }
        if handlers:
            self.handlers.update(handlers)

    def register(self, entity_type: str, handler: TaskHandler) -> None:
        self.handlers[entity_type] = handler

    async def drain(self, source: str | None = None, max_tasks: int = 50) -> DrainResult:
        """Process up to ``max_tasks`` due tasks.

        Args:
            source: Only drain tasks of this source
            max_tasks: Upper bound on tasks claimed in this call
        """
        result = DrainResult(recovered=await self.queue.recover_stalled())

        while result.claimed < max_tasks:
            task = await self.queue.claim_next(source)
            if task is None:
                break
            result.claimed += 1

            handler = self.handlers.get(task.entity_type)
            try:
                if handler is None:
                    raise ItemError(f"No handler for entity type '{task.entity_type}'")
                await handler(task)
            except Exception as e:
                logger.warning(
                    f"Queue task {task.id} ({task.entity_type}) failed: {e}",
                    extra={"task_id": str(task.id), "source": task.source},
                )
                failed = await self.queue.fail(task.id, e)
                if failed.status == TaskStatus.FAILED:
                    result.failed += 1
                else:
                    result.retried += 1
                continue

            await self.queue.complete(task.id)
            result.completed += 1

        if result.claimed:
            logger.info(
                f"Drained {result.claimed} task(s): {result.completed} completed, "
                f"{result.retried} retried, {result.failed} failed"
            )
        return result

    # =========================
    # Handlers
    # =========================

    async def retry_candidate(self, task: QueueTask) -> None:
        payload = task.metadata.get("record")
        if not payload:
            raise ItemError("Task has no candidate record")
        if self._resolver is None:
            self._resolver = EntityResolver(self.db)
            await self._resolver.refresh()

        record = CandidateRecord.model_validate(payload)
        report = await validate([record], self._resolver)
        if report.invalid:
            raise ItemError("; ".join(report.invalid[0].errors))

        committer = CandidateCommitter(self.db, detector=ChangeDetector(self.db), source=task.source)
        result = await committer.commit(
            report.valid, update_existing=bool(task.metadata.get("update_existing"))
        )
        if result.errors:
            raise ItemError(result.errors[0].error)

    async def retry_news_mention(self, task: QueueTask) -> None:
        payload = task.metadata.get("item")
        if not payload:
            raise ItemError("Task has no news item")
        if self._matcher is None:
            self._matcher = NewsMatcher(self.db)

        item = NewsItem.model_validate(payload)
        matches = await self._matcher.match(item)
        if matches:
            await NewsCommitter(self.db).store(item, matches[0])

    async def seed_scores(self, task: QueueTask) -> None:
        await CandidateCommitter(self.db).seed_baseline_scores()
