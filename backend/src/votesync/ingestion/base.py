"""Abstract base class for sync workers.

Every source adapter implements ``fetch``/``normalize``/``process`` and
inherits the run lifecycle: a ledger run is opened, items are processed
in fetch order with per-item error capture, counters are flushed as the
run progresses, and the run is always closed (completed or failed), even
when the task is cancelled or times out.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, Field

from ..db import Database
from ..logging import get_context_logger, log_sync_complete, log_sync_error, log_sync_start
from ..models import SyncCounts
from ..sync.errors import FetchError
from ..sync.ledger import SyncRunLedger
from ..sync.run_log import RunLogHandler, finish_capture, start_capture

# Raw upstream item type
T = TypeVar("T")
# Normalized payload type
P = TypeVar("P")

# Flush counters to the ledger every N items
COUNTER_FLUSH_EVERY = 50

# Bound on per-item errors kept in results and run metadata
MAX_REPORTED_ERRORS = 200


class TriggerRequest(BaseModel):
    """Input of a sync trigger."""

    source: str
    since_cursor: str | None = None
    limit: int | None = None
    params: dict[str, Any] = Field(default_factory=dict)


class TriggerResult(BaseModel):
    """Result of a sync trigger."""

    run_id: UUID | None = None
    source: str
    success: bool
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)
    duration_ms: int = 0
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ItemOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class BaseSyncWorker(ABC, Generic[T, P]):
    """Base class for source adapters.

    Subclasses set ``source_name`` and implement:
    - ``fetch``: pull raw items (raise ``FetchError`` if the source is down)
    - ``is_relevant``: cheap filter applied before any other work
    - ``normalize``: turn a raw item into a payload with a natural key
    - ``process``: resolve, check for changes and commit one payload
    """

    source_name: str = ""

    def __init__(self, db: Database, ledger: SyncRunLedger | None = None):
        self.db = db
        self.ledger = ledger or SyncRunLedger(db)
        self.run_id: UUID | None = None
        self.metadata: dict[str, Any] = {}
        self._logger = None

    @property
    def logger(self):
        """Get a logger with run context."""
        if self._logger is None:
            self._logger = get_context_logger(
                f"votesync.ingestion.{self.source_name}",
                source=self.source_name,
            )
        return self._logger

    @abstractmethod
    async def fetch(self, request: TriggerRequest) -> list[T]:
        """Fetch raw items from the upstream source."""
        ...

    def is_relevant(self, item: T) -> bool:
        """Relevance filter; everything is relevant by default."""
        return True

    @abstractmethod
    def normalize(self, item: T) -> P:
        """Normalize a raw item. Raises ``ItemError`` if it cannot be."""
        ...

    @abstractmethod
    async def process(self, payload: P) -> ItemOutcome:
        """Commit one normalized payload."""
        ...

    def describe(self, item: T) -> str:
        """Short label for log lines."""
        return str(getattr(item, "title", None) or getattr(item, "full_name", None) or item)[:80]

    async def prepare(self, request: TriggerRequest) -> None:
        """Hook run after the fetch and before the first item."""

    async def finalize(self) -> None:
        """Hook run after the last item, before the run is closed."""

    async def close(self) -> None:
        """Release resources held by the worker."""

    async def run(self, request: TriggerRequest | None = None) -> TriggerResult:
        """Run one sync of this source.

        Raises:
            UnfinishedRunError: Another run of this source is still open

        Returns:
            TriggerResult; ``success`` is False when the fetch failed or
            an unexpected error aborted the run
        """
        request = request or TriggerRequest(source=self.source_name)
        started = time.monotonic()
        self.metadata = {}

        self.run_id = await self.ledger.start(
            self.source_name,
            metadata={"since_cursor": request.since_cursor, "limit": request.limit},
        )
        run_id_str = str(self.run_id)

        start_capture(run_id_str)
        handler = RunLogHandler(run_id_str)
        handler.setFormatter(logging.Formatter("%(message)s"))
        source_logger = logging.getLogger(f"votesync.ingestion.{self.source_name}")
        source_logger.addHandler(handler)

        totals = SyncCounts()
        pending = SyncCounts()
        errors: list[dict[str, Any]] = []
        error_count = 0
        closed = False

        def result(success: bool, error: str | None = None) -> TriggerResult:
            return TriggerResult(
                run_id=self.run_id,
                source=self.source_name,
                success=success,
                processed=totals.processed,
                created=totals.created,
                updated=totals.updated,
                skipped=totals.skipped,
                errors=errors,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=error,
                metadata=dict(self.metadata),
            )

        async def close_failed(error: BaseException | str) -> None:
            nonlocal closed
            message = error if isinstance(error, str) else (str(error) or type(error).__name__)
            log_sync_error(self.source_name, run_id_str, message)
            if pending.processed:
                await self.ledger.increment_counters(self.run_id, pending)
            await self.ledger.fail(
                self.run_id,
                message,
                metadata={**self.metadata, "errors": error_count},
                log_output=finish_capture(run_id_str),
            )
            closed = True

        try:
            log_sync_start(self.source_name, run_id_str)
            await self.ledger.mark_running(self.run_id)

            try:
                items = await self.fetch(request)
            except FetchError:
                raise
            except Exception as e:
                raise FetchError(self.source_name, str(e) or type(e).__name__) from e

            self.metadata["fetched"] = len(items)
            self.logger.info(f"Fetched {len(items)} items", extra={"run_id": run_id_str})
            await self.prepare(request)

            for item in items:
                if request.limit and totals.processed >= request.limit:
                    self.logger.info(f"Reached limit of {request.limit} items")
                    break

                delta = SyncCounts(processed=1)
                label = self.describe(item)
                try:
                    if not self.is_relevant(item):
                        delta.skipped = 1
                        self.metadata["irrelevant"] = self.metadata.get("irrelevant", 0) + 1
                    else:
                        outcome = await self.process(self.normalize(item))
                        if outcome == ItemOutcome.CREATED:
                            delta.created = 1
                        elif outcome == ItemOutcome.UPDATED:
                            delta.updated = 1
                        else:
                            delta.skipped = 1
                        self.logger.debug(f"[{totals.processed + 1}] {outcome.value}: {label}")
                except Exception as e:
                    error_count += 1
                    error_info = {
                        "item": label,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                    if len(errors) < MAX_REPORTED_ERRORS:
                        errors.append(error_info)
                    self.logger.warning(
                        f"[{totals.processed + 1}] FAILED: {label}: {e}", extra=error_info
                    )

                totals = totals + delta
                pending = pending + delta
                if pending.processed >= COUNTER_FLUSH_EVERY:
                    await self.ledger.increment_counters(self.run_id, pending)
                    pending = SyncCounts()

            await self.finalize()
            await self.ledger.increment_counters(self.run_id, pending)
            pending = SyncCounts()

            self.logger.info(
                f"Sync complete: {totals.processed} processed, {totals.created} created, "
                f"{totals.updated} updated, {totals.skipped} skipped, {error_count} errors"
            )
            duration_ms = int((time.monotonic() - started) * 1000)
            await self.ledger.complete(
                self.run_id,
                metadata={**self.metadata, "errors": error_count},
                log_output=finish_capture(run_id_str),
            )
            closed = True
            log_sync_complete(self.source_name, run_id_str, totals.processed, duration_ms)
            return result(True)

        except FetchError as e:
            self.logger.error(f"Fetch failed: {e}")
            await close_failed(e)
            return result(False, str(e))

        except Exception as e:
            self.logger.exception("Sync failed")
            if not closed:
                await close_failed(e)
            return result(False, str(e) or type(e).__name__)

        except BaseException as e:
            # Cancellation or interpreter shutdown: still close the run
            if not closed:
                reason = "Run cancelled" if isinstance(e, asyncio.CancelledError) else repr(e)
                await asyncio.shield(close_failed(reason))
            raise

        finally:
            source_logger.removeHandler(handler)
            finish_capture(run_id_str)
            await self.close()
