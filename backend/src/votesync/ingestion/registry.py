"""Trigger interface: maps source keys to sync workers.

``params`` on a TriggerRequest may come from an HTTP caller. Options
that reach the local machine, such as a candidate file path, are keyword
arguments of ``trigger`` and are only passed by in-process callers like
the CLI.
"""

from pathlib import Path
from typing import Any, Callable

from ..db import Database
from ..sync.errors import UnknownSourceError
from .base import BaseSyncWorker, TriggerRequest, TriggerResult
from .candidates import CANDIDATE_SOURCE, CandidateImportWorker
from .news import NEWS_SOURCE, NewsFeedWorker

WorkerFactory = Callable[..., BaseSyncWorker]


def _news_worker(db: Database, params: dict[str, Any]) -> BaseSyncWorker:
    return NewsFeedWorker(db)


def _candidate_worker(
    db: Database, params: dict[str, Any], path: Path | str | None = None
) -> BaseSyncWorker:
    if "path" in params:
        raise ValueError("Candidate files can only be imported from the command line; send rows or csv")
    cargo = params.get("cargo")
    if not cargo:
        raise ValueError("Candidate import requires a cargo")
    return CandidateImportWorker(
        db,
        cargo=cargo,
        rows=params.get("rows"),
        csv_text=params.get("csv"),
        path=path,
        update_existing=bool(params.get("update_existing", False)),
    )


WORKERS: dict[str, WorkerFactory] = {
    NEWS_SOURCE: _news_worker,
    CANDIDATE_SOURCE: _candidate_worker,
}


def available_sources() -> list[str]:
    return sorted(WORKERS)


def build_worker(db: Database, request: TriggerRequest, **options: Any) -> BaseSyncWorker:
    """Instantiate the worker for ``request.source``.

    Raises:
        UnknownSourceError: No worker is registered for the source
        ValueError: ``request.params`` are missing or not accepted
    """
    factory = WORKERS.get(request.source)
    if factory is None:
        raise UnknownSourceError(request.source, available_sources())
    return factory(db, request.params, **options)


async def trigger(db: Database, request: TriggerRequest, **options: Any) -> TriggerResult:
    """Run one sync of ``request.source`` and return its result."""
    return await build_worker(db, request, **options).run(request)
