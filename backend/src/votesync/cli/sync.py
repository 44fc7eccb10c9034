"""CLI commands for running and operating syncs.

Usage:
    votesync sync news [--limit N] [--since ISO_DATE] [--feed ID ...]
    votesync sync candidates FILE --cargo senador [--update-existing]
    votesync sync status
    votesync sync runs [--source SOURCE]
    votesync sync abandon RUN_ID
    votesync sync queue [--status failed]
    votesync sync requeue TASK_ID
    votesync sync drain [--max-tasks N]
"""

import sys
from pathlib import Path
from uuid import UUID

import click

from ..ingestion import QueueDrainer, TriggerRequest, TriggerResult, trigger
from ..ingestion.candidates import CANDIDATE_SOURCE
from ..ingestion.news import NEWS_SOURCE
from ..logging import setup_logging
from ..models import CARGO_VALUES, TaskStatus
from ..sync import RetryQueue, SyncError, SyncRunLedger
from ._runner import run_with_db


@click.group(name="sync")
def cli():
    """Sync commands."""
    setup_logging()


def _print_result(result: TriggerResult, verbose: bool = False) -> None:
    """Print a trigger result."""
    status = "completed" if result.success else "FAILED"
    click.echo(f"\nSync {result.source} {status} (run {result.run_id})")
    click.echo(f"  Processed: {result.processed}")
    click.echo(f"  Created:   {result.created}")
    click.echo(f"  Updated:   {result.updated}")
    click.echo(f"  Skipped:   {result.skipped}")
    click.echo(f"  Errors:    {len(result.errors)}")
    click.echo(f"  Duration:  {result.duration_ms / 1000:.1f}s")
    if result.error:
        click.echo(f"  Error: {result.error}", err=True)
    if verbose:
        for error in result.errors[:20]:
            click.echo(f"    - {error.get('item')}: {error.get('error')}")
        for key, value in result.metadata.items():
            click.echo(f"  {key}: {value}")


def _run_trigger(request: TriggerRequest, verbose: bool, **options) -> None:
    try:
        result = run_with_db(lambda db: trigger(db, request, **options))
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    _print_result(result, verbose)
    if not result.success:
        sys.exit(1)


@cli.command(name="news")
@click.option("--limit", type=int, default=None, help="Maximum number of items to process")
@click.option("--since", "since_cursor", default=None, help="Only items published after this ISO date")
@click.option("--feed", "feeds", multiple=True, help="Feed id to fetch (repeatable; default: all)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def sync_news(limit: int | None, since_cursor: str | None, feeds: tuple[str, ...], verbose: bool):
    """Fetch political news feeds and store candidate/party mentions.

    Examples:

        # All feeds
        votesync sync news

        # Two feeds, recent items only
        votesync sync news --feed rpp --feed andina --since 2026-01-01
    """
    click.echo("Starting news sync...")
    params = {"feeds": list(feeds)} if feeds else {}
    _run_trigger(
        TriggerRequest(source=NEWS_SOURCE, since_cursor=since_cursor, limit=limit, params=params),
        verbose,
    )


@cli.command(name="candidates")
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--cargo", type=click.Choice(CARGO_VALUES), required=True, help="Role of every row")
@click.option("--update-existing", is_flag=True, help="Refresh changed, unverified candidates")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def import_candidates(file: Path, cargo: str, update_existing: bool, verbose: bool):
    """Import candidates from a JSON or CSV file.

    Examples:

        votesync sync candidates senadores.json --cargo senador

        votesync sync candidates diputados.csv --cargo diputado --update-existing
    """
    click.echo(f"Importing {cargo} candidates from {file}...")
    _run_trigger(
        TriggerRequest(
            source=CANDIDATE_SOURCE,
            params={"cargo": cargo, "update_existing": update_existing},
        ),
        verbose,
        path=file,
    )


@cli.command(name="status")
@click.option("--window-days", type=int, default=None, help="Aggregate window (default: settings)")
def show_status(window_days: int | None):
    """Show the latest run per source and retry-queue counts."""

    async def fetch(db):
        return (
            await SyncRunLedger(db).status_summary(window_days),
            await RetryQueue(db).stats(),
        )

    statuses, queue_stats = run_with_db(fetch)

    if not statuses:
        click.echo("No sync runs recorded.")
    for status in statuses:
        run = status.latest_run
        flag = " [STUCK]" if status.is_stale else ""
        click.echo(f"{status.source}: {run.status.value}{flag} (started {run.started_at:%Y-%m-%d %H:%M})")
        click.echo(
            f"  last {status.window_days}d: {status.runs} runs, "
            f"{status.completed_runs} completed, {status.failed_runs} failed, "
            f"{status.totals.created} created, {status.totals.skipped} skipped"
        )
        if run.error_message:
            click.echo(f"  error: {run.error_message}")

    click.echo(
        f"Queue: {queue_stats.pending} pending, {queue_stats.running} running, "
        f"{queue_stats.completed} completed, {queue_stats.failed} failed"
    )


@cli.command(name="runs")
@click.option("--source", default=None, help="Filter by source")
@click.option("--limit", type=int, default=20, help="Number of runs to show")
def list_runs(source: str | None, limit: int):
    """List recent sync runs."""
    runs, total = run_with_db(lambda db: SyncRunLedger(db).list_runs(source=source, limit=limit))
    click.echo(f"{total} run(s)")
    for run in runs:
        click.echo(
            f"{run.id}  {run.source:<12} {run.status.value:<10} "
            f"{run.started_at:%Y-%m-%d %H:%M}  "
            f"p={run.counts.processed} c={run.counts.created} "
            f"u={run.counts.updated} s={run.counts.skipped}"
        )


@cli.command(name="abandon")
@click.argument("run_id", type=click.UUID)
@click.option("--reason", default="Abandoned by operator", help="Recorded as the run's error")
def abandon_run(run_id: UUID, reason: str):
    """Close a stuck run as failed so its source can run again."""
    try:
        run = run_with_db(lambda db: SyncRunLedger(db).abandon(run_id, reason))
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Run {run.id} ({run.source}) marked failed.")


@cli.command(name="queue")
@click.option(
    "--status",
    type=click.Choice([s.value for s in TaskStatus]),
    default=None,
    help="Filter by task status",
)
@click.option("--source", default=None, help="Filter by source")
@click.option("--limit", type=int, default=50, help="Number of tasks to show")
def list_queue(status: str | None, source: str | None, limit: int):
    """List retry-queue tasks in claim order."""
    tasks = run_with_db(lambda db: RetryQueue(db).list_tasks(status, source, limit))
    if not tasks:
        click.echo("Queue is empty.")
    for task in tasks:
        click.echo(
            f"{task.id}  {task.source:<12} {task.entity_type:<16} {task.status.value:<10} "
            f"p={task.priority} attempts={task.attempts}/{task.max_attempts}"
            + (f"  last_error={task.last_error}" if task.last_error else "")
        )


@cli.command(name="requeue")
@click.argument("task_id", type=click.UUID)
@click.option("--priority", type=int, default=None, help="New priority (lower is more urgent)")
def requeue_task(task_id: UUID, priority: int | None):
    """Reset a permanently failed task to pending."""
    try:
        task = run_with_db(lambda db: RetryQueue(db).requeue(task_id, priority))
    except SyncError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Task {task.id} requeued (priority {task.priority}).")


@cli.command(name="drain")
@click.option("--source", default=None, help="Only drain tasks of this source")
@click.option("--max-tasks", type=int, default=50, help="Maximum tasks to process")
def drain_queue(source: str | None, max_tasks: int):
    """Process due retry-queue tasks."""
    result = run_with_db(lambda db: QueueDrainer(db).drain(source, max_tasks))
    click.echo(
        f"Claimed {result.claimed}: {result.completed} completed, "
        f"{result.retried} retried, {result.failed} failed"
        + (f" ({result.recovered} stalled task(s) released)" if result.recovered else "")
    )
