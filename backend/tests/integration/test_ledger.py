"""Integration tests for the sync run ledger."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from votesync.models import RunStatus, SyncCounts
from votesync.sync import (
    RunFinalizedError,
    RunInProgressError,
    RunNotFoundError,
    StaleRunError,
    SyncRunLedger,
    UnfinishedRunError,
)


@pytest.fixture
def ledger(db, clock) -> SyncRunLedger:
    return SyncRunLedger(db, stale_after=timedelta(minutes=60), clock=clock)


@pytest.mark.integration
class TestRunLifecycle:
    """Tests for starting, counting and closing runs."""

    @pytest.mark.asyncio
    async def test_start_creates_started_run(self, ledger, clock):
        run_id = await ledger.start("news", metadata={"limit": 10})

        run = await ledger.get_run(run_id)
        assert run.status == RunStatus.STARTED
        assert run.source == "news"
        assert run.started_at == clock.now
        assert run.metadata == {"limit": 10}
        assert run.counts == SyncCounts()

    @pytest.mark.asyncio
    async def test_complete_records_counts_and_duration(self, ledger, clock):
        run_id = await ledger.start("news")
        await ledger.mark_running(run_id)
        await ledger.increment_counters(run_id, SyncCounts(processed=3, created=2, skipped=1))
        await ledger.increment_counters(run_id, SyncCounts(processed=1, updated=1))
        clock.advance(seconds=5)

        run = await ledger.complete(run_id, metadata={"feeds": 2}, log_output="done")

        assert run.status == RunStatus.COMPLETED
        assert run.counts == SyncCounts(processed=4, created=2, updated=1, skipped=1)
        assert run.duration_ms == 5000
        assert run.completed_at == clock.now
        assert run.metadata["feeds"] == 2
        assert run.log_output == "done"

    @pytest.mark.asyncio
    async def test_fail_keeps_error_message(self, ledger):
        run_id = await ledger.start("news")

        run = await ledger.fail(run_id, RuntimeError("upstream returned 503"))

        assert run.status == RunStatus.FAILED
        assert run.error_message == "upstream returned 503"
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_closed_run_is_immutable(self, ledger):
        run_id = await ledger.start("news")
        await ledger.increment_counters(run_id, SyncCounts(processed=1, created=1))
        await ledger.complete(run_id)

        with pytest.raises(RunFinalizedError):
            await ledger.increment_counters(run_id, SyncCounts(processed=1))
        with pytest.raises(RunFinalizedError):
            await ledger.complete(run_id)
        with pytest.raises(RunFinalizedError):
            await ledger.fail(run_id, "late failure")

        run = await ledger.get_run(run_id)
        assert run.status == RunStatus.COMPLETED
        assert run.counts.processed == 1

    @pytest.mark.asyncio
    async def test_unknown_run(self, ledger):
        with pytest.raises(RunNotFoundError):
            await ledger.complete(uuid4())
        with pytest.raises(RunNotFoundError):
            await ledger.increment_counters(uuid4(), SyncCounts(processed=1))
        assert await ledger.get_run(uuid4()) is None


@pytest.mark.integration
class TestSingleUnfinishedRun:
    """Tests for the one-unfinished-run-per-source rule."""

    @pytest.mark.asyncio
    async def test_second_start_rejected_while_running(self, ledger):
        first = await ledger.start("news")

        with pytest.raises(RunInProgressError) as exc_info:
            await ledger.start("news")
        assert exc_info.value.run_id == first

    @pytest.mark.asyncio
    async def test_other_sources_unaffected(self, ledger):
        await ledger.start("news")
        assert await ledger.start("candidates")

    @pytest.mark.asyncio
    async def test_start_allowed_after_completion(self, ledger):
        first = await ledger.start("news")
        await ledger.complete(first)
        second = await ledger.start("news")
        assert second != first

    @pytest.mark.asyncio
    async def test_concurrent_starts_yield_one_run(self, ledger):
        results = await asyncio.gather(
            *(ledger.start("news") for _ in range(3)), return_exceptions=True
        )

        started = [r for r in results if not isinstance(r, BaseException)]
        rejected = [r for r in results if isinstance(r, BaseException)]
        assert len(started) == 1
        assert all(isinstance(e, UnfinishedRunError) for e in rejected)

    @pytest.mark.asyncio
    async def test_stale_run_blocks_until_abandoned(self, ledger, clock):
        stuck = await ledger.start("news")
        await ledger.mark_running(stuck)
        clock.advance(minutes=90)

        with pytest.raises(StaleRunError) as exc_info:
            await ledger.start("news")
        assert exc_info.value.run_id == stuck

        # Never resolved automatically
        assert (await ledger.get_run(stuck)).status == RunStatus.RUNNING

        abandoned = await ledger.abandon(stuck, "worker crashed")
        assert abandoned.status == RunStatus.FAILED
        assert abandoned.error_message == "worker crashed"
        assert abandoned.metadata["abandoned"] is True

        assert await ledger.start("news") != stuck

    @pytest.mark.asyncio
    async def test_abandon_closed_run_rejected(self, ledger):
        run_id = await ledger.start("news")
        await ledger.complete(run_id)
        with pytest.raises(RunFinalizedError):
            await ledger.abandon(run_id)


@pytest.mark.integration
class TestLedgerQueries:
    """Tests for status and history queries."""

    @pytest.mark.asyncio
    async def test_list_runs_newest_first(self, ledger, clock):
        ids = []
        for _ in range(3):
            run_id = await ledger.start("news")
            await ledger.complete(run_id)
            ids.append(run_id)
            clock.advance(minutes=1)
        await ledger.start("candidates")

        runs, total = await ledger.list_runs(source="news", limit=2)
        assert total == 3
        assert [r.id for r in runs] == [ids[2], ids[1]]

        runs, total = await ledger.list_runs(status=RunStatus.STARTED)
        assert total == 1
        assert runs[0].source == "candidates"

    @pytest.mark.asyncio
    async def test_status_summary(self, ledger, clock):
        ok = await ledger.start("news")
        await ledger.increment_counters(ok, SyncCounts(processed=5, created=4, skipped=1))
        await ledger.complete(ok)
        clock.advance(minutes=5)
        bad = await ledger.start("news")
        await ledger.fail(bad, "timeout")
        clock.advance(minutes=5)
        stuck = await ledger.start("candidates")
        clock.advance(minutes=120)

        summary = {s.source: s for s in await ledger.status_summary(window_days=7)}

        news = summary["news"]
        assert news.latest_run.id == bad
        assert news.runs == 2
        assert news.completed_runs == 1
        assert news.failed_runs == 1
        assert news.totals.created == 4
        assert not news.is_stale

        candidates = summary["candidates"]
        assert candidates.latest_run.id == stuck
        assert candidates.is_stale

        assert [r.id for r in await ledger.stale_runs()] == [stuck]

    @pytest.mark.asyncio
    async def test_status_window_excludes_old_runs(self, ledger, clock):
        old = await ledger.start("news")
        await ledger.complete(old)
        clock.advance(days=10)
        recent = await ledger.start("news")
        await ledger.complete(recent)

        (news,) = await ledger.status_summary(window_days=7)
        assert news.latest_run.id == recent
        assert news.runs == 1
