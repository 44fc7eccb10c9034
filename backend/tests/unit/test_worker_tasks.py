"""Unit tests for the Celery tasks."""

from uuid import uuid4

from votesync import worker
from votesync.ingestion import DrainResult, TriggerResult
from votesync.sync import RunInProgressError


class TestCeleryTasks:
    """Tests for the periodic sync tasks."""

    def test_beat_schedule(self):
        schedule = worker.app.conf.beat_schedule
        assert schedule["sync-news"]["task"] == "votesync.worker.sync_news"
        assert schedule["drain-queue"]["task"] == "votesync.worker.drain_queue"

    def test_disabled_news_sync(self, monkeypatch):
        monkeypatch.setattr(worker, "_run", lambda func: _must_not_open())
        assert worker.sync_news(enabled=False) == {"status": "disabled"}

    def test_news_sync_result(self, monkeypatch):
        run_id = uuid4()
        monkeypatch.setattr(
            worker,
            "_run",
            lambda func: TriggerResult(run_id=run_id, source="news", success=True, processed=4, created=1),
        )

        result = worker.sync_news()

        assert result["run_id"] == str(run_id)
        assert result["created"] == 1

    def test_blocked_news_sync(self, monkeypatch):
        def blocked(func):
            raise RunInProgressError("news", uuid4())

        monkeypatch.setattr(worker, "_run", blocked)

        result = worker.sync_news()

        assert result["status"] == "blocked"
        assert "already in progress" in result["error"]

    def test_drain_queue(self, monkeypatch):
        monkeypatch.setattr(worker, "_run", lambda func: DrainResult(claimed=2, completed=2))
        assert worker.drain_queue() == DrainResult(claimed=2, completed=2).model_dump()


def _must_not_open():
    raise AssertionError("the store must not be opened for a disabled sync")
