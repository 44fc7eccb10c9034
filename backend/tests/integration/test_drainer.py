"""Integration tests for draining the retry queue."""

import pytest
from sqlalchemy import func, select

from votesync.ingestion import QueueDrainer
from votesync.models import CandidateRecord, NewsItem, TaskStatus
from votesync.reconcile import CandidateCommitter, validate
from votesync.resolution import EntityResolver
from votesync.schema import candidates, news_mentions, scores
from votesync.sync import RetryQueue


@pytest.fixture
def queue(db, clock) -> RetryQueue:
    return RetryQueue(db, max_attempts=3, backoff_base_seconds=30, clock=clock)


@pytest.fixture
def drainer(db, queue) -> QueueDrainer:
    return QueueDrainer(db, queue=queue)


async def count(db, table) -> int:
    async with db.session() as session:
        return (await session.execute(select(func.count()).select_from(table))).scalar_one()


def record_payload(**overrides) -> dict:
    fields = {"full_name": "Keiko Fujimori", "cargo": "senador", "party_name": "Fuerza Popular", "district_name": "Lima"}
    fields.update(overrides)
    return CandidateRecord(**fields).model_dump(mode="json")


@pytest.mark.integration
class TestQueueDrainer:
    """Tests for dispatching queued tasks to handlers."""

    @pytest.mark.asyncio
    async def test_candidate_task_committed(self, db, directory, queue, drainer):
        task_id = await queue.enqueue(
            "candidates", "candidate", entity_id="keiko fujimori|senador", metadata={"record": record_payload()}
        )

        result = await drainer.drain()

        assert result.claimed == 1
        assert result.completed == 1
        assert (await queue.get_task(task_id)).status == TaskStatus.COMPLETED
        assert await count(db, candidates) == 1
        assert await count(db, scores) == 1

    @pytest.mark.asyncio
    async def test_invalid_candidate_is_retried_later(self, db, directory, queue, drainer):
        task_id = await queue.enqueue(
            "candidates", "candidate", metadata={"record": record_payload(party_name="Perú Libre")}
        )

        result = await drainer.drain()

        assert result.retried == 1
        task = await queue.get_task(task_id)
        assert task.status == TaskStatus.PENDING
        assert task.attempts == 1
        assert "Unknown party" in task.last_error
        assert await count(db, candidates) == 0

    @pytest.mark.asyncio
    async def test_unknown_entity_type_exhausts_attempts(self, queue, drainer):
        task_id = await queue.enqueue("news", "poll_result", max_attempts=1)

        result = await drainer.drain()

        assert result.failed == 1
        task = await queue.get_task(task_id)
        assert task.status == TaskStatus.FAILED
        assert "No handler" in task.last_error

    @pytest.mark.asyncio
    async def test_baseline_scores_task(self, db, directory, queue, drainer):
        report = await validate(
            [CandidateRecord(full_name="Ana Pérez", cargo="senador", party_name="Partido Morado", district_name="Lima")],
            EntityResolver(db),
        )
        await CandidateCommitter(db).commit(report.valid, seed_scores=False)
        await queue.enqueue("candidates", "baseline_scores")

        result = await drainer.drain()

        assert result.completed == 1
        assert await count(db, scores) == 1

    @pytest.mark.asyncio
    async def test_news_mention_task(self, db, directory, queue, drainer):
        item = NewsItem(
            title="Partido Morado inscribe su lista",
            url="https://noticias.example.pe/pm",
            source="rpp",
        )
        await queue.enqueue("news", "news_mention", entity_id=item.url, metadata={"item": item.model_dump(mode="json")})

        result = await drainer.drain()

        assert result.completed == 1
        async with db.session() as session:
            party_id = (await session.execute(select(news_mentions.c.party_id))).scalar_one()
        assert party_id == directory["Partido Morado"]

    @pytest.mark.asyncio
    async def test_custom_handler_and_limit(self, queue, db):
        seen = []

        async def record(task):
            seen.append(task.entity_id)

        drainer = QueueDrainer(db, queue=queue, handlers={"poll_result": record})
        for i in range(3):
            await queue.enqueue("polls", "poll_result", entity_id=str(i))

        result = await drainer.drain(max_tasks=2)

        assert result.claimed == 2
        assert result.completed == 2
        assert len(seen) == 2
        assert (await queue.stats()).pending == 1

    @pytest.mark.asyncio
    async def test_source_filter(self, queue, db):
        drainer = QueueDrainer(db, queue=queue)
        drainer.register("noop", self._noop)
        await queue.enqueue("news", "noop")
        await queue.enqueue("candidates", "noop")

        result = await drainer.drain(source="candidates")

        assert result.claimed == 1
        assert (await queue.stats(source="news")).pending == 1

    @pytest.mark.asyncio
    async def test_stalled_tasks_recovered_first(self, queue, drainer, clock):
        drainer.register("noop", self._noop)
        task_id = await queue.enqueue("news", "noop")
        await queue.claim_next()
        clock.advance(hours=2)

        result = await drainer.drain()

        assert result.recovered == 1
        assert result.completed == 1
        assert (await queue.get_task(task_id)).status == TaskStatus.COMPLETED

    @staticmethod
    async def _noop(task):
        return None
