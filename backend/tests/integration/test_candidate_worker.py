"""Integration tests for the candidate bulk-import worker."""

import asyncio
import json

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from votesync.ingestion import CandidateImportWorker, TriggerRequest, trigger
from votesync.models import RunStatus, TaskStatus
from votesync.reconcile import CandidateCommitter, validate
from votesync.resolution import EntityResolver
from votesync.schema import candidates, scores
from votesync.sync import ChangeDetector, RetryQueue, SyncRunLedger, UnknownSourceError

ROWS = [
    {"nombre": "Keiko Fujimori", "partido": "Fuerza Popular", "region": "Lima", "posicion": "1"},
    {"nombre": "Ana Pérez", "partido": "Partido Morado", "region": "Arequipa", "posicion": "2"},
    {"nombre": "Pedro Castillo", "partido": "Perú Libre", "region": "Cusco"},
]

CSV = """Nombre,Partido,Distrito,Posicion
Keiko Fujimori,Fuerza Popular,Lima,1
Ana Pérez,Partido Morado,Arequipa,2
,,,
"""


async def count(db, table) -> int:
    async with db.session() as session:
        return (await session.execute(select(func.count()).select_from(table))).scalar_one()


class CancellingCommitter(CandidateCommitter):
    """Cancels the run when asked to commit its second record."""

    def __init__(self, db):
        super().__init__(db, detector=ChangeDetector(db))
        self.calls = 0

    async def commit(self, records, **kwargs):
        self.calls += 1
        if self.calls == 2:
            raise asyncio.CancelledError()
        return await super().commit(records, **kwargs)


class FlakyCommitter(CandidateCommitter):
    """Fails the insert of one named candidate with a database error."""

    def __init__(self, db, failing_name: str):
        super().__init__(db, detector=ChangeDetector(db))
        self.failing_name = failing_name

    async def _commit_one(self, rc, update_existing, seed_scores):
        if rc.record.full_name == self.failing_name:
            raise OperationalError("INSERT INTO candidates", {}, Exception("database is locked"))
        return await super()._commit_one(rc, update_existing, seed_scores)


@pytest.mark.integration
class TestCandidateImportWorker:
    """Tests for importing candidate lists."""

    @pytest.mark.asyncio
    async def test_import_rows(self, db, directory):
        result = await CandidateImportWorker(db, cargo="senador", rows=ROWS).run()

        assert result.success
        assert result.processed == 3
        assert result.created == 2
        assert result.skipped == 1
        assert result.metadata["invalid"] == 1
        assert result.metadata["invalid_records"] == [
            {"name": "Pedro Castillo", "errors": ["Unknown party 'Perú Libre'"]}
        ]
        assert result.metadata["scores_seeded"] == 2
        assert result.metadata["cargo"] == "senador"

        assert await count(db, candidates) == 2
        assert await count(db, scores) == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, db, directory):
        await CandidateImportWorker(db, cargo="senador", rows=ROWS).run()
        result = await CandidateImportWorker(db, cargo="senador", rows=ROWS).run()

        assert result.success
        assert result.created == 0
        assert result.skipped == 3
        assert result.metadata["scores_seeded"] == 0
        assert await count(db, candidates) == 2
        assert await count(db, scores) == 2

    @pytest.mark.asyncio
    async def test_update_existing(self, db, directory):
        await CandidateImportWorker(db, cargo="senador", rows=ROWS[:1]).run()
        moved = [{**ROWS[0], "posicion": "5"}]

        result = await CandidateImportWorker(db, cargo="senador", rows=moved, update_existing=True).run()

        assert result.updated == 1
        async with db.session() as session:
            position = (await session.execute(select(candidates.c.list_position))).scalar_one()
        assert position == 5

    @pytest.mark.asyncio
    async def test_import_csv_skips_blank_lines(self, db, directory):
        result = await CandidateImportWorker(db, cargo="diputado", csv_text=CSV).run()

        assert result.success
        assert result.created == 2
        assert result.metadata["irrelevant"] == 1

        async with db.session() as session:
            cargos = (await session.execute(select(candidates.c.cargo).distinct())).scalars().all()
        assert cargos == ["diputado"]

    @pytest.mark.asyncio
    async def test_import_from_file(self, db, directory, tmp_path):
        path = tmp_path / "senadores.json"
        path.write_text(json.dumps({"candidates": ROWS[:2]}), encoding="utf-8")

        result = await CandidateImportWorker(db, cargo="senador", path=path).run()

        assert result.created == 2

    @pytest.mark.asyncio
    async def test_unparseable_row_is_an_item_error(self, db, directory):
        rows = [ROWS[0], {"nombre": "Luis Díaz", "partido": "Partido Morado", "region": "Lima", "posicion": "abc"}]

        result = await CandidateImportWorker(db, cargo="senador", rows=rows).run()

        assert result.success
        assert result.created == 1
        assert result.errors[0]["item"] == "Luis Díaz"
        assert "Invalid list position" in result.errors[0]["error"]

    @pytest.mark.asyncio
    async def test_missing_input_fails_run(self, db):
        result = await CandidateImportWorker(db, cargo="senador").run()

        assert not result.success
        assert "No candidate rows supplied" in result.error
        run = await SyncRunLedger(db).get_run(result.run_id)
        assert run.status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_unreadable_file_fails_run(self, db, tmp_path):
        result = await CandidateImportWorker(db, cargo="senador", path=tmp_path / "missing.csv").run()

        assert not result.success
        assert "Cannot read" in result.error

    @pytest.mark.asyncio
    async def test_cancelled_run_leaves_no_candidate_without_scores(self, db, directory):
        worker = CandidateImportWorker(db, cargo="senador", rows=ROWS[:2], committer=CancellingCommitter(db))

        with pytest.raises(asyncio.CancelledError):
            await worker.run()

        assert await count(db, candidates) == 1
        assert await count(db, scores) == 1
        run = await SyncRunLedger(db).get_run(worker.run_id)
        assert run.status == RunStatus.FAILED

        result = await CandidateImportWorker(db, cargo="senador", rows=ROWS[:2]).run()

        assert result.created == 1
        assert result.skipped == 1
        assert await count(db, candidates) == 2
        assert await count(db, scores) == 2

    @pytest.mark.asyncio
    async def test_rerun_seeds_candidates_missing_scores(self, db, directory):
        report = await validate(
            [CandidateImportWorker(db, cargo="senador").normalize(ROWS[0])], EntityResolver(db)
        )
        await CandidateCommitter(db).commit(report.valid, seed_scores=False)
        assert await count(db, scores) == 0

        result = await CandidateImportWorker(db, cargo="senador", rows=ROWS[:1]).run()

        assert result.created == 0
        assert result.skipped == 1
        assert result.metadata["scores_seeded"] == 1
        assert await count(db, scores) == 1

    @pytest.mark.asyncio
    async def test_commit_error_is_queued_for_retry(self, db, directory):
        worker = CandidateImportWorker(
            db, cargo="senador", rows=ROWS[:2], committer=FlakyCommitter(db, failing_name="Ana Pérez")
        )

        result = await worker.run()

        assert result.success
        assert result.created == 1
        assert result.errors[0]["item"] == "Ana Pérez"
        assert "queued for retry" in result.errors[0]["error"]
        assert await count(db, candidates) == 1

        (task,) = await RetryQueue(db).list_tasks(source="candidates")
        assert task.entity_type == "candidate"
        assert task.entity_id == "ana perez|senador"
        assert task.status == TaskStatus.PENDING
        assert task.metadata["record"]["full_name"] == "Ana Pérez"


@pytest.mark.integration
class TestTrigger:
    """Tests for the source-key trigger interface."""

    @pytest.mark.asyncio
    async def test_trigger_candidates(self, db, directory):
        request = TriggerRequest(source="candidates", params={"cargo": "senador", "rows": ROWS[:1]})

        result = await trigger(db, request)

        assert result.success
        assert result.source == "candidates"
        assert result.created == 1

    @pytest.mark.asyncio
    async def test_unknown_source(self, db):
        with pytest.raises(UnknownSourceError):
            await trigger(db, TriggerRequest(source="polls"))

    @pytest.mark.asyncio
    async def test_candidates_require_cargo(self, db):
        with pytest.raises(ValueError):
            await trigger(db, TriggerRequest(source="candidates", params={"rows": ROWS}))

    @pytest.mark.asyncio
    async def test_path_is_not_a_request_param(self, db, directory, tmp_path):
        path = tmp_path / "private.csv"
        path.write_text("nombre\nSECRET\n", encoding="utf-8")

        with pytest.raises(ValueError, match="command line"):
            await trigger(db, TriggerRequest(source="candidates", params={"cargo": "senador", "path": str(path)}))
        assert await SyncRunLedger(db).find_unfinished("candidates") is None

    @pytest.mark.asyncio
    async def test_path_option(self, db, directory, tmp_path):
        path = tmp_path / "senadores.json"
        path.write_text(json.dumps(ROWS[:1]), encoding="utf-8")

        result = await trigger(db, TriggerRequest(source="candidates", params={"cargo": "senador"}), path=path)

        assert result.created == 1
