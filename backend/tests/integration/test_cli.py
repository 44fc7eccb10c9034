"""Integration tests for the command-line interface."""

import asyncio
import json
from uuid import uuid4

import pytest
from click.testing import CliRunner

from votesync.cli import main
from votesync.db import Database

ROWS = [
    {"nombre": "Keiko Fujimori", "partido": "Fuerza Popular", "region": "Lima"},
    {"nombre": "Ana Pérez", "partido": "Partido Morado", "region": "Arequipa"},
    {"nombre": "Pedro Castillo", "partido": "Perú Libre", "region": "Cusco"},
]


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the commands from replacing pytest's log handlers."""
    monkeypatch.setattr("votesync.cli.sync.setup_logging", lambda: None)
    monkeypatch.setattr("votesync.cli.db.setup_logging", lambda: None)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def seeded(database_url, seed):
    """Store with tables and the sample directory, prepared outside any loop."""

    async def prepare():
        db = Database(database_url)
        await db.open()
        try:
            await db.create_all()
            await seed(db)
        finally:
            await db.close()

    asyncio.run(prepare())


@pytest.fixture
def candidates_file(tmp_path):
    path = tmp_path / "senadores.json"
    path.write_text(json.dumps(ROWS), encoding="utf-8")
    return path


@pytest.mark.integration
class TestDbCommands:
    """Tests for database setup commands."""

    def test_init(self, runner):
        result = runner.invoke(main, ["db", "init"])

        assert result.exit_code == 0
        assert "Tables created." in result.output


@pytest.mark.integration
class TestSyncCommands:
    """Tests for sync and operator commands."""

    def test_import_candidates(self, runner, seeded, candidates_file):
        result = runner.invoke(main, ["sync", "candidates", str(candidates_file), "--cargo", "senador", "-v"])

        assert result.exit_code == 0, result.output
        assert "Sync candidates completed" in result.output
        assert "Created:   2" in result.output
        assert "invalid: 1" in result.output

    def test_import_rejects_unknown_cargo(self, runner, seeded, candidates_file):
        result = runner.invoke(main, ["sync", "candidates", str(candidates_file), "--cargo", "alcalde"])
        assert result.exit_code == 2

    def test_import_missing_file(self, runner, seeded, tmp_path):
        result = runner.invoke(main, ["sync", "candidates", str(tmp_path / "none.json"), "--cargo", "senador"])
        assert result.exit_code == 2

    def test_import_bad_file_fails(self, runner, seeded, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        result = runner.invoke(main, ["sync", "candidates", str(path), "--cargo", "senador"])

        assert result.exit_code == 1
        assert "FAILED" in result.output

    def test_status_and_runs(self, runner, seeded, candidates_file):
        runner.invoke(main, ["sync", "candidates", str(candidates_file), "--cargo", "senador"])

        status = runner.invoke(main, ["sync", "status"])
        assert status.exit_code == 0
        assert "candidates: completed" in status.output
        assert "Queue: 0 pending" in status.output

        runs = runner.invoke(main, ["sync", "runs", "--source", "candidates"])
        assert runs.exit_code == 0
        assert "1 run(s)" in runs.output

    def test_status_without_runs(self, runner, seeded):
        result = runner.invoke(main, ["sync", "status"])
        assert "No sync runs recorded." in result.output

    def test_queue_listing_and_drain(self, runner, seeded):
        assert "Queue is empty." in runner.invoke(main, ["sync", "queue"]).output

        result = runner.invoke(main, ["sync", "drain"])
        assert result.exit_code == 0
        assert "Claimed 0" in result.output

    def test_abandon_unknown_run(self, runner, seeded):
        result = runner.invoke(main, ["sync", "abandon", str(uuid4())])

        assert result.exit_code == 1
        assert "Sync run not found" in result.output

    def test_requeue_unknown_task(self, runner, seeded):
        result = runner.invoke(main, ["sync", "requeue", str(uuid4())])

        assert result.exit_code == 1
        assert "Queue task not found" in result.output
