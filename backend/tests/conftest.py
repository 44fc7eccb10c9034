"""Shared pytest fixtures for votesync tests.

Integration tests run against a file-backed SQLite store created fresh
for every test.
"""

from datetime import datetime, timedelta
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from votesync.config import get_settings
from votesync.db import Database
from votesync.schema import districts, parties


class FakeClock:
    """Deterministic replacement for ``datetime.utcnow``."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Point settings at a throwaway SQLite file and drop the cache."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'votesync.db'}")
    monkeypatch.setenv("CRON_SECRET", "")
    monkeypatch.setenv("LOG_FORMAT", "text")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'votesync.db'}"


@pytest_asyncio.fixture
async def db(database_url):
    """An open store with every table created."""
    database = Database(database_url)
    await database.open()
    await database.create_all()
    yield database
    await database.close()


PARTIES = [
    ("Fuerza Popular", "FP", "fuerza-popular"),
    ("Partido Morado", "PM", "partido-morado"),
    ("Renovación Popular", "RP", "renovacion-popular"),
]

DISTRICTS = [
    ("Lima", "lima"),
    ("Arequipa", "arequipa"),
    ("Cusco", "cusco"),
]


async def seed_directory(database: Database) -> dict[str, UUID]:
    """Insert the sample parties and districts; returns ids by name."""
    ids: dict[str, UUID] = {}
    async with database.session() as session:
        for name, short_name, slug in PARTIES:
            ids[name] = uuid4()
            await session.execute(
                parties.insert().values(id=ids[name], name=name, short_name=short_name, slug=slug)
            )
        for name, slug in DISTRICTS:
            ids[name] = uuid4()
            await session.execute(
                districts.insert().values(id=ids[name], name=name, slug=slug, type="electoral")
            )
    return ids


@pytest_asyncio.fixture
async def directory(db) -> dict[str, UUID]:
    """Sample parties and districts in the store."""
    return await seed_directory(db)


@pytest.fixture
def seed():
    """The directory seeding coroutine, for tests that manage their own loop."""
    return seed_directory
