"""Helpers shared by CLI commands."""

import asyncio
from typing import Awaitable, Callable, TypeVar

from ..db import Database

T = TypeVar("T")


def run_with_db(func: Callable[[Database], Awaitable[T]]) -> T:
    """Open the configured store, run ``func`` against it, close it."""

    async def runner() -> T:
        db = Database.from_settings()
        await db.open()
        try:
            return await func(db)
        finally:
            await db.close()

    return asyncio.run(runner())
