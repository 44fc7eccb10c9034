"""CLI commands for database setup.

Usage:
    votesync db init
"""

import sys

import click

from ..logging import setup_logging
from ._runner import run_with_db


@click.group(name="db")
def cli():
    """Database commands."""
    setup_logging()


@cli.command(name="init")
def init_db():
    """Create all tables in the configured database.

    Intended for development and SQLite; PostgreSQL deployments use the
    Alembic migrations.
    """

    async def create(db):
        await db.create_all()

    try:
        run_with_db(create)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo("Tables created.")
