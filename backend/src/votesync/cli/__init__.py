"""CLI entry points for votesync.

Provides command-line tools for:
- Running source syncs and candidate imports
- Inspecting run status and the retry queue
- Operator actions (abandon a stuck run, requeue a failed task)
- Database setup
"""

import click

from .db import cli as db_cli
from .sync import cli as sync_cli


@click.group()
@click.version_option(version="0.1.0", prog_name="votesync")
def main():
    """votesync - electoral data sync and reconciliation.

    Command-line tools for running ingestion and operating
    the sync pipeline.
    """
    pass


main.add_command(sync_cli, name="sync")
main.add_command(db_cli, name="db")


if __name__ == "__main__":
    main()
