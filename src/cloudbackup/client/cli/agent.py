"""Agent command for cloudbackup CLI.

Commands:
- run: Run the scan and backup engines until interrupted
"""

from __future__ import annotations

import os
import sys

import click

from cloudbackup.client.agent import ClientAgent
from cloudbackup.client.cli.config import exit_with_error, get_secret_store
from cloudbackup.core.config import DATABASE_SETTING, CoreSettings
from cloudbackup.core.exceptions import CloudBackupError

# Seconds between checks for Ctrl+C while the engines run
WAIT_INTERVAL = 1.0


@click.command()
@click.option(
    "--stop-all-on-failure",
    is_flag=True,
    default=False,
    help="Stop scanning as well when the backup engine fails.",
)
@click.pass_context
def run(ctx: click.Context, stop_all_on_failure: bool) -> None:
    """Run the backup agent in the foreground.

    Settings come from CLOUDBACKUP_* environment variables; the log
    directory (CLOUDBACKUP_LOG_DIRECTORY) is required. Press Ctrl+C to stop.
    """
    environ = dict(os.environ)
    environ[DATABASE_SETTING] = str(ctx.obj["database"])

    try:
        settings = CoreSettings.from_environment(environ)
        settings.database_path.parent.mkdir(parents=True, exist_ok=True)
        agent = ClientAgent(settings, get_secret_store(), stop_all_on_failure=stop_all_on_failure)
        agent.start()
    except CloudBackupError as e:
        exit_with_error(e)

    click.echo("cloudbackup agent running. Press Ctrl+C to stop.")
    try:
        while not agent.wait(WAIT_INTERVAL):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")

    results = agent.shutdown()
    failed = [r for r in results.values() if r.failed]
    for result in failed:
        click.echo(f"Error: {result.engine} engine failed: {result.exception}", err=True)
    if failed:
        sys.exit(1)
