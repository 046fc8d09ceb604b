"""Status command for cloudbackup CLI."""

from __future__ import annotations

import click

from cloudbackup.client.cli.config import open_database


def _format_size(size: int) -> str:
    """Format a byte count for display."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} TB"


@click.command("show-status")
@click.pass_context
def show_status(ctx: click.Context) -> None:
    """Show backup progress across all tracked files."""
    with open_database(ctx) as db:
        progress = db.get_backup_progress()
        sources = len(db.get_all_source_locations())
        providers = len(db.get_providers())

    click.echo(f"Sources: {sources}")
    click.echo(f"Providers: {providers}")
    click.echo(f"Tracked files: {progress.total_files}")
    click.echo(f"  Synced: {progress.synced_files}")
    click.echo(f"  In progress: {progress.in_progress_files}")
    click.echo(f"  Unsynced: {progress.unsynced_files}")
    click.echo(f"  Removed: {progress.removed_files}")
    click.echo(
        f"Backed up: {_format_size(progress.synced_bytes)} of "
        f"{_format_size(progress.total_bytes)} ({progress.percent_complete:.1f}%)"
    )
