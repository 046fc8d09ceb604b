"""Source location commands for cloudbackup CLI.

Commands:
- add-localsource: Add a local folder to back up
- add-netsource: Add a network share to back up
- list-sources: List configured source locations
- remove-source: Remove a source location by ID
"""

from __future__ import annotations

from collections.abc import Callable

import click

from cloudbackup.client.cli.config import exit_with_error, open_database
from cloudbackup.client.models import SourceLocation
from cloudbackup.core.exceptions import CloudBackupError
from cloudbackup.core.types import FileBackupPriority, SourceLocationType


def _source_options(func: Callable[..., None]) -> Callable[..., None]:
    """Options shared by the add-source commands."""
    func = click.option(
        "--match-filter",
        default="*",
        show_default=True,
        help="File name pattern to back up (e.g. *.txt).",
    )(func)
    func = click.option(
        "--revisions",
        type=int,
        default=1,
        show_default=True,
        help="Number of file revisions to keep.",
    )(func)
    func = click.option(
        "--priority",
        default="medium",
        show_default=True,
        help="Backup priority: low, medium or high.",
    )(func)
    return func


def _add_source(ctx: click.Context, location: SourceLocation) -> None:
    with open_database(ctx) as db:
        try:
            added = db.add_source_location(location)
        except CloudBackupError as e:
            exit_with_error(e)

    click.echo(f"Added source {added.id}: {added.folder_path} ({added.file_match_filter})")


def _parse_priority(value: str) -> FileBackupPriority:
    try:
        return FileBackupPriority.parse(value)
    except ValueError as e:
        exit_with_error(e)


@click.command("add-localsource")
@click.option("--folder-path", required=True, help="Local folder to back up.")
@_source_options
@click.pass_context
def add_localsource(
    ctx: click.Context,
    folder_path: str,
    priority: str,
    revisions: int,
    match_filter: str,
) -> None:
    """Add a local folder as a backup source."""
    location = SourceLocation(
        folder_path=folder_path,
        file_match_filter=match_filter,
        priority=_parse_priority(priority),
        revision_count=revisions,
        kind=SourceLocationType.LOCAL,
    )
    _add_source(ctx, location)


@click.command("add-netsource")
@click.option("--unc-path", required=True, help="Network share path (\\\\server\\share).")
@click.option("--credential-name", default=None, help="Net credential used to connect.")
@_source_options
@click.pass_context
def add_netsource(
    ctx: click.Context,
    unc_path: str,
    credential_name: str | None,
    priority: str,
    revisions: int,
    match_filter: str,
) -> None:
    """Add a network share as a backup source."""
    location = SourceLocation(
        folder_path=unc_path,
        file_match_filter=match_filter,
        priority=_parse_priority(priority),
        revision_count=revisions,
        kind=SourceLocationType.NETWORK,
        credential_name=credential_name,
    )
    _add_source(ctx, location)


@click.command("list-sources")
@click.pass_context
def list_sources(ctx: click.Context) -> None:
    """List configured source locations."""
    with open_database(ctx) as db:
        sources = db.get_all_source_locations()

    if not sources:
        click.echo("No source locations configured.")
        return

    for source in sources:
        click.echo(
            f"{source.id}: [{source.kind.value}] {source.folder_path} "
            f"filter={source.file_match_filter} priority={source.priority.name.lower()} "
            f"revisions={source.revision_count}"
        )


@click.command("remove-source")
@click.option("--source-id", type=int, required=True, help="ID of the source to remove.")
@click.pass_context
def remove_source(ctx: click.Context, source_id: int) -> None:
    """Remove a source location.

    Removing an ID that does not exist is not an error.
    """
    with open_database(ctx) as db:
        removed = db.remove_source_location(source_id)

    if removed:
        click.echo(f"Removed source {source_id}.")
    else:
        click.echo(f"No source with ID {source_id}. Nothing to remove.")
