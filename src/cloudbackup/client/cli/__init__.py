"""Command-line interface for cloudbackup.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Run the scan and backup engines
- add-localsource / add-netsource: Add a source location
- list-sources / remove-source: Inspect and remove source locations
- add-azureprovider / add-localprovider: Register a provider
- list-providers / remove-provider: Inspect and remove providers
- add-netcredential / list-netcredentials / remove-netcredential: Net credentials
- show-status: Show backup progress
"""

from __future__ import annotations

import click

from cloudbackup.client.cli.agent import run
from cloudbackup.client.cli.config import get_database_path
from cloudbackup.client.cli.credentials import (
    add_netcredential,
    list_netcredentials,
    remove_netcredential,
)
from cloudbackup.client.cli.providers import (
    add_azureprovider,
    add_localprovider,
    list_providers,
    remove_provider,
)
from cloudbackup.client.cli.sources import (
    add_localsource,
    add_netsource,
    list_sources,
    remove_source,
)
from cloudbackup.client.cli.status import show_status
from cloudbackup.core.config import DATABASE_SETTING


@click.group()
@click.version_option(package_name="cloudbackup")
@click.option(
    "--database",
    envvar=DATABASE_SETTING,
    default=None,
    help=f"Path to the index database (default: {DATABASE_SETTING} or ~/.cloudbackup/index.db).",
)
@click.pass_context
def cli(ctx: click.Context, database: str | None) -> None:
    """cloudbackup - Resumable block backup of local folders to cloud providers."""
    ctx.ensure_object(dict)
    ctx.obj["database"] = get_database_path(database)


# Agent command
cli.add_command(run)

# Source commands
cli.add_command(add_localsource)
cli.add_command(add_netsource)
cli.add_command(list_sources)
cli.add_command(remove_source)

# Provider commands
cli.add_command(add_azureprovider)
cli.add_command(add_localprovider)
cli.add_command(list_providers)
cli.add_command(remove_provider)

# Net credential commands
cli.add_command(add_netcredential)
cli.add_command(list_netcredentials)
cli.add_command(remove_netcredential)

# Status command
cli.add_command(show_status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
]
