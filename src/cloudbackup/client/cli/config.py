"""Shared helpers for cloudbackup CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import NoReturn

import click

from cloudbackup.client.database import ClientDatabase
from cloudbackup.client.secrets import KeyringSecretStore, SecretStore
from cloudbackup.core.exceptions import CloudBackupError

DATABASE_FILE_NAME = "index.db"


def get_config_dir() -> Path:
    """Get the configuration directory for cloudbackup.

    Returns:
        Path to ~/.cloudbackup or equivalent.
    """
    return Path.home() / ".cloudbackup"


def get_database_path(database: str | None) -> Path:
    """Resolve the index path from the --database option.

    Returns:
        The given path, or the default index inside the config directory.
    """
    if database:
        return Path(database).expanduser()
    return get_config_dir() / DATABASE_FILE_NAME


def open_database(ctx: click.Context) -> ClientDatabase:
    """Open the index selected for this invocation."""
    path: Path = ctx.obj["database"]
    path.parent.mkdir(parents=True, exist_ok=True)
    return ClientDatabase(path)


def get_secret_store() -> SecretStore:
    """Return the secret store used by commands."""
    return KeyringSecretStore()


def exit_with_error(message: object) -> NoReturn:
    """Report a failure on stderr and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def discard_secrets(store: SecretStore, keys: list[str]) -> None:
    """Delete secrets written for a change that did not go through.

    Failures are reported on stderr so the original error still gets out.
    """
    for key in keys:
        try:
            store.delete_secret(key)
        except CloudBackupError as e:
            click.echo(f"Warning: could not delete secret {key}: {e}", err=True)
