"""Net credential commands for cloudbackup CLI.

Commands:
- add-netcredential: Save a username and password for network shares
- list-netcredentials: List saved credential names
- remove-netcredential: Remove a credential and its secrets
"""

from __future__ import annotations

import click

from cloudbackup.client.cli.config import (
    discard_secrets,
    exit_with_error,
    get_secret_store,
    open_database,
)
from cloudbackup.client.secrets import (
    net_credential_password_key,
    net_credential_username_key,
)
from cloudbackup.core.exceptions import CloudBackupError


@click.command("add-netcredential")
@click.option("--credential-name", required=True, help="Name used to refer to the credential.")
@click.option("--username", required=True, help="Share username.")
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    help="Share password (prompted if omitted).",
)
@click.pass_context
def add_netcredential(ctx: click.Context, credential_name: str, username: str, password: str) -> None:
    """Save a network share credential.

    Adding an existing name replaces its username and password.
    """
    if not credential_name.strip():
        exit_with_error("Credential name must be provided.")

    store = get_secret_store()
    keys = [net_credential_username_key(credential_name), net_credential_password_key(credential_name)]
    with open_database(ctx) as db:
        try:
            added = db.add_net_credential(credential_name)
        except CloudBackupError as e:
            exit_with_error(e)

        try:
            for key, value in zip(keys, (username, password)):
                store.set_secret(key, value)
        except CloudBackupError as e:
            # A new name is only listed once both of its secrets are stored
            if added:
                discard_secrets(store, keys)
                db.remove_net_credential(credential_name)
            exit_with_error(e)

    if added:
        click.echo(f"Added net credential {credential_name}.")
    else:
        click.echo(f"Updated net credential {credential_name}.")


@click.command("list-netcredentials")
@click.pass_context
def list_netcredentials(ctx: click.Context) -> None:
    """List saved net credential names."""
    with open_database(ctx) as db:
        credentials = db.get_net_credentials()

    if not credentials:
        click.echo("No net credentials configured.")
        return

    for credential in credentials:
        click.echo(credential.credential_name)


@click.command("remove-netcredential")
@click.option("--credential-name", required=True, help="Name of the credential to remove.")
@click.pass_context
def remove_netcredential(ctx: click.Context, credential_name: str) -> None:
    """Remove a net credential and its stored secrets."""
    with open_database(ctx) as db:
        removed = db.remove_net_credential(credential_name)

    store = get_secret_store()
    try:
        store.delete_secret(net_credential_username_key(credential_name))
        store.delete_secret(net_credential_password_key(credential_name))
    except CloudBackupError as e:
        exit_with_error(e)

    if removed:
        click.echo(f"Removed net credential {credential_name}.")
    else:
        click.echo(f"No net credential named {credential_name}. Nothing to remove.")
