"""Provider commands for cloudbackup CLI.

Commands:
- add-azureprovider: Register Azure Blob Storage as a provider
- add-localprovider: Register a filesystem path as a provider
- list-providers: List registered providers
- remove-provider: Remove a provider by ID
"""

from __future__ import annotations

from pathlib import Path

import click

from cloudbackup.client.cli.config import (
    discard_secrets,
    exit_with_error,
    get_secret_store,
    open_database,
)
from cloudbackup.client.providers.factory import (
    AZURE_ACCOUNT_NAME,
    AZURE_ACCOUNT_TOKEN,
    LOCAL_ROOT_PATH,
)
from cloudbackup.client.secrets import provider_secret_key
from cloudbackup.core.exceptions import CloudBackupError
from cloudbackup.core.types import ProviderType

# Secret attributes stored for each provider type
PROVIDER_SECRET_ATTRIBUTES = {
    ProviderType.AZURE: (AZURE_ACCOUNT_NAME, AZURE_ACCOUNT_TOKEN),
    ProviderType.LOCAL: (LOCAL_ROOT_PATH,),
}


def _add_provider(ctx: click.Context, provider_type: ProviderType, secrets: dict[str, str]) -> None:
    """Check for duplicates, store connection secrets, then register the provider."""
    with open_database(ctx) as db:
        if any(p.provider_type == provider_type for p in db.get_providers()):
            exit_with_error(f"A {provider_type.value} provider is already configured.")

        store = get_secret_store()
        keys = [provider_secret_key(provider_type, attribute) for attribute in secrets]
        try:
            for key, value in zip(keys, secrets.values()):
                store.set_secret(key, value)
            provider = db.add_provider(provider_type)
        except CloudBackupError as e:
            discard_secrets(store, keys)
            exit_with_error(e)

    click.echo(f"Added {provider_type.value} provider {provider.id}.")


@click.command("add-azureprovider")
@click.option("--storage-account-name", required=True, help="Azure storage account name.")
@click.option(
    "--storage-account-token",
    required=True,
    help="Shared access signature token for the storage account.",
)
@click.pass_context
def add_azureprovider(
    ctx: click.Context,
    storage_account_name: str,
    storage_account_token: str,
) -> None:
    """Register Azure Blob Storage as a backup provider."""
    _add_provider(
        ctx,
        ProviderType.AZURE,
        {
            AZURE_ACCOUNT_NAME: storage_account_name,
            AZURE_ACCOUNT_TOKEN: storage_account_token,
        },
    )


@click.command("add-localprovider")
@click.option("--root-path", required=True, help="Directory that receives the backups.")
@click.pass_context
def add_localprovider(ctx: click.Context, root_path: str) -> None:
    """Register a local or mounted directory as a backup provider."""
    root = Path(root_path).expanduser()
    if not root.is_dir():
        exit_with_error(f"Provider root path does not exist or is not a directory: {root_path}")
    _add_provider(ctx, ProviderType.LOCAL, {LOCAL_ROOT_PATH: str(root.resolve())})


@click.command("list-providers")
@click.pass_context
def list_providers(ctx: click.Context) -> None:
    """List registered providers."""
    with open_database(ctx) as db:
        providers = db.get_providers()

    if not providers:
        click.echo("No providers configured.")
        return

    for provider in providers:
        click.echo(f"{provider.id}: {provider.provider_type.value}")


@click.command("remove-provider")
@click.option("--provider-id", type=int, required=True, help="ID of the provider to remove.")
@click.pass_context
def remove_provider(ctx: click.Context, provider_id: int) -> None:
    """Remove a provider and its stored connection secrets."""
    with open_database(ctx) as db:
        provider = db.remove_provider(provider_id)

    if provider is None:
        click.echo(f"No provider with ID {provider_id}. Nothing to remove.")
        return

    store = get_secret_store()
    try:
        for attribute in PROVIDER_SECRET_ATTRIBUTES[provider.provider_type]:
            store.delete_secret(provider_secret_key(provider.provider_type, attribute))
    except CloudBackupError as e:
        exit_with_error(f"Provider {provider_id} was removed but its secrets were not: {e}")
    click.echo(f"Removed {provider.provider_type.value} provider {provider_id}.")
