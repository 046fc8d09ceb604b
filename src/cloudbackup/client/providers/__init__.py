"""Provider transports - one implementation per remote backend."""

from cloudbackup.client.providers.azure import AzureProviderFileOperations
from cloudbackup.client.providers.base import (
    ProviderFileOperations,
    build_block_metadata,
    generate_block_id,
    generate_block_list,
)
from cloudbackup.client.providers.factory import create_provider
from cloudbackup.client.providers.local import LocalProviderFileOperations

__all__ = [
    "AzureProviderFileOperations",
    "LocalProviderFileOperations",
    "ProviderFileOperations",
    "build_block_metadata",
    "create_provider",
    "generate_block_id",
    "generate_block_list",
]
