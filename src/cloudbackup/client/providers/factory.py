"""Provider transport selection from provider registrations."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from cloudbackup.client.providers.azure import AzureProviderFileOperations
from cloudbackup.client.providers.local import LocalProviderFileOperations
from cloudbackup.client.secrets import provider_secret_key
from cloudbackup.core.exceptions import ProviderAuthenticationError, SecretUnavailableError
from cloudbackup.core.types import ProviderType

if TYPE_CHECKING:
    from cloudbackup.client.models import Provider
    from cloudbackup.client.providers.base import ProviderFileOperations
    from cloudbackup.client.secrets import SecretStore

logger = logging.getLogger(__name__)

# Secret attribute names, stored as provider-<type>-<attribute>
AZURE_ACCOUNT_NAME = "storageaccountname"
AZURE_ACCOUNT_TOKEN = "storageaccounttoken"
LOCAL_ROOT_PATH = "rootpath"


def create_provider(provider: Provider, secrets: SecretStore) -> ProviderFileOperations:
    """Build the transport for a registered provider.

    Args:
        provider: Provider registration record.
        secrets: Secret store holding the provider's connection attributes.

    Returns:
        A ready-to-use provider transport.

    Raises:
        ProviderAuthenticationError: If a connection attribute is unavailable.
        ValueError: If the provider type is not supported.
    """
    provider_type = provider.provider_type
    try:
        if provider_type == ProviderType.AZURE:
            return AzureProviderFileOperations(
                storage_account_name=secrets.get_secret(
                    provider_secret_key(provider_type, AZURE_ACCOUNT_NAME)
                ),
                sas_token=secrets.get_secret(
                    provider_secret_key(provider_type, AZURE_ACCOUNT_TOKEN)
                ),
            )
        if provider_type == ProviderType.LOCAL:
            return LocalProviderFileOperations(
                secrets.get_secret(provider_secret_key(provider_type, LOCAL_ROOT_PATH))
            )
    except SecretUnavailableError as e:
        logger.error(f"Credentials for the {provider_type.value} provider are unavailable: {e}")
        raise ProviderAuthenticationError(
            f"Credentials for the {provider_type.value} provider are unavailable"
        ) from e

    raise ValueError(f"Unsupported provider type: {provider_type}")
