"""Secret storage for provider and network share credentials.

This module provides:
- SecretStore: Protocol for secret storage backends
- KeyringSecretStore: OS keyring integration (default)
- MemorySecretStore: In-process store for tests and dry runs
- Deterministic secret names for credentials and providers
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from cloudbackup.core.exceptions import SecretUnavailableError
from cloudbackup.core.types import ProviderType

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "cloudbackup"

NET_CREDENTIAL_USERNAME_FORMAT = "netcredential-{name}-username"
NET_CREDENTIAL_PASSWORD_FORMAT = "netcredential-{name}-password"
PROVIDER_SECRET_FORMAT = "provider-{provider}-{attribute}"


def net_credential_username_key(credential_name: str) -> str:
    """Secret name of a net credential's username."""
    return NET_CREDENTIAL_USERNAME_FORMAT.format(name=credential_name.lower())


def net_credential_password_key(credential_name: str) -> str:
    """Secret name of a net credential's password."""
    return NET_CREDENTIAL_PASSWORD_FORMAT.format(name=credential_name.lower())


def provider_secret_key(provider_type: ProviderType, attribute: str) -> str:
    """Secret name of a provider connection attribute."""
    return PROVIDER_SECRET_FORMAT.format(provider=provider_type.value, attribute=attribute)


class SecretStore(Protocol):
    """Protocol for secret storage."""

    def set_secret(self, key: str, value: str) -> None:
        """Store a secret, replacing any previous value."""
        ...

    def get_secret(self, key: str) -> str:
        """Return a secret.

        Raises:
            SecretUnavailableError: If the secret is not stored.
        """
        ...

    def delete_secret(self, key: str) -> None:
        """Delete a secret (no-op if absent)."""
        ...


class KeyringSecretStore:
    """Secret store backed by the OS keyring."""

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        """Initialize the store.

        Args:
            service: Keyring service name secrets are grouped under.
        """
        self._service = service

    def set_secret(self, key: str, value: str) -> None:
        """Store a secret in the keyring."""
        try:
            keyring.set_password(self._service, key, value)
        except KeyringError as e:
            raise SecretUnavailableError(f"Unable to save secret {key}: {e}") from e

    def get_secret(self, key: str) -> str:
        """Read a secret from the keyring."""
        try:
            value = keyring.get_password(self._service, key)
        except KeyringError as e:
            raise SecretUnavailableError(f"Unable to read secret {key}: {e}") from e
        if value is None:
            raise SecretUnavailableError(f"Secret not found: {key}")
        return value

    def delete_secret(self, key: str) -> None:
        """Delete a secret from the keyring."""
        try:
            keyring.delete_password(self._service, key)
        except PasswordDeleteError:
            logger.debug(f"Secret {key} was not stored, nothing to delete")
        except KeyringError as e:
            raise SecretUnavailableError(f"Unable to delete secret {key}: {e}") from e


class MemorySecretStore:
    """Secret store that keeps secrets in memory."""

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})
        self._lock = threading.Lock()

    def set_secret(self, key: str, value: str) -> None:
        with self._lock:
            self._secrets[key] = value

    def get_secret(self, key: str) -> str:
        with self._lock:
            try:
                return self._secrets[key]
            except KeyError:
                raise SecretUnavailableError(f"Secret not found: {key}") from None

    def delete_secret(self, key: str) -> None:
        with self._lock:
            self._secrets.pop(key, None)
