"""Exception hierarchy for cloudbackup."""

from __future__ import annotations


class CloudBackupError(Exception):
    """Base exception for all cloudbackup errors."""


class ConfigurationError(CloudBackupError):
    """A required setting is missing or invalid."""


class ValidationError(CloudBackupError):
    """An administrative argument was rejected before persistence."""


class DuplicateError(CloudBackupError):
    """The entity being added already exists."""


class DuplicateSourceError(DuplicateError):
    """A source with the same folder path and match filter already exists."""


class StoreUnavailableError(CloudBackupError):
    """The local index could not be read or written."""


class SecretUnavailableError(CloudBackupError):
    """A secret could not be found in the secret store."""


class ProviderError(CloudBackupError):
    """Base exception for provider transport failures."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransportError(ProviderError):
    """Network or backend failure while talking to a provider."""


class ProviderAuthenticationError(TransportError):
    """The provider rejected (or could not be given) credentials."""


class IntegrityError(ProviderError):
    """The backend reported a block hash mismatch."""


class NotFoundError(ProviderError):
    """A container or object does not exist at the provider."""


class EngineFailure(CloudBackupError):
    """An unexpected exception escaped an engine loop."""


class SourceFileError(CloudBackupError):
    """A source file could not be read."""
