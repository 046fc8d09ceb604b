"""Core module - Shared types, block math, settings and exceptions."""

from cloudbackup.core.blocks import (
    FILE_HASH_ALGORITHM,
    TRANSFER_BLOCK_SIZE,
    Block,
    compute_file_hash,
    compute_total_blocks,
    get_block_hash,
    iter_blocks,
    read_block,
)
from cloudbackup.core.config import CoreSettings
from cloudbackup.core.exceptions import (
    CloudBackupError,
    ConfigurationError,
    DuplicateError,
    DuplicateSourceError,
    EngineFailure,
    IntegrityError,
    NotFoundError,
    ProviderAuthenticationError,
    ProviderError,
    SecretUnavailableError,
    StoreUnavailableError,
    TransportError,
    ValidationError,
)
from cloudbackup.core.types import (
    FileBackupPriority,
    FileStatus,
    ProviderType,
    SourceLocationType,
)

__all__ = [
    # Blocks
    "FILE_HASH_ALGORITHM",
    "TRANSFER_BLOCK_SIZE",
    "Block",
    "compute_file_hash",
    "compute_total_blocks",
    "get_block_hash",
    "iter_blocks",
    "read_block",
    # Config
    "CoreSettings",
    # Exceptions
    "CloudBackupError",
    "ConfigurationError",
    "DuplicateError",
    "DuplicateSourceError",
    "EngineFailure",
    "IntegrityError",
    "NotFoundError",
    "ProviderAuthenticationError",
    "ProviderError",
    "SecretUnavailableError",
    "StoreUnavailableError",
    "TransportError",
    "ValidationError",
    # Types
    "FileBackupPriority",
    "FileStatus",
    "ProviderType",
    "SourceLocationType",
]
