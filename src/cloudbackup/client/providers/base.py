"""Provider transport interface.

A provider transport uploads one file's bytes to one remote backend,
block by block, and derives sync status purely from that backend's state.
Transports hold no persistent state of their own.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from cloudbackup.client.models import (
    METADATA_FILE_HASH,
    METADATA_FILE_HASH_ALGORITHM,
    METADATA_FULL_SOURCE_PATH,
    METADATA_LAST_COMPLETED_BLOCK,
    METADATA_SYNC_STATUS,
)
from cloudbackup.core.types import FileStatus

if TYPE_CHECKING:
    from cloudbackup.client.models import BackupFile, DirectoryMapItem, ProviderFileStatus
    from cloudbackup.core.types import ProviderType


def generate_block_id(file: BackupFile, block_index: int) -> str:
    """Base64 block identifier for a block of a file revision.

    All ids of one blob must have the same length, so the index is
    zero-padded.
    """
    raw = f"{file.file_id}-r{file.revision}-{block_index:06d}"
    return base64.b64encode(raw.encode("ascii")).decode("ascii")


def generate_block_list(file: BackupFile, block_index: int) -> list[str]:
    """Block ids to commit after uploading ``block_index``.

    Always the contiguous prefix 0..block_index.
    """
    return [generate_block_id(file, i) for i in range(block_index + 1)]


def build_block_metadata(file: BackupFile, block_index: int, total_blocks: int) -> dict[str, str]:
    """Object metadata to store after committing ``block_index``."""
    is_final = block_index + 1 == total_blocks
    return {
        METADATA_SYNC_STATUS: (FileStatus.SYNCED if is_final else FileStatus.IN_PROGRESS).value,
        METADATA_LAST_COMPLETED_BLOCK: str(block_index),
        METADATA_FULL_SOURCE_PATH: file.full_source_path,
        METADATA_FILE_HASH: file.file_hash or "",
        METADATA_FILE_HASH_ALGORITHM: file.hash_algorithm or "",
    }


class ProviderFileOperations(ABC):
    """Abstract interface for a remote storage backend."""

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type this transport implements."""

    @abstractmethod
    def get_file_status(self, file: BackupFile, directory: DirectoryMapItem) -> ProviderFileStatus:
        """Return the sync status of a file as it exists (or doesn't) remotely.

        A missing object is UNSYNCED, never an error.

        Args:
            file: The tracked file.
            directory: Directory map item of the file's folder.

        Raises:
            TransportError: If the backend cannot be reached.
        """

    @abstractmethod
    def upload_file_block(
        self,
        file: BackupFile,
        directory: DirectoryMapItem,
        data: bytes,
        block_index: int,
        total_blocks: int,
    ) -> None:
        """Upload and commit one block of a file.

        The block is committed together with all previous blocks, metadata
        is updated, and on the final block the object is moved to the
        archive tier (once).

        Args:
            file: The tracked file.
            directory: Directory map item of the file's folder.
            data: Block bytes.
            block_index: Zero-based index of this block.
            total_blocks: Number of blocks the file is made of.

        Raises:
            TransportError: If the backend cannot be reached.
            IntegrityError: If the backend rejected the block hash.
            NotFoundError: If a remote resource unexpectedly does not exist.
        """

    def close(self) -> None:
        """Release any connections held by the transport."""
