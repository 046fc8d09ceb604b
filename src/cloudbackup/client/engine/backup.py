"""Backup engine: uploads pending files to every registered provider.

Each iteration takes the next pending file from the index and, for each
provider, asks the provider where the file stands before uploading the
remaining blocks in order. Remote state is the only resume point; the
index is written after every block so a crash loses at most one block.
"""

from __future__ import annotations

import contextlib
import logging
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from cloudbackup.client.engine.base import BaseEngine
from cloudbackup.client.engine.retry import DEFAULT_INITIAL_BACKOFF, retry_with_backoff
from cloudbackup.core.blocks import (
    FILE_HASH_ALGORITHM,
    TRANSFER_BLOCK_SIZE,
    compute_file_hash,
    compute_total_blocks,
    read_block,
)
from cloudbackup.core.config import DEFAULT_BACKUP_IDLE_INTERVAL, DEFAULT_MAX_BLOCK_RETRIES
from cloudbackup.core.exceptions import SourceFileError
from cloudbackup.core.types import FileStatus

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloudbackup.client.database import ClientDatabase
    from cloudbackup.client.models import (
        BackupFile,
        DirectoryMapItem,
        Provider,
        ProviderFileStatus,
    )
    from cloudbackup.client.providers.base import ProviderFileOperations
    from cloudbackup.core.types import ProviderType

logger = logging.getLogger(__name__)


class BackupEngine(BaseEngine):
    """Engine that transfers pending files to the providers."""

    def __init__(
        self,
        database_factory: Callable[[], ClientDatabase],
        provider_factory: Callable[[Provider], ProviderFileOperations],
        idle_interval: float = DEFAULT_BACKUP_IDLE_INTERVAL,
        max_block_retries: int = DEFAULT_MAX_BLOCK_RETRIES,
        retry_backoff: float = DEFAULT_INITIAL_BACKOFF,
        block_size: int = TRANSFER_BLOCK_SIZE,
    ) -> None:
        """Initialize the backup engine.

        Args:
            database_factory: Opens the engine's own database handle.
            provider_factory: Builds the transport for a provider registration.
            idle_interval: Seconds to sleep when nothing is pending.
            max_block_retries: Retries for one block before giving up on the file.
            retry_backoff: Initial backoff between block retries.
            block_size: Transfer block size in bytes.
        """
        super().__init__(database_factory, error_interval=idle_interval)
        self._provider_factory = provider_factory
        self._idle_interval = idle_interval
        self._max_block_retries = max_block_retries
        self._retry_backoff = retry_backoff
        self._block_size = block_size

    @property
    def name(self) -> str:
        """Return the engine name."""
        return "backup"

    @property
    def logger(self) -> logging.Logger:
        """Return the engine's own logger."""
        return logger

    def run_iteration(self, database: ClientDatabase) -> float:
        """Back up the next pending file, or idle if there is none."""
        providers = database.get_providers()
        if not providers:
            logger.debug("No providers are configured. Nothing to back up.")
            return self._idle_interval

        file = database.get_next_file_to_backup()
        if file is None:
            logger.debug("No files are pending backup.")
            return self._idle_interval

        self.backup_file(database, file, providers)
        return 0.0

    def backup_file(
        self,
        database: ClientDatabase,
        file: BackupFile,
        providers: list[Provider],
    ) -> FileStatus:
        """Bring one file up to date at every provider.

        Args:
            database: Database handle of the calling thread.
            file: The file to back up.
            providers: Registered providers.

        Returns:
            The file's overall state afterwards.

        Raises:
            ProviderError: If a provider transfer failed after retries. The
                file keeps its committed progress and is retried later.
            SourceFileError: If the file exists but cannot be read.
        """
        file.last_checked = database.touch_backup_file(file.file_id)
        try:
            if not self._refresh_file(database, file):
                return file.overall_state

            logger.info(f"Backing up {file.full_source_path} ({file.file_size_bytes} bytes)")
            directory = database.get_directory_map_item(file.directory)
            provider_types = [p.provider_type for p in providers]

            for provider in providers:
                if self.stop_requested:
                    break
                transport = self._provider_factory(provider)
                with contextlib.closing(transport):
                    if not self._backup_to_provider(database, file, directory, transport, provider_types):
                        break
        except FileNotFoundError:
            self._mark_removed(database, file)
        except OSError as e:
            raise SourceFileError(f"Unable to read {file.full_source_path}: {e}") from e

        return file.overall_state

    def _mark_removed(self, database: ClientDatabase, file: BackupFile) -> None:
        logger.info(f"{file.full_source_path} no longer exists. Marking it removed.")
        file.overall_state = FileStatus.REMOVED
        database.update_backup_file_if_current(file, file.revision, file.last_modified)

    def _refresh_file(self, database: ClientDatabase, file: BackupFile) -> bool:
        """Make sure the record describes what is on disk.

        The record is only changed once the file has been read, so a file
        that vanishes midway still holds the version stored in the index.

        Returns:
            False if the index holds a newer version than ``file``.

        Raises:
            FileNotFoundError: If the file is gone.
        """
        path = Path(file.full_source_path)
        stat = path.stat()

        changed = stat.st_size != file.file_size_bytes or stat.st_mtime != file.last_modified
        if not changed and file.file_hash:
            return True

        file_hash = compute_file_hash(path)
        stored_revision, stored_last_modified = file.revision, file.last_modified

        if changed:
            source = database.get_source_location(file.source_id)
            revision_count = source.revision_count if source else 1
            file.apply_new_version(stat.st_size, stat.st_mtime, revision_count)
            logger.info(f"{file.full_source_path} changed on disk, now revision slot {file.revision}")

        file.file_hash = file_hash
        file.hash_algorithm = FILE_HASH_ALGORITHM
        if not database.update_backup_file_if_current(file, stored_revision, stored_last_modified):
            logger.info(f"{file.full_source_path} was updated by a scan. Leaving it for the next pass.")
            return False
        return True

    def _backup_to_provider(
        self,
        database: ClientDatabase,
        file: BackupFile,
        directory: DirectoryMapItem,
        transport: ProviderFileOperations,
        provider_types: list[ProviderType],
    ) -> bool:
        """Upload the blocks a provider is missing.

        Returns:
            False if the transfer should not go on with other providers.
        """
        provider_name = transport.provider_type.value
        status = transport.get_file_status(file, directory)

        if status.file_hash and status.file_hash != file.file_hash:
            logger.info(
                f"Remote copy of {file.filename} at {provider_name} holds different content. "
                f"Starting over."
            )
            status.reset()

        total_blocks = compute_total_blocks(file.file_size_bytes, self._block_size)
        if status.sync_status == FileStatus.SYNCED:
            logger.debug(f"{file.filename} is already synced at {provider_name}")
            return self._record_progress(database, file, status, provider_types)

        start_index = status.next_block_index
        if start_index >= total_blocks:
            status.reset()
            start_index = 0
        if start_index > 0:
            logger.info(
                f"Resuming {file.filename} at {provider_name} from block "
                f"{start_index + 1} of {total_blocks}"
            )

        for block_index in range(start_index, total_blocks):
            if self.stop_requested:
                logger.info(
                    f"Stop requested. {file.filename} will resume at block {block_index + 1}."
                )
                return False

            retry_with_backoff(
                partial(self._upload_block, transport, file, directory, block_index, total_blocks),
                max_retries=self._max_block_retries,
                initial_backoff=self._retry_backoff,
                description=f"upload of block {block_index + 1} of {file.filename}",
            )

            is_final = block_index + 1 == total_blocks
            status.sync_status = FileStatus.SYNCED if is_final else FileStatus.IN_PROGRESS
            status.last_completed_block_index = block_index
            status.file_hash = file.file_hash
            status.hash_algorithm = file.hash_algorithm
            if not self._record_progress(database, file, status, provider_types):
                return False
        return True

    def _upload_block(
        self,
        transport: ProviderFileOperations,
        file: BackupFile,
        directory: DirectoryMapItem,
        block_index: int,
        total_blocks: int,
    ) -> None:
        # Re-read on every attempt so a retry after an integrity failure re-hashes
        block = read_block(Path(file.full_source_path), block_index, self._block_size)
        transport.upload_file_block(file, directory, block.data, block_index, total_blocks)

    @staticmethod
    def _record_progress(
        database: ClientDatabase,
        file: BackupFile,
        status: ProviderFileStatus,
        provider_types: list[ProviderType],
    ) -> bool:
        file.set_provider_status(status)
        file.update_overall_state(provider_types)
        if database.record_backup_progress(file):
            return True
        logger.info(
            f"{file.full_source_path} changed in the index during its transfer. "
            f"Leaving it for the next pass."
        )
        return False
