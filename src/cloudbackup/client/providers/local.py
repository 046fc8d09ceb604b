"""Filesystem-backed provider transport.

Emulates a block blob store on a local or mounted filesystem (NAS, USB
drive). Layout under the root path::

    <root>/<container>/<blob>/blocks/<block-id>.blk   staged blocks
    <root>/<container>/<blob>/blocklist.json          committed block ids
    <root>/<container>/<blob>/metadata.json           object metadata
    <root>/<container>/<blob>/properties.json         access tier
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from cloudbackup.client.models import ProviderFileStatus
from cloudbackup.client.providers.base import (
    ProviderFileOperations,
    build_block_metadata,
    generate_block_id,
    generate_block_list,
)
from cloudbackup.core.blocks import get_block_hash
from cloudbackup.core.exceptions import IntegrityError, NotFoundError, TransportError
from cloudbackup.core.types import ProviderType

if TYPE_CHECKING:
    from cloudbackup.client.models import BackupFile, DirectoryMapItem

logger = logging.getLogger(__name__)

ARCHIVE_TIER = "Archive"
BLOCK_LIST_NAME = "blocklist.json"
METADATA_NAME = "metadata.json"
PROPERTIES_NAME = "properties.json"


def _block_file_name(block_id: str) -> str:
    """Filesystem-safe name of a staged block."""
    return block_id.replace("/", "_").replace("+", "-") + ".blk"


def _write_json_atomic(path: Path, data: Any) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)


class LocalProviderFileOperations(ProviderFileOperations):
    """Provider transport storing blocks on a filesystem path."""

    def __init__(self, root_path: Path | str) -> None:
        """Initialize local storage.

        Args:
            root_path: Base directory holding all containers.
        """
        self._root = Path(root_path).resolve()

    @property
    def provider_type(self) -> ProviderType:
        """Return the provider type."""
        return ProviderType.LOCAL

    @property
    def location(self) -> str:
        """Return a human-readable description of where blocks are stored."""
        return f"Local filesystem: {self._root}"

    def _container_path(self, directory: DirectoryMapItem) -> Path:
        return self._root / directory.get_remote_container_name()

    def _blob_path(self, file: BackupFile, directory: DirectoryMapItem) -> Path:
        return self._container_path(directory) / file.get_remote_file_name()

    def get_file_status(self, file: BackupFile, directory: DirectoryMapItem) -> ProviderFileStatus:
        """Return the sync status of a file from its stored metadata."""
        status = ProviderFileStatus(provider=self.provider_type)
        metadata_path = self._blob_path(file, directory) / METADATA_NAME

        try:
            if metadata_path.exists():
                metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
                status.apply_metadata(metadata)
        except (OSError, ValueError) as e:
            raise TransportError(f"Unable to read status of {file.full_source_path}: {e}") from e

        logger.debug(f"File sync status in local provider: {status.sync_status.value}")
        return status

    def upload_file_block(
        self,
        file: BackupFile,
        directory: DirectoryMapItem,
        data: bytes,
        block_index: int,
        total_blocks: int,
    ) -> None:
        """Stage, commit and annotate one block."""
        container = self._container_path(directory)
        if not container.exists():
            logger.debug(f"Container {container.name} does not exist. Creating it now.")

        logger.debug(f"Uploading file block ({block_index + 1} of {total_blocks}) to {self._root}")

        blob = self._blob_path(file, directory)
        try:
            (blob / "blocks").mkdir(parents=True, exist_ok=True)
            self._put_block(blob, generate_block_id(file, block_index), data, get_block_hash(data))
            self._put_block_list(blob, generate_block_list(file, block_index))
            _write_json_atomic(
                blob / METADATA_NAME,
                build_block_metadata(file, block_index, total_blocks),
            )
            if block_index + 1 == total_blocks:
                if self.get_access_tier(file, directory) != ARCHIVE_TIER:
                    self._set_access_tier(blob, ARCHIVE_TIER)
                logger.info(f"Upload of {file.full_source_path} completed successfully")
        except OSError as e:
            raise TransportError(f"Unable to write block {block_index} of {file.full_source_path}: {e}") from e

    def _put_block(self, blob: Path, block_id: str, data: bytes, expected_hash: str) -> None:
        """Stage a block and verify what landed on disk, like a server-side Content-MD5 check."""
        block_path = blob / "blocks" / _block_file_name(block_id)
        tmp = block_path.with_suffix(".tmp")
        tmp.write_bytes(data)
        if get_block_hash(tmp.read_bytes()) != expected_hash:
            tmp.unlink()
            raise IntegrityError(f"Block {block_id} hash mismatch")
        os.replace(tmp, block_path)

    def _put_block_list(self, blob: Path, block_ids: list[str]) -> None:
        """Commit a list of staged blocks."""
        for block_id in block_ids:
            if not (blob / "blocks" / _block_file_name(block_id)).exists():
                raise NotFoundError(f"Block {block_id} has not been uploaded")
        _write_json_atomic(blob / BLOCK_LIST_NAME, block_ids)

    def _set_access_tier(self, blob: Path, tier: str) -> None:
        _write_json_atomic(blob / PROPERTIES_NAME, {"tier": tier})

    def get_access_tier(self, file: BackupFile, directory: DirectoryMapItem) -> str | None:
        """Return the access tier of a stored object, or None if not set."""
        properties = self._blob_path(file, directory) / PROPERTIES_NAME
        if not properties.exists():
            return None
        return json.loads(properties.read_text(encoding="utf-8")).get("tier")

    def read_committed(self, file: BackupFile, directory: DirectoryMapItem) -> bytes:
        """Return the committed content of a stored object.

        Raises:
            NotFoundError: If nothing has been committed for the file.
        """
        blob = self._blob_path(file, directory)
        block_list = blob / BLOCK_LIST_NAME
        if not block_list.exists():
            raise NotFoundError(f"No committed content for {file.full_source_path}")

        block_ids = json.loads(block_list.read_text(encoding="utf-8"))
        return b"".join(
            (blob / "blocks" / _block_file_name(block_id)).read_bytes()
            for block_id in block_ids
        )
