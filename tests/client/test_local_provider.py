"""Tests for the filesystem-backed provider transport."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from cloudbackup.client.models import BackupFile, DirectoryMapItem
from cloudbackup.client.providers.local import LocalProviderFileOperations
from cloudbackup.core.exceptions import IntegrityError, NotFoundError, TransportError
from cloudbackup.core.types import FileStatus, ProviderType

BLOCKS = [b"aaaa", b"bbbb", b"cc"]


@pytest.fixture
def provider(tmp_path: Path) -> LocalProviderFileOperations:
    return LocalProviderFileOperations(tmp_path / "remote")


@pytest.fixture
def file() -> BackupFile:
    return BackupFile(
        full_source_path="/data/report.txt",
        file_size_bytes=10,
        last_modified=100.0,
        source_id=1,
        file_id="f1",
        file_hash="hash-1",
        hash_algorithm="SHA256",
    )


@pytest.fixture
def directory() -> DirectoryMapItem:
    return DirectoryMapItem(id="d1", local_path="/data")


def upload_all(
    provider: LocalProviderFileOperations,
    file: BackupFile,
    directory: DirectoryMapItem,
    blocks: list[bytes] = BLOCKS,
) -> None:
    for index, data in enumerate(blocks):
        provider.upload_file_block(file, directory, data, index, len(blocks))


class TestGetFileStatus:
    """Tests for status derivation."""

    def test_missing_object_is_unsynced(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """An object that does not exist is unsynced, not an error."""
        status = provider.get_file_status(file, directory)
        assert status.provider == ProviderType.LOCAL
        assert status.sync_status == FileStatus.UNSYNCED
        assert status.last_completed_block_index == -1

    def test_partial_upload_is_in_progress(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """The last committed block is reported."""
        provider.upload_file_block(file, directory, BLOCKS[0], 0, 3)
        provider.upload_file_block(file, directory, BLOCKS[1], 1, 3)

        status = provider.get_file_status(file, directory)
        assert status.sync_status == FileStatus.IN_PROGRESS
        assert status.last_completed_block_index == 1
        assert status.file_hash == "hash-1"
        assert status.hash_algorithm == "SHA256"

    def test_status_is_idempotent(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """Two calls without an upload in between agree."""
        provider.upload_file_block(file, directory, BLOCKS[0], 0, 3)
        assert provider.get_file_status(file, directory) == provider.get_file_status(file, directory)

    def test_unreadable_metadata_is_transport_error(
        self,
        provider: LocalProviderFileOperations,
        file: BackupFile,
        directory: DirectoryMapItem,
        tmp_path: Path,
    ) -> None:
        """Corrupt metadata is a backend failure."""
        provider.upload_file_block(file, directory, BLOCKS[0], 0, 3)
        metadata = (
            tmp_path / "remote" / directory.get_remote_container_name()
            / file.get_remote_file_name() / "metadata.json"
        )
        metadata.write_text("{not json")

        with pytest.raises(TransportError):
            provider.get_file_status(file, directory)


class TestUploadFileBlock:
    """Tests for block upload and commit."""

    def test_full_upload(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """All blocks committed in order, synced, archived."""
        upload_all(provider, file, directory)

        status = provider.get_file_status(file, directory)
        assert status.sync_status == FileStatus.SYNCED
        assert status.last_completed_block_index == 2
        assert provider.read_committed(file, directory) == b"".join(BLOCKS)
        assert provider.get_access_tier(file, directory) == "Archive"

    def test_metadata_records_source_path(
        self,
        provider: LocalProviderFileOperations,
        file: BackupFile,
        directory: DirectoryMapItem,
        tmp_path: Path,
    ) -> None:
        """Metadata carries the source path and hash."""
        provider.upload_file_block(file, directory, BLOCKS[0], 0, 3)
        metadata_path = (
            tmp_path / "remote" / "cloudbackup-directory-d1"
            / "cloudbackup-file-f1-r0" / "metadata.json"
        )
        metadata = json.loads(metadata_path.read_text())

        assert metadata["syncstatus"] == "in_progress"
        assert metadata["lastcompletedblockindex"] == "0"
        assert metadata["fullsourcepath"] == "/data/report.txt"
        assert metadata["filehash"] == "hash-1"

    def test_tier_not_set_before_final_block(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """Only the final block moves the object to the archive tier."""
        provider.upload_file_block(file, directory, BLOCKS[0], 0, 3)
        assert provider.get_access_tier(file, directory) is None

    def test_tier_applied_once(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """Re-uploading the final block does not set the tier again."""
        with patch.object(
            LocalProviderFileOperations,
            "_set_access_tier",
            autospec=True,
            side_effect=LocalProviderFileOperations._set_access_tier,
        ) as set_tier:
            upload_all(provider, file, directory)
            provider.upload_file_block(file, directory, BLOCKS[2], 2, 3)

        assert set_tier.call_count == 1

    def test_commit_requires_contiguous_prefix(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """A block cannot be committed before the blocks ahead of it."""
        with pytest.raises(NotFoundError):
            provider.upload_file_block(file, directory, BLOCKS[2], 2, 3)

    def test_corrupted_block_raises_integrity_error(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """A staged block whose hash does not match is rejected."""
        with patch(
            "cloudbackup.client.providers.local.get_block_hash",
            side_effect=["expected", "different"],
        ):
            with pytest.raises(IntegrityError):
                provider.upload_file_block(file, directory, BLOCKS[0], 0, 3)

        assert provider.get_file_status(file, directory).sync_status == FileStatus.UNSYNCED

    def test_revisions_are_separate_objects(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """Each revision slot is its own remote object."""
        upload_all(provider, file, directory)
        file.revision = 1

        assert provider.get_file_status(file, directory).sync_status == FileStatus.UNSYNCED

    def test_read_committed_missing_raises(
        self, provider: LocalProviderFileOperations, file: BackupFile, directory: DirectoryMapItem
    ) -> None:
        """Nothing committed yet is NotFoundError."""
        with pytest.raises(NotFoundError):
            provider.read_committed(file, directory)
