"""Data model for the backup index.

This module provides:
- SourceLocation: A configured folder or network share to scan
- BackupFile: One tracked file and its backup state
- ProviderFileStatus: Sync state of a file at one provider (derived from remote)
- DirectoryMapItem: Stable remote identity of a local directory
- Provider / NetCredential: Administrative registrations
- BackupProgress: Aggregate counts for reporting
"""

from __future__ import annotations

import fnmatch
import json
import sqlite3
import time
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePath
from typing import Any

from cloudbackup.core.blocks import compute_total_blocks
from cloudbackup.core.exceptions import ValidationError
from cloudbackup.core.types import (
    FileBackupPriority,
    FileStatus,
    ProviderType,
    SourceLocationType,
)

# Provider metadata key names (stored on the remote object)
METADATA_SYNC_STATUS = "syncstatus"
METADATA_LAST_COMPLETED_BLOCK = "lastcompletedblockindex"
METADATA_FULL_SOURCE_PATH = "fullsourcepath"
METADATA_FILE_HASH = "filehash"
METADATA_FILE_HASH_ALGORITHM = "filehashalgorithm"

REMOTE_FILE_PREFIX = "cloudbackup-file"
REMOTE_CONTAINER_PREFIX = "cloudbackup-directory"


@dataclass
class SourceLocation:
    """A folder or network share to scan for files to back up.

    Attributes:
        id: Unique ID, assigned as max-existing + 1 when added.
        folder_path: Local folder path or UNC share path.
        file_match_filter: Glob applied to file names.
        priority: Backup priority inherited by discovered files.
        revision_count: How many historical versions of a file to keep.
        kind: Local folder or network share.
        credential_name: Optional net credential for network shares.
        last_completed_scan: Timestamp of the last finished scan.
    """

    folder_path: str
    file_match_filter: str = "*"
    priority: FileBackupPriority = FileBackupPriority.MEDIUM
    revision_count: int = 1
    kind: SourceLocationType = SourceLocationType.LOCAL
    credential_name: str | None = None
    id: int = 0
    last_completed_scan: float | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> SourceLocation:
        """Create SourceLocation from database row."""
        return cls(
            id=row["id"],
            kind=SourceLocationType(row["kind"]),
            folder_path=row["folder_path"],
            file_match_filter=row["file_match_filter"],
            priority=FileBackupPriority(row["priority"]),
            revision_count=row["revision_count"],
            credential_name=row["credential_name"],
            last_completed_scan=row["last_completed_scan"],
        )

    def is_duplicate_of(self, other: SourceLocation) -> bool:
        """Return True if both point at the same folder with the same filter."""
        return (
            self.folder_path.lower() == other.folder_path.lower()
            and self.file_match_filter == other.file_match_filter
        )

    def matches(self, file_name: str) -> bool:
        """Check a file name against the match filter."""
        return fnmatch.fnmatch(file_name, self.file_match_filter)

    def validate(self) -> None:
        """Check the source is usable.

        Raises:
            ValidationError: If the path, filter or revision count is invalid.
        """
        if not self.folder_path or not self.folder_path.strip():
            raise ValidationError("Source folder path must be provided")
        if not self.file_match_filter:
            raise ValidationError("Source match filter must be provided")
        if self.revision_count < 1:
            raise ValidationError(
                f"Revision count must be at least 1, got {self.revision_count}"
            )

        if self.kind == SourceLocationType.LOCAL:
            if not Path(self.folder_path).is_dir():
                raise ValidationError(
                    f"Source folder does not exist or is not a directory: {self.folder_path}"
                )
        elif not self.folder_path.startswith(("\\\\", "//")):
            raise ValidationError(
                f"Network source must be a UNC path (\\\\server\\share): {self.folder_path}"
            )


@dataclass
class ProviderFileStatus:
    """Sync state of one file at one provider.

    This is reconstructed from the provider's own metadata and never
    trusted from a local cache.

    Attributes:
        provider: Provider this status belongs to.
        sync_status: UNSYNCED, IN_PROGRESS or SYNCED.
        last_completed_block_index: Index of the last committed block (-1 if none).
        file_hash: Whole-file hash stored with the remote object.
        hash_algorithm: Algorithm of file_hash.
    """

    provider: ProviderType
    sync_status: FileStatus = FileStatus.UNSYNCED
    last_completed_block_index: int = -1
    file_hash: str | None = None
    hash_algorithm: str | None = None

    @property
    def next_block_index(self) -> int:
        """Index of the next block to upload."""
        return self.last_completed_block_index + 1

    def apply_metadata(self, metadata: Mapping[str, str]) -> None:
        """Populate the status from provider-native object metadata.

        Unknown or malformed values leave the status UNSYNCED.
        """
        try:
            status = FileStatus(metadata.get(METADATA_SYNC_STATUS, ""))
            last_block = int(metadata.get(METADATA_LAST_COMPLETED_BLOCK, "-1"))
        except ValueError:
            self.reset()
            return

        if status not in (FileStatus.IN_PROGRESS, FileStatus.SYNCED) or last_block < 0:
            self.reset()
            return

        self.sync_status = status
        self.last_completed_block_index = last_block
        self.file_hash = metadata.get(METADATA_FILE_HASH) or None
        self.hash_algorithm = metadata.get(METADATA_FILE_HASH_ALGORITHM) or None

    def reset(self) -> None:
        """Reset to the unsynced state."""
        self.sync_status = FileStatus.UNSYNCED
        self.last_completed_block_index = -1
        self.file_hash = None
        self.hash_algorithm = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for storage in the index."""
        return {
            "sync_status": self.sync_status.value,
            "last_completed_block_index": self.last_completed_block_index,
            "file_hash": self.file_hash,
            "hash_algorithm": self.hash_algorithm,
        }

    @classmethod
    def from_dict(cls, provider: ProviderType, data: Mapping[str, Any]) -> ProviderFileStatus:
        """Create from a serialized dictionary."""
        return cls(
            provider=provider,
            sync_status=FileStatus(data.get("sync_status", FileStatus.UNSYNCED.value)),
            last_completed_block_index=int(data.get("last_completed_block_index", -1)),
            file_hash=data.get("file_hash"),
            hash_algorithm=data.get("hash_algorithm"),
        )


@dataclass
class BackupFile:
    """A tracked file instance.

    The lookup key for change detection is the triple
    (full_source_path, file_size_bytes, last_modified).

    Attributes:
        full_source_path: Absolute path of the file.
        file_size_bytes: Size when last seen by the scanner.
        last_modified: Modification timestamp when last seen.
        source_id: Owning source location.
        priority: Priority inherited from the source.
        file_id: Stable identity used for remote naming.
        file_hash: Whole-file hash (hex).
        hash_algorithm: Algorithm of file_hash.
        revision: Revision slot (0 .. revision_count - 1).
        overall_state: State across all providers.
        provider_states: Last known per-provider status, by provider type.
        discovered_at: When this version of the file was discovered.
        last_checked: When the backup loop last looked at this file.
    """

    full_source_path: str
    file_size_bytes: int
    last_modified: float
    source_id: int
    priority: FileBackupPriority = FileBackupPriority.MEDIUM
    file_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    file_hash: str | None = None
    hash_algorithm: str | None = None
    revision: int = 0
    overall_state: FileStatus = FileStatus.UNSYNCED
    provider_states: dict[ProviderType, ProviderFileStatus] = field(default_factory=dict)
    discovered_at: float = field(default_factory=time.time)
    last_checked: float | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> BackupFile:
        """Create BackupFile from database row."""
        states: dict[ProviderType, ProviderFileStatus] = {}
        if row["provider_states"]:
            for name, data in json.loads(row["provider_states"]).items():
                provider = ProviderType(name)
                states[provider] = ProviderFileStatus.from_dict(provider, data)
        return cls(
            file_id=row["file_id"],
            full_source_path=row["full_source_path"],
            file_size_bytes=row["file_size_bytes"],
            last_modified=row["last_modified"],
            source_id=row["source_id"],
            priority=FileBackupPriority(row["priority"]),
            file_hash=row["file_hash"],
            hash_algorithm=row["hash_algorithm"],
            revision=row["revision"],
            overall_state=FileStatus(row["overall_state"]),
            provider_states=states,
            discovered_at=row["discovered_at"],
            last_checked=row["last_checked"],
        )

    def provider_states_json(self) -> str:
        """Serialize provider states for storage."""
        return json.dumps(
            {p.value: s.to_dict() for p, s in sorted(self.provider_states.items())}
        )

    @property
    def filename(self) -> str:
        """File name without directory."""
        return PurePath(self.full_source_path).name

    @property
    def directory(self) -> str:
        """Directory containing the file."""
        return str(PurePath(self.full_source_path).parent)

    @property
    def total_blocks(self) -> int:
        """Number of transfer blocks for the current size."""
        return compute_total_blocks(self.file_size_bytes)

    def get_remote_file_name(self) -> str:
        """Remote object name for this file's current revision slot."""
        return f"{REMOTE_FILE_PREFIX}-{self.file_id}-r{self.revision}".lower()

    def get_provider_status(self, provider: ProviderType) -> ProviderFileStatus:
        """Last known status at a provider (UNSYNCED if never seen)."""
        return self.provider_states.get(provider, ProviderFileStatus(provider=provider))

    def set_provider_status(self, status: ProviderFileStatus) -> None:
        """Record the status at one provider."""
        self.provider_states[status.provider] = status

    def update_overall_state(self, providers: Iterable[ProviderType]) -> FileStatus:
        """Recompute overall_state from the per-provider states.

        SYNCED only when every given provider is synced. A removed file
        stays removed.
        """
        if self.overall_state == FileStatus.REMOVED:
            return self.overall_state

        statuses = [self.get_provider_status(p).sync_status for p in providers]
        if statuses and all(s == FileStatus.SYNCED for s in statuses):
            self.overall_state = FileStatus.SYNCED
        elif any(s in (FileStatus.IN_PROGRESS, FileStatus.SYNCED) for s in statuses):
            self.overall_state = FileStatus.IN_PROGRESS
        else:
            self.overall_state = FileStatus.UNSYNCED
        return self.overall_state

    def apply_new_version(
        self,
        file_size_bytes: int,
        last_modified: float,
        revision_count: int,
    ) -> None:
        """Switch this record to a new on-disk version of the file.

        The revision slot advances (wrapping at revision_count) and all
        provider progress is cleared so the file is backed up again.
        """
        self.file_size_bytes = file_size_bytes
        self.last_modified = last_modified
        self.revision = (self.revision + 1) % max(revision_count, 1)
        self.file_hash = None
        self.hash_algorithm = None
        self.provider_states = {}
        self.overall_state = FileStatus.UNSYNCED
        self.discovered_at = time.time()


@dataclass
class DirectoryMapItem:
    """Stable identity of a local directory, used for remote container naming."""

    id: str
    local_path: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> DirectoryMapItem:
        """Create DirectoryMapItem from database row."""
        return cls(id=row["id"], local_path=row["local_path"])

    def get_remote_container_name(self) -> str:
        """Remote container name for this directory."""
        return f"{REMOTE_CONTAINER_PREFIX}-{self.id}".lower()


@dataclass
class Provider:
    """A registered remote storage provider."""

    id: int
    provider_type: ProviderType
    name: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Provider:
        """Create Provider from database row."""
        return cls(
            id=row["id"],
            provider_type=ProviderType(row["provider_type"]),
            name=row["name"] or "",
        )


@dataclass
class NetCredential:
    """A named network share credential (secrets live in the secret store)."""

    credential_name: str


@dataclass
class BackupProgress:
    """Aggregate backup progress for reporting."""

    total_files: int = 0
    synced_files: int = 0
    in_progress_files: int = 0
    unsynced_files: int = 0
    removed_files: int = 0
    total_bytes: int = 0
    synced_bytes: int = 0

    @property
    def percent_complete(self) -> float:
        """Share of tracked bytes that are synced, 0-100."""
        if self.total_bytes == 0:
            return 100.0 if self.unsynced_files + self.in_progress_files == 0 else 0.0
        return round(self.synced_bytes * 100.0 / self.total_bytes, 2)
