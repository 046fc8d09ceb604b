"""Shared types for cloudbackup.

This module defines enums used by the index, the provider transports
and the engines.
"""

from __future__ import annotations

from enum import Enum


class FileBackupPriority(int, Enum):
    """Backup priority of a source location and the files it contains.

    Higher values are scheduled first.
    """

    LOW = 1
    MEDIUM = 2
    HIGH = 3

    @classmethod
    def parse(cls, value: str) -> FileBackupPriority:
        """Parse a priority name case-insensitively.

        Raises:
            ValueError: If the name is not a known priority.
        """
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown priority: {value!r}") from None


class FileStatus(str, Enum):
    """Sync status of a file.

    UNSYNCED, IN_PROGRESS and SYNCED describe a file at one provider.
    REMOVED is terminal and only used for the overall state of a file
    that disappeared from disk.
    """

    UNSYNCED = "unsynced"
    IN_PROGRESS = "in_progress"
    SYNCED = "synced"
    REMOVED = "removed"


class ProviderType(str, Enum):
    """Remote storage backend kinds."""

    AZURE = "azure"
    LOCAL = "local"


class SourceLocationType(str, Enum):
    """Kinds of source locations."""

    LOCAL = "local"
    NETWORK = "network"
