"""Scan engine: discovers files in source locations and records them in the index.

For each configured source location the engine walks the folder, applies
the match filter and looks every file up by (path, size, last modified).
Unknown paths become new tracked files, known paths whose size or
modification time moved get a new revision, and tracked files that are
gone from disk are marked removed.
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import TYPE_CHECKING

from cloudbackup.client.engine.base import BaseEngine
from cloudbackup.client.engine.types import ScanResult
from cloudbackup.client.models import BackupFile
from cloudbackup.core.blocks import FILE_HASH_ALGORITHM, compute_file_hash
from cloudbackup.core.config import DEFAULT_SCAN_INTERVAL
from cloudbackup.core.types import FileStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from cloudbackup.client.database import ClientDatabase
    from cloudbackup.client.models import SourceLocation

logger = logging.getLogger(__name__)


class ScanEngine(BaseEngine):
    """Engine that keeps the index in step with the source folders."""

    def __init__(
        self,
        database_factory: Callable[[], ClientDatabase],
        scan_interval: float = DEFAULT_SCAN_INTERVAL,
        error_interval: float | None = None,
    ) -> None:
        """Initialize the scan engine.

        Args:
            database_factory: Opens the engine's own database handle.
            scan_interval: Seconds between full scans.
            error_interval: Seconds to wait after a failed scan (defaults to scan_interval).
        """
        super().__init__(
            database_factory,
            error_interval=scan_interval if error_interval is None else error_interval,
        )
        self._scan_interval = scan_interval

    @property
    def name(self) -> str:
        """Return the engine name."""
        return "scan"

    @property
    def logger(self) -> logging.Logger:
        """Return the engine's own logger."""
        return logger

    def run_iteration(self, database: ClientDatabase) -> float:
        """Scan every source location once."""
        sources = database.get_all_source_locations()
        if not sources:
            logger.debug("No source locations are configured.")
            return self._scan_interval

        for source in sources:
            if self.stop_requested:
                break
            self.scan_source(database, source)
        return self._scan_interval

    def scan_source(self, database: ClientDatabase, source: SourceLocation) -> ScanResult:
        """Scan one source location and update the index.

        Files are only marked removed after a complete walk, so an
        interrupted scan never loses track of anything.

        Args:
            database: Database handle of the calling thread.
            source: The source location to scan.

        Returns:
            Counts of what the scan found.
        """
        result = ScanResult(source_id=source.id)
        root = Path(source.folder_path)
        if not root.is_dir():
            logger.warning(f"Source location {source.id} is unavailable: {source.folder_path}")
            return result

        logger.info(f"Scanning source location {source.id}: {source.folder_path} ({source.file_match_filter})")
        seen: set[str] = set()

        for path in self._iter_matching_files(root, source):
            if self.stop_requested:
                logger.info(f"Scan of source location {source.id} interrupted by stop request.")
                return result

            try:
                self._scan_file(database, source, path, result)
            except OSError as e:
                logger.warning(f"Could not read {path}: {e}")
                result.skipped += 1
                continue
            seen.add(str(path))

        result.removed = database.mark_missing_files_removed(source.id, seen)
        source.last_completed_scan = time.time()
        database.update_source_location(source)
        result.completed = True

        logger.info(
            f"Scan of source location {source.id} complete: {result.added} added, "
            f"{result.changed} changed, {result.unchanged} unchanged, {result.removed} removed"
        )
        return result

    def _scan_file(
        self,
        database: ClientDatabase,
        source: SourceLocation,
        path: Path,
        result: ScanResult,
    ) -> None:
        stat = path.stat()
        full_path = str(path)

        tracked = database.get_backup_file(full_path, stat.st_size, stat.st_mtime)
        if tracked is not None:
            reassigned = self._adopt(database, source, tracked)
            if tracked.overall_state == FileStatus.REMOVED:
                # The same version came back; providers decide what is left to send
                tracked.overall_state = FileStatus.UNSYNCED
                database.update_backup_file(tracked)
                result.changed += 1
            elif reassigned:
                result.changed += 1
            else:
                result.unchanged += 1
            return

        file_hash = compute_file_hash(path)
        existing = database.get_backup_file_by_path(full_path)
        if existing is None:
            file = BackupFile(
                full_source_path=full_path,
                file_size_bytes=stat.st_size,
                last_modified=stat.st_mtime,
                source_id=source.id,
                priority=source.priority,
                file_hash=file_hash,
                hash_algorithm=FILE_HASH_ALGORITHM,
            )
            database.add_backup_file(file)
            logger.debug(f"Discovered new file: {full_path}")
            result.added += 1
            return

        existing.apply_new_version(stat.st_size, stat.st_mtime, source.revision_count)
        existing.source_id = source.id
        existing.priority = source.priority
        existing.file_hash = file_hash
        existing.hash_algorithm = FILE_HASH_ALGORITHM
        database.update_backup_file(existing)
        logger.debug(f"File changed, now revision slot {existing.revision}: {full_path}")
        result.changed += 1

    @staticmethod
    def _adopt(database: ClientDatabase, source: SourceLocation, file: BackupFile) -> bool:
        """Give a tracked file to the scanning source if its owner is gone.

        A source that was removed and added back gets a new ID, so its files
        would otherwise keep pointing at the old one and never be scheduled.
        Files of a live source that another source also matches stay put.

        Returns:
            True if the record was reassigned.
        """
        if file.source_id == source.id:
            if file.priority == source.priority:
                return False
        elif database.get_source_location(file.source_id) is not None:
            return False

        logger.debug(f"Assigning {file.full_source_path} to source location {source.id}")
        file.source_id = source.id
        file.priority = source.priority
        database.reassign_backup_file(file.file_id, source.id, source.priority)
        return True

    @staticmethod
    def _iter_matching_files(root: Path, source: SourceLocation) -> Iterator[Path]:
        """Yield regular files under root whose names match the source filter."""
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames.sort()
            for filename in sorted(filenames):
                if not source.matches(filename):
                    continue
                path = Path(dirpath) / filename
                if path.is_symlink() or not path.is_file():
                    continue
                yield path
