"""SQLite-backed backup index.

This module provides:
- ClientDatabase: The durable record of sources, tracked files, providers,
  net credentials and application options

Architecture:
    One ClientDatabase instance wraps one SQLite connection and must only be
    used from the thread that created it. The scan loop and the backup loop
    each open their own instance on the same file; WAL mode and a busy
    timeout let them read and write concurrently.

    Every sqlite3 failure is re-raised as StoreUnavailableError so callers
    can treat index I/O problems uniformly.
"""

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterable, Iterator
from pathlib import Path

from cloudbackup.client.models import (
    BackupFile,
    BackupProgress,
    DirectoryMapItem,
    NetCredential,
    Provider,
    SourceLocation,
)
from cloudbackup.core.exceptions import (
    DuplicateError,
    DuplicateSourceError,
    StoreUnavailableError,
    ValidationError,
)
from cloudbackup.core.types import FileBackupPriority, FileStatus, ProviderType

logger = logging.getLogger(__name__)

BUSY_TIMEOUT = 30.0  # seconds

_PENDING_STATES = (FileStatus.UNSYNCED.value, FileStatus.IN_PROGRESS.value)

_BACKUP_FILE_COLUMNS = (
    "file_id",
    "full_source_path",
    "file_size_bytes",
    "last_modified",
    "source_id",
    "priority",
    "file_hash",
    "hash_algorithm",
    "revision",
    "overall_state",
    "provider_states",
    "discovered_at",
    "last_checked",
)


class ClientDatabase:
    """SQLite implementation of the backup index."""

    def __init__(self, db_path: Path | str) -> None:
        """Open (and create if needed) the index database.

        Args:
            db_path: Path to SQLite database file, or ":memory:".

        Raises:
            StoreUnavailableError: If the database cannot be opened.
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(
                self._db_path,
                timeout=BUSY_TIMEOUT,
                isolation_level=None,  # Autocommit mode, explicit transactions
            )
            self._conn.row_factory = sqlite3.Row
            # Enable WAL mode so the scan and backup loops can share the file
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Unable to open index {self._db_path}: {e}") from e

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS source_locations (
                id INTEGER PRIMARY KEY,
                kind TEXT NOT NULL,
                folder_path TEXT NOT NULL,
                file_match_filter TEXT NOT NULL,
                priority INTEGER NOT NULL,
                revision_count INTEGER NOT NULL,
                credential_name TEXT,
                last_completed_scan REAL
            );

            CREATE TABLE IF NOT EXISTS backup_files (
                file_id TEXT PRIMARY KEY,
                full_source_path TEXT NOT NULL,
                file_size_bytes INTEGER NOT NULL,
                last_modified REAL NOT NULL,
                source_id INTEGER NOT NULL,
                priority INTEGER NOT NULL,
                file_hash TEXT,
                hash_algorithm TEXT,
                revision INTEGER NOT NULL DEFAULT 0,
                overall_state TEXT NOT NULL,
                provider_states TEXT,
                discovered_at REAL NOT NULL,
                last_checked REAL
            );

            CREATE INDEX IF NOT EXISTS idx_backup_files_lookup
                ON backup_files(full_source_path, file_size_bytes, last_modified);
            CREATE INDEX IF NOT EXISTS idx_backup_files_schedule
                ON backup_files(overall_state, priority, discovered_at);

            CREATE TABLE IF NOT EXISTS directory_map (
                id TEXT PRIMARY KEY,
                local_path TEXT NOT NULL UNIQUE
            );

            CREATE TABLE IF NOT EXISTS net_credentials (
                credential_name TEXT PRIMARY KEY
            );

            CREATE TABLE IF NOT EXISTS providers (
                id INTEGER PRIMARY KEY,
                provider_type TEXT NOT NULL UNIQUE,
                name TEXT
            );

            CREATE TABLE IF NOT EXISTS application_options (
                name TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> ClientDatabase:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    @contextlib.contextmanager
    def _store(self) -> Iterator[sqlite3.Connection]:
        """Run statements, mapping sqlite errors to StoreUnavailableError."""
        try:
            yield self._conn
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Index operation failed: {e}") from e

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements in a write transaction (all or nothing)."""
        with self._store() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                # A failed COMMIT may already have ended the transaction
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    # === Application options ===

    def set_application_option(self, name: str, value: str) -> None:
        """Save an application option."""
        with self._store() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO application_options (name, value) VALUES (?, ?)",
                (name, value),
            )

    def get_application_option(self, name: str) -> str | None:
        """Get an application option, or None if not set."""
        with self._store() as conn:
            row = conn.execute(
                "SELECT value FROM application_options WHERE name = ?", (name,)
            ).fetchone()
        return row["value"] if row else None

    def remove_application_option(self, name: str) -> None:
        """Remove an application option (no-op if absent)."""
        with self._store() as conn:
            conn.execute("DELETE FROM application_options WHERE name = ?", (name,))

    # === Source locations ===

    def get_all_source_locations(self) -> list[SourceLocation]:
        """Return all source locations ordered by ID."""
        with self._store() as conn:
            rows = conn.execute("SELECT * FROM source_locations ORDER BY id").fetchall()
        return [SourceLocation.from_row(row) for row in rows]

    def get_source_location(self, source_id: int) -> SourceLocation | None:
        """Return a source location by ID, or None."""
        with self._store() as conn:
            row = conn.execute(
                "SELECT * FROM source_locations WHERE id = ?", (source_id,)
            ).fetchone()
        return SourceLocation.from_row(row) if row else None

    def set_source_locations(self, locations: Iterable[SourceLocation]) -> None:
        """Replace the full set of source locations atomically."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM source_locations")
            for location in locations:
                self._insert_source(conn, location)

    def add_source_location(self, location: SourceLocation) -> SourceLocation:
        """Validate and add a new source location.

        The ID is assigned as the highest existing ID + 1.

        Args:
            location: The source to add (its id is overwritten).

        Returns:
            The stored source location.

        Raises:
            DuplicateSourceError: If (folder path, match filter) already exists.
            ValidationError: If the source is not usable.
        """
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM source_locations").fetchall()
            existing = [SourceLocation.from_row(row) for row in rows]

            if any(location.is_duplicate_of(source) for source in existing):
                raise DuplicateSourceError(
                    "Unable to add source: the specified folder and match filter "
                    "combination is already listed as a source."
                )

            location.validate()
            if location.credential_name is not None:
                credential = conn.execute(
                    "SELECT 1 FROM net_credentials WHERE credential_name = ?",
                    (location.credential_name,),
                ).fetchone()
                if credential is None:
                    raise ValidationError(
                        f"Net credential {location.credential_name!r} does not exist"
                    )

            location.id = max((source.id for source in existing), default=0) + 1
            self._insert_source(conn, location)

        logger.info(f"Added source {location.id}: {location.folder_path}")
        return location

    def update_source_location(self, location: SourceLocation) -> None:
        """Persist changes to an existing source location (no-op if it was removed)."""
        with self._store() as conn:
            conn.execute(
                """
                UPDATE source_locations SET
                    kind = ?, folder_path = ?, file_match_filter = ?, priority = ?,
                    revision_count = ?, credential_name = ?, last_completed_scan = ?
                WHERE id = ?
                """,
                (
                    location.kind.value,
                    location.folder_path,
                    location.file_match_filter,
                    int(location.priority),
                    location.revision_count,
                    location.credential_name,
                    location.last_completed_scan,
                    location.id,
                ),
            )

    def remove_source_location(self, source_id: int) -> bool:
        """Remove a source location by ID.

        Returns:
            True if a source was removed, False if the ID was not present.
        """
        with self._store() as conn:
            cursor = conn.execute("DELETE FROM source_locations WHERE id = ?", (source_id,))
        return cursor.rowcount > 0

    @staticmethod
    def _insert_source(conn: sqlite3.Connection, location: SourceLocation) -> None:
        conn.execute(
            """
            INSERT INTO source_locations (
                id, kind, folder_path, file_match_filter, priority,
                revision_count, credential_name, last_completed_scan
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                location.id,
                location.kind.value,
                location.folder_path,
                location.file_match_filter,
                int(location.priority),
                location.revision_count,
                location.credential_name,
                location.last_completed_scan,
            ),
        )

    # === Directory map ===

    def get_directory_map_item(self, directory_path: str) -> DirectoryMapItem:
        """Return the map item for a local directory, creating it if needed."""
        with self._store() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO directory_map (id, local_path) VALUES (?, ?)",
                (uuid.uuid4().hex, directory_path),
            )
            row = conn.execute(
                "SELECT * FROM directory_map WHERE local_path = ?", (directory_path,)
            ).fetchone()
        return DirectoryMapItem.from_row(row)

    # === Backup files ===

    def get_backup_file(
        self,
        full_path: str,
        size: int,
        last_modified: float,
    ) -> BackupFile | None:
        """Look up a tracked file by (path, size, last modified).

        Returns:
            The tracked file, or None if no record matches all three fields.
        """
        with self._store() as conn:
            row = conn.execute(
                """
                SELECT * FROM backup_files
                WHERE full_source_path = ? AND file_size_bytes = ? AND last_modified = ?
                """,
                (full_path, size, last_modified),
            ).fetchone()
        return BackupFile.from_row(row) if row else None

    def get_backup_file_by_path(self, full_path: str) -> BackupFile | None:
        """Return the tracked file at a path regardless of size/mtime."""
        with self._store() as conn:
            row = conn.execute(
                "SELECT * FROM backup_files WHERE full_source_path = ?",
                (full_path,),
            ).fetchone()
        return BackupFile.from_row(row) if row else None

    def get_all_backup_files(self) -> list[BackupFile]:
        """Return every tracked file."""
        with self._store() as conn:
            rows = conn.execute(
                "SELECT * FROM backup_files ORDER BY full_source_path"
            ).fetchall()
        return [BackupFile.from_row(row) for row in rows]

    def get_backup_files_for_source(self, source_id: int) -> list[BackupFile]:
        """Return the tracked files that belong to a source."""
        with self._store() as conn:
            rows = conn.execute(
                "SELECT * FROM backup_files WHERE source_id = ? ORDER BY full_source_path",
                (source_id,),
            ).fetchall()
        return [BackupFile.from_row(row) for row in rows]

    def add_backup_file(self, file: BackupFile) -> None:
        """Add a newly discovered file."""
        with self._store() as conn:
            self._write_backup_file(conn, file, replace=False)

    def update_backup_file(self, file: BackupFile) -> None:
        """Persist metadata, status and progress of a tracked file.

        Safe to call repeatedly with the same state.
        """
        with self._store() as conn:
            self._write_backup_file(conn, file, replace=True)

    def update_backup_file_if_current(
        self,
        file: BackupFile,
        revision: int,
        last_modified: float,
    ) -> bool:
        """Persist a tracked file only if the index still holds the given version.

        Used by the backup loop, which works from a copy of the record that
        the scan loop may have replaced with a newer version meanwhile.

        Args:
            file: The record to write.
            revision: Revision slot the caller read.
            last_modified: Modification time the caller read.

        Returns:
            False if the stored version moved on and nothing was written.
        """
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT revision, last_modified FROM backup_files WHERE file_id = ?",
                (file.file_id,),
            ).fetchone()
            if row is None or row["revision"] != revision or row["last_modified"] != last_modified:
                return False
            self._write_backup_file(conn, file, replace=True)
        return True

    def record_backup_progress(self, file: BackupFile) -> bool:
        """Persist provider progress and overall state of a tracked file.

        Only the progress columns are written, and only while the stored
        record is still the same version of the file and not removed.

        Returns:
            False if the record changed underneath and nothing was written.
        """
        with self._store() as conn:
            cursor = conn.execute(
                """
                UPDATE backup_files SET provider_states = ?, overall_state = ?
                WHERE file_id = ? AND revision = ? AND last_modified = ?
                  AND file_size_bytes = ? AND overall_state != ?
                """,
                (
                    file.provider_states_json(),
                    file.overall_state.value,
                    file.file_id,
                    file.revision,
                    file.last_modified,
                    file.file_size_bytes,
                    FileStatus.REMOVED.value,
                ),
            )
        return cursor.rowcount > 0

    def reassign_backup_file(self, file_id: str, source_id: int, priority: FileBackupPriority) -> None:
        """Move a tracked file to another source location."""
        with self._store() as conn:
            conn.execute(
                "UPDATE backup_files SET source_id = ?, priority = ? WHERE file_id = ?",
                (source_id, int(priority), file_id),
            )

    @staticmethod
    def _write_backup_file(conn: sqlite3.Connection, file: BackupFile, replace: bool) -> None:
        # Upsert keeps the rowid stable, which the scheduler uses as a tie-break
        on_conflict = ""
        if replace:
            on_conflict = "ON CONFLICT(file_id) DO UPDATE SET " + ", ".join(
                f"{column} = excluded.{column}" for column in _BACKUP_FILE_COLUMNS[1:]
            )
        conn.execute(
            f"""
            INSERT INTO backup_files ({", ".join(_BACKUP_FILE_COLUMNS)})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            {on_conflict}
            """,
            (
                file.file_id,
                file.full_source_path,
                file.file_size_bytes,
                file.last_modified,
                file.source_id,
                int(file.priority),
                file.file_hash,
                file.hash_algorithm,
                file.revision,
                file.overall_state.value,
                file.provider_states_json(),
                file.discovered_at,
                file.last_checked,
            ),
        )

    def mark_missing_files_removed(self, source_id: int, seen_paths: set[str]) -> int:
        """Mark files of a source that were not seen on disk as REMOVED.

        Records are kept so the backup history is preserved.

        Returns:
            Number of files newly marked as removed.
        """
        removed = 0
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT file_id, full_source_path FROM backup_files "
                "WHERE source_id = ? AND overall_state != ?",
                (source_id, FileStatus.REMOVED.value),
            ).fetchall()
            for row in rows:
                if row["full_source_path"] not in seen_paths:
                    conn.execute(
                        "UPDATE backup_files SET overall_state = ? WHERE file_id = ?",
                        (FileStatus.REMOVED.value, row["file_id"]),
                    )
                    removed += 1
        return removed

    def get_next_file_to_backup(self) -> BackupFile | None:
        """Return the next file that needs to be backed up.

        Highest priority first. Within a priority band, files the backup
        loop has not looked at yet come first, then the ones it looked at
        longest ago, so a file that keeps failing does not hold up the
        rest of the band. Ties go to the oldest discovery. Files whose
        source location has been removed are skipped.

        Returns:
            The next pending file, or None if nothing is pending.
        """
        with self._store() as conn:
            row = conn.execute(
                """
                SELECT * FROM backup_files
                WHERE overall_state IN (?, ?)
                  AND source_id IN (SELECT id FROM source_locations)
                ORDER BY priority DESC,
                         last_checked IS NOT NULL, last_checked ASC,
                         discovered_at ASC, rowid ASC
                LIMIT 1
                """,
                _PENDING_STATES,
            ).fetchone()
        return BackupFile.from_row(row) if row else None

    def get_backup_progress(self) -> BackupProgress:
        """Calculate overall backup progress."""
        progress = BackupProgress()
        with self._store() as conn:
            rows = conn.execute(
                """
                SELECT overall_state, COUNT(*) AS files, COALESCE(SUM(file_size_bytes), 0) AS bytes
                FROM backup_files GROUP BY overall_state
                """
            ).fetchall()

        for row in rows:
            state = FileStatus(row["overall_state"])
            if state == FileStatus.REMOVED:
                progress.removed_files += row["files"]
                continue
            progress.total_files += row["files"]
            progress.total_bytes += row["bytes"]
            if state == FileStatus.SYNCED:
                progress.synced_files += row["files"]
                progress.synced_bytes += row["bytes"]
            elif state == FileStatus.IN_PROGRESS:
                progress.in_progress_files += row["files"]
            else:
                progress.unsynced_files += row["files"]
        return progress

    # === Providers ===

    def get_providers(self) -> list[Provider]:
        """Return all registered providers ordered by ID."""
        with self._store() as conn:
            rows = conn.execute("SELECT * FROM providers ORDER BY id").fetchall()
        return [Provider.from_row(row) for row in rows]

    def set_providers(self, providers: Iterable[Provider]) -> None:
        """Replace the full set of providers atomically."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM providers")
            for provider in providers:
                conn.execute(
                    "INSERT INTO providers (id, provider_type, name) VALUES (?, ?, ?)",
                    (provider.id, provider.provider_type.value, provider.name),
                )

    def add_provider(self, provider_type: ProviderType, name: str = "") -> Provider:
        """Register a provider.

        Files already synced are reset to UNSYNCED so that they get backed
        up to the new provider as well.

        Raises:
            DuplicateError: If a provider of this type is already registered.
        """
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM providers").fetchall()
            existing = [Provider.from_row(row) for row in rows]
            if any(p.provider_type == provider_type for p in existing):
                raise DuplicateError(f"A {provider_type.value} provider is already configured.")

            provider = Provider(
                id=max((p.id for p in existing), default=0) + 1,
                provider_type=provider_type,
                name=name,
            )
            conn.execute(
                "INSERT INTO providers (id, provider_type, name) VALUES (?, ?, ?)",
                (provider.id, provider.provider_type.value, provider.name),
            )
            conn.execute(
                "UPDATE backup_files SET overall_state = ? WHERE overall_state = ?",
                (FileStatus.UNSYNCED.value, FileStatus.SYNCED.value),
            )

        logger.info(f"Added provider {provider.id}: {provider_type.value}")
        return provider

    def remove_provider(self, provider_id: int) -> Provider | None:
        """Remove a provider by ID.

        Returns:
            The removed provider, or None if the ID was not present.
        """
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM providers WHERE id = ?", (provider_id,)).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM providers WHERE id = ?", (provider_id,))
        return Provider.from_row(row)

    # === Net credentials ===

    def get_net_credentials(self) -> list[NetCredential]:
        """Return all net credentials ordered by name."""
        with self._store() as conn:
            rows = conn.execute(
                "SELECT credential_name FROM net_credentials ORDER BY credential_name"
            ).fetchall()
        return [NetCredential(credential_name=row["credential_name"]) for row in rows]

    def set_net_credentials(self, credentials: Iterable[NetCredential]) -> None:
        """Replace the full set of net credentials atomically."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM net_credentials")
            for credential in credentials:
                conn.execute(
                    "INSERT INTO net_credentials (credential_name) VALUES (?)",
                    (credential.credential_name,),
                )

    def add_net_credential(self, credential_name: str) -> bool:
        """Add a net credential name.

        Returns:
            True if added, False if it was already present.
        """
        with self._store() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO net_credentials (credential_name) VALUES (?)",
                (credential_name,),
            )
        return cursor.rowcount > 0

    def remove_net_credential(self, credential_name: str) -> bool:
        """Remove a net credential name.

        Returns:
            True if removed, False if it was not present.
        """
        with self._store() as conn:
            cursor = conn.execute(
                "DELETE FROM net_credentials WHERE credential_name = ?",
                (credential_name,),
            )
        return cursor.rowcount > 0

    def touch_backup_file(self, file_id: str) -> float:
        """Record that the backup loop just looked at a file.

        Returns:
            The recorded time.
        """
        now = time.time()
        with self._store() as conn:
            conn.execute(
                "UPDATE backup_files SET last_checked = ? WHERE file_id = ?",
                (now, file_id),
            )
        return now
