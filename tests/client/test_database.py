"""Tests for the SQLite backup index."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

from cloudbackup.client.database import ClientDatabase
from cloudbackup.client.models import (
    BackupFile,
    NetCredential,
    Provider,
    ProviderFileStatus,
    SourceLocation,
)
from cloudbackup.core.exceptions import (
    DuplicateError,
    DuplicateSourceError,
    StoreUnavailableError,
    ValidationError,
)
from cloudbackup.core.types import (
    FileBackupPriority,
    FileStatus,
    ProviderType,
    SourceLocationType,
)


@pytest.fixture
def db(tmp_path: Path) -> Iterator[ClientDatabase]:
    database = ClientDatabase(tmp_path / "index.db")
    yield database
    database.close()


def add_source(db: ClientDatabase, path: Path, **kwargs: object) -> SourceLocation:
    path.mkdir(parents=True, exist_ok=True)
    return db.add_source_location(SourceLocation(folder_path=str(path), **kwargs))  # type: ignore[arg-type]


def make_file(path: str, source_id: int = 1, **kwargs: object) -> BackupFile:
    defaults: dict[str, object] = {"file_size_bytes": 10, "last_modified": 100.0}
    defaults.update(kwargs)
    return BackupFile(full_source_path=path, source_id=source_id, **defaults)  # type: ignore[arg-type]


class TestDatabaseCreation:
    """Tests for opening the index."""

    def test_creates_database_and_parent_dirs(self, tmp_path: Path) -> None:
        """Should create the file and missing parent directories."""
        db_path = tmp_path / "nested" / "index.db"
        ClientDatabase(db_path).close()
        assert db_path.exists()

    def test_reopens_existing_db(self, tmp_path: Path) -> None:
        """Data persists across handles."""
        db_path = tmp_path / "index.db"
        with ClientDatabase(db_path) as first:
            first.set_application_option("key", "value")

        with ClientDatabase(db_path) as second:
            assert second.get_application_option("key") == "value"

    def test_sqlite_errors_become_store_unavailable(self, db: ClientDatabase) -> None:
        """Index I/O failures surface as StoreUnavailableError."""
        db.close()
        with pytest.raises(StoreUnavailableError):
            db.get_all_source_locations()


class TestApplicationOptions:
    """Tests for application options."""

    def test_set_get_remove(self, db: ClientDatabase) -> None:
        """Options can be saved, read, replaced and removed."""
        assert db.get_application_option("missing") is None

        db.set_application_option("name", "a")
        db.set_application_option("name", "b")
        assert db.get_application_option("name") == "b"

        db.remove_application_option("name")
        assert db.get_application_option("name") is None


class TestSourceLocations:
    """Tests for source location management."""

    def test_add_assigns_incrementing_ids(self, db: ClientDatabase, tmp_path: Path) -> None:
        """IDs are max existing + 1."""
        first = add_source(db, tmp_path / "a")
        second = add_source(db, tmp_path / "b")

        assert first.id == 1
        assert second.id == 2
        assert [s.id for s in db.get_all_source_locations()] == [1, 2]

    def test_add_after_remove_uses_max_plus_one(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Removing the lowest ID does not cause ID reuse of higher ones."""
        add_source(db, tmp_path / "a")
        add_source(db, tmp_path / "b")
        db.remove_source_location(1)

        assert add_source(db, tmp_path / "c").id == 3

    def test_fields_roundtrip(self, db: ClientDatabase, tmp_path: Path) -> None:
        """All fields are stored."""
        add_source(
            db,
            tmp_path / "data",
            file_match_filter="*.txt",
            priority=FileBackupPriority.HIGH,
            revision_count=3,
        )
        source = db.get_source_location(1)

        assert source is not None
        assert source.folder_path == str(tmp_path / "data")
        assert source.file_match_filter == "*.txt"
        assert source.priority == FileBackupPriority.HIGH
        assert source.revision_count == 3
        assert source.kind == SourceLocationType.LOCAL

    def test_duplicate_rejected_without_change(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Same path and filter raises and leaves the store unchanged."""
        add_source(db, tmp_path / "data", file_match_filter="*.txt")
        before = db.get_all_source_locations()

        with pytest.raises(DuplicateSourceError):
            add_source(db, tmp_path / "data", file_match_filter="*.txt")

        assert db.get_all_source_locations() == before

    def test_duplicate_is_a_duplicate_error(self, db: ClientDatabase, tmp_path: Path) -> None:
        """DuplicateSourceError is part of the DuplicateError family."""
        add_source(db, tmp_path / "data")
        with pytest.raises(DuplicateError):
            add_source(db, tmp_path / "data")

    def test_same_path_different_filter_allowed(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Only the (path, filter) pair must be unique."""
        add_source(db, tmp_path / "data", file_match_filter="*.txt")
        add_source(db, tmp_path / "data", file_match_filter="*.doc")
        assert len(db.get_all_source_locations()) == 2

    def test_invalid_source_not_persisted(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Validation failures leave no partial write."""
        with pytest.raises(ValidationError):
            db.add_source_location(SourceLocation(folder_path=str(tmp_path / "missing")))
        assert db.get_all_source_locations() == []

    def test_network_source_requires_known_credential(self, db: ClientDatabase) -> None:
        """A referenced net credential must exist."""
        source = SourceLocation(
            folder_path="//server/share",
            kind=SourceLocationType.NETWORK,
            credential_name="nas",
        )
        with pytest.raises(ValidationError, match="nas"):
            db.add_source_location(source)

        db.add_net_credential("nas")
        assert db.add_source_location(source).id == 1

    def test_remove_missing_id_is_noop(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Removing an unknown ID succeeds and changes nothing."""
        add_source(db, tmp_path / "data")

        assert db.remove_source_location(42) is False
        assert len(db.get_all_source_locations()) == 1

    def test_set_source_locations_replaces_all(self, db: ClientDatabase, tmp_path: Path) -> None:
        """The full set is replaced."""
        add_source(db, tmp_path / "a")
        db.set_source_locations([SourceLocation(folder_path="/x", id=7)])

        sources = db.get_all_source_locations()
        assert [(s.id, s.folder_path) for s in sources] == [(7, "/x")]

    def test_update_source_location(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Administrative updates and scan timestamps persist."""
        source = add_source(db, tmp_path / "data")
        source.last_completed_scan = 1234.5
        source.priority = FileBackupPriority.LOW
        db.update_source_location(source)

        stored = db.get_source_location(source.id)
        assert stored is not None
        assert stored.last_completed_scan == 1234.5
        assert stored.priority == FileBackupPriority.LOW

    def test_update_removed_source_does_not_recreate(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Updating a source that was removed meanwhile is a no-op."""
        source = add_source(db, tmp_path / "data")
        db.remove_source_location(source.id)

        db.update_source_location(source)
        assert db.get_all_source_locations() == []


class TestBackupFiles:
    """Tests for tracked file records."""

    def test_lookup_by_triple(self, db: ClientDatabase) -> None:
        """Identical triple finds the record; any differing field does not."""
        file = make_file("/data/a.txt", file_size_bytes=10, last_modified=100.0)
        db.add_backup_file(file)

        found = db.get_backup_file("/data/a.txt", 10, 100.0)
        assert found is not None
        assert found.file_id == file.file_id
        assert db.get_backup_file("/data/a.txt", 10, 100.0) == found

        assert db.get_backup_file("/data/b.txt", 10, 100.0) is None
        assert db.get_backup_file("/data/a.txt", 11, 100.0) is None
        assert db.get_backup_file("/data/a.txt", 10, 100.5) is None

    def test_get_by_path(self, db: ClientDatabase) -> None:
        """Path lookup ignores size and time."""
        db.add_backup_file(make_file("/data/a.txt"))
        assert db.get_backup_file_by_path("/data/a.txt") is not None
        assert db.get_backup_file_by_path("/data/b.txt") is None

    def test_update_persists_provider_states(self, db: ClientDatabase) -> None:
        """Status and progress round-trip through the index."""
        file = make_file("/data/a.txt")
        db.add_backup_file(file)

        file.set_provider_status(
            ProviderFileStatus(ProviderType.AZURE, FileStatus.IN_PROGRESS, 3, "h", "SHA256")
        )
        file.overall_state = FileStatus.IN_PROGRESS
        db.update_backup_file(file)

        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.overall_state == FileStatus.IN_PROGRESS
        status = stored.get_provider_status(ProviderType.AZURE)
        assert status.last_completed_block_index == 3
        assert status.file_hash == "h"

    def test_update_is_idempotent(self, db: ClientDatabase) -> None:
        """Writing the same terminal state twice leaves one identical record."""
        file = make_file("/data/a.txt", overall_state=FileStatus.SYNCED)
        db.add_backup_file(file)

        db.update_backup_file(file)
        first = db.get_all_backup_files()
        db.update_backup_file(file)

        assert db.get_all_backup_files() == first
        assert len(first) == 1

    def test_mark_missing_files_removed(self, db: ClientDatabase) -> None:
        """Unseen files become REMOVED but are kept."""
        db.add_backup_file(make_file("/data/a.txt"))
        db.add_backup_file(make_file("/data/b.txt"))
        db.add_backup_file(make_file("/other/c.txt", source_id=2))

        assert db.mark_missing_files_removed(1, {"/data/a.txt"}) == 1
        assert db.mark_missing_files_removed(1, {"/data/a.txt"}) == 0

        removed = db.get_backup_file_by_path("/data/b.txt")
        assert removed is not None
        assert removed.overall_state == FileStatus.REMOVED
        other = db.get_backup_file_by_path("/other/c.txt")
        assert other is not None
        assert other.overall_state == FileStatus.UNSYNCED
        assert len(db.get_all_backup_files()) == 3

    def test_files_for_source(self, db: ClientDatabase) -> None:
        """Files are listed per source."""
        db.add_backup_file(make_file("/data/a.txt", source_id=1))
        db.add_backup_file(make_file("/other/b.txt", source_id=2))

        assert [f.full_source_path for f in db.get_backup_files_for_source(2)] == ["/other/b.txt"]

    def test_touch_sets_last_checked(self, db: ClientDatabase) -> None:
        """The backup loop records when it looked at a file."""
        file = make_file("/data/a.txt")
        db.add_backup_file(file)

        db.touch_backup_file(file.file_id)

        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.last_checked is not None

    def test_reassign_moves_file_to_source(self, db: ClientDatabase) -> None:
        """Reassigning changes owner and priority, nothing else."""
        file = make_file("/data/a.txt", overall_state=FileStatus.IN_PROGRESS)
        db.add_backup_file(file)

        db.reassign_backup_file(file.file_id, 7, FileBackupPriority.HIGH)

        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.source_id == 7
        assert stored.priority == FileBackupPriority.HIGH
        assert stored.overall_state == FileStatus.IN_PROGRESS
        assert stored.file_id == file.file_id


class TestGuardedWrites:
    """Tests for writes made from a possibly outdated copy of a record."""

    def test_progress_is_written(self, db: ClientDatabase) -> None:
        """Progress of the current version only touches the progress columns."""
        file = make_file("/data/a.txt")
        db.add_backup_file(file)
        db.touch_backup_file(file.file_id)

        file.set_provider_status(ProviderFileStatus(ProviderType.LOCAL, FileStatus.IN_PROGRESS, 0))
        file.overall_state = FileStatus.IN_PROGRESS
        assert db.record_backup_progress(file)

        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.overall_state == FileStatus.IN_PROGRESS
        assert stored.get_provider_status(ProviderType.LOCAL).last_completed_block_index == 0
        assert stored.last_checked is not None

    def test_progress_for_older_version_is_dropped(self, db: ClientDatabase) -> None:
        """Progress never lands on a newer version of the file."""
        file = make_file("/data/a.txt")
        db.add_backup_file(file)
        newer = db.get_backup_file_by_path("/data/a.txt")
        assert newer is not None
        newer.apply_new_version(20, 200.0, 2)
        db.update_backup_file(newer)

        file.set_provider_status(ProviderFileStatus(ProviderType.LOCAL, FileStatus.SYNCED, 2))
        file.overall_state = FileStatus.SYNCED
        assert not db.record_backup_progress(file)

        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.revision == 1
        assert stored.overall_state == FileStatus.UNSYNCED
        assert stored.provider_states == {}

    def test_progress_for_removed_file_is_dropped(self, db: ClientDatabase) -> None:
        """A file marked removed stays removed."""
        file = make_file("/data/a.txt")
        db.add_backup_file(file)
        db.mark_missing_files_removed(1, set())

        file.overall_state = FileStatus.SYNCED
        assert not db.record_backup_progress(file)

        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.overall_state == FileStatus.REMOVED

    def test_update_if_current(self, db: ClientDatabase) -> None:
        """A full write goes through only for the version the caller read."""
        file = make_file("/data/a.txt")
        db.add_backup_file(file)
        file.file_hash = "h"

        assert not db.update_backup_file_if_current(file, 1, 100.0)
        assert not db.update_backup_file_if_current(file, 0, 150.0)
        assert not db.update_backup_file_if_current(make_file("/data/missing.txt"), 0, 100.0)
        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.file_hash is None

        assert db.update_backup_file_if_current(file, 0, 100.0)
        stored = db.get_backup_file_by_path("/data/a.txt")
        assert stored is not None
        assert stored.file_hash == "h"


class TestScheduling:
    """Tests for get_next_file_to_backup."""

    def test_empty_returns_none(self, db: ClientDatabase) -> None:
        """Nothing pending returns None."""
        assert db.get_next_file_to_backup() is None

    def test_priority_first(self, db: ClientDatabase, tmp_path: Path) -> None:
        """A low priority file is never returned while a high one is pending."""
        add_source(db, tmp_path / "data")
        db.add_backup_file(make_file("/low.txt", priority=FileBackupPriority.LOW, discovered_at=1.0))
        db.add_backup_file(make_file("/medium.txt", priority=FileBackupPriority.MEDIUM, discovered_at=2.0))
        high = make_file("/high.txt", priority=FileBackupPriority.HIGH, discovered_at=3.0)
        db.add_backup_file(high)

        order = []
        while (file := db.get_next_file_to_backup()) is not None:
            order.append(file.full_source_path)
            file.overall_state = FileStatus.SYNCED
            db.update_backup_file(file)

        assert order == ["/high.txt", "/medium.txt", "/low.txt"]

    def test_fifo_within_priority(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Oldest discovery first within a priority band."""
        add_source(db, tmp_path / "data")
        db.add_backup_file(make_file("/newer.txt", discovered_at=20.0))
        db.add_backup_file(make_file("/older.txt", discovered_at=10.0))

        file = db.get_next_file_to_backup()
        assert file is not None
        assert file.full_source_path == "/older.txt"

    def test_in_progress_is_pending(self, db: ClientDatabase, tmp_path: Path) -> None:
        """In-progress files are still returned."""
        add_source(db, tmp_path / "data")
        db.add_backup_file(make_file("/a.txt", overall_state=FileStatus.IN_PROGRESS))
        assert db.get_next_file_to_backup() is not None

    def test_synced_and_removed_are_skipped(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Terminal states are not scheduled."""
        add_source(db, tmp_path / "data")
        db.add_backup_file(make_file("/a.txt", overall_state=FileStatus.SYNCED))
        db.add_backup_file(make_file("/b.txt", overall_state=FileStatus.REMOVED))
        assert db.get_next_file_to_backup() is None

    def test_files_of_removed_sources_are_skipped(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Removing a source stops its files from being scheduled."""
        source = add_source(db, tmp_path / "data")
        db.add_backup_file(make_file("/a.txt", source_id=source.id))

        db.remove_source_location(source.id)
        assert db.get_next_file_to_backup() is None

    def test_recently_checked_file_goes_last(self, db: ClientDatabase, tmp_path: Path) -> None:
        """A file the backup loop just tried waits behind the rest of its band."""
        add_source(db, tmp_path / "data")
        first = make_file("/first.txt", discovered_at=10.0)
        db.add_backup_file(first)
        db.add_backup_file(make_file("/second.txt", discovered_at=20.0))

        db.touch_backup_file(first.file_id)
        file = db.get_next_file_to_backup()
        assert file is not None
        assert file.full_source_path == "/second.txt"

        db.touch_backup_file(file.file_id)
        file = db.get_next_file_to_backup()
        assert file is not None
        assert file.full_source_path == "/first.txt"

    def test_priority_beats_last_checked(self, db: ClientDatabase, tmp_path: Path) -> None:
        """Round-robin stays inside a priority band."""
        add_source(db, tmp_path / "data")
        high = make_file("/high.txt", priority=FileBackupPriority.HIGH)
        db.add_backup_file(high)
        db.add_backup_file(make_file("/low.txt", priority=FileBackupPriority.LOW))

        db.touch_backup_file(high.file_id)
        file = db.get_next_file_to_backup()
        assert file is not None
        assert file.full_source_path == "/high.txt"


class TestBackupProgress:
    """Tests for aggregate progress."""

    def test_counts_and_bytes(self, db: ClientDatabase) -> None:
        """Counts per state and byte totals, removed files excluded."""
        db.add_backup_file(make_file("/a", file_size_bytes=100, overall_state=FileStatus.SYNCED))
        db.add_backup_file(make_file("/b", file_size_bytes=50, overall_state=FileStatus.IN_PROGRESS))
        db.add_backup_file(make_file("/c", file_size_bytes=50))
        db.add_backup_file(make_file("/d", file_size_bytes=999, overall_state=FileStatus.REMOVED))

        progress = db.get_backup_progress()

        assert progress.total_files == 3
        assert progress.synced_files == 1
        assert progress.in_progress_files == 1
        assert progress.unsynced_files == 1
        assert progress.removed_files == 1
        assert progress.total_bytes == 200
        assert progress.synced_bytes == 100
        assert progress.percent_complete == 50.0


class TestDirectoryMap:
    """Tests for the directory map."""

    def test_stable_identity(self, db: ClientDatabase) -> None:
        """The same directory always maps to the same id."""
        first = db.get_directory_map_item("/data")
        second = db.get_directory_map_item("/data")
        other = db.get_directory_map_item("/other")

        assert first == second
        assert first.id != other.id


class TestProviders:
    """Tests for provider registration."""

    def test_add_and_list(self, db: ClientDatabase) -> None:
        """Providers get incrementing IDs."""
        azure = db.add_provider(ProviderType.AZURE)
        local = db.add_provider(ProviderType.LOCAL, name="nas")

        assert (azure.id, local.id) == (1, 2)
        assert db.get_providers() == [
            Provider(1, ProviderType.AZURE, ""),
            Provider(2, ProviderType.LOCAL, "nas"),
        ]

    def test_duplicate_type_rejected(self, db: ClientDatabase) -> None:
        """Only one provider per type."""
        db.add_provider(ProviderType.AZURE)
        with pytest.raises(DuplicateError):
            db.add_provider(ProviderType.AZURE)
        assert len(db.get_providers()) == 1

    def test_add_resets_synced_files(self, db: ClientDatabase) -> None:
        """Synced files are re-queued so they reach the new provider."""
        db.add_backup_file(make_file("/a", overall_state=FileStatus.SYNCED))
        db.add_backup_file(make_file("/b", overall_state=FileStatus.REMOVED))

        db.add_provider(ProviderType.LOCAL)

        a = db.get_backup_file_by_path("/a")
        b = db.get_backup_file_by_path("/b")
        assert a is not None and a.overall_state == FileStatus.UNSYNCED
        assert b is not None and b.overall_state == FileStatus.REMOVED

    def test_remove(self, db: ClientDatabase) -> None:
        """Remove returns the provider, or None when absent."""
        db.add_provider(ProviderType.AZURE)

        removed = db.remove_provider(1)
        assert removed is not None
        assert removed.provider_type == ProviderType.AZURE
        assert db.remove_provider(1) is None
        assert db.get_providers() == []

    def test_set_providers(self, db: ClientDatabase) -> None:
        """The full set is replaced."""
        db.add_provider(ProviderType.AZURE)
        db.set_providers([Provider(5, ProviderType.LOCAL)])
        assert db.get_providers() == [Provider(5, ProviderType.LOCAL, "")]


class TestNetCredentials:
    """Tests for net credential names."""

    def test_add_list_remove(self, db: ClientDatabase) -> None:
        """Names are unique; add and remove report whether anything changed."""
        assert db.add_net_credential("nas") is True
        assert db.add_net_credential("nas") is False
        db.add_net_credential("backup")

        assert db.get_net_credentials() == [NetCredential("backup"), NetCredential("nas")]

        assert db.remove_net_credential("nas") is True
        assert db.remove_net_credential("nas") is False

    def test_set_net_credentials(self, db: ClientDatabase) -> None:
        """The full set is replaced."""
        db.add_net_credential("old")
        db.set_net_credentials([NetCredential("new")])
        assert db.get_net_credentials() == [NetCredential("new")]


class TestConcurrentHandles:
    """Tests for separate handles on one index."""

    def test_two_threads_with_own_handles(self, tmp_path: Path) -> None:
        """Each thread writes through its own connection."""
        db_path = tmp_path / "index.db"
        ClientDatabase(db_path).close()
        errors: list[Exception] = []

        def writer(prefix: str) -> None:
            try:
                with ClientDatabase(db_path) as handle:
                    for i in range(20):
                        handle.add_backup_file(make_file(f"/{prefix}/{i}.txt"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(p,)) for p in ("a", "b")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        with ClientDatabase(db_path) as check:
            assert len(check.get_all_backup_files()) == 40

    def test_transaction_rolls_back_on_error(self, db: ClientDatabase, tmp_path: Path) -> None:
        """A failing write inside a transaction leaves no partial state."""
        add_source(db, tmp_path / "a")

        with patch.object(
            ClientDatabase,
            "_insert_source",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            with pytest.raises(StoreUnavailableError):
                db.set_source_locations([SourceLocation(folder_path="/x", id=9)])

        assert [s.id for s in db.get_all_source_locations()] == [1]

    def test_failed_commit_is_rolled_back(self, db: ClientDatabase) -> None:
        """A COMMIT that fails leaves no open transaction behind."""
        real = db._conn

        class FailingCommit:
            """Connection whose COMMIT fails."""

            in_transaction = property(lambda self: real.in_transaction)

            def execute(self, sql: str, *args: object) -> sqlite3.Cursor:
                if sql == "COMMIT":
                    raise sqlite3.OperationalError("disk I/O error")
                return real.execute(sql, *args)

        with patch.object(db, "_conn", FailingCommit()):
            with pytest.raises(StoreUnavailableError):
                db.set_providers([Provider(1, ProviderType.LOCAL)])

        assert not real.in_transaction
        assert db.get_providers() == []
        assert db.add_provider(ProviderType.LOCAL).id == 1
