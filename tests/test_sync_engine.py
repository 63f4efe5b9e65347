"""Tests for the reconciliation engine."""

import threading

import pytest

from pyfoldersync.exceptions import AuthError, LocalIOError, NetworkError
from pyfoldersync.models import Rule, SizeUnit, WatchedFolder
from pyfoldersync.sync import (
    DirectoryScanner,
    ReconcileAction,
    ReconciliationEngine,
    SyncProgressEvent,
    SyncProgressTracker,
    TransferExecutor,
)

from conftest import ROOT_ID, FakeRemoteStore


@pytest.fixture
def engine(remote, persistence):
    return ReconciliationEngine(TransferExecutor(remote, width=4), persistence)


class TestReconcileUploads:
    """Local-only items."""

    def test_new_local_file_is_uploaded_and_cached(
        self, engine, remote, watched, local_root, persistence
    ):
        (local_root / "a.txt").write_text("hello")

        report = engine.reconcile(watched)

        assert report.error is None
        assert report.stats["uploads"] == 1
        node = remote.child("a.txt")
        assert node is not None
        assert node.content == b"hello"
        assert watched.synced_files.get("a.txt") == node.id
        assert persistence.saved[watched.id]["syncedFiles"] == {"a.txt": node.id}

    def test_end_to_end_file_and_nested_folder(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        (local_root / "b").mkdir()
        (local_root / "b" / "c.txt").write_text("c")

        report = engine.reconcile(watched)

        assert report.stats["uploads"] == 2
        assert report.stats["folders_created_remote"] == 1
        assert remote.calls_of("create_folder") == ["b"]
        folder_b = remote.child("b")
        assert folder_b is not None and folder_b.is_folder
        assert remote.child("c.txt", folder_b.id) is not None
        assert set(watched.synced_files.paths()) == {"a.txt", "b/c.txt"}

    def test_rule_mismatch_is_skipped(self, engine, remote, watched, local_root):
        watched.set_rules([Rule(0, 1, SizeUnit.GB, ignored_extensions=["txt"])])
        (local_root / "notes.txt").write_text("skip me")

        report = engine.reconcile(watched)

        assert report.stats["skips"] == 1
        assert remote.calls_of("upload") == []
        assert "notes.txt" not in watched.synced_files

    def test_hidden_files_are_not_uploaded(self, engine, remote, watched, local_root):
        (local_root / ".DS_Store").write_text("x")

        engine.reconcile(watched)

        assert remote.calls_of("upload") == []


class TestReconcileDownloads:
    """Remote-only items."""

    def test_new_remote_file_is_downloaded(self, engine, remote, watched, local_root):
        file_id = remote.add_file("x.txt", b"remote data")

        report = engine.reconcile(watched)

        assert report.stats["downloads"] == 1
        assert (local_root / "x.txt").read_bytes() == b"remote data"
        assert watched.synced_files.get("x.txt") == file_id

    def test_new_remote_folder_is_created_locally(self, engine, remote, watched, local_root):
        folder_id = remote.add_folder("docs")
        file_id = remote.add_file("d.txt", b"d", parent_id=folder_id)

        report = engine.reconcile(watched)

        assert report.stats["folders_created_local"] == 1
        assert (local_root / "docs" / "d.txt").read_bytes() == b"d"
        assert watched.synced_files.get("docs/d.txt") == file_id

    def test_trashed_remote_file_is_ignored(self, engine, remote, watched, local_root):
        file_id = remote.add_file("old.txt")
        remote.trash(file_id)

        report = engine.reconcile(watched)

        assert report.transfer_decisions == []
        assert not (local_root / "old.txt").exists()


    def test_hidden_remote_items_are_left_alone(self, engine, remote, watched, local_root):
        file_id = remote.add_file(".env", b"SECRET=1")
        remote.add_folder(".config")

        first = engine.reconcile(watched)
        second = engine.reconcile(watched)

        assert first.transfer_decisions == []
        assert second.transfer_decisions == []
        assert file_id in remote.nodes
        assert remote.calls_of("delete") == []
        assert not (local_root / ".env").exists()
        assert not (local_root / ".config").exists()
        assert len(watched.synced_files) == 0



class TestReconcileDeletions:
    """Items that vanished from one side after being synced."""

    def test_remote_gone_deletes_local(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        watched.synced_files.set("a.txt", "file-gone")

        report = engine.reconcile(watched)

        assert report.stats["deletes_local"] == 1
        assert not (local_root / "a.txt").exists()
        assert "a.txt" not in watched.synced_files
        assert remote.calls_of("upload") == []

    def test_trashed_remote_counts_as_gone(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        file_id = remote.add_file("a.txt")
        watched.synced_files.set("a.txt", file_id)
        remote.trash(file_id)

        engine.reconcile(watched)

        assert not (local_root / "a.txt").exists()
        assert "a.txt" not in watched.synced_files

    def test_local_gone_deletes_remote_with_cached_id(self, engine, remote, watched):
        file_id = remote.add_file("a.txt")
        watched.synced_files.set("a.txt", file_id)

        report = engine.reconcile(watched)

        assert report.stats["deletes_remote"] == 1
        assert remote.calls_of("delete") == [file_id]
        assert file_id not in remote.nodes
        assert len(watched.synced_files) == 0


class TestReconcileBothSides:
    """Names present locally and remotely."""

    def test_folder_on_both_sides_only_recurses(self, engine, remote, watched, local_root):
        (local_root / "b").mkdir()
        remote.add_folder("b")

        report = engine.reconcile(watched)

        assert [d.action for d in report.decisions] == [ReconcileAction.RECURSE]
        assert remote.calls_of("create_folder") == []
        assert len(watched.synced_files) == 0

    def test_untracked_file_on_both_sides_is_backfilled(
        self, engine, remote, watched, local_root
    ):
        (local_root / "a.txt").write_text("a")
        file_id = remote.add_file("a.txt")

        report = engine.reconcile(watched)

        assert report.stats["backfills"] == 1
        assert report.transfer_decisions == []
        assert watched.synced_files.get("a.txt") == file_id

    def test_type_conflict_is_skipped(self, engine, remote, watched, local_root):
        (local_root / "x").write_text("file")
        remote.add_folder("x")

        report = engine.reconcile(watched)

        assert report.stats["conflicts"] == 1
        assert report.transfer_decisions == []
        assert (local_root / "x").is_file()

    def test_second_pass_is_idempotent(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        (local_root / "b").mkdir()
        (local_root / "b" / "c.txt").write_text("c")
        remote.add_file("r.txt", b"r")

        engine.reconcile(watched)
        calls_after_first = len(remote.calls)
        report = engine.reconcile(watched)

        assert report.transfer_decisions == []
        mutating = [
            name
            for name, _ in remote.calls[calls_after_first:]
            if name != "list_children"
        ]
        assert mutating == []


class TestReconcileErrors:
    """Failure handling."""

    def test_missing_remote_folder_aborts(self, engine, local_root):
        folder = WatchedFolder(local_path=local_root)

        report = engine.reconcile(folder)

        assert report.aborted
        assert "No remote folder" in report.error

    def test_missing_local_directory_aborts(self, engine, watched, local_root):
        local_root.rmdir()

        report = engine.reconcile(watched)

        assert report.aborted
        assert "does not exist" in report.error

    def test_root_listing_failure_aborts(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        remote.errors[("list_children", ROOT_ID)] = NetworkError("offline")

        report = engine.reconcile(watched)

        assert report.aborted
        assert "offline" in report.error
        assert remote.calls_of("upload") == []

    def test_auth_error_on_root_aborts(self, engine, remote, watched):
        remote.errors[("list_children", ROOT_ID)] = AuthError("expired")

        report = engine.reconcile(watched)

        assert report.aborted
        assert "Authentication failed" in report.error

    def test_auth_error_during_transfer_aborts(
        self, engine, remote, watched, local_root, persistence
    ):
        (local_root / "a.txt").write_text("a")
        remote.errors[("upload", "a.txt")] = AuthError("expired")

        report = engine.reconcile(watched)

        assert report.aborted
        assert "a.txt" not in watched.synced_files

    def test_failed_upload_is_retried_next_pass(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        (local_root / "b.txt").write_text("b")
        remote.errors[("upload", "a.txt")] = NetworkError("timeout")

        report = engine.reconcile(watched)

        assert report.error is None
        assert report.stats["failures"] == 1
        assert report.failures[0].path == "a.txt"
        assert watched.synced_files.paths() == ["b.txt"]

        del remote.errors[("upload", "a.txt")]
        report = engine.reconcile(watched)

        assert report.stats["uploads"] == 1
        assert watched.synced_files.paths() == ["a.txt", "b.txt"]

    def test_subfolder_listing_failure_is_not_fatal(
        self, engine, remote, watched, local_root
    ):
        (local_root / "a.txt").write_text("a")
        (local_root / "b").mkdir()
        folder_id = remote.add_folder("b")
        remote.errors[("list_children", folder_id)] = NetworkError("boom")

        report = engine.reconcile(watched)

        assert report.error is None
        assert report.stats["uploads"] == 1
        assert report.stats["failures"] == 1


class TestEngineConcurrency:
    """Transfer width across a whole pass."""

    def test_peak_in_flight_bounded_by_width(self, persistence, watched, local_root):
        remote = FakeRemoteStore(delay=0.02)
        executor = TransferExecutor(remote, width=4)
        engine = ReconciliationEngine(executor, persistence, level_workers=16)
        for i in range(10):
            (local_root / f"f{i}.txt").write_text(str(i))

        report = engine.reconcile(watched)

        assert report.stats["uploads"] == 10
        assert remote.peak_in_flight <= 4
        assert executor.peak_in_flight <= 4

    def test_nested_folders_share_one_level_pool(self, persistence, watched, local_root):
        peak_threads = []
        baseline = threading.active_count()

        class CountingStore(FakeRemoteStore):
            def upload(self, local_path, parent_id, progress_callback=None):
                peak_threads.append(threading.active_count())
                return super().upload(local_path, parent_id, progress_callback)

        remote = CountingStore(delay=0.01)
        engine = ReconciliationEngine(
            TransferExecutor(remote, width=4), persistence, level_workers=2
        )
        for top in ("a", "b", "c"):
            for sub in ("x", "y", "z"):
                directory = local_root / top / sub
                directory.mkdir(parents=True)
                (directory / "1.txt").write_text("1")
                (directory / "2.txt").write_text("2")

        report = engine.reconcile(watched)

        assert report.stats["uploads"] == 18
        assert report.stats["folders_created_remote"] == 12
        assert max(peak_threads) <= baseline + 2


class TestPlan:
    """Dry run."""

    def test_plan_does_not_mutate(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        (local_root / "b").mkdir()
        (local_root / "b" / "c.txt").write_text("c")
        remote.add_file("r.txt")

        decisions = engine.plan(watched)

        actions = {d.relative_path: d.action for d in decisions}
        assert actions == {
            "a.txt": ReconcileAction.UPLOAD,
            "b": ReconcileAction.CREATE_REMOTE_FOLDER,
            "b/c.txt": ReconcileAction.UPLOAD,
            "r.txt": ReconcileAction.DOWNLOAD,
        }
        assert remote.calls_of("upload") == []
        assert remote.calls_of("create_folder") == []
        assert not (local_root / "r.txt").exists()
        assert len(watched.synced_files) == 0

    def test_plan_rejects_unconfigured_folder(self, engine, local_root):
        with pytest.raises(ValueError, match="No remote folder"):
            engine.plan(WatchedFolder(local_path=local_root))

    def test_plan_records_subfolder_listing_failure(self, engine, remote, watched, local_root):
        (local_root / "a.txt").write_text("a")
        (local_root / "b").mkdir()
        folder_id = remote.add_folder("b")
        remote.errors[("list_children", folder_id)] = NetworkError("boom")
        failures = []

        decisions = engine.plan(watched, failures)

        actions = {d.relative_path: d.action for d in decisions}
        assert actions == {"a.txt": ReconcileAction.UPLOAD, "b": ReconcileAction.RECURSE}
        assert [(f.path, f.error) for f in failures] == [("b", "boom")]

    def test_plan_records_unreadable_local_directory(self, remote, watched, local_root):
        class LockedScanner(DirectoryScanner):
            def list_children(self, directory, base_path):
                if directory.name == "locked":
                    raise LocalIOError(f"Cannot list {directory}: permission denied")
                return super().list_children(directory, base_path)

        engine = ReconciliationEngine(TransferExecutor(remote), scanner=LockedScanner())
        (local_root / "locked").mkdir()
        (local_root / "open").mkdir()
        (local_root / "open" / "c.txt").write_text("c")
        failures = []

        decisions = engine.plan(watched, failures)

        assert "open/c.txt" in {d.relative_path for d in decisions}
        assert [f.path for f in failures] == ["locked"]

    def test_plan_propagates_auth_error(self, engine, remote, watched, local_root):
        (local_root / "b").mkdir()
        folder_id = remote.add_folder("b")
        remote.errors[("list_children", folder_id)] = AuthError("expired")

        with pytest.raises(AuthError):
            engine.plan(watched)


class TestProgress:
    def test_transfer_events_are_reported(self, remote, watched, local_root):
        events = []
        tracker = SyncProgressTracker(callback=lambda info: events.append(info.event))
        engine = ReconciliationEngine(TransferExecutor(remote), progress=tracker)
        (local_root / "a.txt").write_text("a")

        engine.reconcile(watched)

        assert events[0] == SyncProgressEvent.PASS_START
        assert SyncProgressEvent.TRANSFER_START in events
        assert SyncProgressEvent.TRANSFER_PROGRESS in events
        assert SyncProgressEvent.TRANSFER_COMPLETE in events
        assert events[-1] == SyncProgressEvent.PASS_COMPLETE
        assert tracker.transfers_completed == 1
