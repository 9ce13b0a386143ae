import threading
import time
from pathlib import Path
from types import SimpleNamespace

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)
from watchdog.observers.polling import PollingObserver

from conduit_fs.filesystem.index import (
    ResourceEntry,
    ResourceIndex,
    ResourceMap,
    WatchState,
)
from conduit_fs.filesystem.paths import PathGuard, to_uri


class FakeObserver:
    """Records schedule calls without touching the OS."""

    def __init__(self):
        self.scheduled: list[str] = []
        self.unscheduled: list[str] = []
        self.started = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append(path)
        return SimpleNamespace(path=path, is_recursive=recursive)

    def unschedule(self, watch):
        self.unscheduled.append(watch.path)

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def join(self, timeout=None):
        pass


def wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.05)
    return condition()


class TestResourceIndexScan:
    def test_initial_scan_indexes_every_file(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "a.txt").write_text("a")
        (root / "sub").mkdir()
        (root / "sub" / "b.py").write_text("b")
        index = ResourceIndex(PathGuard([root]))

        # Act
        index.initialize(watch=False)

        # Assert
        assert [entry.uri for entry in index.entries()] == [
            to_uri(root / "a.txt"),
            to_uri(root / "sub" / "b.py"),
        ]
        assert index.get(to_uri(root / "sub" / "b.py")).mime_type == "text/x-python"
        assert index.watching is False

    def test_symlink_leaving_roots_is_not_indexed(self, tmp_path):
        # Arrange
        root = (tmp_path / "root").resolve()
        root.mkdir()
        outside = tmp_path / "outside.txt"
        outside.write_text("secret")
        (root / "link.txt").symlink_to(outside)
        index = ResourceIndex(PathGuard([root]))

        # Act
        index.initialize(watch=False)

        # Assert
        assert len(index) == 0

    def test_every_directory_is_registered_non_recursively(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "sub" / "deeper").mkdir(parents=True)
        observer = FakeObserver()
        index = ResourceIndex(PathGuard([root]), observer_factory=lambda: observer)

        # Act
        index.initialize()

        # Assert
        try:
            assert sorted(observer.scheduled) == sorted(
                [str(root), str(root / "sub"), str(root / "sub" / "deeper")]
            )
            assert index.state(root / "sub") is WatchState.REGISTERED
            assert index.watching is True
        finally:
            index.close()

    def test_observer_failure_degrades_to_static_index(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "a.txt").write_text("a")

        def broken_observer():
            raise OSError("inotify watch limit reached")

        index = ResourceIndex(PathGuard([root]), observer_factory=broken_observer)

        # Act
        index.initialize()

        # Assert
        assert to_uri(root / "a.txt") in index
        assert index.watching is False
        assert index.registered_directories() == []


class TestResourceIndexEvents:
    def setup_method(self):
        self.observer = FakeObserver()
        self.changes: list[str] = []

    def make_index(self, root):
        index = ResourceIndex(
            PathGuard([root]), observer_factory=lambda: self.observer
        )
        index.initialize()
        index.subscribe(self.changes.append)
        return index

    def test_created_file_is_added_and_announced(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        index = self.make_index(root)
        new_file = root / "new.txt"
        new_file.write_text("fresh")

        # Act
        index.process(FileCreatedEvent(str(new_file)))
        index.close()

        # Assert
        assert to_uri(new_file) in index
        assert self.changes == [to_uri(new_file)]

    def test_created_directory_is_scanned_and_registered(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        index = self.make_index(root)
        new_dir = root / "incoming"
        new_dir.mkdir()
        (new_dir / "inside.md").write_text("# hi")

        # Act
        index.process(DirCreatedEvent(str(new_dir)))
        index.close()

        # Assert
        assert to_uri(new_dir / "inside.md") in index
        assert str(new_dir) in self.observer.scheduled

    def test_deleted_directory_drops_entries_and_goes_stale(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "gone").mkdir()
        (root / "gone" / "a.txt").write_text("a")
        index = self.make_index(root)
        (root / "gone" / "a.txt").unlink()
        (root / "gone").rmdir()

        # Act
        index.process(DirDeletedEvent(str(root / "gone")))
        index.close()

        # Assert
        assert len(index) == 0
        assert index.state(root / "gone") is WatchState.STALE
        assert str(root / "gone") in self.observer.unscheduled
        assert self.changes == [to_uri(root / "gone")]

    def test_move_is_delete_then_create(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "old.txt").write_text("x")
        index = self.make_index(root)
        (root / "old.txt").rename(root / "new.txt")

        # Act
        index.process(FileMovedEvent(str(root / "old.txt"), str(root / "new.txt")))
        index.close()

        # Assert
        assert to_uri(root / "old.txt") not in index
        assert to_uri(root / "new.txt") in index
        assert self.changes == [to_uri(root / "old.txt"), to_uri(root / "new.txt")]

    def test_file_modified_notifies_without_changing_listing(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "a.txt").write_text("a")
        index = self.make_index(root)

        # Act
        index.process(FileModifiedEvent(str(root / "a.txt")))
        index.process(DirModifiedEvent(str(root)))
        index.close()

        # Assert
        assert len(index) == 1
        assert self.changes == [to_uri(root / "a.txt")]

    def test_deleted_file_is_removed(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "a.txt").write_text("a")
        index = self.make_index(root)
        (root / "a.txt").unlink()

        # Act
        index.process(FileDeletedEvent(str(root / "a.txt")))
        index.close()

        # Assert
        assert to_uri(root / "a.txt") not in index

    def test_new_symlink_to_outside_directory_is_not_followed(self, tmp_path):
        # Arrange
        root = (tmp_path / "root").resolve()
        root.mkdir()
        outside = (tmp_path / "outside").resolve()
        outside.mkdir()
        (outside / "secret.txt").write_text("secret")
        index = self.make_index(root)
        link = root / "link"
        link.symlink_to(outside, target_is_directory=True)

        # Act
        index.process(FileCreatedEvent(str(link)))
        index.process(DirCreatedEvent(str(link)))
        index.close()

        # Assert
        assert to_uri(link / "secret.txt") not in index
        assert len(index) == 0
        assert str(link) not in self.observer.scheduled
        assert str(outside) not in self.observer.scheduled
        assert self.changes == []

    def test_new_symlink_to_outside_file_is_not_indexed(self, tmp_path):
        # Arrange
        root = (tmp_path / "root").resolve()
        root.mkdir()
        outside = tmp_path / "secret.txt"
        outside.write_text("secret")
        index = self.make_index(root)
        link = root / "link.txt"
        link.symlink_to(outside)

        # Act
        index.process(FileCreatedEvent(str(link)))
        upserted = index.upsert(link)
        index.close()

        # Assert
        assert to_uri(link) not in index
        assert upserted is None
        assert self.changes == []

    def test_new_symlink_to_confined_directory_is_not_scanned(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "real").mkdir()
        (root / "real" / "a.txt").write_text("a")
        index = self.make_index(root)
        link = root / "alias"
        link.symlink_to(root / "real", target_is_directory=True)

        # Act
        index.process(DirCreatedEvent(str(link)))
        index.upsert(link)
        index.close()

        # Assert
        assert to_uri(link / "a.txt") not in index
        assert to_uri(root / "real" / "a.txt") in index
        assert str(link) not in self.observer.scheduled

    def test_new_symlink_to_confined_file_is_indexed(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "a.txt").write_text("a")
        index = self.make_index(root)
        link = root / "b.txt"
        link.symlink_to(root / "a.txt")

        # Act
        index.process(FileCreatedEvent(str(link)))
        index.close()

        # Assert
        assert to_uri(link) in index

    def test_failing_callback_does_not_stop_others(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        index = self.make_index(root)

        def broken(uri):
            raise RuntimeError("subscriber crashed")

        index.unsubscribe(self.changes.append)
        index.subscribe(broken)
        index.subscribe(self.changes.append)
        (root / "n.txt").write_text("n")

        # Act
        index.upsert(root / "n.txt")
        index.close()

        # Assert
        assert self.changes == [to_uri(root / "n.txt")]

    def test_eager_remove_drops_subtree(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        (root / "dir").mkdir()
        (root / "dir" / "a.txt").write_text("a")
        (root / "keep.txt").write_text("k")
        index = self.make_index(root)

        # Act
        index.remove(root / "dir")
        index.close()

        # Assert
        assert [entry.uri for entry in index.entries()] == [to_uri(root / "keep.txt")]


class TestResourceIndexLiveWatch:
    def test_externally_created_file_appears_without_tool_call(self, tmp_path):
        # Arrange
        root = tmp_path.resolve()
        index = ResourceIndex(
            PathGuard([root]), observer_factory=lambda: PollingObserver(timeout=0.1)
        )
        index.initialize()

        try:
            # Act
            (root / "new.txt").write_text("hello")

            # Assert
            assert wait_for(lambda: to_uri(root / "new.txt") in index)
            assert to_uri(root / "new.txt") == f"file://{root}/new.txt"
        finally:
            index.close()

    def test_worker_stops_when_last_watched_directory_is_deleted(self, tmp_path):
        # Arrange
        root = (tmp_path / "root").resolve()
        root.mkdir()
        index = ResourceIndex(
            PathGuard([root]), observer_factory=lambda: PollingObserver(timeout=0.1)
        )
        index.initialize()
        assert index.watching is True

        try:
            # Act
            root.rmdir()

            # Assert
            assert wait_for(lambda: not index.watching)
            assert index.state(root) is WatchState.STALE
            assert index.registered_directories() == []
        finally:
            index.close()

    def test_worker_keeps_running_while_other_directories_remain(self, tmp_path):
        # Arrange
        root = (tmp_path / "root").resolve()
        (root / "a").mkdir(parents=True)
        (root / "b").mkdir()
        index = ResourceIndex(
            PathGuard([root]), observer_factory=lambda: PollingObserver(timeout=0.1)
        )
        index.initialize()

        try:
            # Act
            (root / "a").rmdir()

            # Assert
            assert wait_for(lambda: index.state(root / "a") is WatchState.STALE)
            assert index.watching is True
            assert index.state(root / "b") is WatchState.REGISTERED
            (root / "b" / "later.txt").write_text("still watched")
            assert wait_for(lambda: to_uri(root / "b" / "later.txt") in index)
        finally:
            index.close()


def entry_for(uri: str) -> ResourceEntry:
    path = Path(uri.removeprefix("file://"))
    return ResourceEntry(uri=uri, path=path, name=path.name, mime_type="text/plain")


class TestResourceMap:
    def test_put_reports_whether_uri_was_new(self):
        # Arrange
        resources = ResourceMap()
        entry = entry_for("file:///data/a.txt")

        # Act & Assert
        assert resources.put(entry) is True
        assert resources.put(entry) is False
        assert len(resources) == 1

    def test_pop_under_removes_only_the_subtree(self):
        # Arrange
        resources = ResourceMap()
        for uri in ("file:///data/dir/a.txt", "file:///data/dir2/b.txt"):
            resources.put(entry_for(uri))

        # Act
        removed = resources.pop_under(Path("/data/dir"))

        # Assert
        assert [entry.uri for entry in removed] == ["file:///data/dir/a.txt"]
        assert "file:///data/dir2/b.txt" in resources

    def test_concurrent_mutation_and_reads_stay_consistent(self):
        # Arrange
        resources = ResourceMap()
        shared = entry_for("file:///data/shared.txt")
        workers, rounds = 8, 300
        barrier = threading.Barrier(workers)
        errors: list[BaseException] = []

        def churn(worker: int) -> None:
            try:
                barrier.wait()
                for n in range(rounds):
                    resources.put(entry_for(f"file:///data/w{worker}/{n}.txt"))
                    resources.put(shared)
                    resources.pop(shared.uri)
                    snapshot = resources.values()
                    assert all(isinstance(e, ResourceEntry) for e in snapshot)
                    if n % 2:
                        resources.pop(f"file:///data/w{worker}/{n}.txt")
                resources.pop_under(Path(f"/data/w{worker}/none"))
            except BaseException as e:
                errors.append(e)

        threads = [threading.Thread(target=churn, args=(w,)) for w in range(workers)]

        # Act
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        # Assert
        assert errors == []
        expected = {
            f"file:///data/w{worker}/{n}.txt"
            for worker in range(workers)
            for n in range(0, rounds, 2)
        }
        remaining = {entry.uri for entry in resources.values()} - {shared.uri}
        assert remaining == expected
        assert len(resources) in (len(expected), len(expected) + 1)
