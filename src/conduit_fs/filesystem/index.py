"""Live index of the files under the allowed directories.

The index is built from a full scan at startup and then kept current by
filesystem change notifications. watchdog delivers raw events on its observer
thread; they are queued and consumed by a single worker thread, which updates
the URI map, re-registers newly created directories, and notifies
subscribers.

Every directory is watched individually (non-recursive watches), so each
watch has a clear lifecycle: unregistered, registered, then stale once the
directory is deleted and the watch cannot be re-armed.

Known gap: when the platform notification queue overflows, the backend drops
events and the index is only approximately live until the affected files
change again or the server restarts. Overflows are not treated as errors.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch

from conduit_fs.filesystem.mime import guess_mime_type
from conduit_fs.filesystem.paths import PathGuard, canonicalize, to_uri

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]

_STOP = object()


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class WatchState(str, Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    STALE = "stale"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    path: Path
    is_directory: bool = False


@dataclass(frozen=True)
class ResourceEntry:
    """A file known to the index."""

    uri: str
    path: Path
    name: str
    mime_type: str

    @classmethod
    def for_path(cls, path: str | Path) -> ResourceEntry:
        path = canonicalize(path)
        return cls(
            uri=to_uri(path),
            path=path,
            name=path.name,
            mime_type=guess_mime_type(path),
        )


class ResourceMap:
    """URI to entry map, safe for concurrent use from any thread.

    Each method is a single critical section. No operation spans more than
    one mutation.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ResourceEntry] = {}
        self._lock = threading.Lock()

    def put(self, entry: ResourceEntry) -> bool:
        """Insert or replace an entry. Returns True if the URI was new."""
        with self._lock:
            is_new = entry.uri not in self._entries
            self._entries[entry.uri] = entry
            return is_new

    def pop(self, uri: str) -> ResourceEntry | None:
        with self._lock:
            return self._entries.pop(uri, None)

    def pop_under(self, directory: Path) -> list[ResourceEntry]:
        """Remove every entry located beneath `directory`."""
        with self._lock:
            doomed = [
                uri
                for uri, entry in self._entries.items()
                if entry.path.is_relative_to(directory)
            ]
            return [self._entries.pop(uri) for uri in doomed]

    def get(self, uri: str) -> ResourceEntry | None:
        with self._lock:
            return self._entries.get(uri)

    def values(self) -> list[ResourceEntry]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, uri: object) -> bool:
        with self._lock:
            return uri in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class _EventForwarder(FileSystemEventHandler):
    """Hands raw events from watchdog's observer thread to the index queue."""

    def __init__(self, events: queue.Queue) -> None:
        super().__init__()
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        self._events.put(event)


class ResourceIndex:
    """Maintains the live URI → ResourceEntry map for the allowed directories.

    Args:
        guard: Confinement guard. Only its allowed roots are indexed.
        observer_factory: Builds the watchdog observer. Defaults to the
            platform's native observer.
    """

    def __init__(
        self,
        guard: PathGuard,
        observer_factory: Callable[[], BaseObserver] = Observer,
    ) -> None:
        self.guard = guard
        self._observer_factory = observer_factory
        self._entries = ResourceMap()
        self._events: queue.Queue = queue.Queue()
        self._handler = _EventForwarder(self._events)

        self._observer: BaseObserver | None = None
        self._worker: threading.Thread | None = None

        self._registrations: dict[Path, ObservedWatch] = {}
        self._stale: set[Path] = set()
        self._registrations_lock = threading.Lock()

        self._callbacks: list[ChangeCallback] = []
        self._callbacks_lock = threading.Lock()

    # ================================
    # Lifecycle
    # ================================

    def initialize(self, watch: bool = True) -> None:
        """Scan every allowed root and start watching for changes.

        Failing to start the watcher is logged and non-fatal: the index keeps
        whatever the scan found and tool operations are unaffected.
        """
        if watch:
            try:
                self._observer = self._observer_factory()
            except Exception as e:
                logger.error(f"Failed to initialize file watching: {e}")
                self._observer = None

        for root in self.guard.allowed_roots:
            if root.is_dir():
                self._scan(root)
            else:
                logger.warning(f"Allowed directory is not a directory: {root}")

        logger.info(
            f"Indexed {len(self._entries)} resources from "
            f"{len(self.guard.allowed_roots)} allowed directories"
        )

        if self._observer is None:
            return

        try:
            self._observer.start()
        except Exception as e:
            logger.error(f"Failed to start file watching: {e}")
            self._observer = None
            with self._registrations_lock:
                self._registrations.clear()
            return

        self._worker = threading.Thread(
            target=self._run, name="conduit-fs-watch", daemon=True
        )
        self._worker.start()

    def close(self) -> None:
        """Stop the watcher and the worker thread."""
        if self._observer is not None:
            try:
                self._observer.stop()
                self._observer.join(timeout=5)
            except RuntimeError as e:
                logger.debug(f"Observer already stopped: {e}")
            self._observer = None

        if self._worker is not None:
            self._events.put(_STOP)
            self._worker.join(timeout=5)
            self._worker = None

    @property
    def watching(self) -> bool:
        """True while the watch worker is running."""
        return self._worker is not None and self._worker.is_alive()

    # ================================
    # Reads
    # ================================

    def entries(self) -> list[ResourceEntry]:
        """Snapshot of all entries, ordered by URI."""
        return sorted(self._entries.values(), key=lambda entry: entry.uri)

    def get(self, uri: str) -> ResourceEntry | None:
        return self._entries.get(uri)

    def __contains__(self, uri: object) -> bool:
        return uri in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def registered_directories(self) -> list[Path]:
        with self._registrations_lock:
            return sorted(self._registrations)

    def state(self, directory: str | Path) -> WatchState:
        directory = canonicalize(directory)
        with self._registrations_lock:
            if directory in self._registrations:
                return WatchState.REGISTERED
            if directory in self._stale:
                return WatchState.STALE
        return WatchState.UNREGISTERED

    # ================================
    # Subscribers
    # ================================

    def subscribe(self, callback: ChangeCallback) -> None:
        """Register a callback invoked with the URI of every change.

        Callbacks run on the watch worker thread, or on the calling thread for
        eager updates, and must not block.
        """
        with self._callbacks_lock:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with self._callbacks_lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def _notify(self, uri: str) -> None:
        with self._callbacks_lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(uri)
            except Exception as e:
                logger.warning(f"Resource change callback failed for {uri}: {e}")

    # ================================
    # Eager updates from tool operations
    # ================================

    def upsert(self, path: str | Path) -> ResourceEntry | None:
        """Record a file or directory the server itself just wrote."""
        path = canonicalize(path)
        if not self.guard.is_allowed(path) or self._escapes(path):
            return None

        entry = None
        if path.is_dir():
            if not path.is_symlink():
                self._scan(path)
        elif path.is_file():
            entry = ResourceEntry.for_path(path)
            self._entries.put(entry)
        else:
            return None

        self._notify(to_uri(path))
        return entry

    def remove(self, path: str | Path) -> None:
        """Forget a file or directory the server itself just moved away."""
        path = canonicalize(path)
        self._entries.pop(to_uri(path))
        self._entries.pop_under(path)
        self._notify(to_uri(path))

    # ================================
    # Event processing
    # ================================

    def process(self, event: FileSystemEvent) -> None:
        """Apply one raw watchdog event to the index."""
        for change in self._classify(event):
            self._apply(change)

    def _run(self) -> None:
        """Worker loop: block for the next batch of events and apply it."""
        logger.info("File watcher started")
        while True:
            batch = [self._events.get()]
            while True:
                try:
                    batch.append(self._events.get_nowait())
                except queue.Empty:
                    break

            for event in batch:
                if event is _STOP:
                    logger.info("File watcher stopped")
                    return
                try:
                    self.process(event)
                except Exception as e:
                    logger.error(f"Error in file watcher: {e}", exc_info=True)

            with self._registrations_lock:
                exhausted = not self._registrations and bool(self._stale)
            if exhausted:
                logger.info("No watched directories remain, file watcher exiting")
                return

    def _classify(self, event: FileSystemEvent) -> list[ChangeEvent]:
        src = Path(os.fsdecode(event.src_path))
        event_type = event.event_type
        if event_type == EVENT_TYPE_CREATED:
            return [ChangeEvent(ChangeKind.CREATED, src, event.is_directory)]
        if event_type == EVENT_TYPE_MODIFIED:
            # Parent directories report a modification for every child change.
            if event.is_directory:
                return []
            return [ChangeEvent(ChangeKind.MODIFIED, src)]
        if event_type == EVENT_TYPE_DELETED:
            return [ChangeEvent(ChangeKind.DELETED, src, event.is_directory)]
        if event_type == EVENT_TYPE_MOVED:
            dest = Path(os.fsdecode(event.dest_path))
            return [
                ChangeEvent(ChangeKind.DELETED, src, event.is_directory),
                ChangeEvent(ChangeKind.CREATED, dest, event.is_directory),
            ]
        # Opened and closed events carry no state change.
        return []

    def _apply(self, change: ChangeEvent) -> None:
        path = canonicalize(change.path)
        if not self.guard.is_allowed(path):
            return
        uri = to_uri(path)

        if change.kind is ChangeKind.DELETED:
            self._entries.pop(uri)
            if self._invalidate(path):
                self._entries.pop_under(path)
        elif self._escapes(path):
            logger.debug(f"Ignoring symlink leaving the allowed directories: {path}")
            return
        elif path.is_dir():
            # Symlinked directories are never scanned or watched.
            if change.kind is ChangeKind.CREATED and not path.is_symlink():
                self._scan(path)
        elif path.is_file():
            self._entries.put(ResourceEntry.for_path(path))

        self._notify(uri)

    # ================================
    # Scanning and watch registration
    # ================================

    def _escapes(self, path: Path) -> bool:
        """True for a symlink whose target lies outside every allowed root."""
        return path.is_symlink() and not self.guard.is_allowed(
            Path(os.path.realpath(path))
        )

    def _scan(self, directory: Path) -> None:
        """Register `directory` and its descendants and index their files."""
        stack = [directory]
        while stack:
            current = stack.pop()
            self._register(current)
            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logger.warning(f"Failed to scan directory {current}: {e}")
                continue

            for entry in entries:
                path = Path(entry.path)
                try:
                    if entry.is_symlink():
                        if self._escapes(path):
                            continue
                        if entry.is_file():
                            self._entries.put(ResourceEntry.for_path(path))
                    elif entry.is_dir():
                        stack.append(path)
                    elif entry.is_file():
                        self._entries.put(ResourceEntry.for_path(path))
                except OSError as e:
                    logger.warning(f"Failed to visit {path}: {e}")

    def _register(self, directory: Path) -> None:
        if self._observer is None:
            return
        with self._registrations_lock:
            if directory in self._registrations:
                return
            try:
                watch = self._observer.schedule(
                    self._handler, str(directory), recursive=False
                )
            except OSError as e:
                logger.warning(f"Failed to watch directory {directory}: {e}")
                return
            self._registrations[directory] = watch
            self._stale.discard(directory)
        logger.debug(f"Watching {directory}")

    def _invalidate(self, directory: Path) -> bool:
        """Drop registrations for a deleted directory and everything under it.

        Returns True if `directory` was being watched.
        """
        with self._registrations_lock:
            doomed = [d for d in self._registrations if d.is_relative_to(directory)]
            watches = [self._registrations.pop(d) for d in doomed]
            self._stale.update(doomed)

        for watch in watches:
            try:
                if self._observer is not None:
                    self._observer.unschedule(watch)
            except (KeyError, OSError) as e:
                logger.debug(f"Watch for {watch.path} already gone: {e}")

        if doomed:
            logger.info(f"Stopped watching deleted directory {directory}")
        return bool(doomed)
