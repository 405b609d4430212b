"""
Project File System Watcher.

Wraps watchdog's push-based notifications behind a pull-based queue so the
debounce loop can block on the first event and then drain the rest without
blocking.
"""

import logging
import os
import queue
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileSystemEvent as WatchdogEvent
from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
)

from .errors import WatchRegistrationError
from .events import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

# Opened/closed (access) notifications have no entry and are dropped
_KIND_BY_EVENT_TYPE = {
    EVENT_TYPE_CREATED: ChangeKind.CREATE,
    EVENT_TYPE_MODIFIED: ChangeKind.MODIFY,
    EVENT_TYPE_MOVED: ChangeKind.MODIFY,
    EVENT_TYPE_DELETED: ChangeKind.REMOVE,
}

# Queue markers
_WAKE = object()
_CLOSED = object()


@dataclass(frozen=True)
class WatchRoot:
    """A path to watch and whether to descend into it"""
    path: Path
    recursive: bool = True


class ProjectFileSystemWatcher:
    """
    File system watcher for the sync roots of one project.

    All registered roots feed a single ordered queue of ChangeEvent objects.
    The queue is read with `wait_event()` (blocking) and `drain()`
    (non-blocking). Closing the watcher or calling `wake()` unblocks a
    pending `wait_event()`.
    """

    def __init__(self, roots: Iterable[WatchRoot], join_timeout_s: float = 5.0):
        """
        Initialize the file system watcher.

        Args:
            roots: Paths to monitor; single files are watched through their parent directory
            join_timeout_s: Seconds to wait for the observer thread when stopping
        """
        self.roots = list(roots)
        self.join_timeout_s = join_timeout_s

        self.observer: Optional[Observer] = None
        self._events: "queue.Queue[Any]" = queue.Queue()

        self._is_monitoring = False
        self._disconnected = False
        self._monitor_start_time: Optional[datetime] = None

    def start_monitoring(self) -> None:
        """
        Register every root and start delivering events.

        Raises:
            WatchRegistrationError: If any root cannot be watched
        """
        if self._is_monitoring:
            logger.warning("File system monitoring is already active")
            return

        observer = Observer()
        try:
            for root in self.roots:
                self._schedule(observer, root)
            observer.start()
        except WatchRegistrationError:
            observer.stop()
            raise
        except Exception as e:
            observer.stop()
            raise WatchRegistrationError(f"Failed to start file system monitoring: {e}") from e

        self.observer = observer
        self._is_monitoring = True
        self._disconnected = False
        self._monitor_start_time = datetime.now()
        logger.info(f"Started monitoring {len(self.roots)} path(s)")

    def _schedule(self, observer: Observer, root: WatchRoot) -> None:
        """Register a single root on the observer"""
        path = root.path
        if not path.exists():
            raise WatchRegistrationError(f"Failed to register watcher for path {path}: path does not exist")

        try:
            if path.is_dir():
                handler = SyncFileSystemEventHandler(self)
                observer.schedule(handler, str(path), recursive=root.recursive)
            else:
                handler = SyncFileSystemEventHandler(self, watched_file=path)
                observer.schedule(handler, str(path.parent), recursive=False)
        except Exception as e:
            raise WatchRegistrationError(f"Failed to register watcher for path {path}: {e}") from e

        logger.debug(f"Registered {path} (recursive={root.recursive})")

    def stop_monitoring(self) -> None:
        """Stop the observer and close the event stream."""
        if not self._is_monitoring:
            return

        self._is_monitoring = False

        if self.observer:
            try:
                self.observer.stop()
                self.observer.join(timeout=self.join_timeout_s)
            except Exception as e:
                logger.warning(f"Error stopping observer: {e}")
            finally:
                self.observer = None

        self._events.put(_CLOSED)

        monitor_duration = None
        if self._monitor_start_time:
            monitor_duration = datetime.now() - self._monitor_start_time
        logger.info(f"Stopped file system monitoring (duration: {monitor_duration})")

    def put(self, event: ChangeEvent) -> None:
        """Queue an event for the consumer"""
        if not self._is_monitoring:
            return
        self._events.put(event)

    def wake(self) -> None:
        """Unblock a pending `wait_event()` without delivering an event"""
        self._events.put(_WAKE)

    def wait_event(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Block until the next event.

        Returns:
            The next event, or None when woken, timed out, or disconnected
        """
        if self._disconnected:
            return None

        try:
            item = self._events.get(timeout=timeout)
        except queue.Empty:
            return None

        if item is _CLOSED:
            self._disconnected = True
            return None
        if item is _WAKE:
            return None
        return item

    def drain(self) -> Tuple[List[ChangeEvent], bool]:
        """
        Take every queued event without blocking.

        Returns:
            (events, disconnected) where disconnected tells whether the stream closed
        """
        events: List[ChangeEvent] = []
        while not self._disconnected:
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                break
            if item is _CLOSED:
                self._disconnected = True
            elif item is not _WAKE:
                events.append(item)
        return events, self._disconnected

    @property
    def is_monitoring(self) -> bool:
        """Check if file system monitoring is active."""
        return self._is_monitoring

    @property
    def is_disconnected(self) -> bool:
        """Check if the consumer has seen the end of the event stream."""
        return self._disconnected

    def __enter__(self):
        self.start_monitoring()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop_monitoring()


class SyncFileSystemEventHandler(FileSystemEventHandler):
    """
    Watchdog event handler that forwards events to ProjectFileSystemWatcher.

    Runs on the watchdog observer thread; it only normalizes events and puts
    them on the watcher's thread-safe queue.
    """

    def __init__(self, watcher: ProjectFileSystemWatcher, watched_file: Optional[Path] = None):
        """
        Args:
            watcher: Watcher whose queue receives the events
            watched_file: When watching a single file through its parent, only
                events for this path are forwarded
        """
        super().__init__()
        self.watcher = watcher
        self.watched_file = watched_file

    def on_any_event(self, event: WatchdogEvent) -> None:
        change = self.convert(event)
        if change is not None:
            logger.debug(f"Received file update: {change}")
            self.watcher.put(change)

    def convert(self, event: WatchdogEvent) -> Optional[ChangeEvent]:
        """
        Convert a watchdog event to a ChangeEvent.

        Returns:
            ChangeEvent or None if the event should be ignored
        """
        kind = _KIND_BY_EVENT_TYPE.get(event.event_type)
        if kind is None:
            return None

        paths = [Path(os.fsdecode(event.src_path))]
        if event.event_type == EVENT_TYPE_MOVED:
            paths.append(Path(os.fsdecode(event.dest_path)))

        if self.watched_file is not None:
            paths = [path for path in paths if path == self.watched_file]
            if not paths:
                return None

        return ChangeEvent(paths=paths, kind=kind)
