"""
Debounce & Coalescing Loop.

Batches bursts of change events within a debounce window and resolves every
changed path to the sync rule root that owns it.
"""

import logging
import threading
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Callable, Collection, Optional

from .events import ChangeEvent, PendingBatch
from .watcher import ProjectFileSystemWatcher

logger = logging.getLogger(__name__)


class LoopState(Enum):
    """States of the debounce loop"""
    IDLE = "idle"               # Blocked on the first event of a batch
    COLLECTING = "collecting"   # A debounce window is running
    STOPPED = "stopped"


def resolve_rule_root(path: Path, roots: Collection[Path]) -> Optional[Path]:
    """
    Find the rule root owning a changed path.

    Walks from the path itself up to the filesystem root; the first ancestor
    equal to a configured root wins, so nested roots resolve to the nearer one.

    Returns:
        The owning root, or None if the path is outside every root
    """
    for candidate in (path, *path.parents):
        if candidate in roots:
            return candidate
    return None


class DebounceLoop:
    """
    Per-project state machine turning change events into dispatched batches.

    IDLE blocks until an event or shutdown. The first event starts a
    COLLECTING window: the loop sleeps for the debounce duration, drains
    every event queued meanwhile into the same PendingBatch, hands the batch
    to `dispatch` and returns to IDLE. A closed event stream ends the loop
    after the collected batch is dispatched.
    """

    def __init__(
        self,
        project_name: str,
        roots: Collection[Path],
        watcher: ProjectFileSystemWatcher,
        dispatch: Callable[[PendingBatch], None],
        debounce: timedelta,
        shutdown: threading.Event
    ):
        """
        Args:
            project_name: Name of the project, for logging
            roots: Canonical source paths of the project's enabled rules
            watcher: Source of change events
            dispatch: Called with every non-empty batch
            debounce: Length of the collection window
            shutdown: Set to stop the loop
        """
        self.project_name = project_name
        self.roots = frozenset(roots)
        self.watcher = watcher
        self.dispatch = dispatch
        self.debounce = debounce
        self.shutdown = shutdown

        self.state = LoopState.IDLE
        self.batches_dispatched = 0
        self.events_discarded = 0

    def run(self) -> None:
        """Process events until shutdown or until the event stream closes."""
        batch = PendingBatch()
        try:
            while True:
                self.state = LoopState.IDLE
                event = self._wait_first_event()
                if event is None:
                    break

                self.state = LoopState.COLLECTING
                self._collect(event, batch)

                # Only shutdown interrupts the window
                if self.shutdown.wait(self.debounce.total_seconds()):
                    logger.debug(f"[{self.project_name}] shutdown during debounce, dropping {batch!r}")
                    break

                events, disconnected = self.watcher.drain()
                for queued in events:
                    self._collect(queued, batch)

                if batch:
                    logger.debug(
                        f"[{self.project_name}] dispatching {len(batch)} root(s) "
                        f"from {batch.event_count} event(s)"
                    )
                    self.dispatch(batch)
                    self.batches_dispatched += 1
                batch.clear()

                if disconnected:
                    logger.info(f"[{self.project_name}] filesystem watcher disconnected")
                    break
        finally:
            self.state = LoopState.STOPPED

        logger.info(f"[{self.project_name}] watch loop stopped")

    def _wait_first_event(self) -> Optional[ChangeEvent]:
        """Block until an event arrives; None means shutdown or disconnection"""
        while not self.shutdown.is_set():
            event = self.watcher.wait_event()
            if event is not None:
                return event
            if self.watcher.is_disconnected:
                logger.info(f"[{self.project_name}] filesystem watcher disconnected")
                return None
        return None

    def _collect(self, event: ChangeEvent, batch: PendingBatch) -> None:
        """Resolve an event's paths and merge their roots into the batch"""
        batch.event_count += 1
        for path in event.paths:
            root = resolve_rule_root(path, self.roots)
            if root is None:
                self.events_discarded += 1
                logger.debug(f"[{self.project_name}] no sync rule owns {path}, ignoring")
                continue
            if batch.add(root):
                logger.debug(f"[{self.project_name}] {path} resolved to {root}")
