"""
Project Supervisor.

Runs one watch session per project on a dedicated thread and coordinates
start-up and shutdown of all of them.
"""

import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, List, Optional

from core.models.config import AtuneConfig, Project

from .debounce import DebounceLoop
from .dispatcher import SyncBackend, SyncDispatcher
from .errors import HookError, TransferError, WatchRegistrationError
from .executor import SyncExecutor
from .processes import ProcessLifecycleManager
from .watcher import ProjectFileSystemWatcher, WatchRoot

logger = logging.getLogger(__name__)


class ProjectSupervisor:
    """
    Owns the watch session of one project.

    The session thread registers the watches, dispatches the initializing
    syncs, then runs the debounce loop until shutdown. The process manager
    is scoped to the thread, so every child still running when the loop
    ends is cancelled before the thread returns.
    """

    def __init__(
        self,
        project: Project,
        debounce: timedelta,
        backend: SyncBackend,
        terminate_grace_s: float = 5.0
    ):
        self.project = project
        self.debounce = debounce
        self.backend = backend
        self.terminate_grace_s = terminate_grace_s

        self.watcher = ProjectFileSystemWatcher(
            WatchRoot(rule.src, rule.recursive) for rule in project.enabled_rules
        )
        self.shutdown = threading.Event()
        self.ready = threading.Event()
        self.error: Optional[BaseException] = None
        self.loop: Optional[DebounceLoop] = None
        self.dispatcher: Optional[SyncDispatcher] = None

        self._thread: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return self.project.name

    def start(self) -> None:
        """Start the session thread."""
        self._thread = threading.Thread(
            target=self._run,
            name=f"atune-{self.name}"
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the session to end."""
        self.shutdown.set()
        self.watcher.wake()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        try:
            try:
                self.watcher.start_monitoring()
            except WatchRegistrationError as e:
                logger.error(f"[{self.name}] {e}")
                self.error = e
                return
            finally:
                self.ready.set()

            try:
                with ProcessLifecycleManager(self.name, self.terminate_grace_s) as manager:
                    self.dispatcher = SyncDispatcher(self.project, manager, self.backend, self.shutdown)
                    self.dispatcher.dispatch_initial()

                    self.loop = DebounceLoop(
                        project_name=self.name,
                        roots=self.dispatcher.roots,
                        watcher=self.watcher,
                        dispatch=self.dispatcher.dispatch,
                        debounce=self.debounce,
                        shutdown=self.shutdown
                    )
                    self.loop.run()
            finally:
                self.watcher.stop_monitoring()
        except Exception as e:
            logger.exception(f"[{self.name}] Watch session failed: {e}")
            self.error = e


class WatchSupervisor:
    """
    Starts one ProjectSupervisor per configured project and propagates the
    shutdown signal to all of them.
    """

    def __init__(
        self,
        config: AtuneConfig,
        backend_factory: Callable[[Project], SyncBackend],
        terminate_grace_s: float = 5.0
    ):
        """
        Args:
            config: Validated configuration
            backend_factory: Creates the sync backend for a project
            terminate_grace_s: Seconds between SIGTERM and SIGKILL when cancelling
        """
        self.config = config
        self.projects: Dict[str, ProjectSupervisor] = {
            name: ProjectSupervisor(project, config.debounce, backend_factory(project), terminate_grace_s)
            for name, project in config.projects.items()
        }

    def start(self) -> None:
        """
        Start every project and wait for watch registration.

        Raises:
            WatchRegistrationError: If any project failed to register its
                watches; every started project is stopped first
        """
        for supervisor in self.projects.values():
            supervisor.start()
        for supervisor in self.projects.values():
            supervisor.ready.wait()

        failed = [s for s in self.projects.values() if isinstance(s.error, WatchRegistrationError)]
        if failed:
            self.stop()
            self.join()
            raise WatchRegistrationError(
                "; ".join(f"{s.name}: {s.error}" for s in failed)
            )
        logger.info(f"Watching {len(self.projects)} project(s)")

    def stop(self) -> None:
        """Broadcast shutdown to every project."""
        logger.info("Stopping watchers")
        for supervisor in self.projects.values():
            supervisor.stop()

    def join(self) -> None:
        """Wait for every project thread to finish."""
        for supervisor in self.projects.values():
            supervisor.join()

    @property
    def failed_projects(self) -> List[str]:
        return [name for name, s in self.projects.items() if s.error is not None]

    def __enter__(self) -> 'WatchSupervisor':
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
        self.join()


def sync_all_once(config: AtuneConfig, executor: SyncExecutor) -> List[Path]:
    """
    Run every enabled rule of every project once, in-process, initializing.

    Returns:
        Sources of the rules that failed
    """
    failures = []
    for project in config.projects.values():
        for rule in project.enabled_rules:
            logger.info(f"[{project.name}] syncing src={rule.src} dst={rule.dst}")
            try:
                executor.execute(rule, initialize=True)
            except (TransferError, HookError) as e:
                logger.error(f"[{project.name}] Failed to sync {rule.src}: {e}")
                failures.append(rule.src)
    return failures
