"""
Sync Dispatcher.

Turns batches of rule roots into sync invocations, applying the project's
restart policy to whatever is still in flight.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from core.models.config import Project, SyncRule

from .processes import ProcessLifecycleManager, SyncHandle, SyncProcess

logger = logging.getLogger(__name__)


class SyncBackend(Protocol):
    """Starts one sync invocation and returns a handle to it"""

    def spawn(self, project: Project, rule: SyncRule, initialize: bool) -> SyncHandle:
        ...


class SubprocessSyncBackend:
    """
    Runs each invocation by re-invoking atune's `sync-project` command.

    Every sync gets a fresh process, so a hung or crashed sync cannot affect
    the watcher, and cancelling it is a matter of signalling its group.
    """

    def __init__(
        self,
        config_path: Path,
        rsync: Optional[str] = None,
        log_level: Optional[str] = None,
        command_prefix: Optional[Sequence[str]] = None
    ):
        """
        Args:
            config_path: Config file the child reloads
            rsync: Sync tool executable to forward
            log_level: Log level to forward
            command_prefix: How to start atune (defaults to `python -m atune`)
        """
        self.config_path = Path(config_path).resolve()
        self.rsync = rsync
        self.log_level = log_level
        self.command_prefix = list(command_prefix or [sys.executable, "-m", "atune"])

    def command(self, project: Project, rule: SyncRule, initialize: bool) -> List[str]:
        """Argument vector for a single-rule sync"""
        argv = [*self.command_prefix, "--config", str(self.config_path)]
        if self.rsync:
            argv += ["--rsync", self.rsync]
        if self.log_level:
            argv += ["--log-level", self.log_level]
        argv += ["sync-project", "--project", project.name, "--src", str(rule.src)]
        if initialize:
            argv.append("--initialize")
        return argv

    def spawn(self, project: Project, rule: SyncRule, initialize: bool) -> SyncHandle:
        return SyncProcess.spawn(
            self.command(project, rule, initialize),
            description=f"{project.name}:{rule.src}{' (init)' if initialize else ''}"
        )


class SyncDispatcher:
    """
    Dispatches sync invocations for one project.

    Before the first invocation of a batch the restart policy is applied:
    `restart=True` cancels in-flight invocations, `restart=False` waits for
    them. With `restart=False` the invocations of a batch are also run one
    after another, so no two syncs of the project overlap.
    """

    def __init__(
        self,
        project: Project,
        manager: ProcessLifecycleManager,
        backend: SyncBackend,
        interrupt: Optional[threading.Event] = None
    ):
        """
        Args:
            project: Project whose rules are dispatched
            manager: Owner of the spawned invocations
            backend: Starts invocations
            interrupt: Set on shutdown to abandon waiting for in-flight syncs
        """
        self.project = project
        self.manager = manager
        self.backend = backend
        self.interrupt = interrupt

        self._rules: Dict[Path, SyncRule] = {rule.src: rule for rule in project.enabled_rules}
        self.invocations = 0

    @property
    def roots(self) -> List[Path]:
        """Canonical sources of the enabled rules"""
        return list(self._rules)

    def dispatch_initial(self) -> None:
        """Start one initializing invocation for every enabled rule."""
        for position, rule in enumerate(self._rules.values()):
            if position and not self.project.restart:
                if not self.manager.wait_all(self.interrupt):
                    return
            self._spawn(rule, initialize=True)

    def dispatch(self, batch: Iterable[Path]) -> None:
        """
        Start one non-initializing invocation per root in the batch.

        Roots that do not belong to an enabled rule of this project are ignored.
        """
        rules = [self._rules[root] for root in batch if root in self._rules]
        if not rules:
            return

        for position, rule in enumerate(rules):
            if position == 0:
                if not self._apply_policy():
                    return
            elif not self.project.restart:
                if not self.manager.wait_all(self.interrupt):
                    return
            logger.info(f"[{self.project.name}] syncing src={rule.src} dst={rule.dst}")
            self._spawn(rule, initialize=False)

    def _apply_policy(self) -> bool:
        """Cancel or wait for in-flight invocations; False if interrupted"""
        if self.project.restart:
            self.manager.cancel_all()
            return True
        return self.manager.wait_all(self.interrupt)

    def _spawn(self, rule: SyncRule, initialize: bool) -> None:
        try:
            handle = self.backend.spawn(self.project, rule, initialize)
        except OSError as e:
            logger.error(f"[{self.project.name}] Failed to spawn sync for {rule.src}: {e}")
            return
        self.manager.track(handle)
        self.invocations += 1
