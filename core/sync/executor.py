"""
Sync Invocation.

Runs one rule's sync: the transfer through the external sync tool, then the
rule's hook commands. This is the unit of work the dispatcher runs in a
separate process, and what `sync-once` runs in-process.
"""

import logging
import os
import subprocess
from typing import Dict, List, Optional, Sequence

from config.defaults import SYNC_DST_ENV, SYNC_SRC_ENV
from core.models.config import HookCommand, SyncRule

from .errors import HookError, TransferError

logger = logging.getLogger(__name__)


class SyncExecutor:
    """
    Executes sync invocations for single rules.

    Steps of an invocation:
    1. If the rule has a destination, run `<rsync> <flags...> <src> <dst>`.
       A failure aborts the invocation before any hook runs.
    2. If initializing, run every `on_init` hook in order.
    3. Run every `on_sync` hook in order.

    A failing hook aborts the remaining hooks unless it is marked
    `continue_on_failure`.
    """

    def __init__(self, rsync: str = "rsync", shell: str = "sh"):
        """
        Args:
            rsync: Sync tool executable
            shell: Interpreter that receives hook commands on stdin
        """
        self.rsync = rsync
        self.shell = shell

    def transfer_command(self, rule: SyncRule) -> List[str]:
        """Argument vector for the sync tool"""
        return [self.rsync, *rule.rsync_flags, str(rule.src), str(rule.dst)]

    def hook_environment(self, rule: SyncRule) -> Dict[str, str]:
        """Environment for hook commands of a rule"""
        env = dict(os.environ)
        env[SYNC_SRC_ENV] = str(rule.src)
        env[SYNC_DST_ENV] = rule.dst or ""
        return env

    def execute(self, rule: SyncRule, initialize: bool = False) -> None:
        """
        Run one sync invocation.

        Raises:
            TransferError: If the sync tool fails
            HookError: If a hook without continue_on_failure fails
        """
        if rule.has_destination:
            self.transfer(rule)
        else:
            logger.debug(f"No destination for {rule.src}, running hooks only")

        if initialize and rule.on_init:
            logger.debug("Running init commands")
            self.run_hooks(rule, rule.on_init)

        if rule.on_sync:
            logger.debug("Running on_sync commands")
            self.run_hooks(rule, rule.on_sync)
            logger.debug("Running on_sync commands done")

        logger.info(f"Synced {rule}")

    def transfer(self, rule: SyncRule) -> None:
        """Run the sync tool for a rule"""
        argv = self.transfer_command(rule)
        logger.debug(f"Running {argv}")
        try:
            result = subprocess.run(argv)
        except OSError as e:
            raise TransferError(f"Failed to spawn sync tool {self.rsync}: {e}") from e

        if result.returncode != 0:
            raise TransferError(
                f"Failed to sync files from {rule.src} to {rule.dst}: "
                f"{self.rsync} exited with status {result.returncode}"
            )

    def run_hooks(self, rule: SyncRule, hooks: Sequence[HookCommand]) -> None:
        """Run hooks in order, honoring continue_on_failure"""
        env = self.hook_environment(rule)
        for hook in hooks:
            try:
                self.run_hook(hook, env)
            except HookError as e:
                if not hook.continue_on_failure:
                    raise
                logger.warning(f"{e} (continuing)")

    def run_hook(self, hook: HookCommand, env: Optional[Dict[str, str]] = None) -> None:
        """
        Run a single hook command through the shell.

        Raises:
            HookError: If the command cannot be started or exits non-zero
        """
        logger.debug(f"Running hook: {hook.command}")
        try:
            result = subprocess.run(
                [self.shell, "-s"],
                input=hook.command.encode(),
                env=env,
            )
        except OSError as e:
            raise HookError(f"Failed to spawn hook command {hook.command!r}: {e}") from e

        if result.returncode != 0:
            raise HookError(f"Hook command {hook.command!r} exited with status {result.returncode}")
