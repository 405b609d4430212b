"""
Process Lifecycle Manager.

Owns the child processes spawned for one project and provides the two
serialization primitives the dispatcher needs: cancel everything that is
still running, or wait for everything to finish.
"""

import logging
import os
import signal
import subprocess
import threading
from typing import List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

_IS_POSIX = os.name == 'posix'


class SyncHandle(Protocol):
    """Handle to one in-flight sync invocation"""

    def poll(self) -> Optional[int]:
        ...

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...

    def wait(self, timeout: Optional[float] = None) -> int:
        ...


class SyncProcess:
    """
    A spawned child process running one sync invocation.

    On POSIX the child leads its own session, so terminate/kill signal the
    whole process group and take the sync tool and hook grandchildren down
    with it.
    """

    def __init__(self, popen: subprocess.Popen, description: str = ""):
        self.popen = popen
        self.description = description or f"pid {popen.pid}"

    @classmethod
    def spawn(cls, argv: Sequence[str], description: str = "", **popen_kwargs) -> 'SyncProcess':
        """Start a child process in its own process group"""
        if _IS_POSIX:
            popen_kwargs.setdefault('start_new_session', True)
        popen = subprocess.Popen(list(argv), **popen_kwargs)
        logger.debug(f"Spawned {description or argv[0]} (pid {popen.pid})")
        return cls(popen, description)

    @property
    def pid(self) -> int:
        return self.popen.pid

    def poll(self) -> Optional[int]:
        return self.popen.poll()

    def terminate(self) -> None:
        self._signal(signal.SIGTERM if _IS_POSIX else None)

    def kill(self) -> None:
        self._signal(signal.SIGKILL if _IS_POSIX else None)

    def wait(self, timeout: Optional[float] = None) -> int:
        return self.popen.wait(timeout=timeout)

    def _signal(self, sig: Optional[int]) -> None:
        if sig is None:
            self.popen.terminate()
            return
        try:
            os.killpg(self.popen.pid, sig)
        except ProcessLookupError:
            # Group already gone; the leader may still need reaping
            pass

    def __repr__(self) -> str:
        return f"SyncProcess({self.description})"


class ProcessLifecycleManager:
    """
    Tracks the in-flight sync invocations of a single project.

    The manager is owned by the project's loop thread and never shared, so
    it needs no locking. Used as a context manager it cancels whatever is
    still running on exit, so no sync child outlives the watch session.
    """

    def __init__(self, name: str = "", terminate_grace_s: float = 5.0):
        """
        Args:
            name: Project name, for logging
            terminate_grace_s: Seconds between SIGTERM and SIGKILL when cancelling
        """
        self.name = name
        self.terminate_grace_s = terminate_grace_s
        self._processes: List[SyncHandle] = []

    def track(self, handle: SyncHandle) -> None:
        """Take ownership of a newly spawned invocation"""
        self._processes.append(handle)

    @property
    def tracked(self) -> List[SyncHandle]:
        return list(self._processes)

    def cancel_all(self) -> None:
        """
        Stop every tracked invocation.

        Exited processes are dropped; running ones are terminated and reaped.
        A process that could not be stopped stays tracked.
        """
        remaining: List[SyncHandle] = []
        for handle in self._processes:
            try:
                if handle.poll() is not None:
                    continue

                logger.debug(f"[{self.name}] Killing in-progress sync {handle}")
                handle.terminate()
                try:
                    handle.wait(timeout=self.terminate_grace_s)
                except subprocess.TimeoutExpired:
                    logger.warning(
                        f"[{self.name}] {handle} ignored SIGTERM for {self.terminate_grace_s}s, killing"
                    )
                    handle.kill()
                    handle.wait()
            except (OSError, subprocess.SubprocessError) as e:
                logger.error(f"[{self.name}] Failed to cancel sync process {handle}: {e}")
                if self._is_running(handle):
                    remaining.append(handle)

        self._processes = remaining

    def wait_all(self, interrupt: Optional[threading.Event] = None, poll_interval_s: float = 0.1) -> bool:
        """
        Block until every tracked invocation has exited.

        Args:
            interrupt: When set, stop waiting and keep the unfinished processes tracked
            poll_interval_s: How often to check `interrupt`

        Returns:
            True if every process exited, False if interrupted
        """
        remaining: List[SyncHandle] = []
        interrupted = False
        for handle in self._processes:
            if interrupted:
                remaining.append(handle)
                continue
            try:
                if interrupt is None:
                    returncode = handle.wait()
                else:
                    returncode = self._wait_interruptible(handle, interrupt, poll_interval_s)
                    if returncode is None:
                        interrupted = True
                        remaining.append(handle)
                        continue
                logger.debug(f"[{self.name}] {handle} exited with status {returncode}")
            except (OSError, subprocess.SubprocessError) as e:
                logger.error(f"[{self.name}] Failed to wait for sync process {handle}: {e}")
                if self._is_running(handle):
                    remaining.append(handle)

        self._processes = remaining
        return not interrupted

    @staticmethod
    def _wait_interruptible(
        handle: SyncHandle,
        interrupt: threading.Event,
        poll_interval_s: float
    ) -> Optional[int]:
        while not interrupt.is_set():
            try:
                return handle.wait(timeout=poll_interval_s)
            except subprocess.TimeoutExpired:
                continue
        return None

    def _is_running(self, handle: SyncHandle) -> bool:
        try:
            return handle.poll() is None
        except OSError as e:
            logger.error(f"[{self.name}] Failed to poll sync process {handle}: {e}")
            return True

    def __len__(self) -> int:
        return len(self._processes)

    def __enter__(self) -> 'ProcessLifecycleManager':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel_all()
