"""
Tests for SyncDispatcher restart policy and the subprocess backend.
"""

import os
import sys
import threading
from pathlib import Path
from typing import List, Tuple
from unittest.mock import Mock

import pytest

from core.models.config import Project, SyncRule
from core.sync.dispatcher import SubprocessSyncBackend, SyncDispatcher
from core.sync.events import PendingBatch
from core.sync.processes import ProcessLifecycleManager, SyncProcess

SRC_A = Path("/projects/a")
SRC_B = Path("/projects/b")
SRC_OFF = Path("/projects/off")


class RecordingBackend:
    """Backend that records invocations instead of spawning processes"""

    def __init__(self, fail_for: Tuple[Path, ...] = ()):
        self.calls: List[Tuple[Path, bool]] = []
        self.fail_for = fail_for

    def spawn(self, project, rule, initialize):
        if rule.src in self.fail_for:
            raise OSError("exec format error")
        self.calls.append((rule.src, initialize))
        handle = Mock(spec=["poll", "terminate", "kill", "wait"])
        handle.poll.return_value = 0
        return handle


def make_project(restart: bool = True) -> Project:
    return Project(
        name="web",
        restart=restart,
        sync=[
            SyncRule(src=SRC_A, dst="host:/a"),
            SyncRule(src=SRC_B, dst="host:/b"),
            SyncRule(src=SRC_OFF, dst="host:/off", enabled=False),
        ],
    )


@pytest.fixture
def manager():
    manager = Mock(spec=ProcessLifecycleManager)
    manager.wait_all.return_value = True
    return manager


@pytest.fixture
def backend():
    return RecordingBackend()


class TestSyncDispatcher:
    """Test suite for dispatch and restart policy"""

    def test_roots_are_enabled_sources(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(), manager, backend)
        assert dispatcher.roots == [SRC_A, SRC_B]

    def test_dispatch_initial_restart(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(), manager, backend)

        dispatcher.dispatch_initial()

        assert backend.calls == [(SRC_A, True), (SRC_B, True)]
        manager.wait_all.assert_not_called()
        manager.cancel_all.assert_not_called()
        assert manager.track.call_count == 2

    def test_dispatch_initial_without_restart_serializes(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(restart=False), manager, backend)

        dispatcher.dispatch_initial()

        assert backend.calls == [(SRC_A, True), (SRC_B, True)]
        assert manager.wait_all.call_count == 1

    def test_first_batch_cancels_initial_syncs(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(), manager, backend)
        dispatcher.dispatch_initial()

        dispatcher.dispatch(PendingBatch([SRC_A]))

        manager.cancel_all.assert_called_once()
        manager.wait_all.assert_not_called()
        assert backend.calls[-1] == (SRC_A, False)

    def test_restart_cancels_in_flight(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(), manager, backend)

        dispatcher.dispatch(PendingBatch([SRC_A, SRC_B]))

        manager.cancel_all.assert_called_once()
        manager.wait_all.assert_not_called()
        assert backend.calls == [(SRC_A, False), (SRC_B, False)]

    def test_restart_cancels_once_per_batch(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(), manager, backend)

        dispatcher.dispatch(PendingBatch([SRC_A]))
        dispatcher.dispatch(PendingBatch([SRC_B]))

        assert manager.cancel_all.call_count == 2
        assert dispatcher.invocations == 2

    def test_no_restart_waits_before_every_invocation(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(restart=False), manager, backend)

        dispatcher.dispatch(PendingBatch([SRC_A, SRC_B]))

        manager.cancel_all.assert_not_called()
        assert manager.wait_all.call_count == 2
        assert backend.calls == [(SRC_A, False), (SRC_B, False)]

    def test_unknown_and_disabled_roots_ignored(self, manager, backend):
        dispatcher = SyncDispatcher(make_project(), manager, backend)

        dispatcher.dispatch(PendingBatch([Path("/elsewhere"), SRC_OFF]))

        assert backend.calls == []
        manager.cancel_all.assert_not_called()

    def test_interrupted_wait_spawns_nothing(self, manager, backend):
        manager.wait_all.return_value = False
        dispatcher = SyncDispatcher(make_project(restart=False), manager, backend, threading.Event())

        dispatcher.dispatch(PendingBatch([SRC_A, SRC_B]))

        assert backend.calls == []

    def test_spawn_failure_is_logged_and_skipped(self, manager):
        backend = RecordingBackend(fail_for=(SRC_A,))
        dispatcher = SyncDispatcher(make_project(), manager, backend)

        dispatcher.dispatch(PendingBatch([SRC_A, SRC_B]))

        assert backend.calls == [(SRC_B, False)]
        assert dispatcher.invocations == 1
        assert manager.track.call_count == 1

    def test_with_real_manager(self, backend):
        manager = ProcessLifecycleManager("web")
        dispatcher = SyncDispatcher(make_project(restart=False), manager, backend)

        dispatcher.dispatch_initial()
        dispatcher.dispatch(PendingBatch([SRC_B]))

        assert backend.calls == [(SRC_A, True), (SRC_B, True), (SRC_B, False)]
        assert len(manager) == 1


class TestSubprocessSyncBackend:
    """Test the self re-invocation command line"""

    def test_command(self, tmp_path):
        config_path = tmp_path / "atune.yaml"
        backend = SubprocessSyncBackend(config_path, rsync="/opt/rsync", log_level="DEBUG")
        project = make_project()

        argv = backend.command(project, project.sync[0], initialize=True)

        assert argv == [
            sys.executable, "-m", "atune",
            "--config", str(config_path.resolve()),
            "--rsync", "/opt/rsync",
            "--log-level", "DEBUG",
            "sync-project", "--project", "web", "--src", str(SRC_A),
            "--initialize",
        ]

    def test_command_minimal(self, tmp_path):
        backend = SubprocessSyncBackend(tmp_path / "atune.yaml", command_prefix=["atune"])
        project = make_project()

        argv = backend.command(project, project.sync[1], initialize=False)

        assert argv[:3] == ["atune", "--config", str((tmp_path / "atune.yaml").resolve())]
        assert argv[3:] == ["sync-project", "--project", "web", "--src", str(SRC_B)]


@pytest.mark.skipif(os.name != 'posix', reason="process groups require POSIX")
class TestPolicyWithProcesses:
    """Restart and wait policies against real child processes"""

    class SleepBackend:
        def __init__(self, seconds: str):
            self.seconds = seconds
            self.processes: List[SyncProcess] = []
            self.running_at_spawn: List[int] = []

        def spawn(self, project, rule, initialize):
            self.running_at_spawn.append(sum(1 for p in self.processes if p.poll() is None))
            process = SyncProcess.spawn(["sleep", self.seconds])
            self.processes.append(process)
            return process

    def test_restart_terminates_superseded_sync(self):
        backend = self.SleepBackend("30")
        with ProcessLifecycleManager("web", terminate_grace_s=2.0) as manager:
            dispatcher = SyncDispatcher(make_project(restart=True), manager, backend)

            dispatcher.dispatch(PendingBatch([SRC_A]))
            first = backend.processes[0]
            assert first.poll() is None

            dispatcher.dispatch(PendingBatch([SRC_A]))

            assert first.poll() is not None
            assert backend.running_at_spawn == [0, 0]
            assert manager.tracked == [backend.processes[1]]

    def test_wait_policy_never_overlaps(self):
        backend = self.SleepBackend("0.2")
        with ProcessLifecycleManager("web") as manager:
            dispatcher = SyncDispatcher(make_project(restart=False), manager, backend)

            dispatcher.dispatch(PendingBatch([SRC_A, SRC_B]))
            dispatcher.dispatch(PendingBatch([SRC_A]))

            assert backend.running_at_spawn == [0, 0, 0]
            assert all(p.poll() == 0 for p in backend.processes[:2])
