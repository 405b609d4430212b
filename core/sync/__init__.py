"""
Change-Detection and Sync-Dispatch Engine.

Watches the source trees of every project, coalesces bursts of filesystem
events into "this root needs re-syncing" decisions, and manages the child
processes that perform the actual syncs and hooks.

Key Components:
- ProjectFileSystemWatcher: watchdog notifications behind a pull-based queue
- DebounceLoop: batches events per debounce window and resolves rule roots
- ProcessLifecycleManager: owns a project's in-flight sync processes
- SyncDispatcher: applies the restart policy and spawns sync invocations
- SyncExecutor: runs one rule's transfer and hooks
- ProjectSupervisor / WatchSupervisor: one thread per project, shared shutdown
"""

from .errors import SyncError, WatchRegistrationError, TransferError, HookError
from .events import ChangeEvent, ChangeKind, PendingBatch
from .watcher import ProjectFileSystemWatcher, WatchRoot
from .debounce import DebounceLoop, LoopState, resolve_rule_root
from .processes import ProcessLifecycleManager, SyncProcess
from .dispatcher import SyncDispatcher, SubprocessSyncBackend
from .executor import SyncExecutor
from .engine import ProjectSupervisor, WatchSupervisor, sync_all_once

__all__ = [
    "SyncError",
    "WatchRegistrationError",
    "TransferError",
    "HookError",
    "ChangeEvent",
    "ChangeKind",
    "PendingBatch",
    "ProjectFileSystemWatcher",
    "WatchRoot",
    "DebounceLoop",
    "LoopState",
    "resolve_rule_root",
    "ProcessLifecycleManager",
    "SyncProcess",
    "SyncDispatcher",
    "SubprocessSyncBackend",
    "SyncExecutor",
    "ProjectSupervisor",
    "WatchSupervisor",
    "sync_all_once",
]
