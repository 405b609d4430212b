"""
Test suite for the change-detection and sync-dispatch engine.

This package contains tests for all engine components:
- ChangeEvent models and PendingBatch deduplication
- ProjectFileSystemWatcher registration, filtering and disconnection
- DebounceLoop coalescing and rule root resolution
- ProcessLifecycleManager cancel/wait semantics
- SyncDispatcher restart policy and SyncExecutor transfer/hook execution
- ProjectSupervisor / WatchSupervisor start-up, shutdown and end-to-end syncs

These tests ensure a burst of changes turns into one sync per affected rule
and that no sync process outlives a watch session.
"""
