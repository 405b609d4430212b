"""
Error types raised by the sync engine.
"""


class SyncError(Exception):
    """Base class for sync engine errors"""
    pass


class WatchRegistrationError(SyncError):
    """Raised when a source path cannot be watched"""
    pass


class TransferError(SyncError):
    """Raised when the sync tool cannot run or exits with a failure status"""
    pass


class HookError(SyncError):
    """Raised when a hook command fails"""
    pass
