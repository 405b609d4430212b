"""
atune - Continuous file-tree mirroring with hooks.

Watches the source trees of configured projects, coalesces bursts of changes
and re-runs rsync (plus the rule's hook commands) for every affected rule.
"""

from core import __version__
from core.models.config import AtuneConfig, HookCommand, Project, SyncRule

__all__ = [
    "AtuneConfig",
    "HookCommand",
    "Project",
    "SyncRule",
    "__version__",
]
