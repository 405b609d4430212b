"""
atune core package

Configuration models and the change-detection / sync-dispatch engine.
"""

__version__ = "0.3.0"

from .models import AtuneConfig, Project, SyncRule, HookCommand

__all__ = [
    "AtuneConfig",
    "Project",
    "SyncRule",
    "HookCommand",
]
