"""
Core data models for atune

Pydantic models for projects, sync rules, hook commands, and runtime settings.
"""

from .config import (
    AtuneConfig,
    GlobalSettings,
    HookCommand,
    HookTrigger,
    Project,
    SyncRule,
    parse_duration,
)

__all__ = [
    # Configuration document
    "AtuneConfig",
    "Project",
    "SyncRule",

    # Hooks
    "HookCommand",
    "HookTrigger",

    # Runtime
    "GlobalSettings",
    "parse_duration",
]
