"""
Configuration management for atune

Defaults live here; loading and validation live in `config.loader`, which
depends on the models in `core.models` and is imported explicitly.
"""

from .defaults import DEFAULT_SETTINGS, DEFAULT_RSYNC_FLAGS, ENV_VAR_MAPPING

__all__ = ["DEFAULT_SETTINGS", "DEFAULT_RSYNC_FLAGS", "ENV_VAR_MAPPING"]
