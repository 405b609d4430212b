"""
Default configuration values for atune.

Centralized defaults that can be overridden by environment variables or config files.
"""

from pathlib import Path
from typing import Any, Dict, List

# Sync tool flags used when a rule does not set `rsync_flags`
DEFAULT_RSYNC_FLAGS: List[str] = ["--delete", "-ra", "--progress"]

DEFAULT_DEBOUNCE_MS = 100

# Environment passed to every hook command
SYNC_SRC_ENV = "ATUNE_SYNC_SRC"
SYNC_DST_ENV = "ATUNE_SYNC_DST"

# Global default settings
DEFAULT_SETTINGS: Dict[str, Any] = {
    "config_path": str(Path("atune.yaml")),
    "debounce": f"{DEFAULT_DEBOUNCE_MS}ms",

    # External collaborators
    "tools": {
        "rsync": "rsync",
        "shell": "sh",
    },

    # Rule defaults
    "sync": {
        "recursive": True,
        "enabled": True,
        "rsync_flags": DEFAULT_RSYNC_FLAGS,
    },

    # Project defaults
    "project": {
        "restart": True,
    },

    # Process management
    "processes": {
        # Seconds to wait after SIGTERM before escalating to SIGKILL
        "terminate_grace_s": 5.0,
    },

    # Logging
    "logging": {
        "level": "INFO",
    },
}

# Environment variable overrides applied to the loaded config file
ENV_VAR_MAPPING = {
    'ATUNE_DEBOUNCE': 'debounce',
}


def get_default_config() -> Dict[str, Any]:
    """Get an empty configuration document with defaults applied"""
    return {
        'projects': {},
        'debounce': DEFAULT_SETTINGS['debounce'],
    }
