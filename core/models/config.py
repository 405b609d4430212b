"""
Configuration models for atune.

Handles projects, sync rules, hook commands, and runtime settings.
"""

import re
import shlex
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.defaults import DEFAULT_DEBOUNCE_MS, DEFAULT_RSYNC_FLAGS, DEFAULT_SETTINGS


_DURATION_UNITS = {
    'ns': 1e-9,
    'us': 1e-6,
    'µs': 1e-6,
    'ms': 1e-3,
    's': 1.0,
    'sec': 1.0,
    'm': 60.0,
    'min': 60.0,
    'h': 3600.0,
    'd': 86400.0,
}

_DURATION_PART = re.compile(r'(\d+(?:\.\d+)?)\s*(ns|us|µs|ms|sec|min|s|m|h|d)')


def parse_duration(value: Any) -> timedelta:
    """
    Parse a human readable duration.

    Accepts timedeltas, plain numbers (seconds) and strings made of one or
    more `<number><unit>` parts, e.g. "1s 30ms", "250ms", "0s", "2m".
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f'Invalid duration: {value!r}')
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f'Duration cannot be negative: {value}')
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f'Invalid duration: {value!r}')

    text = value.strip()
    if not text:
        raise ValueError('Duration cannot be empty')
    try:
        return parse_duration(float(text))
    except ValueError:
        pass

    seconds = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if text[position:match.start()].strip():
            raise ValueError(f'Invalid duration: {value!r}')
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()

    if position == 0 or text[position:].strip():
        raise ValueError(f'Invalid duration: {value!r}')
    return timedelta(seconds=seconds)


class HookTrigger(Enum):
    """When a hook command runs"""
    CHANGE = "change"   # After every successful sync
    INIT = "init"       # Only after the first sync of a session


class HookCommand(BaseModel):
    """A shell command run after a sync"""
    model_config = ConfigDict(frozen=True)

    command: str
    continue_on_failure: bool = False
    on: HookTrigger = HookTrigger.CHANGE

    @model_validator(mode='before')
    @classmethod
    def accept_plain_string(cls, data: Any) -> Any:
        """Allow a hook to be written as a bare command string"""
        if isinstance(data, str):
            return {'command': data}
        return data

    @field_validator('command')
    @classmethod
    def validate_command(cls, v: str) -> str:
        """Validate command is not empty"""
        if not v.strip():
            raise ValueError('Hook command cannot be empty')
        return v


class SyncRule(BaseModel):
    """One source -> destination mapping plus its hooks and flags"""
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True
    )

    src: Path
    dst: Optional[str] = None
    recursive: bool = DEFAULT_SETTINGS['sync']['recursive']
    rsync_flags: List[str] = Field(default_factory=lambda: list(DEFAULT_RSYNC_FLAGS))
    on_sync: List[HookCommand] = Field(default_factory=list)
    on_init: List[HookCommand] = Field(default_factory=list)
    enabled: bool = DEFAULT_SETTINGS['sync']['enabled']

    @field_validator('rsync_flags', mode='before')
    @classmethod
    def split_rsync_flags(cls, v: Any) -> Any:
        """Split a flag string using shell word rules"""
        if v is None:
            return list(DEFAULT_RSYNC_FLAGS)
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator('on_sync', 'on_init', mode='before')
    @classmethod
    def default_hook_list(cls, v: Any) -> Any:
        """Treat an empty YAML key as an empty hook list"""
        if v is None:
            return []
        if isinstance(v, (str, dict)):
            return [v]
        return v

    @field_validator('dst')
    @classmethod
    def validate_dst(cls, v: Optional[str]) -> Optional[str]:
        """Normalize an empty destination to None (hooks only)"""
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode='after')
    def split_init_hooks(self) -> 'SyncRule':
        """Move `on: init` hooks listed under on_sync into on_init"""
        init_hooks = [hook for hook in self.on_sync if hook.on == HookTrigger.INIT]
        if init_hooks:
            object.__setattr__(
                self, 'on_sync',
                [hook for hook in self.on_sync if hook.on != HookTrigger.INIT]
            )
            object.__setattr__(self, 'on_init', list(self.on_init) + init_hooks)
        return self

    @property
    def has_destination(self) -> bool:
        """Check if this rule transfers files (otherwise hooks only)"""
        return self.dst is not None

    def without_hooks(self) -> 'SyncRule':
        """Copy of this rule with every hook removed"""
        return self.model_copy(update={'on_sync': [], 'on_init': []})

    def __str__(self) -> str:
        return f"{self.src} -> {self.dst if self.has_destination else '(hooks only)'}"


class Project(BaseModel):
    """A named group of sync rules sharing one restart policy"""
    model_config = ConfigDict(
        frozen=True,
        str_strip_whitespace=True
    )

    name: str
    sync: List[SyncRule] = Field(default_factory=list)
    # Cancel in-flight syncs when a new change lands, instead of waiting for them
    restart: bool = DEFAULT_SETTINGS['project']['restart']

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate project name"""
        if not v:
            raise ValueError('Project name cannot be empty')
        return v

    @field_validator('sync', mode='before')
    @classmethod
    def default_rule_list(cls, v: Any) -> Any:
        if v is None:
            return []
        return v

    @property
    def enabled_rules(self) -> List[SyncRule]:
        """Rules that take part in syncing"""
        return [rule for rule in self.sync if rule.enabled]

    def get_rule(self, index: Optional[int] = None, src: Optional[Path] = None) -> SyncRule:
        """
        Find a rule by position or by source path.

        Args:
            index: Position of the rule inside the project
            src: Canonical source path of the rule

        Returns:
            The matching rule

        Raises:
            LookupError: If no rule matches
        """
        if (index is None) == (src is None):
            raise ValueError('Exactly one of index or src must be given')

        if index is not None:
            if not 0 <= index < len(self.sync):
                raise LookupError(f"Project '{self.name}' has no sync rule at index {index}")
            return self.sync[index]

        for rule in self.sync:
            if rule.src == src:
                return rule
        raise LookupError(f"Project '{self.name}' has no sync rule for {src}")


class AtuneConfig(BaseModel):
    """Whole configuration document"""
    model_config = ConfigDict(frozen=True)

    projects: Dict[str, Project] = Field(default_factory=dict)
    debounce: timedelta = Field(default_factory=lambda: timedelta(milliseconds=DEFAULT_DEBOUNCE_MS))

    @model_validator(mode='before')
    @classmethod
    def fill_project_names(cls, data: Any) -> Any:
        """Projects are keyed by name in the document"""
        if isinstance(data, dict) and 'projects' in data and data['projects'] is None:
            data = {**data, 'projects': {}}
        if isinstance(data, dict) and isinstance(data.get('projects'), dict):
            projects = {}
            for name, project in data['projects'].items():
                if isinstance(project, dict):
                    project = {**project, 'name': str(name)}
                projects[str(name)] = project
            data = {**data, 'projects': projects}
        return data

    @field_validator('debounce', mode='before')
    @classmethod
    def validate_debounce(cls, v: Any) -> timedelta:
        """Parse duration strings such as '1s 30ms'"""
        if v is None:
            return timedelta(milliseconds=DEFAULT_DEBOUNCE_MS)
        return parse_duration(v)

    def get_project(self, name: str) -> Project:
        """Get a project by name"""
        try:
            return self.projects[name]
        except KeyError:
            raise LookupError(f"Project '{name}' not found") from None

    def without_hooks(self) -> 'AtuneConfig':
        """Copy of this configuration with every hook removed"""
        projects = {
            name: project.model_copy(update={'sync': [rule.without_hooks() for rule in project.sync]})
            for name, project in self.projects.items()
        }
        return self.model_copy(update={'projects': projects})


class GlobalSettings(BaseSettings):
    """Runtime settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="ATUNE_",
        case_sensitive=False
    )

    config_path: Path = Path(DEFAULT_SETTINGS['config_path'])

    # External tools
    rsync: str = DEFAULT_SETTINGS['tools']['rsync']
    shell: str = DEFAULT_SETTINGS['tools']['shell']

    # Process management
    terminate_grace_s: float = Field(default=DEFAULT_SETTINGS['processes']['terminate_grace_s'], ge=0.0)

    # Logging
    log_level: str = Field(
        default=DEFAULT_SETTINGS['logging']['level'],
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"
    )

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.upper()
        return v
