"""
Configuration loading and validation.

Reads the YAML configuration document, applies environment overrides,
validates it against the models and canonicalizes every rule's source path.
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import yaml
from pydantic import ValidationError

from core.models.config import AtuneConfig, GlobalSettings, Project, SyncRule
from .defaults import ENV_VAR_MAPPING, get_default_config

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the configuration cannot be loaded or is invalid"""
    pass


class ConfigurationLoader:
    """Load and validate the atune configuration file"""

    def __init__(self, settings: Optional[GlobalSettings] = None):
        self.settings = settings or GlobalSettings()

    def load(self, config_path: Optional[Union[str, Path]] = None) -> AtuneConfig:
        """
        Load, validate and canonicalize a configuration file.

        Args:
            config_path: Path of the YAML file (defaults to the configured path)

        Returns:
            Validated configuration with canonical source paths

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        config_path = Path(config_path or self.settings.config_path)

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Failed to open config file {config_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse config file {config_path}: {e}") from e

        config = self.load_from_dict(data, base_dir=config_path.parent)
        logger.debug(f"Loaded config from {config_path}: {len(config.projects)} project(s)")
        return config

    def load_from_dict(self, data: Any, base_dir: Optional[Path] = None) -> AtuneConfig:
        """Validate and canonicalize an already parsed configuration document"""
        if data is None:
            data = get_default_config()
        if not isinstance(data, dict):
            raise ConfigurationError("Config document must be a mapping")

        data = self._apply_env_overrides(dict(data))

        try:
            config = AtuneConfig(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        config = self._canonicalize(config, base_dir or Path.cwd())

        for project in config.projects.values():
            for outer, inner in find_nested_roots(project):
                logger.warning(
                    f"Project '{project.name}': sync source {inner} is nested inside {outer}; "
                    f"changes under {inner} will only sync the nearer rule"
                )

        return config

    def _canonicalize(self, config: AtuneConfig, base_dir: Path) -> AtuneConfig:
        """Resolve every rule source to a canonical absolute path"""
        projects: Dict[str, Project] = {}
        for name, project in config.projects.items():
            rules = []
            for rule in project.sync:
                src = rule.src if rule.src.is_absolute() else base_dir / rule.src
                try:
                    src = src.resolve(strict=True)
                except (OSError, RuntimeError) as e:
                    raise ConfigurationError(
                        f"Failed to canonicalize source path {rule.src} of project '{name}': {e}"
                    ) from e
                rules.append(rule.model_copy(update={'src': src}))
            projects[name] = project.model_copy(update={'sync': rules})

        return config.model_copy(update={'projects': projects})

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, key in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                config_data[key] = env_value

        return config_data


def find_nested_roots(project: Project) -> List[Tuple[Path, Path]]:
    """
    Find pairs of rule sources where one lies inside the other.

    Returns:
        List of (outer, inner) source path pairs
    """
    nested = []
    sources = [rule.src for rule in project.sync]
    for outer in sources:
        for inner in sources:
            if inner != outer and outer in inner.parents:
                nested.append((outer, inner))
    return nested


def find_rule(
    config: AtuneConfig,
    project_name: str,
    index: Optional[int] = None,
    src: Optional[Union[str, Path]] = None
) -> SyncRule:
    """
    Look up a single rule by project name and index or source path.

    Raises:
        ConfigurationError: If the project or rule does not exist
    """
    if src is not None:
        try:
            src = Path(src).resolve(strict=True)
        except (OSError, RuntimeError) as e:
            raise ConfigurationError(f"Failed to canonicalize source path {src}: {e}") from e

    try:
        project = config.get_project(project_name)
        return project.get_rule(index=index, src=src)
    except (LookupError, ValueError) as e:
        raise ConfigurationError(str(e)) from e
