"""Configuration loading and merging for projectdeck.

Handles TOML loading, config discovery, deep merging, and environment overlay.
"""

from __future__ import annotations

import os
import sys
import threading
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from pydantic import ValidationError

from .config_schema import ProjectDeckConfig


# Config file names
CONFIG_FILENAME = "config.toml"
CREDENTIALS_FILENAME = "credentials.toml"

# Directory names
USER_CONFIG_DIR = ".projectdeck"
PROJECT_CONFIG_DIR = ".projectdeck"

# Environment variable -> (section path, key)
ENV_MAPPING: Dict[str, tuple[list[str], str]] = {
    # Scan
    "PROJECTDECK_ROOTS": (["scan"], "roots"),
    "PROJECTDECK_INCLUDE_PLAIN_DIRS": (["scan"], "include_plain_dirs"),
    # GitHub
    "PROJECTDECK_GITHUB_ENABLED": (["github"], "enabled"),
    "PROJECTDECK_GITHUB_API": (["github"], "api_base"),
    "PROJECTDECK_GITHUB_VISIBILITY": (["github"], "visibility"),
    "PROJECTDECK_GITHUB_TIMEOUT": (["github"], "timeout"),
    # Reconcile
    "PROJECTDECK_REFERENCE": (["reconcile"], "reference"),
    "PROJECTDECK_POLL_INTERVAL": (["reconcile"], "poll_interval"),
    "PROJECTDECK_REMOTE": (["reconcile"], "remote"),
    # Logging
    "PROJECTDECK_LOG_LEVEL": (["logging"], "level"),
    "PROJECTDECK_LOG_DIR": (["logging"], "dir"),
    "PROJECTDECK_LOG_MAX_BYTES": (["logging"], "max_bytes"),
    "PROJECTDECK_LOG_BACKUP_COUNT": (["logging"], "backup_count"),
    "PROJECTDECK_LOG_DISABLE_FILE": (["logging"], "disable_file"),
}


class ConfigError(Exception):
    """Configuration loading or validation error."""


def _get_user_config_dir() -> Path:
    """Get user-level config directory (~/.projectdeck/)."""
    return Path.home() / USER_CONFIG_DIR


def _get_project_config_dir(project_path: Optional[Path] = None) -> Optional[Path]:
    """Search upward from project_path for a .projectdeck/ directory.

    The user config directory is never treated as a project directory.
    """
    if project_path is None:
        project_path = Path.cwd()

    if not project_path.is_absolute():
        project_path = project_path.resolve()

    user_dir = _get_user_config_dir()
    current = project_path
    while current != current.parent:
        config_dir = current / PROJECT_CONFIG_DIR
        if config_dir.is_dir() and config_dir != user_dir:
            return config_dir
        current = current.parent

    return None


def _load_toml(path: Path) -> Dict[str, Any]:
    """Load a TOML file.

    Raises:
        ConfigError: If file cannot be loaded or parsed
    """
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries.

    Override values take precedence. Nested dicts are merged recursively.
    Lists are replaced, not merged.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _env_to_config_key(env_var: str) -> tuple[list[str], str]:
    """Map environment variable to config path.

    Examples:
        PROJECTDECK_ROOTS -> (["scan"], "roots")
        PROJECTDECK_REFERENCE -> (["reconcile"], "reference")
    """
    return ENV_MAPPING.get(env_var, ([], env_var))


def _apply_env_overlay(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to config dict."""
    result = _deep_merge({}, config_dict)

    for env_var in ENV_MAPPING:
        value = os.getenv(env_var)
        if value is None:
            continue

        section_path, key_name = _env_to_config_key(env_var)

        current = result
        for section in section_path:
            if not isinstance(current.get(section), dict):
                current[section] = {}
            current = current[section]

        # Type conversion happens during Pydantic validation
        current[key_name] = value

    return result


def load_config(
    project_path: Optional[Path] = None,
    skip_env: bool = False,
) -> ProjectDeckConfig:
    """Load and merge projectdeck configuration.

    Discovery order (later sources override earlier):
    1. Built-in defaults
    2. User config (~/.projectdeck/config.toml)
    3. Project config (.projectdeck/config.toml, searched upward)
    4. Environment variables (unless skip_env=True)

    Raises:
        ConfigError: If the project config or the merged result is invalid
    """
    config_dict: Dict[str, Any] = {}

    user_config_path = _get_user_config_dir() / CONFIG_FILENAME
    if user_config_path.exists():
        try:
            config_dict = _deep_merge(config_dict, _load_toml(user_config_path))
        except ConfigError as e:
            # User config is optional, warn but continue
            warnings.warn(
                f"Skipping invalid user config at {user_config_path}: {e}",
                UserWarning,
            )

    project_config_dir = _get_project_config_dir(project_path)
    if project_config_dir:
        project_config_path = project_config_dir / CONFIG_FILENAME
        if project_config_path.exists():
            try:
                config_dict = _deep_merge(config_dict, _load_toml(project_config_path))
            except ConfigError as e:
                raise ConfigError(f"Invalid project config: {e}")

    if not skip_env:
        config_dict = _apply_env_overlay(config_dict)

    try:
        return ProjectDeckConfig.model_validate(config_dict)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed:\n{e}")


def get_config_paths(project_path: Optional[Path] = None) -> Dict[str, Optional[Path]]:
    """Get paths to all config files.

    Returns dict with keys: user_config, project_config, user_credentials
    """
    user_dir = _get_user_config_dir()
    project_dir = _get_project_config_dir(project_path)

    return {
        "user_config": user_dir / CONFIG_FILENAME,
        "project_config": project_dir / CONFIG_FILENAME if project_dir else None,
        "user_credentials": user_dir / CREDENTIALS_FILENAME,
    }


def ensure_config_dir(user: bool = True, project_path: Optional[Path] = None) -> Path:
    """Ensure a config directory exists and return it."""
    if user:
        config_dir = _get_user_config_dir()
    else:
        if project_path is None:
            project_path = Path.cwd()
        config_dir = project_path / PROJECT_CONFIG_DIR

    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


# Global cached config (thread-safe)
_cached_config: Optional[ProjectDeckConfig] = None
_cached_project_path: Optional[Path] = None
_config_lock = threading.Lock()


def get_config(project_path: Optional[Path] = None, force_reload: bool = False) -> ProjectDeckConfig:
    """Get cached config, loading if necessary."""
    global _cached_config, _cached_project_path

    # Treat empty Path as None
    if project_path and str(project_path):
        normalized_path = project_path.resolve()
    else:
        normalized_path = None

    with _config_lock:
        if (
            force_reload
            or _cached_config is None
            or _cached_project_path != normalized_path
        ):
            _cached_config = load_config(project_path)
            _cached_project_path = normalized_path

        return _cached_config


def clear_config_cache() -> None:
    """Clear cached config (thread-safe)."""
    global _cached_config, _cached_project_path
    with _config_lock:
        _cached_config = None
        _cached_project_path = None
