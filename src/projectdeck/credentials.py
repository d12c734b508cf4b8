"""Credentials management for projectdeck.

The GitHub token used to list remote repositories is read from the
environment (GITHUB_TOKEN / GH_TOKEN) or from ~/.projectdeck/credentials.toml.
"""

from __future__ import annotations

import os
import stat
import sys
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import tomlkit
from pydantic import BaseModel, Field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


CREDENTIALS_FILENAME = "credentials.toml"
USER_CONFIG_DIR = ".projectdeck"


class GitHubCredentials(BaseModel):
    """GitHub authentication credentials."""

    token: str = Field(
        default="",
        description="GitHub personal access token",
    )


class Credentials(BaseModel):
    """All projectdeck credentials."""

    github: GitHubCredentials = Field(default_factory=GitHubCredentials)


def _get_user_credentials_path() -> Path:
    """Get path to user credentials file."""
    return Path.home() / USER_CONFIG_DIR / CREDENTIALS_FILENAME


def _secure_file_permissions(path: Path) -> None:
    """Set owner read/write only. No-op on Windows."""
    if os.name == "posix":
        try:
            os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        except OSError as e:
            warnings.warn(
                f"Could not set secure permissions on {path}: {e}. "
                "Credentials file may be readable by other users.",
                UserWarning,
            )


def _load_toml_credentials(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomllib.load(f)


def load_credentials() -> Credentials:
    """Load credentials from the user TOML file; empty credentials if absent."""
    toml_path = _get_user_credentials_path()
    if not toml_path.exists():
        return Credentials()
    try:
        return Credentials.model_validate(_load_toml_credentials(toml_path))
    except Exception as e:
        warnings.warn(f"Error loading credentials: {e}", UserWarning)
        return Credentials()


def save_credentials(creds: Credentials) -> Path:
    """Save credentials to the user TOML file with 0600 permissions."""
    toml_path = _get_user_credentials_path()
    toml_path.parent.mkdir(parents=True, exist_ok=True)

    doc = tomlkit.document()
    doc.add(tomlkit.comment(" projectdeck credentials"))
    doc.add(tomlkit.comment(" Keep this file secure - do not commit to version control"))
    doc.add(tomlkit.nl())

    if creds.github.token:
        github = tomlkit.table()
        github.add("token", creds.github.token)
        doc.add("github", github)

    with open(toml_path, "w") as f:
        f.write(tomlkit.dumps(doc))

    _secure_file_permissions(toml_path)
    return toml_path


def get_github_token() -> Optional[str]:
    """Get GitHub token from credentials or environment.

    Priority: Environment > Credentials file
    """
    env_token = os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN")
    if env_token:
        return env_token

    creds = load_credentials()
    return creds.github.token or None
