"""Configuration schema for projectdeck.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScanConfig(BaseModel):
    """Where local projects are discovered."""

    roots: List[str] = Field(
        default_factory=list,
        description="Directories whose sub-directories are tracked as projects",
    )
    include_plain_dirs: bool = Field(
        default=True,
        description="Also track sub-directories that are not git repositories",
    )

    @field_validator("roots", mode="before")
    @classmethod
    def split_roots(cls, v):
        """Accept a path-separator list (as set from the environment)."""
        if isinstance(v, str):
            return [part for part in v.split(os.pathsep) if part]
        return v

    @field_validator("roots")
    @classmethod
    def validate_roots(cls, v: List[str]) -> List[str]:
        """Warn about roots that don't exist (they are skipped at scan time)."""
        for root in v:
            path = Path(root).expanduser()
            if not path.exists():
                warnings.warn(f"Scan root does not exist: {root}", UserWarning)
            elif not path.is_dir():
                warnings.warn(f"Scan root is not a directory: {root}", UserWarning)
        return v


class GitHubConfig(BaseModel):
    """GitHub repository listing."""

    enabled: bool = Field(
        default=True,
        description="List GitHub repositories when a token is available",
    )
    api_base: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL",
    )
    visibility: Literal["all", "public", "private"] = Field(
        default="all",
        description="Repository visibility filter",
    )
    affiliation: str = Field(
        default="",
        description="Comma-separated affiliation filter (empty = GitHub default)",
    )
    per_page: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Page size for list requests",
    )
    timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds",
    )

    @field_validator("api_base")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ReconcileConfig(BaseModel):
    """Branch relation settings."""

    reference: Literal["upstream", "github"] = Field(
        default="upstream",
        description="Reference commit policy: tracked upstream or GitHub branch head",
    )
    poll_interval: float = Field(
        default=30.0,
        ge=1,
        description="Seconds between commit map polls in watch mode",
    )
    remote: str = Field(
        default="origin",
        description="Remote used to resolve upstream refs for untracked branches",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Log level",
    )
    dir: str = Field(
        default="",
        description="Log directory (empty = ~/.projectdeck/logs)",
    )
    max_bytes: int = Field(
        default=10485760,  # 10MB
        ge=0,
        description="Maximum log file size in bytes",
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep",
    )
    disable_file: bool = Field(
        default=False,
        description="Disable file logging (stderr only)",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v):
        return v.upper() if isinstance(v, str) else v

    @field_validator("dir")
    @classmethod
    def validate_log_dir(cls, v: str) -> str:
        """Warn if log path exists but isn't a directory (it is created on use)."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Log path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class ProjectDeckConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="ignore")

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    scan: ScanConfig = Field(default_factory=ScanConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "ProjectDeckConfig":
        """Create config with all defaults."""
        return cls()

    def scan_roots(self) -> List[Path]:
        return [Path(root).expanduser() for root in self.scan.roots]
