"""Configuration for the repository pool.

Values are read from the environment on demand and carried by
:class:`PoolSettings`, which is injected wherever staging storage or archive
handling is needed.
"""

import os
import tempfile
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

DEFAULT_ARCHIVE_SUFFIX = ".siva"
DEFAULT_STAGING_PREFIX = "repo-pool-siva-"

_TRUE_VALUES = ("true", "1", "yes", "on")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in _TRUE_VALUES


def _env_paths(name: str) -> list[Path]:
    value = os.getenv(name, "")
    return [Path(p) for p in value.split(os.pathsep) if p.strip()]


def get_staging_path() -> Path:
    """Get the directory under which archive staging directories are created.

    Priority:
    1. MCP_REPO_POOL_STAGING_DIR environment variable
    2. <system temp dir>/mcp-repo-pool (default)

    Returns:
        Path to the staging root
    """
    env_path = os.getenv("MCP_REPO_POOL_STAGING_DIR")
    if env_path:
        return Path(env_path).resolve()
    return Path(tempfile.gettempdir()) / "mcp-repo-pool"


class PoolSettings(BaseModel):
    """Settings shared by a pool, its backends and the row iterators."""

    staging_dir: Path = Field(
        default_factory=get_staging_path,
        description="Root directory for archive staging directories",
    )
    staging_prefix: str = Field(
        default=DEFAULT_STAGING_PREFIX,
        description="Name prefix of each staging directory",
    )
    archive_suffix: str = Field(
        default=DEFAULT_ARCHIVE_SUFFIX,
        description="File suffix identifying archive-backed repositories",
    )
    archive_format: str | None = Field(
        default=None,
        description="shutil unpack format for archives; inferred from the file name if unset",
    )
    skip_git_errors: bool = Field(
        default=False,
        description="Skip per-repository failures while iterating rows",
    )
    directories: list[Path] = Field(
        default=[], description="Directory trees scanned for plain repositories on startup"
    )
    archive_dirs: list[Path] = Field(
        default=[], description="Directory trees scanned for archives on startup"
    )

    @field_validator("archive_suffix")
    @classmethod
    def _check_suffix(cls, value: str) -> str:
        if not value.startswith(".") or len(value) < 2:
            raise ValueError(f"archive suffix must look like '.ext', got {value!r}")
        return value

    @classmethod
    def from_env(cls) -> "PoolSettings":
        """Build settings from MCP_REPO_POOL_* environment variables."""
        values: dict = {
            "skip_git_errors": _env_flag("MCP_REPO_POOL_SKIP_GIT_ERRORS"),
            "directories": _env_paths("MCP_REPO_POOL_DIRECTORIES"),
            "archive_dirs": _env_paths("MCP_REPO_POOL_ARCHIVE_DIRS"),
        }

        suffix = os.getenv("MCP_REPO_POOL_ARCHIVE_SUFFIX")
        if suffix:
            values["archive_suffix"] = suffix

        archive_format = os.getenv("MCP_REPO_POOL_ARCHIVE_FORMAT")
        if archive_format:
            values["archive_format"] = archive_format

        try:
            return cls(**values)
        except ValidationError as e:
            logger.error(f"Invalid pool settings: {e}")
            raise ConfigurationError(f"Invalid pool settings: {e}") from e
