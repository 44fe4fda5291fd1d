from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, computed_field

from repo_weaver.config import (
    CRITICAL_FILES_FILE_NAME,
    DEFAULT_CALL_DELAY,
    DEFAULT_MAX_CRITICAL_FILES,
    DEFAULT_MAX_LINES,
    DEFAULT_OUTPUT_DIR,
    MAP_FILE_NAME,
    ORGANIZATION_FILE_NAME,
    WEAVE_FILE_NAME,
)

ENV_FILE = find_dotenv(usecwd=True)
OUTPUT_DIR_ENV_VAR = "REPO_WEAVER_OUTPUT_DIR"


def default_output_dir() -> Path:
    """Resolve the output directory from the environment, a `.env` file, or the built-in default.

    The process environment wins over the `.env` file.

    Returns:
        Path: the configured output directory (not yet resolved against a root)
    """
    file_values = dotenv_values(ENV_FILE) if ENV_FILE else {}
    value = os.environ.get(OUTPUT_DIR_ENV_VAR) or file_values.get(OUTPUT_DIR_ENV_VAR)
    return Path(value) if value else Path(DEFAULT_OUTPUT_DIR)


class Settings(BaseModel):
    """Configuration settings for a repo_weaver run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    root: Path = Field(default_factory=Path.cwd, description="Root directory paths are relative to.")
    targets: list[Path] = Field(default_factory=list, description="Directories to scan.")
    output_dir: Path = Field(default_factory=default_output_dir, description="Artifact directory.")
    max_lines: int = Field(default=DEFAULT_MAX_LINES, ge=0, description="Files above are skipped.")
    max_critical_files: int = Field(
        default=DEFAULT_MAX_CRITICAL_FILES,
        ge=1,
        description="Upper bound of files the model may select.",
    )
    call_delay: float = Field(
        default=DEFAULT_CALL_DELAY,
        ge=0,
        description="Seconds to wait between consecutive model calls.",
    )

    @computed_field
    @property
    def resolved_root(self) -> Path:
        """Absolute root directory."""
        return self.root.resolve()

    @computed_field
    @property
    def resolved_output_dir(self) -> Path:
        """Absolute output directory; relative values are taken from the root."""
        return (self.resolved_root / self.output_dir).resolve()

    @computed_field
    @property
    def map_file(self) -> Path:
        return self.resolved_output_dir / MAP_FILE_NAME

    @computed_field
    @property
    def weave_file(self) -> Path:
        return self.resolved_output_dir / WEAVE_FILE_NAME

    @computed_field
    @property
    def organization_file(self) -> Path:
        return self.resolved_output_dir / ORGANIZATION_FILE_NAME

    @computed_field
    @property
    def critical_files_file(self) -> Path:
        return self.resolved_output_dir / CRITICAL_FILES_FILE_NAME
