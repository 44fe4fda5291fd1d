from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class RepoWeaverError(Exception):
    """Base exception for errors in the repo_weaver package."""


@dataclass(frozen=True)
class MissingArtifactError(RepoWeaverError):
    """Raised when a stage needs an artifact that a previous stage did not produce."""

    path: Path
    stage: str
    message: str = "Required artifact is missing; run the previous stage first."

    def __str__(self) -> str:
        return f"{self.message} stage={self.stage} path={self.path}"


@dataclass(frozen=True)
class InvalidArtifactError(RepoWeaverError):
    """Raised when a persisted artifact exists but cannot be validated."""

    path: Path
    reason: str

    def __str__(self) -> str:
        return f"Invalid artifact {self.path}: {self.reason}"
