from __future__ import annotations

import os
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

DELIMITER = "//==== REPO_WEAVER_DELIMITER ====//"
FILE_PATH_PREFIX = "FILE_PATH: "
BINARY_PLACEHOLDER = "[Binary file content not included]"
BINARY_CHECK_BYTES = 8000
READ_ERROR_PREFIX = "Error reading file: "

SYNTHETIC_ROOT_NAME = "."
IGNORE_FILE_NAME = ".gitignore"

DEFAULT_OUTPUT_DIR = "repo_weaver_out"
DEFAULT_MAX_LINES = 500
DEFAULT_MAX_CRITICAL_FILES = 3
DEFAULT_CALL_DELAY = 1.0

MAP_FILE_NAME = "repo-weaver-map.json"
WEAVE_FILE_NAME = "repo-weaver-output.txt"
ORGANIZATION_FILE_NAME = "organization-suggestions.json"
CRITICAL_FILES_FILE_NAME = "critical-files-suggestions.json"

# Skipped on extension alone, compared lowercase.
EXCLUDED_EXTENSIONS: frozenset[str] = frozenset(
    {
        # images
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".bmp",
        ".tif",
        ".tiff",
        ".ico",
        ".webp",
        ".svg",
        ".psd",
        ".heic",
        # fonts
        ".ttf",
        ".otf",
        ".woff",
        ".woff2",
        ".eot",
        # audio
        ".mp3",
        ".wav",
        ".ogg",
        ".flac",
        ".aac",
        ".m4a",
        # video
        ".mp4",
        ".mov",
        ".avi",
        ".mkv",
        ".webm",
        ".wmv",
        ".flv",
        # archives
        ".zip",
        ".tar",
        ".gz",
        ".tgz",
        ".bz2",
        ".xz",
        ".7z",
        ".rar",
        ".jar",
        # office documents
        ".pdf",
        ".doc",
        ".docx",
        ".xls",
        ".xlsx",
        ".ppt",
        ".pptx",
        ".odt",
        ".ods",
        ".odp",
    },
)

# Node names that would step out of their parent directory.
RESERVED_NODE_NAMES: frozenset[str] = frozenset({".", ".."})
# "/" joins map paths; the platform separators split file system paths.
PATH_SEPARATORS: frozenset[str] = frozenset(sep for sep in ("/", os.sep, os.altsep) if sep)


def check_node_name(name: str) -> str:
    """Reject names that are not a single path component.

    Args:
        name (str): a file or directory name from the codebase map

    Raises:
        ValueError: if the name holds a separator or is `.` or `..`

    Returns:
        str: the name, unchanged
    """
    if any(sep in name for sep in PATH_SEPARATORS):
        msg = f"node name must not contain a path separator: {name!r}"
        raise ValueError(msg)
    if name in RESERVED_NODE_NAMES:
        msg = f"node name must not be {name!r}"
        raise ValueError(msg)
    return name


# Fields of model replies documented as lists; a lone object is wrapped.
COLLECTION_FIELDS: frozenset[str] = frozenset({"criticalFiles", "suggestions"})


class FileNode(BaseModel):
    """One included source file of the codebase map.

    Attributes:
        name: File name, without any directory component.
        extension: Suffix including the leading dot, or an empty string.
        line_count: Newline-delimited line count measured at scan time.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["file"] = "file"
    name: str = Field(..., min_length=1, description="File name")
    extension: str = Field(default="", description="Suffix with leading dot")
    line_count: int = Field(..., ge=0, alias="lines", description="Line count")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return check_node_name(v)


class DirectoryNode(BaseModel):
    """A directory of the codebase map with its surviving children, in scan order."""

    model_config = ConfigDict(frozen=True)

    type: Literal["directory"] = "directory"
    name: str = Field(..., min_length=1, description="Directory name")
    children: tuple[TreeNode, ...] = Field(default=(), description="Ordered children")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v == SYNTHETIC_ROOT_NAME:
            return v
        return check_node_name(v)

    @field_validator("children")
    @classmethod
    def validate_children(cls, v: tuple[TreeNode, ...]) -> tuple[TreeNode, ...]:
        """Only the map root may carry the synthetic name."""
        for child in v:
            if child.name == SYNTHETIC_ROOT_NAME:
                msg = f"only the map root may be named {SYNTHETIC_ROOT_NAME!r}"
                raise ValueError(msg)
        return v

    def to_json(self) -> str:
        """Serialize the tree to the persisted map format."""
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, text: str | bytes) -> DirectoryNode:
        """Rebuild a tree from the persisted map format."""
        return cls.model_validate_json(text)


TreeNode = Annotated[FileNode | DirectoryNode, Field(discriminator="type")]

DirectoryNode.model_rebuild()


class WovenRecord(BaseModel):
    """One file as it appears in the weave artifact."""

    model_config = ConfigDict(frozen=True)

    relative_path: str = Field(..., description="Root-relative POSIX path")
    content: str = Field(..., description="File text, placeholder or error marker")
    is_binary: bool = Field(default=False, description="Content was replaced by the placeholder")


class Parsed(BaseModel):
    """A JSON value recovered from a model reply."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["parsed"] = "parsed"
    value: Any = None

    @property
    def ok(self) -> bool:
        return True


class Failed(BaseModel):
    """No JSON could be recovered; `raw_text` is the fence-stripped reply."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["failed"] = "failed"
    raw_text: str = ""

    @property
    def ok(self) -> bool:
        return False


ExtractionResult = Annotated[Parsed | Failed, Field(discriminator="kind")]


class CriticalFile(BaseModel):
    """A file the model selected as most in need of improvement."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    path: str
    reason: str = ""
    suggested_improvements: str = Field(default="", alias="suggestedImprovements")


class CriticalFilesReport(BaseModel):
    """Normalized reply to the critical-files request."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    critical_files: tuple[CriticalFile, ...] = Field(default=(), alias="criticalFiles")
