from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from repo_weaver.config import (
    BINARY_CHECK_BYTES,
    BINARY_PLACEHOLDER,
    DELIMITER,
    FILE_PATH_PREFIX,
    READ_ERROR_PREFIX,
    FileNode,
    WovenRecord,
)
from repo_weaver.exceptions import MissingArtifactError
from repo_weaver.logging import logger
from repo_weaver.tree_mapping import is_within, normalize_excluded_paths, relpath

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence
    from typing import TextIO

    from repo_weaver.config import DirectoryNode, TreeNode


def is_binary_content(data: bytes) -> bool:
    """Heuristic check for binary payloads: a NUL byte within the first 8000 bytes.

    Args:
        data (bytes): the raw file content (or at least its head)

    Returns:
        bool: True if the content is treated as binary
    """
    return b"\x00" in data[:BINARY_CHECK_BYTES]


def frame_header(relative_path: str) -> str:
    """Build the framing written before each file's content."""
    return f"\n\n{DELIMITER}\n{FILE_PATH_PREFIX}{relative_path}\n{DELIMITER}\n"


def read_woven_record(root: Path, relative_path: str) -> WovenRecord:
    """Read one file for the weave, degrading to a placeholder or an error marker.

    Args:
        root (Path): the absolute root directory
        relative_path (str): the root-relative POSIX path of the file

    Returns:
        WovenRecord: the decoded content, the binary placeholder, or an inline
            error marker when the file cannot be read or lies outside `root`
    """
    full_path = root.joinpath(*relative_path.split("/"))
    if not is_within(full_path.resolve(), root):
        logger.error("Refusing to read %s: outside of root %s", relative_path, root)
        content = f"{READ_ERROR_PREFIX}path is outside of root\n"
        return WovenRecord(relative_path=relative_path, content=content)
    try:
        data = full_path.read_bytes()
    except OSError as e:
        logger.error("Error reading file %s: %s", full_path, e)
        return WovenRecord(relative_path=relative_path, content=f"{READ_ERROR_PREFIX}{e}\n")
    if is_binary_content(data):
        return WovenRecord(relative_path=relative_path, content=f"{BINARY_PLACEHOLDER}\n", is_binary=True)
    return WovenRecord(relative_path=relative_path, content=data.decode("utf-8", errors="replace"))


def _excluded_relpaths(root: Path, excluded_paths: Iterable[str | Path]) -> list[str]:
    return [relpath(p, root) for p in normalize_excluded_paths(root, excluded_paths)]


def _is_excluded(rel: str, excluded: Sequence[str]) -> bool:
    return any(rel == ex or rel.startswith(f"{ex}/") for ex in excluded)


def iter_woven_records(
    tree: DirectoryNode,
    root_dir: str | Path,
    excluded_paths: Iterable[str | Path] = (),
) -> Iterator[WovenRecord]:
    """Yield one record per file of the map, depth-first with children in order.

    The synthetic root's own name is not part of the paths. Subtrees equal to
    or nested under an excluded path are skipped.

    Args:
        tree (DirectoryNode): the synthetic root of the map
        root_dir (str | Path): the directory the map is relative to
        excluded_paths (Iterable[str | Path], optional): paths never woven. Defaults to ().

    Yields:
        Iterator[WovenRecord]: the records in traversal order
    """
    root = Path(root_dir).resolve()
    excluded = _excluded_relpaths(root, excluded_paths)
    stack: list[tuple[TreeNode, str]] = [(child, "") for child in reversed(tree.children)]
    while stack:
        node, prefix = stack.pop()
        rel = f"{prefix}{node.name}"
        if _is_excluded(rel, excluded):
            logger.info("Skipping excluded path %s", rel)
            continue
        if isinstance(node, FileNode):
            yield read_woven_record(root, rel)
        else:
            stack.extend((child, f"{rel}/") for child in reversed(node.children))


def weave(
    tree: DirectoryNode,
    root_dir: str | Path,
    sink: TextIO,
    excluded_paths: Iterable[str | Path] = (),
) -> int:
    """Stream the weave artifact of `tree` into `sink`.

    Each file is written as a framed section: two blank lines, the delimiter,
    the `FILE_PATH:` header, the delimiter again, then the content. Records are
    written strictly in traversal order, so weaving an unchanged tree against an
    unchanged filesystem reproduces the same bytes.

    Args:
        tree (DirectoryNode): the synthetic root of the map
        root_dir (str | Path): the directory the map is relative to
        sink (TextIO): the text stream receiving the artifact
        excluded_paths (Iterable[str | Path], optional): paths never woven. Defaults to ().

    Returns:
        int: the number of records written
    """
    count = 0
    for record in iter_woven_records(tree, root_dir, excluded_paths):
        sink.write(frame_header(record.relative_path))
        sink.write(record.content)
        count += 1
    return count


def write_weave_artifact(
    tree: DirectoryNode,
    root_dir: str | Path,
    output_file: Path,
    excluded_paths: Iterable[str | Path] = (),
) -> int:
    """Write the weave artifact to `output_file` (UTF-8, no newline translation).

    Returns:
        int: the number of records written
    """
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with output_file.open("w", encoding="utf-8", newline="") as sink:
        count = weave(tree, root_dir, sink, excluded_paths)
    logger.info("Woven %d files into %s", count, output_file)
    return count


def parse_weave_artifact(text: str) -> list[WovenRecord]:
    """Split a weave artifact back into records.

    The text is split on the delimiter alone; a segment starting with the
    `FILE_PATH:` header opens a record whose content is the following segment,
    minus the newline after the delimiter and the two blank lines that open
    the next record.

    Args:
        text (str): the whole artifact

    Returns:
        list[WovenRecord]: the records, in artifact order
    """
    segments = text.split(DELIMITER)
    records: list[WovenRecord] = []
    idx = 0
    while idx < len(segments):
        header = segments[idx].strip()
        if not header.startswith(FILE_PATH_PREFIX.strip()):
            idx += 1
            continue
        relative_path = header.removeprefix(FILE_PATH_PREFIX.strip()).strip()
        body = segments[idx + 1] if idx + 1 < len(segments) else ""
        body = body.removeprefix("\n")
        if idx + 2 < len(segments):
            body = body.removesuffix("\n\n")
        records.append(
            WovenRecord(
                relative_path=relative_path,
                content=body,
                is_binary=body == f"{BINARY_PLACEHOLDER}\n",
            ),
        )
        idx += 2
    return records


def read_weave_artifact(path: Path, stage: str = "analyze") -> list[WovenRecord]:
    """Load and split a persisted weave artifact.

    Raises:
        MissingArtifactError: if the artifact does not exist

    Returns:
        list[WovenRecord]: the records, in artifact order
    """
    if not path.is_file():
        raise MissingArtifactError(path=path, stage=stage)
    with path.open(encoding="utf-8", newline="") as f:
        return parse_weave_artifact(f.read())
