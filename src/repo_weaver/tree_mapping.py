from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

import pathspec
from pydantic import ValidationError

from repo_weaver.config import (
    EXCLUDED_EXTENSIONS,
    IGNORE_FILE_NAME,
    SYNTHETIC_ROOT_NAME,
    DirectoryNode,
    FileNode,
)
from repo_weaver.exceptions import InvalidArtifactError, MissingArtifactError
from repo_weaver.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from repo_weaver.config import TreeNode


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path)


def is_within(path: Path, root: Path) -> bool:
    """Check whether `path` is `root` itself or nested under it (both absolute)."""
    return path == root or root in path.parents


class IgnoreRules:
    """Gitignore-syntax rules evaluated against root-relative POSIX paths."""

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._spec = pathspec.GitIgnoreSpec.from_lines(list(patterns))

    @classmethod
    def from_file(cls, path: Path) -> IgnoreRules:
        """Load rules from an ignore file; a missing file yields an empty rule set.

        Args:
            path (Path): the ignore file, usually `<root>/.gitignore`

        Returns:
            IgnoreRules: the parsed rules
        """
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.info("No %s found at %s, proceeding without ignore rules", path.name, path.parent)
            return cls()
        return cls(text.splitlines())

    def ignores(self, rel: str, *, is_dir: bool = False) -> bool:
        """Check if a root-relative path is ignored.

        Directories are matched with a trailing slash so that directory-only
        patterns (`build/`) apply to them.

        Args:
            rel (str): the root-relative POSIX path
            is_dir (bool, optional): whether the path is a directory. Defaults to False.

        Returns:
            bool: True if the path must be skipped
        """
        candidate = f"{rel}/" if is_dir else rel
        return self._spec.match_file(candidate)


def load_ignore_rules(root: Path) -> IgnoreRules:
    return IgnoreRules.from_file(root / IGNORE_FILE_NAME)


def normalize_excluded_paths(root: Path, excluded_paths: Iterable[str | Path]) -> tuple[Path, ...]:
    """Resolve excluded paths against `root` into absolute paths.

    Args:
        root (Path): the absolute root directory
        excluded_paths (Iterable[str | Path]): absolute or root-relative paths

    Returns:
        tuple[Path, ...]: the resolved paths, in input order
    """
    return tuple((root / Path(p)).resolve() for p in excluded_paths)


def is_excluded_path(path: Path, excluded: Sequence[Path]) -> bool:
    return any(is_within(path, ex) for ex in excluded)


def has_excluded_extension(name: str) -> bool:
    """Check if a file name carries one of the binary or media extensions skipped unread."""
    return Path(name).suffix.lower() in EXCLUDED_EXTENSIONS


def count_lines(path: Path, limit: int | None = None) -> int:
    """Count newline-delimited lines of a file without decoding it.

    A final line without a trailing newline counts as a line; an empty file has
    zero lines. When `limit` is given, counting stops as soon as it is exceeded
    and the partial count (greater than `limit`) is returned.

    Args:
        path (Path): the file to count
        limit (int | None, optional): stop once the count exceeds this value. Defaults to None.

    Returns:
        int: the number of lines
    """
    count = 0
    last = b""
    with path.open("rb") as f:
        for blk in iter(lambda: f.read(1024 * 1024), b""):
            count += blk.count(b"\n")
            last = blk[-1:]
            if limit is not None and count > limit:
                return count
    if last and last != b"\n":
        count += 1
    return count


def _map_entry(
    entry: os.DirEntry[str],
    root: Path,
    rules: IgnoreRules,
    max_lines: int,
    excluded: Sequence[Path],
) -> TreeNode | None:
    path = Path(entry.path)
    rel = relpath(path, root)
    try:
        is_dir = entry.is_dir(follow_symlinks=False)
        is_file = entry.is_file(follow_symlinks=False)
    except OSError as e:
        logger.warning("Skipping %s: %s", rel, e)
        return None
    if not is_dir and not is_file:
        return None

    if rules.ignores(rel, is_dir=is_dir):
        return None
    if is_excluded_path(path, excluded):
        logger.info("Skipping output path %s", rel)
        return None
    if is_dir:
        return map_directory(path, root, rules, max_lines, excluded)
    if has_excluded_extension(entry.name):
        return None

    try:
        line_count = count_lines(path, limit=max_lines)
    except OSError as e:
        logger.warning("Skipping %s: %s", rel, e)
        return None
    if line_count > max_lines:
        logger.info("Skipping %s (more than %d lines)", rel, max_lines)
        return None
    return FileNode(name=entry.name, extension=path.suffix, line_count=line_count)


def map_directory(
    directory: Path,
    root: Path,
    rules: IgnoreRules,
    max_lines: int,
    excluded: Sequence[Path],
) -> DirectoryNode | None:
    """Map one directory depth-first, keeping entries in enumeration order.

    Args:
        directory (Path): the absolute directory to map
        root (Path): the absolute root that ignore rules are relative to
        rules (IgnoreRules): the ignore rules
        max_lines (int): files with more lines are skipped
        excluded (Sequence[Path]): absolute paths never scanned

    Returns:
        DirectoryNode | None: the directory node, or None if nothing survived filtering
            or the directory could not be read
    """
    try:
        with os.scandir(directory) as it:
            entries = list(it)
    except OSError as e:
        logger.warning("Cannot read directory %s: %s", relpath(directory, root), e)
        return None

    children: list[TreeNode] = []
    for entry in entries:
        node = _map_entry(entry, root, rules, max_lines, excluded)
        if node is not None:
            children.append(node)
    if not children:
        return None
    return DirectoryNode(name=directory.name, children=tuple(children))


def _map_target(
    target: Path,
    root: Path,
    rules: IgnoreRules,
    max_lines: int,
    excluded: Sequence[Path],
) -> tuple[TreeNode, ...]:
    full = (root / target).resolve()
    try:
        if not full.is_dir():
            logger.warning("%s is not a directory, skipping", full)
            return ()
    except OSError as e:
        logger.warning("Cannot stat scan target %s: %s", full, e)
        return ()
    if not is_within(full, root):
        logger.warning("%s is outside of root %s, skipping", full, root)
        return ()
    if is_excluded_path(full, excluded):
        logger.info("Skipping output path %s", relpath(full, root))
        return ()

    node = map_directory(full, root, rules, max_lines, excluded)
    if node is None:
        return ()
    if full == root:
        return node.children

    # Wrap nested targets in their ancestors so joined names stay root-relative.
    parents = PurePosixPath(relpath(full, root)).parts[:-1]
    for name in reversed(parents):
        node = DirectoryNode(name=name, children=(node,))
    return (node,)


def map_codebase(
    root_dir: str | Path,
    scan_targets: Sequence[str | Path],
    max_lines: int,
    excluded_paths: Iterable[str | Path] = (),
) -> DirectoryNode:
    """Build the codebase map of the scan targets below `root_dir`.

    Each target is scanned independently and its non-empty subtree is appended,
    in input order, to a synthetic root node. Unreadable entries and invalid
    targets are logged and skipped.

    Args:
        root_dir (str | Path): the directory that ignore rules and node paths are relative to
        scan_targets (Sequence[str | Path]): directories to scan, absolute or root-relative
        max_lines (int): files with more lines are left out
        excluded_paths (Iterable[str | Path], optional): paths never scanned, typically
            the artifact output directory. Defaults to ().

    Returns:
        DirectoryNode: the synthetic root of the map
    """
    root = Path(root_dir).resolve()
    rules = load_ignore_rules(root)
    excluded = normalize_excluded_paths(root, excluded_paths)

    children: list[TreeNode] = []
    for target in scan_targets:
        children.extend(_map_target(Path(target), root, rules, max_lines, excluded))
    return DirectoryNode(name=SYNTHETIC_ROOT_NAME, children=tuple(children))


def iter_file_paths(tree: DirectoryNode) -> Iterator[str]:
    """Yield the root-relative POSIX path of every file, in traversal order."""
    stack: list[tuple[TreeNode, str]] = [(child, "") for child in reversed(tree.children)]
    while stack:
        node, prefix = stack.pop()
        path = f"{prefix}{node.name}"
        if isinstance(node, FileNode):
            yield path
        else:
            stack.extend((child, f"{path}/") for child in reversed(node.children))


def write_tree_artifact(tree: DirectoryNode, path: Path) -> Path:
    """Persist the map as indented JSON, creating the parent directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tree.to_json() + "\n", encoding="utf-8")
    logger.info("Codebase map saved to %s", path)
    return path


def read_tree_artifact(path: Path, stage: str = "weave") -> DirectoryNode:
    """Load a persisted map.

    Args:
        path (Path): the map file
        stage (str, optional): the stage requiring the map, for diagnostics. Defaults to "weave".

    Raises:
        MissingArtifactError: if the map file does not exist
        InvalidArtifactError: if the file is not a valid map

    Returns:
        DirectoryNode: the synthetic root of the map
    """
    if not path.is_file():
        raise MissingArtifactError(path=path, stage=stage)
    try:
        return DirectoryNode.from_json(path.read_bytes())
    except ValidationError as e:
        raise InvalidArtifactError(path=path, reason=str(e)) from e
