from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from repo_weaver import tree_mapping
from repo_weaver.config import SYNTHETIC_ROOT_NAME, DirectoryNode, FileNode
from repo_weaver.exceptions import InvalidArtifactError, MissingArtifactError
from repo_weaver.tree_mapping import (
    IgnoreRules,
    count_lines,
    has_excluded_extension,
    iter_file_paths,
    map_codebase,
    read_tree_artifact,
    write_tree_artifact,
)

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _paths(tree: DirectoryNode) -> set[str]:
    return set(iter_file_paths(tree))


@pytest.mark.unit
@pytest.mark.parametrize(
    ("content", "expected"),
    [
        ("", 0),
        ("one", 1),
        ("one\n", 1),
        ("one\ntwo", 2),
        ("one\ntwo\n\n", 3),
    ],
)
def test_count_lines(tmp_path: Path, content: str, expected: int) -> None:
    path = _write(tmp_path / "f.txt", content)

    assert count_lines(path) == expected


@pytest.mark.unit
def test_count_lines_stops_once_limit_is_exceeded(tmp_path: Path) -> None:
    path = _write(tmp_path / "f.txt", "x\n" * 100)

    assert count_lines(path, limit=5) > 5


@pytest.mark.unit
def test_has_excluded_extension_is_case_insensitive() -> None:
    assert has_excluded_extension("logo.PNG")
    assert has_excluded_extension("archive.tar.gz")
    assert not has_excluded_extension("main.py")
    assert not has_excluded_extension("Makefile")


@pytest.mark.unit
def test_ignore_rules_negation_and_directory_patterns() -> None:
    rules = IgnoreRules(["*.txt", "!keep.txt", "build/", "/dist"])

    assert rules.ignores("notes.txt")
    assert not rules.ignores("keep.txt")
    assert rules.ignores("build", is_dir=True)
    assert not rules.ignores("build")
    assert rules.ignores("dist", is_dir=True)
    assert not rules.ignores("src/dist", is_dir=True)


@pytest.mark.unit
def test_ignore_rules_missing_file_is_empty(tmp_path: Path) -> None:
    rules = IgnoreRules.from_file(tmp_path / ".gitignore")

    assert not rules.ignores("anything.py")


@pytest.mark.unit
def test_map_codebase_skips_files_above_max_lines(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "small.py", "a\nb\n")
    _write(tmp_path / "src" / "big.py", "a\nb\nc\n")

    tree = map_codebase(tmp_path, ["src"], max_lines=2)

    assert _paths(tree) == {"src/small.py"}
    small = tree.children[0].children[0]
    assert small == FileNode(name="small.py", extension=".py", line_count=2)


@pytest.mark.unit
def test_map_codebase_omits_directories_without_survivors(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "app.py", "print('ok')\n")
    (tmp_path / "src" / "empty").mkdir()
    _write(tmp_path / "src" / "only_big" / "huge.py", "x\n" * 10)
    _write(tmp_path / "src" / "media" / "logo.png", "not really a png")

    tree = map_codebase(tmp_path, ["src"], max_lines=5)

    assert tree.name == SYNTHETIC_ROOT_NAME
    assert len(tree.children) == 1
    src = tree.children[0]
    assert isinstance(src, DirectoryNode)
    assert [child.name for child in src.children] == ["app.py"]


@pytest.mark.unit
def test_map_codebase_honours_gitignore_negation(tmp_path: Path) -> None:
    _write(tmp_path / ".gitignore", "*.txt\n!keep.txt\nbuild/\n")
    _write(tmp_path / "src" / "keep.txt", "kept\n")
    _write(tmp_path / "src" / "drop.txt", "dropped\n")
    _write(tmp_path / "src" / "build" / "out.js", "built\n")
    _write(tmp_path / "src" / "main.js", "main\n")

    tree = map_codebase(tmp_path, ["src"], max_lines=100)

    assert _paths(tree) == {"src/keep.txt", "src/main.js"}


@pytest.mark.unit
def test_map_codebase_excludes_output_directory(tmp_path: Path) -> None:
    _write(tmp_path / "app.py", "print('ok')\n")
    _write(tmp_path / "out" / "repo-weaver-output.txt", "previous run\n")

    tree = map_codebase(tmp_path, ["."], max_lines=100, excluded_paths=[tmp_path / "out"])

    assert _paths(tree) == {"app.py"}


@pytest.mark.unit
def test_map_codebase_root_target_contributes_children_directly(tmp_path: Path) -> None:
    _write(tmp_path / "pkg" / "mod.py", "x = 1\n")

    tree = map_codebase(tmp_path, [tmp_path], max_lines=100)

    assert [child.name for child in tree.children] == ["pkg"]


@pytest.mark.unit
def test_map_codebase_wraps_nested_target_in_its_ancestors(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "lib" / "util.py", "x = 1\n")
    _write(tmp_path / "src" / "other.py", "y = 2\n")

    tree = map_codebase(tmp_path, ["src/lib"], max_lines=100)

    assert list(iter_file_paths(tree)) == ["src/lib/util.py"]


@pytest.mark.unit
def test_map_codebase_keeps_targets_in_input_order_and_skips_invalid_ones(tmp_path: Path) -> None:
    _write(tmp_path / "b" / "b.py", "b\n")
    _write(tmp_path / "a" / "a.py", "a\n")
    _write(tmp_path / "file.txt", "not a directory\n")

    tree = map_codebase(tmp_path, ["b", "missing", "file.txt", "a"], max_lines=100)

    assert [child.name for child in tree.children] == ["b", "a"]


@pytest.mark.unit
def test_map_codebase_skips_target_outside_root(tmp_path: Path) -> None:
    root = tmp_path / "root"
    _write(root / "in.py", "x\n")
    _write(tmp_path / "outside" / "out.py", "y\n")

    tree = map_codebase(root, [tmp_path / "outside"], max_lines=100)

    assert tree.children == ()


@pytest.mark.unit
def test_map_codebase_skips_unreadable_file(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "src" / "good.py", "ok\n")
    _write(tmp_path / "src" / "locked.py", "secret\n")
    real_count = tree_mapping.count_lines

    def fake_count(path: Path, limit: int | None = None) -> int:
        if path.name == "locked.py":
            raise PermissionError("permission denied")
        return real_count(path, limit)

    mocker.patch.object(tree_mapping, "count_lines", side_effect=fake_count)

    tree = map_codebase(tmp_path, ["src"], max_lines=100)

    assert _paths(tree) == {"src/good.py"}


@pytest.mark.unit
def test_map_codebase_skips_unreadable_directory(tmp_path: Path, mocker: MockerFixture) -> None:
    _write(tmp_path / "src" / "good.py", "ok\n")
    _write(tmp_path / "src" / "broken" / "x.py", "x\n")
    real_map_directory = tree_mapping.map_directory

    def fake_map_directory(directory: Path, *args: object) -> DirectoryNode | None:
        if directory.name == "broken":
            return real_map_directory(directory / "does-not-exist", *args)
        return real_map_directory(directory, *args)

    mocker.patch.object(tree_mapping, "map_directory", side_effect=fake_map_directory)

    tree = map_codebase(tmp_path, ["src"], max_lines=100)

    assert _paths(tree) == {"src/good.py"}


@pytest.mark.unit
def test_tree_artifact_round_trip(tmp_path: Path) -> None:
    _write(tmp_path / "src" / "a.py", "a\n")
    _write(tmp_path / "src" / "pkg" / "b.py", "b\nb\n")
    _write(tmp_path / "src" / "README", "readme\n")
    tree = map_codebase(tmp_path, ["src"], max_lines=100)
    map_file = tmp_path / "out" / "map.json"

    write_tree_artifact(tree, map_file)
    restored = read_tree_artifact(map_file)

    assert restored == tree
    assert restored.to_json() == tree.to_json()
    assert '"lines": 2' in map_file.read_text(encoding="utf-8")


@pytest.mark.unit
def test_read_tree_artifact_missing_raises(tmp_path: Path) -> None:
    with pytest.raises(MissingArtifactError) as exc_info:
        read_tree_artifact(tmp_path / "nope.json", stage="weave")

    assert exc_info.value.stage == "weave"


@pytest.mark.unit
def test_read_tree_artifact_invalid_raises(tmp_path: Path) -> None:
    map_file = _write(tmp_path / "map.json", '{"name": "x", "type": "file"}')

    with pytest.raises(InvalidArtifactError):
        read_tree_artifact(map_file)


@pytest.mark.unit
@pytest.mark.parametrize("name", ["../secret.txt", "a/b.py", "..", "."])
def test_file_node_rejects_names_that_are_not_one_component(name: str) -> None:
    with pytest.raises(ValidationError):
        FileNode(name=name, extension="", line_count=1)


@pytest.mark.unit
def test_only_the_map_root_may_use_the_synthetic_name() -> None:
    assert DirectoryNode(name=SYNTHETIC_ROOT_NAME).name == SYNTHETIC_ROOT_NAME
    with pytest.raises(ValidationError):
        DirectoryNode(name=SYNTHETIC_ROOT_NAME, children=(DirectoryNode(name=SYNTHETIC_ROOT_NAME),))
    with pytest.raises(ValidationError):
        DirectoryNode(name="..")


@pytest.mark.unit
def test_read_tree_artifact_rejects_escaping_names(tmp_path: Path) -> None:
    map_file = _write(
        tmp_path / "map.json",
        '{"type": "directory", "name": ".", "children": '
        '[{"type": "file", "name": "../secret.txt", "extension": ".txt", "lines": 1}]}',
    )

    with pytest.raises(InvalidArtifactError):
        read_tree_artifact(map_file)
