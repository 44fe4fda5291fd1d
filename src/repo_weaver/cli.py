"""
repo_weaver: prepare a codebase for an LLM and read its answers back.

Overview
--------
1) ``map``: scan one or more directories below ``--root``, honouring
   ``.gitignore``, skipping media/binary extensions and files above
   ``--max-lines``, and save the ordered tree as ``repo-weaver-map.json``.

2) ``weave``: read the saved map and concatenate every mapped file into
   ``repo-weaver-output.txt``, each framed by a delimiter and a
   ``FILE_PATH:`` header. Files with a NUL byte in their head are replaced
   by a placeholder.

3) ``run``: ``map`` then ``weave``.

4) ``extract``: recover the JSON object from a saved model reply.

5) ``split``: list the file paths recovered from a weave artifact.

The model call itself is not part of the CLI; see ``repo_weaver.pipeline``
for the programmatic stages that accept a completion function.

Usage
-----
    uv run python -m repo_weaver.cli run src tests --max-lines 400
    uv run python -m repo_weaver.cli weave --output-dir build/llm
    uv run python -m repo_weaver.cli extract reply.txt
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from repo_weaver import __version__
from repo_weaver.config import DEFAULT_MAX_LINES, Parsed
from repo_weaver.exceptions import MissingArtifactError, RepoWeaverError
from repo_weaver.logging import logger, setup_logging
from repo_weaver.pipeline import map_stage, weave_stage
from repo_weaver.response_extraction import extract
from repo_weaver.settings import Settings
from repo_weaver.tree_mapping import iter_file_paths
from repo_weaver.weaving import read_weave_artifact

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="repo-weaver",
        description="Map a codebase and weave it into one text artifact for LLM consumption.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", type=str, default=".", help="Root directory.")
    common.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Artifact directory (default: $REPO_WEAVER_OUTPUT_DIR or repo_weaver_out).",
    )
    common.add_argument("--log-file", type=str, default="", help="Log file path.")

    sub = p.add_subparsers(dest="command", required=True)
    for name, help_text in (("map", "Scan directories and save the map."), ("run", "Map then weave.")):
        sp = sub.add_parser(name, parents=[common], help=help_text)
        sp.add_argument("targets", nargs="+", help="Directories to scan, relative to --root.")
        sp.add_argument(
            "--max-lines",
            type=int,
            default=DEFAULT_MAX_LINES,
            help="Files with more lines are skipped.",
        )
    sub.add_parser("weave", parents=[common], help="Weave the saved map into one text file.")

    ex = sub.add_parser("extract", help="Recover JSON from a saved model reply.")
    ex.add_argument("file", type=str, help="File holding the raw reply.")
    ex.add_argument("--log-file", type=str, default="", help="Log file path.")

    sp = sub.add_parser("split", help="List the paths of a weave artifact.")
    sp.add_argument("file", type=str, help="Weave artifact.")
    sp.add_argument("--log-file", type=str, default="", help="Log file path.")
    return p.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build run settings from parsed arguments, leaving unset options to their defaults."""
    values: dict[str, object] = {"root": Path(args.root)}
    if args.output_dir:
        values["output_dir"] = Path(args.output_dir)
    if getattr(args, "targets", None):
        values["targets"] = [Path(t) for t in args.targets]
    if getattr(args, "max_lines", None) is not None:
        values["max_lines"] = args.max_lines
    return Settings(**values)


def run_map(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    tree = map_stage(settings)
    print(f"Wrote {settings.map_file} files={sum(1 for _ in iter_file_paths(tree))}")
    return 0


def run_weave(args: argparse.Namespace) -> int:
    settings = settings_from_args(args)
    count = weave_stage(settings)
    print(f"Wrote {settings.weave_file} files={count}")
    return 0


def run_all(args: argparse.Namespace) -> int:
    run_map(args)
    return run_weave(args)


def run_extract(args: argparse.Namespace) -> int:
    path = Path(args.file)
    if not path.is_file():
        raise MissingArtifactError(path=path, stage="extract")
    result = extract(path.read_text(encoding="utf-8"))
    if isinstance(result, Parsed):
        print(json.dumps(result.value, indent=2, ensure_ascii=False))
        return 0
    logger.warning("No valid JSON found in %s", path)
    print(result.raw_text, file=sys.stderr)
    return 1


def run_split(args: argparse.Namespace) -> int:
    for record in read_weave_artifact(Path(args.file), stage="split"):
        print(record.relative_path)
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "map": run_map,
    "weave": run_weave,
    "run": run_all,
    "extract": run_extract,
    "split": run_split,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    if args.log_file:
        setup_logging(args.log_file)
    try:
        return COMMANDS[args.command](args)
    except RepoWeaverError as e:
        logger.error("Stage aborted: %s", e)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
