from __future__ import annotations

import time
from typing import TYPE_CHECKING

from repo_weaver.analysis import analyze_codebase
from repo_weaver.logging import logger
from repo_weaver.optimization import optimize_files
from repo_weaver.tree_mapping import map_codebase, read_tree_artifact, write_tree_artifact
from repo_weaver.weaving import write_weave_artifact

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from repo_weaver.config import DirectoryNode, ExtractionResult
    from repo_weaver.settings import Settings

    CompletionFn = Callable[[str], str]


def ensure_output_dir(settings: Settings) -> Path:
    """Create the output directory if absent and return it."""
    out = settings.resolved_output_dir
    if not out.exists():
        logger.info("Creating output directory %s", out)
    out.mkdir(parents=True, exist_ok=True)
    return out


def map_stage(settings: Settings) -> DirectoryNode:
    """Scan the configured targets and persist the codebase map."""
    out = ensure_output_dir(settings)
    logger.info("Mapping codebase", root=str(settings.resolved_root), max_lines=settings.max_lines)
    tree = map_codebase(
        settings.resolved_root,
        settings.targets,
        max_lines=settings.max_lines,
        excluded_paths=[out],
    )
    write_tree_artifact(tree, settings.map_file)
    return tree


def weave_stage(settings: Settings) -> int:
    """Weave the persisted codebase map into the text artifact.

    Raises:
        MissingArtifactError: if the map has not been produced yet

    Returns:
        int: the number of files woven
    """
    tree = read_tree_artifact(settings.map_file, stage="weave")
    out = ensure_output_dir(settings)
    return write_weave_artifact(tree, settings.resolved_root, settings.weave_file, excluded_paths=[out])


def analyze_stage(settings: Settings, complete: CompletionFn) -> dict[str, ExtractionResult]:
    return analyze_codebase(
        map_file=settings.map_file,
        weave_file=settings.weave_file,
        organization_file=settings.organization_file,
        critical_files_file=settings.critical_files_file,
        complete=complete,
        max_critical_files=settings.max_critical_files,
        call_delay=settings.call_delay,
    )


def optimize_stage(settings: Settings, complete: CompletionFn) -> list[Path]:
    return optimize_files(
        settings.resolved_root,
        settings.critical_files_file,
        complete,
        call_delay=settings.call_delay,
    )


def run_pipeline(settings: Settings, complete: CompletionFn | None = None) -> None:
    """Run map and weave, then analysis and optimization when a model is available.

    Args:
        settings (Settings): the run configuration
        complete (CompletionFn | None, optional): the model call. Without it the
            run stops after weaving. Defaults to None.
    """
    map_stage(settings)
    weave_stage(settings)
    if complete is None:
        logger.info("No model configured, stopping after weave")
        return
    analyze_stage(settings, complete)
    time.sleep(settings.call_delay)
    rewritten = optimize_stage(settings, complete)
    logger.info("Pipeline complete", rewritten=len(rewritten))
