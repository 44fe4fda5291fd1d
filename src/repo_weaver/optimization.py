from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING

from repo_weaver.exceptions import MissingArtifactError
from repo_weaver.logging import logger
from repo_weaver.response_extraction import extract, extract_code_block, parse_critical_files
from repo_weaver.tree_mapping import is_within

if TYPE_CHECKING:
    from collections.abc import Callable

    from repo_weaver.config import CriticalFile, CriticalFilesReport

    CompletionFn = Callable[[str], str]
    SleepFn = Callable[[float], None]

OPTIMIZATION_PROMPT = """\
You are an expert code optimizer. Please review and optimize the following file, focusing only on critical changes:

File path: {path}
Reason for optimization: {reason}
Suggested improvements: {improvements}

Current file content:
```
{content}
```

Instructions:
1. Focus only on critical changes that significantly improve the code.
2. If the file is already well-optimized, it's okay to make no changes.
3. Do not add any new dependencies, libraries or imports that are not already present in the project.
4. Maintain the existing code structure and style unless a change is critically necessary.
5. Provide only the optimized code without any explanations or markdown formatting.

If no changes are necessary, return the original code as-is.
"""


def build_optimization_prompt(item: CriticalFile, content: str) -> str:
    return OPTIMIZATION_PROMPT.format(
        path=item.path,
        reason=item.reason,
        improvements=item.suggested_improvements,
        content=content,
    )


def read_critical_files(path: Path) -> CriticalFilesReport:
    """Load the persisted critical-files selection.

    The file goes through the response extractor, so a hand-edited or partially
    broken document is still read as far as possible.

    Raises:
        MissingArtifactError: if the file does not exist

    Returns:
        CriticalFilesReport: the selection, empty if the file holds no usable list
    """
    if not path.is_file():
        raise MissingArtifactError(path=path, stage="optimize")
    report = parse_critical_files(extract(path.read_text(encoding="utf-8")))
    if not report.critical_files:
        logger.warning("No critical files listed in %s", path)
    return report


def optimize_file(root: Path, item: CriticalFile, complete: CompletionFn) -> Path | None:
    """Ask the model for an improved version of one file and write it back.

    The file is replaced verbatim by the extracted reply when it differs from
    the stripped original. Paths outside of `root`, unreadable files and failed
    model calls are logged and skipped.

    Args:
        root (Path): the absolute root directory
        item (CriticalFile): the file selected by the model
        complete (CompletionFn): the model call

    Returns:
        Path | None: the rewritten file, or None if nothing was written
    """
    target = (root / item.path).resolve()
    if not is_within(target, root) or target == root:
        logger.warning("Refusing to rewrite %s outside of %s", item.path, root)
        return None
    try:
        content = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Skipping %s: %s", item.path, e)
        return None

    try:
        reply = complete(build_optimization_prompt(item, content))
    except Exception:
        logger.exception("Model call failed for %s", item.path)
        return None

    optimized = extract_code_block(reply)
    if not optimized:
        logger.warning("Empty model response for %s, leaving file untouched", item.path)
        return None
    if optimized == content.strip():
        logger.info("No changes were necessary for %s", item.path)
        return None
    target.write_text(optimized, encoding="utf-8")
    logger.info("File updated: %s", item.path)
    return target


def optimize_files(
    root_dir: str | Path,
    critical_files_file: Path,
    complete: CompletionFn,
    call_delay: float,
    sleep: SleepFn = time.sleep,
) -> list[Path]:
    """Rewrite every file of the critical-files selection, one model call each.

    Args:
        root_dir (str | Path): the directory the selected paths are relative to
        critical_files_file (Path): the persisted critical-files selection
        complete (CompletionFn): the model call
        call_delay (float): seconds to wait between consecutive calls
        sleep (SleepFn, optional): the wait function. Defaults to time.sleep.

    Raises:
        MissingArtifactError: if the selection file is missing

    Returns:
        list[Path]: the files that were rewritten, in selection order
    """
    root = Path(root_dir).resolve()
    report = read_critical_files(critical_files_file)
    rewritten: list[Path] = []
    for idx, item in enumerate(report.critical_files):
        if idx:
            sleep(call_delay)
        logger.info("Optimizing file %s", item.path)
        target = optimize_file(root, item, complete)
        if target is not None:
            rewritten.append(target)
    return rewritten
