from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

from repo_weaver.config import Failed, Parsed
from repo_weaver.logging import logger
from repo_weaver.response_extraction import extract
from repo_weaver.tree_mapping import read_tree_artifact
from repo_weaver.weaving import read_weave_artifact

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from pathlib import Path

    from repo_weaver.config import DirectoryNode, ExtractionResult, WovenRecord

    CompletionFn = Callable[[str], str]
    SleepFn = Callable[[float], None]

ORGANIZATION_PROMPT = """\
Analyze the following codebase structure and suggest organizational improvements:

{payload}

Please provide suggestions for:
1. Improved file/folder organization
2. Potential modularization
3. Adherence to best practices for the specific language/framework (if identifiable)
4. Any other structural improvements

Format your response as a JSON object with the following structure:
{{
  "overallAssessment": "A brief overall assessment of the codebase structure",
  "suggestions": [
    {{
      "type": "The type of suggestion (e.g., 'organization', 'modularization', 'best practice')",
      "description": "Detailed description of the suggestion",
      "impact": "Potential impact of implementing this suggestion"
    }}
  ]
}}
"""

CRITICAL_FILES_PROMPT = """\
Analyze the following files and select the most critical ones that need improvement:

{payload}

Please select up to {max_files} files that are most critical for improvement.
Consider factors such as code complexity, potential bugs, performance issues, and adherence to best practices.

Format your response as a JSON object with the following structure:
{{
  "criticalFiles": [
    {{
      "path": "Path to the critical file",
      "reason": "Reason why this file is critical for improvement",
      "suggestedImprovements": "Brief description of suggested improvements"
    }}
  ]
}}
"""


def build_organization_prompt(tree: DirectoryNode) -> str:
    """Render the organizational-suggestions request for a codebase map."""
    return ORGANIZATION_PROMPT.format(payload=tree.to_json())


def build_critical_files_prompt(records: Sequence[WovenRecord], max_files: int) -> str:
    """Render the critical-files request for the woven records.

    Args:
        records (Sequence[WovenRecord]): the files, as recovered from the weave artifact
        max_files (int): the maximum number of files the model may select

    Returns:
        str: the prompt
    """
    payload = {
        "files": [{"path": r.relative_path, "content": r.content} for r in records],
        "maxFiles": max_files,
    }
    return CRITICAL_FILES_PROMPT.format(
        payload=json.dumps(payload, indent=2, ensure_ascii=False),
        max_files=max_files,
    )


def request_json(prompt: str, complete: CompletionFn, *, label: str) -> ExtractionResult:
    """Call the model and extract JSON from its reply.

    An exception raised by `complete` is logged and reported as a failed
    extraction so that one failed call does not abort the run.

    Args:
        prompt (str): the prompt to send
        complete (CompletionFn): the model call
        label (str): a name for the request, used in logs

    Returns:
        ExtractionResult: the extraction of the reply
    """
    try:
        reply = complete(prompt)
    except Exception as e:
        logger.exception("Model call failed for %s", label)
        return Failed(raw_text=f"{type(e).__name__}: {e}")
    result = extract(reply)
    if isinstance(result, Failed):
        logger.warning("No valid JSON found in the %s response", label)
    return result


def result_payload(result: ExtractionResult) -> Any:  # noqa: ANN401
    """Turn an extraction result into the JSON document persisted for it."""
    if isinstance(result, Parsed):
        return result.value
    return {"error": "No valid JSON found in the model response", "rawResponse": result.raw_text}


def write_json(path: Path, payload: Any) -> Path:  # noqa: ANN401
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def analyze_codebase(
    *,
    map_file: Path,
    weave_file: Path,
    organization_file: Path,
    critical_files_file: Path,
    complete: CompletionFn,
    max_critical_files: int,
    call_delay: float,
    sleep: SleepFn = time.sleep,
) -> dict[str, ExtractionResult]:
    """Request organizational suggestions and critical files, and persist both replies.

    Both artifacts are read before the first call, so a missing one aborts the
    stage without spending a model call. A failed reply is saved as an
    `{"error", "rawResponse"}` document.

    Args:
        map_file (Path): the persisted codebase map
        weave_file (Path): the persisted weave artifact
        organization_file (Path): where to save the organizational suggestions
        critical_files_file (Path): where to save the critical-files selection
        complete (CompletionFn): the model call
        max_critical_files (int): the maximum number of files the model may select
        call_delay (float): seconds to wait between the two calls
        sleep (SleepFn, optional): the wait function. Defaults to time.sleep.

    Raises:
        MissingArtifactError: if the map or the weave artifact is missing

    Returns:
        dict[str, ExtractionResult]: the results keyed by "organization" and "criticalFiles"
    """
    tree = read_tree_artifact(map_file, stage="analyze")
    records = read_weave_artifact(weave_file, stage="analyze")

    logger.info("Analyzing codebase structure")
    organization = request_json(build_organization_prompt(tree), complete, label="organization")
    write_json(organization_file, result_payload(organization))
    logger.info("Organization suggestions saved to %s", organization_file)

    sleep(call_delay)

    logger.info("Analyzing critical files", files=len(records))
    critical = request_json(
        build_critical_files_prompt(records, max_critical_files),
        complete,
        label="criticalFiles",
    )
    write_json(critical_files_file, result_payload(critical))
    logger.info("Critical files suggestions saved to %s", critical_files_file)

    return {"organization": organization, "criticalFiles": critical}
