"""Recover JSON values from free-text model replies.

Model output may wrap the requested object in prose or Markdown fences, may
contain several brace-delimited fragments, or may be truncated. Extraction is
pure and never raises: failures are returned as :class:`Failed` values so the
caller can persist the raw text.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from repo_weaver.config import COLLECTION_FIELDS, CriticalFilesReport, Failed, Parsed

if TYPE_CHECKING:
    from collections.abc import Iterator

    from repo_weaver.config import ExtractionResult

_FENCE_LINE = re.compile(r"^[ \t]*```[\w.+-]*[ \t]*$", re.MULTILINE)
_CODE_BLOCK = re.compile(r"```[\w.+-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove Markdown fence lines (with an optional language tag) and surrounding whitespace."""
    return _FENCE_LINE.sub("", text).strip()


def iter_balanced_braces(text: str) -> Iterator[tuple[int, int]]:
    """Yield `(start, end)` spans of balanced `{...}` substrings, `end` exclusive.

    A single pass keeps a stack of open-brace offsets. Braces inside JSON string
    literals do not count, and backslash escapes inside strings are honoured.
    Quotes outside of any brace are prose and are ignored. Every closed pair is
    yielded, nested ones included; unmatched braces yield nothing.

    String tracking starts at the first quote after an open brace, even when
    that brace is prose. A lone prose quote there (`Note {it's "fine: {"a": 1}`)
    keeps the scanner in string mode to the end of the text, and no span is
    yielded after it.

    Args:
        text (str): the text to scan

    Yields:
        Iterator[tuple[int, int]]: the spans, in order of their closing brace
    """
    opens: list[int] = []
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and opens:
            in_string = True
        elif ch == "{":
            opens.append(idx)
        elif ch == "}" and opens:
            yield opens.pop(), idx + 1


def find_json_candidates(text: str) -> list[str]:
    """List balanced-brace substrings, longest first, ties by first occurrence."""
    spans = sorted(iter_balanced_braces(text), key=lambda span: (span[0] - span[1], span[0]))
    return [text[start:end] for start, end in spans]


def normalize_collections(value: Any) -> Any:  # noqa: ANN401
    """Wrap a lone object in a list for fields documented as collections."""
    if not isinstance(value, dict):
        return value
    normalized = dict(value)
    for key in COLLECTION_FIELDS:
        if isinstance(normalized.get(key), dict):
            normalized[key] = [normalized[key]]
    return normalized


def _loads(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (ValueError, RecursionError):
        return False, None


def extract(raw_text: str) -> ExtractionResult:
    """Recover a JSON value from a model reply.

    Steps, each attempted only if the previous one failed:

    1. strip Markdown fence lines and surrounding whitespace;
    2. strictly parse the whole cleaned text;
    3. strictly parse the longest balanced-brace candidate (ties go to the
       first occurrence); shorter candidates are never tried.

    Known collection fields holding a single object are wrapped in a list.

    Args:
        raw_text (str): the model reply

    Returns:
        ExtractionResult: `Parsed(value)`, or `Failed(raw_text)` holding the cleaned text
    """
    cleaned = strip_code_fences(raw_text)
    ok, value = _loads(cleaned)
    if ok:
        return Parsed(value=normalize_collections(value))
    candidates = find_json_candidates(cleaned)
    if candidates:
        ok, value = _loads(candidates[0])
        if ok:
            return Parsed(value=normalize_collections(value))
    return Failed(raw_text=cleaned)


def parse_critical_files(result: ExtractionResult) -> CriticalFilesReport:
    """Validate an extraction result against the critical-files shape.

    Args:
        result (ExtractionResult): the extraction of a critical-files reply

    Returns:
        CriticalFilesReport: the report, empty when extraction failed or the
            value does not have the expected shape
    """
    if not isinstance(result, Parsed):
        return CriticalFilesReport()
    try:
        return CriticalFilesReport.model_validate(result.value)
    except ValidationError:
        return CriticalFilesReport()


def extract_code_block(raw_text: str) -> str:
    """Return the body of the first fenced code block, or the whole trimmed reply."""
    match = _CODE_BLOCK.search(raw_text)
    if match:
        return match.group(1).strip()
    return raw_text.strip()
