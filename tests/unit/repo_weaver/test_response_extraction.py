from __future__ import annotations

import pytest

from repo_weaver.config import CriticalFile, Failed, Parsed
from repo_weaver.response_extraction import (
    extract,
    extract_code_block,
    find_json_candidates,
    iter_balanced_braces,
    parse_critical_files,
    strip_code_fences,
)


@pytest.mark.unit
def test_extract_clean_object() -> None:
    assert extract('{"a":1}') == Parsed(value={"a": 1})


@pytest.mark.unit
def test_extract_fenced_object_with_prose() -> None:
    assert extract('Here you go:\n```json\n{"a":1}\n```') == Parsed(value={"a": 1})


@pytest.mark.unit
def test_extract_fence_without_language_tag() -> None:
    assert extract('```\n{"a": [1, 2]}\n```\n') == Parsed(value={"a": [1, 2]})


@pytest.mark.unit
def test_extract_without_json_fails_with_cleaned_text() -> None:
    assert extract("no json here at all") == Failed(raw_text="no json here at all")
    assert extract("  ```\nnothing\n```  ") == Failed(raw_text="nothing")


@pytest.mark.unit
def test_extract_truncated_object_fails() -> None:
    result = extract('{"criticalFiles": [{"path": "a.py", "reason": "too lo')

    assert isinstance(result, Failed)
    assert not result.ok


@pytest.mark.unit
def test_extract_wraps_single_critical_file_in_list() -> None:
    result = extract('{"criticalFiles": {"path":"x","reason":"y","suggestedImprovements":"z"}}')

    assert result == Parsed(
        value={"criticalFiles": [{"path": "x", "reason": "y", "suggestedImprovements": "z"}]},
    )


@pytest.mark.unit
def test_extract_selects_longest_candidate() -> None:
    text = 'Partial {"a": 1} and then the real one {"a": 1, "b": [2, 3]} done.'

    assert extract(text) == Parsed(value={"a": 1, "b": [2, 3]})


@pytest.mark.unit
def test_extract_fails_when_longest_candidate_is_invalid() -> None:
    text = '{not json {"a":1}}'

    assert extract(text) == Failed(raw_text=text)


@pytest.mark.unit
def test_extract_does_not_fall_back_to_shorter_candidate() -> None:
    text = 'Use {placeholder, not json, really long text here} then {"ok": true}'

    assert extract(text) == Failed(raw_text=text)


@pytest.mark.unit
def test_extract_recovers_inner_object_of_unterminated_outer_brace() -> None:
    text = 'Result { see below: {"a": {"b": 2}}'

    assert extract(text) == Parsed(value={"a": {"b": 2}})


@pytest.mark.unit
def test_extract_ignores_braces_inside_strings() -> None:
    text = 'Answer: {"pattern": "}{", "nested": {"x": "{"}} trailing'

    assert extract(text) == Parsed(value={"pattern": "}{", "nested": {"x": "{"}})


@pytest.mark.unit
def test_extract_accepts_non_object_json() -> None:
    assert extract("[1, 2, 3]") == Parsed(value=[1, 2, 3])


@pytest.mark.unit
def test_iter_balanced_braces_yields_nested_spans() -> None:
    text = "a{b{c}d}e"

    assert sorted(iter_balanced_braces(text)) == [(1, 8), (3, 6)]


@pytest.mark.unit
def test_iter_balanced_braces_handles_escaped_quotes() -> None:
    text = '{"a": "say \\"}\\" ok"}'

    assert list(iter_balanced_braces(text)) == [(0, len(text))]


@pytest.mark.unit
def test_find_json_candidates_breaks_ties_by_first_occurrence() -> None:
    assert find_json_candidates("{a} {b}") == ["{a}", "{b}"]


@pytest.mark.unit
def test_strip_code_fences_keeps_inline_backticks() -> None:
    assert strip_code_fences("```python\nx = `y`\n```") == "x = `y`"


@pytest.mark.unit
def test_parse_critical_files_normalizes_shape() -> None:
    report = parse_critical_files(
        extract('{"criticalFiles": {"path":"x","reason":"y","suggestedImprovements":"z"}}'),
    )

    assert report.critical_files == (CriticalFile(path="x", reason="y", suggested_improvements="z"),)


@pytest.mark.unit
def test_parse_critical_files_of_failure_is_empty() -> None:
    assert parse_critical_files(Failed(raw_text="oops")).critical_files == ()
    assert parse_critical_files(Parsed(value=[1, 2])).critical_files == ()


@pytest.mark.unit
def test_extract_code_block() -> None:
    assert extract_code_block("Sure:\n```python\nx = 1\n```\nBye") == "x = 1"
    assert extract_code_block("  x = 2\n") == "x = 2"


@pytest.mark.unit
def test_iter_balanced_braces_stray_prose_quote_hides_later_objects() -> None:
    assert list(iter_balanced_braces('Note {it\'s "fine: {"a": 1}')) == []
