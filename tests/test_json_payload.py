"""Test recovery of JSON payloads from model prose."""

import pytest

from evidence_research.exceptions import ParseFailure
from evidence_research.text.json_payload import coerce_list, extract_json, strip_fences


def test_fenced_array_parsed():
    text = "Here you go:\n```json\n[{\"question\": \"a\"}, {\"question\": \"b\"}]\n```\nThanks."
    result = extract_json(text)
    assert result.ok
    assert [q["question"] for q in result.value] == ["a", "b"]


def test_object_embedded_in_prose():
    text = 'Sure. {"executive_summary": "x [1]", "sections": []} Hope this helps.'
    result = extract_json(text, expect=dict)
    assert result.ok
    assert result.value["executive_summary"] == "x [1]"


def test_brackets_inside_strings_do_not_confuse_scanner():
    text = 'noise [not json {"a": "b ] }", "c": [1, 2]} trailing'
    result = extract_json(text, expect=dict)
    assert result.ok
    assert result.value == {"a": "b ] }", "c": [1, 2]}


def test_expect_skips_wrong_type():
    text = '{"themes": 1} then [1, 2, 3]'
    assert extract_json(text, expect=list).value == [1, 2, 3]


def test_failure_is_explicit():
    result = extract_json("no structure here")
    assert not result.ok
    assert result.error
    with pytest.raises(ParseFailure):
        result.unwrap("no structure here")


def test_empty_text_fails():
    assert not extract_json("").ok
    assert not extract_json(None).ok


def test_strip_fences_passthrough():
    assert strip_fences("  plain  ") == "plain"


def test_coerce_list():
    assert coerce_list([1]) == [1]
    assert coerce_list({"themes": [1, 2]}, "clusters", "themes") == [1, 2]
    assert coerce_list({"other": 1}, "themes") is None
