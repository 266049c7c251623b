"""
test_json_parse.py — Tests for tolerant model-reply JSON extraction

Covers: fenced JSON, trailing commentary, raw newlines in strings,
truncated replies, cited prose, and the last-ditch prefix strip.

Called by: pytest
Depends on: abi/utils/json_parse.py
"""

from abi.utils.json_parse import balanced_slice, parse_json_response, strip_fences


def test_fenced_json():
    reply = '```json\n{"content": "Steel is stable [B1]", "agreementLevel": "high"}\n```'
    parsed = parse_json_response(reply)
    assert parsed == {"content": "Steel is stable [B1]", "agreementLevel": "high", "keyInsight": None}


def test_strip_fences_leaves_body():
    assert strip_fences("```json\n{}\n```") == "{}"
    assert strip_fences("`{}`") == "{}"


def test_trailing_commentary_is_ignored():
    reply = 'Here you go: {"content": "Two suppliers worsened [B2]", "keyInsight": "Watch Acme"} hope it helps'
    parsed = parse_json_response(reply)
    assert parsed["content"] == "Two suppliers worsened [B2]"
    assert parsed["keyInsight"] == "Watch Acme"


def test_raw_newlines_inside_strings():
    parsed = parse_json_response('{"content": "line one\nline two"}')
    assert parsed["content"] == "line one\nline two"


def test_balanced_slice_respects_strings():
    assert balanced_slice('x {"a": "}{", "b": 1} y') == '{"a": "}{", "b": 1}'
    assert balanced_slice('{"a": 1') is None
    assert balanced_slice("no braces") is None


def test_truncated_reply_recovers_content_field():
    reply = (
        r'{"content": "Steel prices rose 4% [B1] while \"spot\" demand softened across Europe and Asia",'
        r' "agreementLevel": "me'
    )
    parsed = parse_json_response(reply)
    assert parsed["content"] == 'Steel prices rose 4% [B1] while "spot" demand softened across Europe and Asia'
    assert parsed["agreementLevel"] is None


def test_cited_prose_is_taken_verbatim():
    prose = (
        "Your portfolio has three high-risk suppliers [B1], and recent reporting points to "
        "logistics delays in the Baltic region [W1]."
    )
    assert parse_json_response(prose)["content"] == prose


def test_unparseable_object_strips_json_prefix():
    assert parse_json_response('{"content": "short')["content"] == "short"


def test_empty_reply():
    assert parse_json_response(None)["content"] == ""
    assert parse_json_response("")["content"] == ""
