"""Tolerant JSON extraction for model replies.

Models asked for JSON still return fenced blocks, trailing commentary,
raw newlines inside strings, truncated objects, or plain prose. The parser
tries, in order:

  1. direct parse after stripping code fences
  2. the first balanced {...} slice, then first "{" to last "}"
  3. manual extraction of the "content" string, honouring escapes
  4. plain narrative text that carries [B#]/[W#] citation markers

and otherwise returns the text with any JSON-looking prefix removed.
"""

import json
import re

_FENCES = [
    re.compile(r"^```(?:json)?\s*", re.I | re.M),
    re.compile(r"```\s*$", re.M),
    re.compile(r"^`(?:json)?\s*", re.I),
    re.compile(r"`\s*$"),
]
_CONTENT_START = re.compile(r'"content"\s*:\s*"')
_AGREEMENT = re.compile(r'"agreementLevel"\s*:\s*"(high|medium|low)"', re.I)
_KEY_INSIGHT = re.compile(r'"keyInsight"\s*:\s*"((?:[^"\\]|\\.)*)"')
_CITATION = re.compile(r"\[[BW]\d+\]")


def strip_fences(text: str) -> str:
    cleaned = text.strip()
    for pattern in _FENCES:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def _loads(candidate: str) -> dict | None:
    try:
        parsed = json.loads(candidate, strict=False)
    except ValueError:
        return None
    if isinstance(parsed, dict) and isinstance(parsed.get("content"), str) and parsed["content"]:
        return parsed
    return None


def balanced_slice(text: str) -> str | None:
    """First complete {...} object in text, respecting string literals."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _decode(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"', strict=False)
    except ValueError:
        return raw.replace("\\n", "\n").replace('\\"', '"').replace("\\\\", "\\")


def extract_content_field(text: str) -> str | None:
    m = _CONTENT_START.search(text)
    if not m:
        return None
    start = m.end()
    escaped = False
    end = len(text)
    for i in range(start, len(text)):
        ch = text[i]
        if escaped:
            escaped = False
            continue
        if ch == "\\":
            escaped = True
            continue
        if ch == '"':
            end = i
            break
    if end <= start:
        return None
    return _decode(text[start:end])


def _result(content: str, agreement: str | None = None, insight: str | None = None) -> dict:
    return {"content": content, "agreementLevel": agreement, "keyInsight": insight}


def parse_json_response(text: str | None) -> dict:
    """Recover {content, agreementLevel, keyInsight} from a model reply."""
    if not text:
        return _result("")
    cleaned = strip_fences(text)

    parsed = _loads(cleaned)
    if parsed is None:
        sliced = balanced_slice(cleaned)
        if sliced:
            parsed = _loads(sliced)
    if parsed is None:
        first, last = cleaned.find("{"), cleaned.rfind("}")
        if first != -1 and last > first:
            parsed = _loads(cleaned[first:last + 1])
    if parsed is not None:
        return _result(parsed["content"], parsed.get("agreementLevel"), parsed.get("keyInsight"))

    content = extract_content_field(cleaned)
    if content and len(content) > 50:
        agreement = _AGREEMENT.search(cleaned)
        insight = _KEY_INSIGHT.search(cleaned)
        return _result(
            content,
            agreement.group(1).lower() if agreement else None,
            _decode(insight.group(1)) if insight else None,
        )

    if not cleaned.startswith("{") and len(cleaned) > 100 and _CITATION.search(cleaned):
        return _result(cleaned)

    fallback = re.sub(r'^\s*\{\s*"content"\s*:\s*"?', "", cleaned, flags=re.I)
    fallback = re.sub(r'"?\s*,?\s*"agreementLevel".*$', "", fallback, flags=re.S)
    fallback = re.sub(r'"\s*\}\s*$', "", fallback).strip()
    return _result(fallback or text)
