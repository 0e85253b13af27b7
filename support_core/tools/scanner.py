"""
Extraction of tool calls from model output.

Backends without structured function calling are prompted to answer with

    USE_TOOL: get_order_status
    PARAMETERS: {"order_id": "123"}

Models do not always comply, so the scanner also understands the older
single-line form ("Using the tool: NAME - PARAMETERS: {...}") and, only
when neither marker is present, a bare `tool_name: {...}`.

JSON payloads are cut out with a brace scan that respects strings, so
nested objects and braces inside string values are fine. A payload that
does not decode drops that one directive; the scanner never raises on
model output.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Iterable

from ..locks import canonical_json
from ..logging_config import logger
from ..schemas import ToolCall, ToolCallSource

_USE_TOOL_RE = re.compile(r"USE_TOOL\s*:\s*([A-Za-z][\w.\-]*)", re.IGNORECASE)
_PARAMETERS_RE = re.compile(r"PARAMETERS\s*:\s*", re.IGNORECASE)
_LEGACY_RE = re.compile(
    r"using the tool\s*:\s*([A-Za-z][\w]*)\s*-\s*PARAMETERS\s*:\s*", re.IGNORECASE
)
_BARE_RE = re.compile(r"(?<![\w\"'])([A-Za-z]\w*_\w*)\s*:\s*(?=\{)")


@dataclass(frozen=True)
class _Directive:
    start: int
    end: int
    name: str
    # None when the payload is missing or malformed.
    arguments: dict[str, Any] | None


def new_call_id() -> str:
    return "call_" + uuid.uuid4().hex[:24]


def scan_json_object(text: str, start: int) -> tuple[str, int] | None:
    """
    Return (raw_object, end_index) for the balanced `{...}` at `start`,
    or None when the braces never close.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
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
                return text[start : idx + 1], idx + 1
    return None


def _decode_payload(text: str, pos: int) -> tuple[dict[str, Any] | None, int]:
    """Decode the object starting at or just after `pos`; returns (args, end)."""
    while pos < len(text) and text[pos] in " \t":
        pos += 1
    scanned = scan_json_object(text, pos)
    if scanned is None:
        line_end = text.find("\n", pos)
        return None, len(text) if line_end == -1 else line_end
    raw, end = scanned
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return None, end
    if not isinstance(value, dict):
        return None, end
    return value, end


def _line_end(text: str, pos: int) -> int:
    idx = text.find("\n", pos)
    return len(text) if idx == -1 else idx


def _primary_directives(text: str) -> list[_Directive]:
    matches = list(_USE_TOOL_RE.finditer(text))
    directives: list[_Directive] = []
    for i, match in enumerate(matches):
        name = match.group(1).lower()
        segment_end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        params = _PARAMETERS_RE.search(text, match.end(), segment_end)
        if params is None:
            directives.append(_Directive(match.start(), _line_end(text, match.end()), name, {}))
            continue
        args, end = _decode_payload(text, params.end())
        directives.append(_Directive(match.start(), end, name, args))
    return directives


def _legacy_directives(text: str) -> list[_Directive]:
    directives: list[_Directive] = []
    for match in _LEGACY_RE.finditer(text):
        args, end = _decode_payload(text, match.end())
        directives.append(_Directive(match.start(), end, match.group(1).lower(), args))
    return directives


def _bare_directives(text: str) -> list[_Directive]:
    directives: list[_Directive] = []
    for match in _BARE_RE.finditer(text):
        args, end = _decode_payload(text, match.end())
        # A bare form only counts with a non-empty payload.
        if not args:
            continue
        directives.append(_Directive(match.start(), end, match.group(1).lower(), args))
    return directives


def _find_directives(text: str) -> list[_Directive]:
    directives = _primary_directives(text) + _legacy_directives(text)
    if not directives:
        directives = _bare_directives(text)
    directives.sort(key=lambda d: d.start)
    return directives


def _dedupe(
    calls: Iterable[tuple[str, dict[str, Any], str | None]], source: ToolCallSource
) -> list[ToolCall]:
    seen: set[tuple[str, str]] = set()
    result: list[ToolCall] = []
    for name, args, call_id in calls:
        fingerprint = (name, canonical_json(args))
        if fingerprint in seen:
            continue
        seen.add(fingerprint)
        result.append(
            ToolCall(id=call_id or new_call_id(), name=name, arguments=args, source=source)
        )
    return result


def parse_tool_calls(text: Any) -> list[ToolCall] | None:
    """
    Tool calls written as text, in order of appearance, duplicates removed.

    Returns None when the text contains no directive at all, and an empty
    list when directives were found but none had a usable payload.
    """
    if not isinstance(text, str) or not text.strip():
        return None
    directives = _find_directives(text)
    if not directives:
        return None

    usable = []
    for directive in directives:
        if directive.arguments is None:
            logger.warning("skipping tool directive %s with malformed parameters", directive.name)
            continue
        usable.append((directive.name, directive.arguments, None))
    return _dedupe(usable, ToolCallSource.TEXT)


def strip_tool_directives(text: str | None) -> str:
    """Remove tool directives so raw call syntax never reaches the end user."""
    if not text:
        return ""
    directives = _find_directives(text)
    if not directives:
        return text.strip()

    pieces: list[str] = []
    cursor = 0
    for directive in directives:
        if directive.start < cursor:
            continue
        pieces.append(text[cursor : directive.start])
        cursor = directive.end
    pieces.append(text[cursor:])
    cleaned = "".join(pieces)
    cleaned = re.sub(r"[ \t]+\n", "\n", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned)
    return cleaned.strip()


def _native_entry(raw: Any) -> tuple[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    function = raw.get("function")
    if isinstance(function, dict):
        name = function.get("name")
        arguments = function.get("arguments")
    else:
        name = raw.get("name")
        arguments = raw.get("arguments", raw.get("input"))
    if not isinstance(name, str) or not name.strip():
        return None
    return name.strip(), arguments


def normalize_native_tool_calls(raw_calls: Any) -> list[ToolCall]:
    """
    Structured tool calls from the backend as ToolCalls.

    `arguments` may be a mapping or a JSON string; entries whose arguments
    do not decode to an object are dropped.
    """
    if not isinstance(raw_calls, list):
        return []
    usable: list[tuple[str, dict[str, Any], str | None]] = []
    for raw in raw_calls:
        entry = _native_entry(raw)
        if entry is None:
            continue
        name, arguments = entry
        if arguments is None or arguments == "":
            arguments = {}
        elif isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError:
                logger.warning("dropping native tool call %s with undecodable arguments", name)
                continue
        if not isinstance(arguments, dict):
            logger.warning("dropping native tool call %s with non-object arguments", name)
            continue
        raw_id = raw.get("id")
        usable.append((name, arguments, raw_id if isinstance(raw_id, str) and raw_id else None))
    return _dedupe(usable, ToolCallSource.NATIVE)


__all__ = [
    "new_call_id",
    "normalize_native_tool_calls",
    "parse_tool_calls",
    "scan_json_object",
    "strip_tool_directives",
]
