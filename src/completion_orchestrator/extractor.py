"""
Candidate extraction from raw model text.

Models asked for a list answer in many shapes: bare JSON, JSON wrapped in
prose, fenced code blocks, numbered or bulleted lists, or loose lines. The
cascade below tries each shape in a fixed order and stops at the first one
that yields at least one usable string.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

STRATEGIES = (
    "direct_json",
    "embedded_array",
    "fenced_block",
    "numbered_list",
    "bullet_list",
    "quoted_strings",
    "line_heuristic",
)

_ARRAY_RE = re.compile(r"\[[\s\S]*?\]")
_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_NUMBERED_RE = re.compile(r"^\s*\d+\.(?!\d)\s*(.+)$", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*[-*•]\s+(.+)$", re.MULTILINE)
_QUOTED_RE = re.compile(r'"([^"]+)"')
_TRAILING_COMMA_RE = re.compile(r",\s*]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_EDGE_QUOTES_RE = re.compile("^[\"'“”‘’]+|[\"'“”‘’]+$")
_FILLER_RE = re.compile(
    r"^(here\b|here's|sure\b|certainly\b|of course\b|okay\b|ok\b|below\b|these are\b|i hope\b|let me know\b)",
    re.IGNORECASE,
)

# Object wrappers produced by schema-constrained responses.
_WRAPPER_KEYS = ("completions", "rewrites", "items")

MIN_LOOSE_LENGTH = 5


@dataclass(frozen=True)
class Extraction:
    items: list[str]
    strategy: str | None

    @property
    def empty(self) -> bool:
        return not self.items


def strip_edge_quotes(value: str) -> str:
    return _EDGE_QUOTES_RE.sub("", value.strip()).strip()


def _strings_from(parsed: Any) -> list[str]:
    if isinstance(parsed, dict):
        for key in _WRAPPER_KEYS:
            if isinstance(parsed.get(key), list):
                parsed = parsed[key]
                break
    if not isinstance(parsed, list):
        return []
    return [item for item in parsed if isinstance(item, str) and item.strip()]


def _parse_json_list(text: str) -> list[str]:
    try:
        parsed = json.loads(text)
    except ValueError:
        return []
    return _strings_from(parsed)


def _escape_newlines_in_strings(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                out.append("\\n")
                continue
            elif ch == "\r":
                continue
            elif ch == "\t":
                out.append("\\t")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def repair_json_array(candidate: str, *, swap_quotes: bool) -> str:
    repaired = _TRAILING_COMMA_RE.sub("]", candidate)
    if swap_quotes:
        repaired = repaired.replace("'", '"')
    repaired = _escape_newlines_in_strings(repaired)
    return _CONTROL_RE.sub("", repaired)


def direct_json(text: str, _cardinality: int) -> list[str]:
    return _parse_json_list(text.strip())


def embedded_array(text: str, _cardinality: int) -> list[str]:
    for match in _ARRAY_RE.finditer(text):
        candidate = match.group(0)
        # Apostrophes are legitimate inside double-quoted items; only swap quotes as a second resort.
        for swap_quotes in (False, True):
            items = _parse_json_list(repair_json_array(candidate, swap_quotes=swap_quotes))
            if items:
                return items
    return []


def fenced_block(text: str, _cardinality: int) -> list[str]:
    for match in _FENCE_RE.finditer(text):
        items = _parse_json_list(match.group(1).strip())
        if items:
            return items
    return []


def _list_items(pattern: re.Pattern[str], text: str) -> list[str]:
    items = (strip_edge_quotes(m.group(1)) for m in pattern.finditer(text))
    # Rules and separators such as "- ---" carry no words.
    return [item for item in items if any(ch.isalnum() for ch in item)]


def numbered_list(text: str, _cardinality: int) -> list[str]:
    return _list_items(_NUMBERED_RE, text)


def bullet_list(text: str, _cardinality: int) -> list[str]:
    return _list_items(_BULLET_RE, text)


def quoted_strings(text: str, _cardinality: int) -> list[str]:
    items = [m.group(1).strip() for m in _QUOTED_RE.finditer(text)]
    items = [item for item in items if len(item) > MIN_LOOSE_LENGTH]
    return items if len(items) >= 2 else []


def line_heuristic(text: str, cardinality: int) -> list[str]:
    lines = []
    for line in text.splitlines():
        line = line.strip()
        if len(line) <= MIN_LOOSE_LENGTH or ":" in line or _FILLER_RE.match(line):
            continue
        line = strip_edge_quotes(line)
        if line:
            lines.append(line)
    return lines[:cardinality]


_CASCADE: tuple[tuple[str, Callable[[str, int], list[str]]], ...] = (
    ("direct_json", direct_json),
    ("embedded_array", embedded_array),
    ("fenced_block", fenced_block),
    ("numbered_list", numbered_list),
    ("bullet_list", bullet_list),
    ("quoted_strings", quoted_strings),
    ("line_heuristic", line_heuristic),
)


def extract_with_strategy(raw_text: str, cardinality: int = 5) -> Extraction:
    if not raw_text or not raw_text.strip():
        return Extraction(items=[], strategy=None)
    for name, strategy in _CASCADE:
        items = strategy(raw_text, cardinality)
        if items:
            return Extraction(items=items, strategy=name)
    return Extraction(items=[raw_text.strip()], strategy="raw_text")


def extract(raw_text: str, cardinality: int = 5) -> list[str]:
    """Run the cascade and return candidate strings (length unvalidated)."""
    return extract_with_strategy(raw_text, cardinality).items
