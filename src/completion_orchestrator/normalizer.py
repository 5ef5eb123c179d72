from __future__ import annotations

import re

from .extractor import strip_edge_quotes

COMPLETION_PLACEHOLDERS = (
    "I can help you complete this text",
    "Let me continue this for you",
    "Here's a possible continuation",
    "This could be completed as",
    "One way to continue is",
)

REWRITE_PLACEHOLDERS = (
    "I can help improve this text",
    "Let me rewrite this for you",
    "Here's a better version",
)

# Applied in order to the last real item when the model returned too few.
EXTENSION_SUFFIXES = (".", "...", " as well", " too")

_BOILERPLATE_RE = re.compile(
    r"^\s*(?:(?:completion|option|rewrite|version|variant)\s*#?\d+\s*[:.)-]|here'?s? (?:a|another) (?:completion|rewrite|version)\s*:)\s*",
    re.IGNORECASE,
)
_TERMINAL_PUNCT = ".!?…"


def clean_item(item: str) -> str:
    cleaned = item.strip()
    cleaned = _BOILERPLATE_RE.sub("", cleaned)
    return strip_edge_quotes(cleaned)


def extend_item(base: str, index: int) -> str:
    """Deterministic textual variant of `base` for the index-th suffix; later rounds repeat the suffix."""
    rounds, slot = divmod(index, len(EXTENSION_SUFFIXES))
    suffix = EXTENSION_SUFFIXES[slot] * (rounds + 1)
    stem = base.rstrip(_TERMINAL_PUNCT + " ")
    if not stem:
        stem = base
    return stem + suffix


def normalize(
    items: list[str],
    cardinality: int,
    *,
    placeholders: tuple[str, ...] = COMPLETION_PLACEHOLDERS,
) -> list[str]:
    """Coerce `items` to exactly `cardinality` non-empty strings."""
    if cardinality <= 0:
        return []
    cleaned = [c for c in (clean_item(i) for i in items if isinstance(i, str)) if c]

    if not cleaned:
        cleaned = list(placeholders[:cardinality])
    if len(cleaned) >= cardinality:
        return cleaned[:cardinality]

    base = cleaned[-1]
    result = list(cleaned)
    index = 0
    while len(result) < cardinality:
        candidate = extend_item(base, index)
        index += 1
        # A base ending in "." reproduces itself under the first suffix; never emit a repeat.
        if candidate not in result:
            result.append(candidate)
    return result
