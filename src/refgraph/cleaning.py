"""Offset-preserving text cleaning for implicit reference detection.

Detectors must not match inside code or inside links that are already
explicit. Rather than cutting those ranges out (which would shift every
later offset), they are overwritten with spaces; newlines are kept so
line numbers stay valid too.
"""
from __future__ import annotations

import re
from collections.abc import Iterable

FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n.*?\n---[ \t]*(?:\n|\Z)", re.DOTALL)

_CODE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"```.*?```", re.DOTALL),
    re.compile(r"~~~.*?~~~", re.DOTALL),
    re.compile(r"`[^`\n]*`"),
)

_LINK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"!?\[[^\]\n]*\]\([^)\n]*\)"),
    re.compile(r"!?\[\[[^\]\n]*\]\]"),
)


def _merge(ranges: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            prev_start, prev_end = merged[-1]
            merged[-1] = (prev_start, max(prev_end, end))
        else:
            merged.append((start, end))
    return merged


def frontmatter_end(text: str) -> int:
    """Offset just past the frontmatter block, or 0 when there is none."""
    m = FRONTMATTER_RE.match(text)
    return m.end() if m else 0


def code_ranges(text: str) -> list[tuple[int, int]]:
    """Merged ranges covered by fenced or inline code."""
    return _merge(
        (m.start(), m.end()) for pattern in _CODE_PATTERNS for m in pattern.finditer(text)
    )


def excluded_ranges(text: str, *, include_frontmatter: bool = True) -> list[tuple[int, int]]:
    """Return sorted, merged ``(start, end)`` ranges to hide from detectors."""
    ranges: list[tuple[int, int]] = []
    if include_frontmatter:
        end = frontmatter_end(text)
        if end:
            ranges.append((0, end))
    for pattern in (*_CODE_PATTERNS, *_LINK_PATTERNS):
        ranges.extend((m.start(), m.end()) for m in pattern.finditer(text))
    return _merge(ranges)


def clean_text(text: str, *, include_frontmatter: bool = True) -> str:
    """Blank out code, existing links and frontmatter, preserving length."""
    chars = list(text)
    for start, end in excluded_ranges(text, include_frontmatter=include_frontmatter):
        for i in range(start, end):
            if chars[i] != "\n":
                chars[i] = " "
    return "".join(chars)
