"""Span conflict resolution and offset helpers."""
from __future__ import annotations

import bisect
from collections.abc import Iterable

from refgraph.reference_types import DetectedSpan


def dedupe_spans(spans: Iterable[DetectedSpan]) -> list[DetectedSpan]:
    """Drop spans whose ``(start, end)`` repeats an earlier span."""
    seen: set[tuple[int, int]] = set()
    out: list[DetectedSpan] = []
    for span in spans:
        bounds = (span.start, span.end)
        if bounds in seen:
            continue
        seen.add(bounds)
        out.append(span)
    return out


def resolve_conflicts(spans: Iterable[DetectedSpan]) -> list[DetectedSpan]:
    """Reduce candidate spans for one document to a non-overlapping set.

    1. Exact ``(start, end)`` duplicates collapse to their first occurrence.
    2. Candidates are ordered longest first, ties by earliest start.
    3. Candidates are accepted greedily; one starting before the end of the
       last accepted candidate is rejected.

    Longer matches win over shorter overlapping ones, so a shorter match
    nested inside a longer one is dropped even when its target is more
    specific. The result is in ascending start order.
    """
    candidates = dedupe_spans(spans)
    # sorted() is stable, so equal (length, start) pairs keep input order
    candidates = sorted(candidates, key=lambda s: (-s.length, s.start))

    picked: list[DetectedSpan] = []
    last_end = -1
    for span in candidates:
        if span.start < last_end:
            continue
        picked.append(span)
        last_end = span.end
    picked.sort(key=lambda s: s.start)
    return picked


def line_starts(text: str) -> list[int]:
    starts = [0]
    for i, ch in enumerate(text):
        if ch == "\n":
            starts.append(i + 1)
    return starts


def offset_to_position(
    text: str,
    offset: int,
    *,
    starts: list[int] | None = None,
) -> tuple[int, int]:
    """Convert a character offset to a zero-based ``(line, column)``.

    Pass precomputed *starts* (from :func:`line_starts`) when converting
    many offsets in the same text.
    """
    if starts is None:
        starts = line_starts(text)
    line = bisect.bisect_right(starts, offset) - 1
    return line, offset - starts[line]
