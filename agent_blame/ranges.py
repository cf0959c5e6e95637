"""Collapse per-line attributions into contiguous ranges for the note."""

from __future__ import annotations

from .models import LineAttribution, RangeAttribution


def _same_source(a: RangeAttribution, b: LineAttribution) -> bool:
    return (
        a.path == b.path
        and a.provider == b.provider
        and a.match_type == b.match_type
        and a.end_line + 1 == b.line
    )


def merge_line_attributions(lines: list[LineAttribution]) -> list[RangeAttribution]:
    """Merge consecutive lines of one file that share provider and match type.

    Input order does not matter: lines are sorted by (path, line) first.
    A range takes its model and content hash from its first line and the
    lowest confidence of its lines.
    """
    ranges: list[RangeAttribution] = []
    for attr in sorted(lines, key=lambda a: (a.path, a.line)):
        if ranges and _same_source(ranges[-1], attr):
            ranges[-1].end_line = attr.line
            ranges[-1].confidence = min(ranges[-1].confidence, attr.confidence)
            continue
        ranges.append(RangeAttribution(
            path=attr.path,
            start_line=attr.line,
            end_line=attr.line,
            provider=attr.provider,
            model=attr.model,
            confidence=attr.confidence,
            match_type=attr.match_type,
            content_hash=attr.content_hash,
        ))
    return ranges
