"""Tests for merging line attributions into ranges."""

from agent_blame.models import CONFIDENCE, LineAttribution, MatchType, Provider
from agent_blame.ranges import merge_line_attributions


def _line(path, line, provider=Provider.CURSOR, match_type=MatchType.EXACT_HASH, model="gpt-5"):
    return LineAttribution(
        path=path,
        line=line,
        provider=provider,
        model=model,
        confidence=CONFIDENCE[match_type],
        match_type=match_type,
        content_hash=f"sha256:{path}:{line}",
    )


def test_gap_breaks_range():
    ranges = merge_line_attributions([_line("a", 1), _line("a", 2), _line("a", 4)])
    assert [(r.path, r.start_line, r.end_line) for r in ranges] == [("a", 1, 2), ("a", 4, 4)]


def test_range_takes_first_line_fields():
    ranges = merge_line_attributions([_line("a", 2, model="m2"), _line("a", 1, model="m1")])
    assert len(ranges) == 1
    assert ranges[0].model == "m1"
    assert ranges[0].content_hash == "sha256:a:1"
    assert ranges[0].line_count == 2


def test_provider_or_match_type_change_splits():
    ranges = merge_line_attributions([
        _line("a", 1),
        _line("a", 2, provider=Provider.CLAUDE_CODE),
        _line("a", 3, provider=Provider.CLAUDE_CODE, match_type=MatchType.NORMALIZED_HASH),
    ])
    assert [(r.start_line, r.end_line) for r in ranges] == [(1, 1), (2, 2), (3, 3)]
    assert ranges[2].confidence == 0.95


def test_unsorted_input_across_files():
    ranges = merge_line_attributions([_line("b", 1), _line("a", 2), _line("a", 1), _line("b", 2)])
    assert [(r.path, r.start_line, r.end_line) for r in ranges] == [("a", 1, 2), ("b", 1, 2)]


def test_empty_input():
    assert merge_line_attributions([]) == []


def test_range_confidence_is_lowest_member():
    low = _line("a", 2)
    low.confidence = 0.5
    ranges = merge_line_attributions([_line("a", 1), low, _line("a", 3)])
    assert len(ranges) == 1
    assert ranges[0].confidence == 0.5
