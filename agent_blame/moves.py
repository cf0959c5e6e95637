"""
Move detection: code deleted in one place and re-added elsewhere in the
same commit keeps the authorship of its origin.
"""

from __future__ import annotations

import os

from .diff import MIN_BLOCK_LINES, get_commit_diff, parse_deleted_blocks, parse_diff
from .models import DeletedBlock, DiffHunk, MoveMapping, MoveOrigin


def _find_block(needle: list[str], haystack: list[str]) -> int:
    """Index where ``needle`` occurs as a contiguous run in ``haystack``, or -1."""
    size = len(needle)
    for i in range(len(haystack) - size + 1):
        if haystack[i:i + size] == needle:
            return i
    return -1


def detect_moves(deleted_blocks: list[DeletedBlock], added_hunks: list[DiffHunk]) -> list[MoveMapping]:
    """Pair each deleted block with the first added hunk that contains it.

    Content is compared line by line after stripping surrounding
    whitespace, so re-indented code still counts as moved.  A block
    matches at most one destination.
    """
    moves: list[MoveMapping] = []
    for block in deleted_blocks:
        if len(block.lines) < MIN_BLOCK_LINES:
            continue
        needle = [line.strip() for line in block.lines]
        for hunk in added_hunks:
            if len(hunk.lines) < MIN_BLOCK_LINES:
                continue
            offset = _find_block(needle, [line.content.strip() for line in hunk.lines])
            if offset < 0:
                continue
            moves.append(MoveMapping(
                from_path=block.path,
                from_start_line=block.start_line,
                to_path=hunk.path,
                to_start_line=hunk.lines[offset].line_number,
                line_count=len(block.lines),
                normalized_content=block.normalized_content,
            ))
            break
    return moves


def move_key(path: str, line: int) -> str:
    return f"{path}:{line}"


def build_move_index(moves: list[MoveMapping]) -> dict[str, MoveOrigin]:
    """``"path:line"`` of every moved destination line -> where it came from.

    Lines that are empty after stripping carry no evidence and are left
    out.  When two moves claim a line the first one wins.
    """
    index: dict[str, MoveOrigin] = {}
    for move in moves:
        normalized = move.normalized_content.split("\n")
        for i in range(move.line_count):
            if i >= len(normalized) or not normalized[i]:
                continue
            index.setdefault(
                move_key(move.to_path, move.to_start_line + i),
                MoveOrigin(from_path=move.from_path, from_line=move.from_start_line + i),
            )
    return index


def get_commit_moves(repo_root: str | os.PathLike, sha: str) -> list[MoveMapping]:
    diff_text = get_commit_diff(repo_root, sha, context=3)
    return detect_moves(parse_deleted_blocks(diff_text), parse_diff(diff_text))
