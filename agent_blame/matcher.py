"""
Attribution matching: decide, line by line, which added lines of a commit
were written by an AI tool.

Evidence, strongest first:

    exact_hash        the line was captured verbatim          (1.0)
    normalized_hash   captured, modulo whitespace              (0.95)
    move_detected     moved here from a file with AI edits     (0.85)

Anything else is the developer's.
"""

from __future__ import annotations

import logging
import os

from .diff import get_commit_hunks
from .models import (
    CONFIDENCE,
    DiffHunk,
    LineAttribution,
    MatchResult,
    MatchType,
    MoveOrigin,
)
from .moves import build_move_index, get_commit_moves, move_key
from .ranges import merge_line_attributions
from .store import STATUS_PENDING, PendingEdit, PendingEditStore

logger = logging.getLogger(__name__)


def _origin_edit(store: PendingEditStore, origin: MoveOrigin,
                 cache: dict[str, PendingEdit | None]) -> PendingEdit | None:
    """Newest edit with lines ever captured for the origin file.

    File-level evidence only: the moved lines themselves are not checked
    against the edit.
    """
    if origin.from_path not in cache:
        cache[origin.from_path] = next(
            (edit for edit, line_count in store.find_edits_by_file(origin.from_path)
             if line_count > 0),
            None,
        )
    return cache[origin.from_path]


def attribute_hunks(
    store: PendingEditStore,
    hunks: list[DiffHunk],
    move_index: dict[str, MoveOrigin],
    sha: str = "",
) -> MatchResult:
    """Match added lines against the store without changing it.

    ``matched_edit_ids`` of the result lists the pending edits that
    supplied evidence; the caller decides whether to consume them.
    """
    attributions: list[LineAttribution] = []
    edit_ids: set[int] = set()
    origin_cache: dict[str, PendingEdit | None] = {}
    total = unmatched = 0

    for hunk in hunks:
        for line in hunk.lines:
            if not line.content.strip():
                continue
            total += 1

            match = store.find_line_match(line.hash, line.hash_normalized, hunk.path,
                                          commit_sha=sha or None)
            if match is not None:
                edit, match_type = match.edit, match.match_type
            else:
                edit = None
                origin = move_index.get(move_key(hunk.path, line.line_number))
                if origin is not None:
                    edit = _origin_edit(store, origin, origin_cache)
                match_type = MatchType.MOVE_DETECTED

            if edit is None:
                unmatched += 1
                continue

            attributions.append(LineAttribution(
                path=hunk.path,
                line=line.line_number,
                provider=edit.provider,
                model=edit.model,
                confidence=CONFIDENCE[match_type],
                match_type=match_type,
                content_hash=line.hash,
            ))
            if edit.status == STATUS_PENDING:
                edit_ids.add(edit.id)

    return MatchResult(
        sha=sha,
        attributions=merge_line_attributions(attributions),
        unmatched_lines=unmatched,
        total_lines=total,
        matched_edit_ids=sorted(edit_ids),
    )


def match_commit(store: PendingEditStore, repo_root: str | os.PathLike, sha: str) -> MatchResult:
    """Attribute one commit and consume the pending edits it used."""
    hunks = get_commit_hunks(repo_root, sha)
    move_index = build_move_index(get_commit_moves(repo_root, sha))
    result = attribute_hunks(store, hunks, move_index, sha)
    if result.matched_edit_ids:
        store.mark_matched(result.matched_edit_ids, sha)
    logger.debug("%s: %d/%d line(s) attributed, %d edit(s) consumed",
                 sha[:8], result.ai_lines, result.total_lines, len(result.matched_edit_ids))
    return result
