"""
Unified diff parsing for commit attribution.

A DiffHunk here is a contiguous run of *added* lines in one file, not a
git ``@@`` hunk: context lines split runs so every hunk's line numbers are
consecutive.  Deleted lines are collected separately into DeletedBlocks
for move detection.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterator

from .gitcli import EMPTY_TREE_SHA, get_parents, run_git_raw
from .hashing import compute_hash, compute_normalized_hash
from .models import DeletedBlock, DiffHunk, DiffLine

# Smallest deleted block worth considering as a move.
MIN_BLOCK_LINES = 3

_HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")

_ADDED = "+"
_DELETED = "-"
_CONTEXT = " "
_BOUNDARY = "@"


def _header_path(raw: str, prefix: str) -> str | None:
    """Path from a ``---``/``+++`` header; None for /dev/null."""
    name = raw.split("\t", 1)[0]
    if name.startswith('"') and name.endswith('"') and len(name) >= 2:
        name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    if name == "/dev/null":
        return None
    if name.startswith(prefix):
        name = name[len(prefix):]
    return name


def _walk(diff_text: str) -> Iterator[tuple[str, str | None, int, str]]:
    """Yield ``(kind, path, line_number, content)`` for every body line.

    Added and context lines carry the new-file path and line number,
    deleted lines the old-file ones.  A ``_BOUNDARY`` event is emitted at
    every file or hunk header.  File headers are only recognised outside
    a hunk body, whose length comes from the ``@@`` counts, so a deleted
    line reading ``-- x`` is never taken for a header.
    """
    old_path: str | None = None
    new_path: str | None = None
    old_line = new_line = 0
    old_left = new_left = 0

    for line in diff_text.split("\n"):
        if old_left > 0 or new_left > 0:
            if line.startswith("+"):
                yield _ADDED, new_path, new_line, line[1:]
                new_line += 1
                new_left -= 1
                continue
            if line.startswith("-"):
                yield _DELETED, old_path, old_line, line[1:]
                old_line += 1
                old_left -= 1
                continue
            if line.startswith(" ") or line == "":
                yield _CONTEXT, new_path, new_line, line[1:]
                old_line += 1
                new_line += 1
                old_left -= 1
                new_left -= 1
                continue
            if line.startswith("\\"):
                continue
            # Truncated body: fall through and treat the line as a header.
            old_left = new_left = 0

        m = _HUNK_HEADER.match(line)
        if m:
            yield _BOUNDARY, new_path, 0, ""
            old_line = int(m.group(1))
            old_left = int(m.group(2)) if m.group(2) is not None else 1
            new_line = int(m.group(3))
            new_left = int(m.group(4)) if m.group(4) is not None else 1
        elif line.startswith("diff --git "):
            yield _BOUNDARY, new_path, 0, ""
            old_path = new_path = None
        elif line.startswith("--- "):
            yield _BOUNDARY, new_path, 0, ""
            old_path = _header_path(line[4:], "a/")
        elif line.startswith("+++ "):
            new_path = _header_path(line[4:], "b/")


def _make_hunk(path: str, run: list[tuple[int, str]]) -> DiffHunk:
    content = "\n".join(text for _, text in run)
    return DiffHunk(
        path=path,
        start_line=run[0][0],
        end_line=run[-1][0],
        content=content,
        content_hash=compute_hash(content),
        content_hash_normalized=compute_normalized_hash(content),
        lines=[
            DiffLine(
                line_number=number,
                content=text,
                hash=compute_hash(text),
                hash_normalized=compute_normalized_hash(text),
            )
            for number, text in run
        ],
    )


def parse_diff(diff_text: str) -> list[DiffHunk]:
    """Runs of consecutive added lines, in diff order.

    Whitespace-only added lines stay in the hunks; only matching skips
    them.
    """
    hunks: list[DiffHunk] = []
    run: list[tuple[int, str]] = []
    run_path: str | None = None

    for kind, path, number, content in _walk(diff_text):
        if kind == _ADDED and path is not None:
            if run and path != run_path:
                hunks.append(_make_hunk(run_path, run))
                run = []
            run_path = path
            run.append((number, content))
        elif kind in (_CONTEXT, _BOUNDARY) and run:
            hunks.append(_make_hunk(run_path, run))
            run = []
        # Deleted lines do not advance the new side: a run continues.

    if run:
        hunks.append(_make_hunk(run_path, run))
    return hunks


def parse_deleted_blocks(diff_text: str, min_lines: int = MIN_BLOCK_LINES) -> list[DeletedBlock]:
    """Runs of at least ``min_lines`` consecutive deleted lines."""
    blocks: list[DeletedBlock] = []
    run: list[str] = []
    run_path: str | None = None
    run_start = 0

    def flush() -> None:
        if run_path is not None and len(run) >= min_lines:
            blocks.append(DeletedBlock(
                path=run_path,
                start_line=run_start,
                lines=list(run),
                normalized_content="\n".join(text.strip() for text in run),
            ))
        run.clear()

    for kind, path, number, content in _walk(diff_text):
        if kind == _DELETED and path is not None:
            if run and path != run_path:
                flush()
            if not run:
                run_path = path
                run_start = number
            run.append(content)
        else:
            flush()

    flush()
    return blocks


# -------------------------------------------------------------------
# Git
# -------------------------------------------------------------------

def get_commit_diff(repo_root: str | os.PathLike, sha: str, context: int = 0) -> str:
    """Diff of a commit against its first parent (the empty tree for a
    root commit).  Empty string when git has nothing to say."""
    parents = get_parents(repo_root, sha)
    if parents is None:
        return ""
    base = f"{sha}^" if parents else EMPTY_TREE_SHA
    out = run_git_raw(
        "-c", "core.quotePath=false",
        "diff", "--no-color", "--no-ext-diff", f"--unified={context}",
        base, sha,
        cwd=repo_root,
    )
    return out or ""


def get_commit_hunks(repo_root: str | os.PathLike, sha: str) -> list[DiffHunk]:
    return parse_diff(get_commit_diff(repo_root, sha, context=0))
