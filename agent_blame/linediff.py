"""
Line-level diff between the text an editor tool replaced and the text it
wrote.  Only additions matter for attribution: lines the tool kept
unchanged are not its authorship.
"""

from __future__ import annotations

import difflib

from .models import EditType


def split_lines(text: str | None) -> list[str]:
    """Split text into lines, ignoring one trailing newline.

    ``"a\\nb"`` and ``"a\\nb\\n"`` give the same lines, so a line that moves
    from last-in-file to having content after it is not seen as changed.
    """
    if not text:
        return []
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    if text.endswith("\n"):
        text = text[:-1]
    return text.split("\n")


def added_line_indices(old_lines: list[str], new_lines: list[str]) -> list[int]:
    """0-based indices into ``new_lines`` of lines absent from the old side."""
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    added: list[int] = []
    for tag, _i1, _i2, j1, j2 in matcher.get_opcodes():
        if tag in ("insert", "replace"):
            added.extend(range(j1, j2))
    return added


def determine_edit_type(old_content: str | None, new_content: str) -> EditType:
    if not old_content:
        return EditType.ADDITION
    if old_content in new_content:
        # New content still contains the old verbatim: text was added around it.
        return EditType.MODIFICATION
    return EditType.REPLACEMENT
