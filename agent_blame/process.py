"""
Commit processing: match a fresh commit against the pending edits of its
repository and record the outcome as an attribution note.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .config import get_project_config, get_remote, push_enabled
from .gitcli import resolve_sha
from .matcher import match_commit
from .models import MatchResult, Provider
from .notes import fetch_notes, push_notes, write_note
from .store import PendingEditStore

logger = logging.getLogger(__name__)

PROVIDER_LABELS = {
    Provider.CURSOR: "Cursor",
    Provider.CLAUDE_CODE: "Claude Code",
    Provider.OPENCODE: "OpenCode",
}


@dataclass
class ProcessOutcome:
    result: MatchResult
    note_written: bool = False
    pushed: bool = False


def process_commit(store: PendingEditStore, repo_root: str | os.PathLike, sha: str) -> ProcessOutcome:
    """Match ``sha`` and attach a note when any line was attributed.

    A commit with no AI lines gets no note; an existing note is left as is.
    """
    result = match_commit(store, repo_root, sha)
    written = False
    if result.attributions:
        written = write_note(repo_root, sha, result.attributions) is not None
        if not written:
            logger.debug("could not write note on %s", sha[:8])
    return ProcessOutcome(result=result, note_written=written)


def run_process(repo_root: str | os.PathLike, rev: str = "HEAD") -> ProcessOutcome | None:
    """Resolve ``rev``, process it, and exchange notes with the remote.

    Returns None when ``rev`` does not name a commit.  Raises
    StoreNotConfiguredError for a repository without ``.agentblame/``.
    """
    sha = resolve_sha(repo_root, rev)
    if sha is None:
        return None

    config = get_project_config(repo_root)
    remote = get_remote(config)
    sync_remote = push_enabled(config)

    with PendingEditStore.for_repo(repo_root) as store:
        if sync_remote:
            # Pull remote notes first so the push below fast-forwards.
            fetch_notes(repo_root, remote)
        outcome = process_commit(store, repo_root, sha)

    if outcome.note_written and sync_remote:
        outcome.pushed = push_notes(repo_root, remote)
    return outcome


def format_summary(outcome: ProcessOutcome) -> str:
    result = outcome.result
    percent = round(100 * result.ai_lines / result.total_lines) if result.total_lines else 0
    lines = [
        f"agentblame: commit {result.sha[:8]}",
        f"  AI-generated: {result.ai_lines} of {result.total_lines} line(s) ({percent}%)",
    ]
    for attr in result.attributions:
        label = PROVIDER_LABELS.get(attr.provider, attr.provider.value)
        if attr.model:
            label = f"{label} - {attr.model}"
        lines.append(f"    {attr.path}:{attr.start_line}-{attr.end_line}  [{label}]")
    if outcome.note_written:
        lines.append("  note attached" + (" and pushed" if outcome.pushed else ""))
    return "\n".join(lines)
