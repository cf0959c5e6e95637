"""
Attribution notes: one version-2 JSON document per commit under
``refs/notes/agentblame``.  This is the only place attribution is read
from once a commit exists.
"""

from __future__ import annotations

import json
import logging
import os

from .config import DEFAULT_REMOTE, REMOTE_GIT_TIMEOUT
from .gitcli import resolve_sha, run_git, run_git_raw
from .models import GitNotesAttribution, RangeAttribution

logger = logging.getLogger(__name__)

NOTES_REF = "refs/notes/agentblame"
NOTES_REFSPEC = f"{NOTES_REF}:{NOTES_REF}"


def read_note(repo_root: str | os.PathLike, sha: str) -> GitNotesAttribution | None:
    """The note on ``sha``, or None if absent, unreadable or not version 2."""
    raw = run_git_raw("notes", f"--ref={NOTES_REF}", "show", sha, cwd=repo_root)
    if not raw or not raw.strip():
        return None
    try:
        return GitNotesAttribution.from_dict(json.loads(raw))
    except ValueError as e:
        # json.JSONDecodeError is a ValueError too
        logger.debug("ignoring malformed note on %s: %s", sha[:8], e)
        return None


def has_note(repo_root: str | os.PathLike, sha: str) -> bool:
    return run_git_raw("notes", f"--ref={NOTES_REF}", "show", sha, cwd=repo_root) is not None


def write_note(
    repo_root: str | os.PathLike,
    sha: str,
    attributions: list[RangeAttribution],
) -> GitNotesAttribution | None:
    """Attach (or replace) the note on ``sha``.  Returns the written note,
    or None when ``sha`` is not a commit or git refused."""
    # git notes accepts any 40-hex name, even one with no object behind it
    if resolve_sha(repo_root, sha) is None:
        logger.debug("not writing a note on unknown commit %s", sha[:8])
        return None
    note = GitNotesAttribution.create(attributions)
    out = run_git_raw(
        "notes", f"--ref={NOTES_REF}", "add", "-f", "-F", "-", sha,
        cwd=repo_root, input=note.to_json(),
    )
    if out is None:
        return None
    logger.debug("wrote note on %s with %d range(s)", sha[:8], len(attributions))
    return note


def list_noted_commits(repo_root: str | os.PathLike) -> set[str]:
    """SHAs of every commit carrying an attribution note."""
    out = run_git("notes", f"--ref={NOTES_REF}", "list", cwd=repo_root)
    if not out:
        return set()
    commits = set()
    for line in out.splitlines():
        parts = line.split()
        if len(parts) == 2:
            commits.add(parts[1])
    return commits


def push_notes(repo_root: str | os.PathLike, remote: str = DEFAULT_REMOTE) -> bool:
    out = run_git_raw("push", "--quiet", remote, NOTES_REFSPEC,
                      cwd=repo_root, timeout=REMOTE_GIT_TIMEOUT)
    return out is not None


def fetch_notes(repo_root: str | os.PathLike, remote: str = DEFAULT_REMOTE) -> bool:
    """Fetch the remote notes ref.  Fails (False) on a missing ref or
    a local ref that cannot be fast-forwarded."""
    out = run_git_raw("fetch", "--quiet", remote, NOTES_REFSPEC,
                      cwd=repo_root, timeout=REMOTE_GIT_TIMEOUT)
    return out is not None
