"""
Carry attribution notes across history rewrites.

Squash merges, rebase merges, ``git commit --amend`` and interactive
rebases all produce commits that never went through the post-commit
hook.  Their notes are rebuilt from the notes of the commits they
replace: each original range's text is recovered from its own commit's
diff, then searched for in the new commit's added lines.

    squash        PR commits -> the single squash commit
    rebase        PR commits -> each rebased commit, in order
    merge_commit  nothing to do, the originals stay reachable
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import IO, Iterable

from .config import REMOTE_GIT_TIMEOUT, get_project_config, get_remote, push_enabled
from .diff import get_commit_hunks
from .gitcli import get_parents, get_subject, resolve_sha, rev_list, run_git, run_git_raw
from .hashing import compute_hash
from .models import DiffHunk, GitNotesAttribution, RangeAttribution
from .notes import fetch_notes, has_note, list_noted_commits, push_notes, read_note, write_note

logger = logging.getLogger(__name__)

# "Add feature (#123)": the subject GitHub gives squash and rebase merges
_PR_SUBJECT = re.compile(r"\(#(\d+)\)\s*$")


class MergeType(str, Enum):
    MERGE_COMMIT = "merge_commit"
    SQUASH = "squash"
    REBASE = "rebase"


@dataclass
class OriginalRange:
    """An attributed range of an original commit, with the text it covered."""

    attribution: RangeAttribution
    text: str
    commit: str

    @property
    def text_hash(self) -> str:
        return compute_hash(self.text)


# -------------------------------------------------------------------
# Merge classification
# -------------------------------------------------------------------

def detect_merge_type(
    repo_root: str | os.PathLike,
    merge_sha: str | None,
    pr_number: int | str | None = None,
    pr_title: str | None = None,
) -> MergeType:
    """Classify how a pull request landed from the commit it produced."""
    if not merge_sha:
        return MergeType.REBASE
    parents = get_parents(repo_root, merge_sha) or []
    if len(parents) > 1:
        return MergeType.MERGE_COMMIT

    subject = get_subject(repo_root, merge_sha)
    if pr_number and re.search(rf"#{re.escape(str(pr_number))}\b", subject):
        return MergeType.SQUASH
    if pr_title and pr_title in subject:
        return MergeType.SQUASH
    return MergeType.REBASE


# -------------------------------------------------------------------
# Reconciliation
# -------------------------------------------------------------------

def collect_original_attributions(
    repo_root: str | os.PathLike,
    shas: Iterable[str],
) -> list[OriginalRange]:
    """Every attributed range of ``shas`` with its text rebuilt from the
    commit's added lines.  Ranges whose lines cannot be found are dropped."""
    originals: list[OriginalRange] = []
    for sha in shas:
        note = read_note(repo_root, sha)
        if note is None or not note.attributions:
            continue
        added = {
            (hunk.path, line.line_number): line.content
            for hunk in get_commit_hunks(repo_root, sha)
            for line in hunk.lines
        }
        for attr in note.attributions:
            lines = [
                added[(attr.path, number)]
                for number in range(attr.start_line, attr.end_line + 1)
                if (attr.path, number) in added
            ]
            if not lines:
                logger.debug("%s: %s:%d-%d not in its own diff", sha[:8], attr.path,
                             attr.start_line, attr.end_line)
                continue
            originals.append(OriginalRange(attribution=attr, text="\n".join(lines), commit=sha))
    return originals


def _same_file(a: str, b: str) -> bool:
    return (
        a.rsplit("/", 1)[-1] == b.rsplit("/", 1)[-1]
        or a.endswith(b)
        or b.endswith(a)
    )


def _locate(text: str, hunk: DiffHunk) -> tuple[int, int] | None:
    """Line span of ``text`` inside the hunk, matching whole lines only."""
    needle = text.strip()
    if not needle:
        return None
    content = hunk.content
    search_from = 0
    while True:
        offset = content.find(needle, search_from)
        if offset < 0:
            return None
        end = offset + len(needle)
        line_start = content.rfind("\n", 0, offset) + 1
        line_end = content.find("\n", end)
        if line_end < 0:
            line_end = len(content)
        if not content[line_start:offset].strip() and not content[end:line_end].strip():
            first = hunk.start_line + content.count("\n", 0, offset)
            return first, first + needle.count("\n")
        search_from = offset + 1


def _relocated(original: OriginalRange, hunk: DiffHunk, start: int, end: int) -> RangeAttribution:
    first = next((line for line in hunk.lines if line.line_number == start), None)
    return replace(
        original.attribution,
        path=hunk.path,
        start_line=start,
        end_line=end,
        content_hash=first.hash if first is not None else original.attribution.content_hash,
    )


def reconcile_hunks(
    hunks: list[DiffHunk],
    originals: list[OriginalRange],
    used: set[int] | None = None,
) -> list[RangeAttribution]:
    """Place original ranges onto the added lines of a new commit.

    First a hunk whose whole text is an original range takes it verbatim;
    then each remaining range is searched for inside the hunks of the same
    file.  An original range (by index into ``originals``) is placed at
    most once, and ``used`` carries that across several new commits.
    """
    if used is None:
        used = set()
    by_hash: dict[str, list[int]] = {}
    for i, original in enumerate(originals):
        by_hash.setdefault(original.text_hash, []).append(i)

    claimed: set[tuple[str, int]] = set()
    results: list[RangeAttribution] = []

    def claim(i: int, hunk: DiffHunk, start: int, end: int) -> None:
        used.add(i)
        claimed.update((hunk.path, n) for n in range(start, end + 1))
        results.append(_relocated(originals[i], hunk, start, end))

    for hunk in hunks:
        candidates = [i for i in by_hash.get(hunk.content_hash, []) if i not in used]
        # identical text in the same file beats identical text elsewhere
        candidates.sort(key=lambda i: not _same_file(originals[i].attribution.path, hunk.path))
        if candidates:
            claim(candidates[0], hunk, hunk.start_line, hunk.end_line)

    for hunk in hunks:
        for i, original in enumerate(originals):
            if i in used or not _same_file(original.attribution.path, hunk.path):
                continue
            span = _locate(original.text, hunk)
            if span is None:
                continue
            start, end = span
            if any((hunk.path, n) in claimed for n in range(start, end + 1)):
                continue
            claim(i, hunk, start, end)

    results.sort(key=lambda a: (a.path, a.start_line))
    return results


def _reconcile_into(
    repo_root: str | os.PathLike,
    new_sha: str,
    originals: list[OriginalRange],
    used: set[int] | None = None,
) -> GitNotesAttribution | None:
    if not originals:
        return None
    attributions = reconcile_hunks(get_commit_hunks(repo_root, new_sha), originals, used)
    if not attributions:
        logger.debug("%s: no original range found in its diff", new_sha[:8])
        return None
    return write_note(repo_root, new_sha, attributions)


def reconcile_commit(
    repo_root: str | os.PathLike,
    new_sha: str,
    original_shas: Iterable[str],
) -> GitNotesAttribution | None:
    """Rebuild the note of ``new_sha`` from the notes of the commits it
    replaces.  Overwrites any existing note; None when nothing carried over."""
    originals = collect_original_attributions(repo_root, original_shas)
    return _reconcile_into(repo_root, new_sha, originals)


# -------------------------------------------------------------------
# Merged pull requests (CI)
# -------------------------------------------------------------------

@dataclass
class TransferResult:
    merge_type: MergeType
    notes: dict[str, GitNotesAttribution] = field(default_factory=dict)

    @property
    def attribution_count(self) -> int:
        return sum(len(note.attributions) for note in self.notes.values())


def transfer_notes(
    repo_root: str | os.PathLike,
    base_sha: str,
    head_sha: str,
    merge_sha: str | None,
    pr_number: int | str | None = None,
    pr_title: str | None = None,
) -> TransferResult:
    """Move the notes of a merged pull request onto the commits that
    landed on the target branch."""
    merge_type = detect_merge_type(repo_root, merge_sha, pr_number, pr_title)
    result = TransferResult(merge_type=merge_type)
    if merge_type is MergeType.MERGE_COMMIT:
        return result

    pr_commits = list(reversed(rev_list(repo_root, f"{base_sha}..{head_sha}")))
    originals = collect_original_attributions(repo_root, pr_commits)
    if not originals:
        logger.debug("no attributed ranges in %d PR commit(s)", len(pr_commits))
        return result

    if merge_type is MergeType.SQUASH:
        targets = [merge_sha]
    else:
        landed = rev_list(repo_root, f"{base_sha}..{merge_sha or 'HEAD'}")
        # Fast-forwarded commits are the originals themselves, and commits
        # that already carry a note (other pull requests) keep it.
        originals_set = set(pr_commits)
        targets = [
            sha for sha in reversed(landed)
            if sha not in originals_set and not has_note(repo_root, sha)
        ]

    used: set[int] = set()
    for sha in targets:
        note = _reconcile_into(repo_root, sha, originals, used)
        if note is not None:
            result.notes[sha] = note
    return result


# -------------------------------------------------------------------
# Local catch-up
# -------------------------------------------------------------------

@dataclass
class MergeCandidate:
    sha: str
    pr_number: int
    subject: str


@dataclass
class SyncEntry:
    candidate: MergeCandidate
    status: str
    attributions: int = 0


@dataclass
class SyncResult:
    entries: list[SyncEntry] = field(default_factory=list)
    pushed: bool = False

    @property
    def transferred(self) -> int:
        return sum(e.attributions for e in self.entries if e.status == "transferred")


def find_merge_candidates(repo_root: str | os.PathLike, limit: int = 20) -> list[MergeCandidate]:
    """Recent single-parent commits titled ``... (#N)`` that have no note."""
    out = run_git("log", f"-{limit}", "--format=%H%x09%P%x09%s", cwd=repo_root)
    if not out:
        return []
    noted = list_noted_commits(repo_root)
    candidates = []
    for line in out.splitlines():
        parts = line.split("\t", 2)
        if len(parts) != 3:
            continue
        sha, parents, subject = parts
        m = _PR_SUBJECT.search(subject)
        if not m or sha in noted or len(parents.split()) > 1:
            continue
        candidates.append(MergeCandidate(sha=sha, pr_number=int(m.group(1)), subject=subject))
    return candidates


def fetch_pr_head(repo_root: str | os.PathLike, pr_number: int, remote: str) -> str | None:
    """Fetch ``refs/pull/N/head`` (GitHub) and return the PR head SHA."""
    local_ref = f"refs/remotes/{remote}/pr/{pr_number}"
    run_git_raw("fetch", "--quiet", remote, f"+refs/pull/{pr_number}/head:{local_ref}",
                cwd=repo_root, timeout=REMOTE_GIT_TIMEOUT)
    return resolve_sha(repo_root, local_ref)


def sync(
    repo_root: str | os.PathLike,
    dry_run: bool = False,
    remote: str | None = None,
    limit: int = 20,
) -> SyncResult:
    """Give recently merged pull requests the notes CI did not write."""
    config = get_project_config(repo_root)
    remote = remote or get_remote(config)
    result = SyncResult()

    fetch_notes(repo_root, remote)
    for candidate in find_merge_candidates(repo_root, limit):
        pr_head = fetch_pr_head(repo_root, candidate.pr_number, remote)
        if pr_head is None:
            result.entries.append(SyncEntry(candidate, "no-pr-ref"))
            continue
        parents = get_parents(repo_root, candidate.sha)
        if not parents:
            result.entries.append(SyncEntry(candidate, "no-base"))
            continue
        pr_commits = list(reversed(rev_list(repo_root, f"{parents[0]}..{pr_head}")))
        originals = collect_original_attributions(repo_root, pr_commits)
        if not originals:
            result.entries.append(SyncEntry(candidate, "no-attributions"))
            continue

        attributions = reconcile_hunks(get_commit_hunks(repo_root, candidate.sha), originals)
        if not attributions:
            result.entries.append(SyncEntry(candidate, "no-attributions"))
        elif dry_run:
            result.entries.append(SyncEntry(candidate, "would-transfer", len(attributions)))
        elif write_note(repo_root, candidate.sha, attributions) is not None:
            result.entries.append(SyncEntry(candidate, "transferred", len(attributions)))
        else:
            result.entries.append(SyncEntry(candidate, "write-failed"))

    if result.transferred and push_enabled(config):
        result.pushed = push_notes(repo_root, remote)
    return result


# -------------------------------------------------------------------
# post-rewrite hook
# -------------------------------------------------------------------

def read_rewrite_pairs(stream: IO[str]) -> list[tuple[str, str]]:
    """``old new [extra]`` lines, as git feeds the post-rewrite hook."""
    pairs = []
    for line in stream:
        parts = line.split()
        if len(parts) >= 2:
            pairs.append((parts[0], parts[1]))
    return pairs


def remap_rewritten(
    repo_root: str | os.PathLike,
    pairs: list[tuple[str, str]],
) -> dict[str, GitNotesAttribution]:
    """Give each rewritten commit the attribution of the commit(s) it
    replaces.  Several old commits may fold into one new commit (squash or
    fixup in an interactive rebase).  Commits that already have a note,
    e.g. from the post-commit hook of an amend, are left alone."""
    olds_by_new: dict[str, list[str]] = {}
    for old, new in pairs:
        olds_by_new.setdefault(new, []).append(old)

    written: dict[str, GitNotesAttribution] = {}
    for new, olds in olds_by_new.items():
        if has_note(repo_root, new):
            continue
        note = reconcile_commit(repo_root, new, olds)
        if note is not None:
            written[new] = note
    return written
