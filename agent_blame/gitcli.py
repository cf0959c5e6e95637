"""
Git subprocess helpers.

Every call carries a timeout.  A slow, failing or missing git degrades to
``None`` ("no data available") and never raises into a commit hook.
"""

from __future__ import annotations

import logging
import os
import subprocess

from .config import git_timeout

logger = logging.getLogger(__name__)

# Well-known hash of the empty tree; the diff base for a root commit.
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"


def run_git_raw(
    *args: str,
    cwd: str | os.PathLike | None = None,
    timeout: float | None = None,
    input: str | None = None,
) -> str | None:
    """Run a git command and return raw stdout (not stripped), or None."""
    if timeout is None:
        timeout = git_timeout()
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True, text=True, cwd=cwd, timeout=timeout,
            input=input, encoding="utf-8", errors="replace",
        )
    except subprocess.TimeoutExpired:
        logger.debug("git %s timed out after %ss", args[0] if args else "", timeout)
        return None
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("git %s failed to start: %s", args[0] if args else "", e)
        return None
    if result.returncode != 0:
        logger.debug("git %s exited %d: %s", " ".join(args[:2]), result.returncode,
                     result.stderr.strip())
        return None
    return result.stdout


def run_git(*args: str, cwd: str | os.PathLike | None = None,
            timeout: float | None = None, input: str | None = None) -> str | None:
    """Run a git command and return stripped stdout, or None on failure."""
    out = run_git_raw(*args, cwd=cwd, timeout=timeout, input=input)
    return out.strip() if out is not None else None


def get_repo_root(path: str | os.PathLike | None = None) -> str | None:
    return run_git("rev-parse", "--show-toplevel", cwd=path) or None


def resolve_sha(repo_root: str | os.PathLike, rev: str = "HEAD") -> str | None:
    return run_git("rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}", cwd=repo_root) or None


def get_parents(repo_root: str | os.PathLike, sha: str) -> list[str] | None:
    """Parent SHAs of a commit ([] for a root commit), or None if unknown."""
    out = run_git("rev-list", "--parents", "-n", "1", sha, cwd=repo_root)
    if not out:
        return None
    return out.split()[1:]


def get_subject(repo_root: str | os.PathLike, sha: str) -> str:
    return run_git("log", "-1", "--format=%s", sha, cwd=repo_root) or ""


def rev_list(repo_root: str | os.PathLike, range_spec: str) -> list[str]:
    out = run_git("rev-list", range_spec, cwd=repo_root)
    if not out:
        return []
    return [line for line in out.splitlines() if line.strip()]
