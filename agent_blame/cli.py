"""
agentblame CLI: line-level attribution of AI-written code via git notes.

Commands:
    agentblame init                  Create .agentblame/ for the current repository
    agentblame status                Show pending edits and settings
    agentblame capture --provider P  Stage an editor hook event from stdin (used by hooks)
    agentblame process [SHA]         Attribute a commit and attach its note (post-commit hook)
    agentblame post-rewrite          Carry notes across amend/rebase (post-rewrite hook)
    agentblame transfer-notes        Carry notes onto a merged pull request (CI)
    agentblame sync                  Catch up on squash/rebase merges CI missed
    agentblame prune                 Drop old pending and matched edits
"""

from __future__ import annotations

import argparse
import logging
import os
import sqlite3
import sys

from .capture import PROVIDER_CHOICES, capture_from_stdin
from .config import (
    CONFIG_FILE_NAME,
    DB_FILE_NAME,
    DEFAULT_MATCHED_RETENTION_DAYS,
    DEFAULT_REMOTE,
    DEFAULT_UNMATCHED_RETENTION_DAYS,
    data_dir_for_repo,
    get_project_config,
    get_remote,
    get_retention,
    push_enabled,
    save_project_config,
    setup_logging,
)
from .gitcli import get_repo_root
from .notes import fetch_notes, push_notes
from .process import format_summary, run_process
from .rewrite import read_rewrite_pairs, remap_rewritten, sync, transfer_notes
from .store import PendingEditStore, StoreNotConfiguredError

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _repo_root_or_exit() -> str:
    root = get_repo_root(os.getcwd())
    if root is None:
        print("agentblame: not inside a git repository", file=sys.stderr)
        sys.exit(1)
    return root


# ===================================================================
# init
# ===================================================================

def cmd_init(_args):
    repo_root = _repo_root_or_exit()
    data_dir = data_dir_for_repo(repo_root)
    if (data_dir / DB_FILE_NAME).exists():
        print(f"agentblame is already initialized in {repo_root}")
        return

    with PendingEditStore.for_repo(repo_root, create=True):
        pass
    # Existing settings win over the defaults.
    config = {
        "remote": DEFAULT_REMOTE,
        "push_notes": True,
        "retention": {
            "matched_days": DEFAULT_MATCHED_RETENTION_DAYS,
            "unmatched_days": DEFAULT_UNMATCHED_RETENTION_DAYS,
        },
    }
    config.update(get_project_config(repo_root))
    save_project_config(config, repo_root)

    print(f"agentblame initialized in {repo_root}")
    print(f"  Database:  {data_dir / DB_FILE_NAME}")
    print(f"  Config:    {data_dir / CONFIG_FILE_NAME}")
    print("  .agentblame/ added to .gitignore")


# ===================================================================
# status
# ===================================================================

def cmd_status(_args):
    repo_root = _repo_root_or_exit()
    config = get_project_config(repo_root)
    try:
        store = PendingEditStore.for_repo(repo_root)
    except StoreNotConfiguredError as e:
        print(f"agentblame: {e}", file=sys.stderr)
        sys.exit(1)

    with store:
        pending = store.pending_count()
        recent = store.recent_pending()

    matched_days, unmatched_days = get_retention(config)
    print("agentblame status\n")
    print(f"  Pending edits:  {pending}")
    print(f"  Remote:         {get_remote(config)}"
          f"{'' if push_enabled(config) else '  (push disabled)'}")
    print(f"  Retention:      matched {matched_days}d, unmatched {unmatched_days}d")
    if recent:
        print("\n  Most recent:")
        for edit in recent:
            print(f"    {edit.timestamp[:19]}  {edit.provider.value:<10}  {edit.file_path}")


# ===================================================================
# capture  (called by editor hooks, reads stdin)
# ===================================================================

def cmd_capture(args):
    try:
        capture_from_stdin(args.provider, args.event)
    except Exception:
        # Never break the editor
        logger.debug("capture crashed", exc_info=True)


# ===================================================================
# process  (called by git post-commit hook)
# ===================================================================

def cmd_process(args):
    repo_root = get_repo_root(os.getcwd())
    if args.hook:
        if repo_root is None:
            return
        try:
            outcome = run_process(repo_root, args.sha)
            if outcome is not None and outcome.note_written:
                print(format_summary(outcome), file=sys.stderr)
        except Exception:
            # Never fail a commit
            logger.debug("post-commit processing failed", exc_info=True)
        return

    if repo_root is None:
        print("agentblame: not inside a git repository", file=sys.stderr)
        sys.exit(1)
    try:
        outcome = run_process(repo_root, args.sha)
    except (StoreNotConfiguredError, sqlite3.Error) as e:
        print(f"agentblame: {e}", file=sys.stderr)
        sys.exit(1)
    if outcome is None:
        print(f"agentblame: could not resolve commit {args.sha}", file=sys.stderr)
        sys.exit(1)
    print(format_summary(outcome))


# ===================================================================
# post-rewrite  (called by git post-rewrite hook)
# ===================================================================

def cmd_post_rewrite(_args):
    try:
        repo_root = get_repo_root(os.getcwd())
        if repo_root is None:
            return
        written = remap_rewritten(repo_root, read_rewrite_pairs(sys.stdin))
        if written:
            print(f"agentblame: carried attribution to {len(written)} rewritten commit(s)",
                  file=sys.stderr)
    except Exception:
        # Never crash inside a git hook
        logger.debug("post-rewrite failed", exc_info=True)


# ===================================================================
# transfer-notes  (CI, after a pull request is merged)
# ===================================================================

def cmd_transfer_notes(args):
    repo_root = _repo_root_or_exit()
    base_sha = args.base or os.environ.get("BASE_SHA")
    head_sha = args.head or os.environ.get("HEAD_SHA")
    merge_sha = args.merge or os.environ.get("MERGE_SHA")
    pr_number = args.pr or os.environ.get("PR_NUMBER")
    pr_title = args.title or os.environ.get("PR_TITLE")
    if not base_sha or not head_sha:
        print("agentblame: BASE_SHA and HEAD_SHA are required", file=sys.stderr)
        sys.exit(1)

    remote = get_remote(get_project_config(repo_root))
    fetch_notes(repo_root, remote)
    result = transfer_notes(repo_root, base_sha, head_sha, merge_sha, pr_number, pr_title)

    print(f"agentblame: {result.merge_type.value} merge")
    for sha, note in result.notes.items():
        print(f"  {sha[:8]}: {len(note.attributions)} attribution(s)")
    if not result.notes:
        print("  no attribution to transfer")
        return
    if not args.no_push:
        if push_notes(repo_root, remote):
            print(f"  notes pushed to {remote}")
        else:
            print(f"agentblame: pushing notes to {remote} failed", file=sys.stderr)
            sys.exit(1)


# ===================================================================
# sync
# ===================================================================

def cmd_sync(args):
    repo_root = _repo_root_or_exit()
    if args.dry_run:
        print("[dry run: no notes will be written]\n")
    result = sync(repo_root, dry_run=args.dry_run, remote=args.remote)

    if not result.entries:
        print("No squash/rebase merges without notes found.")
        return
    for entry in result.entries:
        c = entry.candidate
        print(f"PR #{c.pr_number}  {c.sha[:8]}  {c.subject[:60]}")
        if entry.attributions:
            print(f"  {entry.status}: {entry.attributions} attribution(s)")
        else:
            print(f"  skipped: {entry.status}")
    if result.transferred:
        print(f"\nTransferred {result.transferred} attribution(s)"
              + ("; notes pushed" if result.pushed else ""))


# ===================================================================
# prune
# ===================================================================

def cmd_prune(_args):
    repo_root = _repo_root_or_exit()
    matched_days, unmatched_days = get_retention(get_project_config(repo_root))
    try:
        with PendingEditStore.for_repo(repo_root) as store:
            result = store.prune(matched_days, unmatched_days)
    except (StoreNotConfiguredError, sqlite3.Error) as e:
        print(f"agentblame: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"agentblame: removed {result.removed} edit(s), kept {result.kept}")


# ===================================================================
# main
# ===================================================================

def main(argv=None):
    setup_logging()
    parser = argparse.ArgumentParser(
        prog="agentblame",
        description="agentblame: line-level attribution of AI-written code",
    )
    parser.add_argument(
        "--version", action="version", version=f"agentblame {VERSION}",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init", help="Initialize agentblame for the current repository")
    sub.add_parser("status", help="Show pending edits and settings")
    sub.add_parser("prune", help="Remove old pending and matched edits")
    sub.add_parser("post-rewrite", help="Carry notes across amend/rebase (called by git hook)")

    # capture --provider <p> [--event E]
    sub_capture = sub.add_parser("capture", help="Stage an editor hook event from stdin")
    # Unknown providers are rejected by capture itself so the hook still exits 0.
    sub_capture.add_argument("--provider", required=True,
                             help=f"Tool that emitted the event ({', '.join(PROVIDER_CHOICES)})")
    sub_capture.add_argument("--event", default=None, help="Hook event name")

    # process [SHA] [--hook]
    sub_process = sub.add_parser("process", help="Attribute a commit and attach its note")
    sub_process.add_argument("sha", nargs="?", default="HEAD", help="Commit (default: HEAD)")
    sub_process.add_argument("--hook", action="store_true", default=False,
                             help="Silent mode for the post-commit hook")

    # transfer-notes
    sub_transfer = sub.add_parser("transfer-notes",
                                  help="Carry notes onto a merged pull request (CI)")
    sub_transfer.add_argument("--base", default=None, help="PR base SHA (env BASE_SHA)")
    sub_transfer.add_argument("--head", default=None, help="PR head SHA (env HEAD_SHA)")
    sub_transfer.add_argument("--merge", default=None, help="Merge result SHA (env MERGE_SHA)")
    sub_transfer.add_argument("--pr", default=None, help="PR number (env PR_NUMBER)")
    sub_transfer.add_argument("--title", default=None, help="PR title (env PR_TITLE)")
    sub_transfer.add_argument("--no-push", action="store_true", default=False,
                              help="Do not push notes afterwards")

    # sync [--dry-run] [--remote R]
    sub_sync = sub.add_parser("sync", help="Transfer notes for merges CI missed")
    sub_sync.add_argument("--dry-run", action="store_true", default=False,
                          help="Show what would be transferred")
    sub_sync.add_argument("--remote", default=None, help="Remote (default: from config)")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    dispatch = {
        "init": cmd_init,
        "status": cmd_status,
        "capture": cmd_capture,
        "process": cmd_process,
        "post-rewrite": cmd_post_rewrite,
        "transfer-notes": cmd_transfer_notes,
        "sync": cmd_sync,
        "prune": cmd_prune,
    }
    dispatch[args.command](args)


if __name__ == "__main__":
    main()
