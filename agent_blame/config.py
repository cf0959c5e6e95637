"""
Configuration for agentblame.

Per-repository data directory: <repo>/.agentblame/
    agentblame.db   pending AI edits (SQLite)
    config.json     optional overrides (remote, push_notes, retention)

Environment:
    AGENTBLAME_DEBUG        enable the stderr diagnostic channel
    AGENTBLAME_GIT_TIMEOUT  seconds allowed for each local git call
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

DATA_DIR_NAME = ".agentblame"
DB_FILE_NAME = "agentblame.db"
CONFIG_FILE_NAME = "config.json"

DEFAULT_REMOTE = "origin"
DEFAULT_MATCHED_RETENTION_DAYS = 7
DEFAULT_UNMATCHED_RETENTION_DAYS = 30
DEFAULT_GIT_TIMEOUT = 10.0
REMOTE_GIT_TIMEOUT = 30.0

_TRUTHY = ("1", "true", "yes", "on")


# -------------------------------------------------------------------
# Data directory discovery
# -------------------------------------------------------------------

def data_dir_for_repo(repo_root: str | os.PathLike) -> Path:
    return Path(repo_root) / DATA_DIR_NAME


def find_data_dir(path: str | os.PathLike) -> Path | None:
    """Nearest ancestor ``.agentblame/`` directory for a file, or None.

    ``path`` may name a file that no longer exists (deleted by the edit
    being captured); the search starts from its parent directory then.
    """
    start = Path(path).expanduser()
    if not start.is_absolute():
        start = Path.cwd() / start
    if not start.is_dir():
        start = start.parent

    for candidate in (start, *start.parents):
        data_dir = candidate / DATA_DIR_NAME
        if data_dir.is_dir():
            return data_dir
    return None


# -------------------------------------------------------------------
# Project config
# -------------------------------------------------------------------

def _project_config_path(repo_root: str | os.PathLike) -> Path:
    return data_dir_for_repo(repo_root) / CONFIG_FILE_NAME


def get_project_config(repo_root: str | os.PathLike) -> dict:
    """Load .agentblame/config.json (returns {} if missing or unreadable)."""
    path = _project_config_path(repo_root)
    if path.exists():
        try:
            config = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError):
            return {}
        return config if isinstance(config, dict) else {}
    return {}


def save_project_config(config: dict, repo_root: str | os.PathLike) -> None:
    """Write .agentblame/config.json and update .gitignore."""
    data_dir = data_dir_for_repo(repo_root)
    data_dir.mkdir(parents=True, exist_ok=True)
    (data_dir / CONFIG_FILE_NAME).write_text(json.dumps(config, indent=2) + "\n")
    ensure_gitignore(repo_root)


def ensure_gitignore(repo_root: str | os.PathLike) -> None:
    """Add .agentblame/ to .gitignore if not already present."""
    gitignore = Path(repo_root) / ".gitignore"
    marker = f"{DATA_DIR_NAME}/"

    if gitignore.exists():
        content = gitignore.read_text()
        if marker not in content:
            with open(gitignore, "a") as f:
                if content and not content.endswith("\n"):
                    f.write("\n")
                f.write(f"{marker}\n")
    else:
        gitignore.write_text(f"{marker}\n")


def get_remote(config: dict) -> str:
    remote = config.get("remote")
    return remote if isinstance(remote, str) and remote else DEFAULT_REMOTE


def push_enabled(config: dict) -> bool:
    return config.get("push_notes", True) is not False


def get_retention(config: dict) -> tuple[int, int]:
    """(matched_days, unmatched_days) for the retention sweep."""
    retention = config.get("retention")
    if not isinstance(retention, dict):
        retention = {}
    matched = retention.get("matched_days", DEFAULT_MATCHED_RETENTION_DAYS)
    unmatched = retention.get("unmatched_days", DEFAULT_UNMATCHED_RETENTION_DAYS)
    if not isinstance(matched, int) or matched < 0:
        matched = DEFAULT_MATCHED_RETENTION_DAYS
    if not isinstance(unmatched, int) or unmatched < 0:
        unmatched = DEFAULT_UNMATCHED_RETENTION_DAYS
    return matched, unmatched


# -------------------------------------------------------------------
# Environment
# -------------------------------------------------------------------

def git_timeout() -> float:
    raw = os.environ.get("AGENTBLAME_GIT_TIMEOUT")
    if raw:
        try:
            value = float(raw)
        except ValueError:
            return DEFAULT_GIT_TIMEOUT
        if value > 0:
            return value
    return DEFAULT_GIT_TIMEOUT


def debug_enabled() -> bool:
    return os.environ.get("AGENTBLAME_DEBUG", "").strip().lower() in _TRUTHY


def setup_logging() -> None:
    """Attach the stderr diagnostic handler when AGENTBLAME_DEBUG is set.

    Without it the package logger stays silent: hooks must never write
    noise into the editor or the commit output.
    """
    logger = logging.getLogger("agent_blame")
    if logger.handlers:
        return
    if debug_enabled():
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("agentblame: %(name)s: %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
    else:
        logger.addHandler(logging.NullHandler())
