"""Shared pytest fixtures: throwaway git repositories and pending edit stores."""

import subprocess
from pathlib import Path
from typing import Callable

import pytest

from agent_blame.capture import build_edit, diff_new_side
from agent_blame.config import DATA_DIR_NAME
from agent_blame.models import CapturedEdit, EditType, Provider
from agent_blame.store import PendingEditStore


def run_git(repo: Path, *args: str, input: str | None = None) -> str:
    result = subprocess.run(
        ["git", *args],
        cwd=repo, capture_output=True, text=True, input=input, check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """An empty git repository on branch main, with an initial commit."""
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)

    root = tmp_path / "repo"
    root.mkdir()
    run_git(root, "init", "-q")
    run_git(root, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(root, "config", "user.name", "Test User")
    run_git(root, "config", "user.email", "test@example.com")
    run_git(root, "config", "commit.gpgsign", "false")
    run_git(root, "config", "core.hooksPath", str(tmp_path / "no-hooks"))

    (root / ".gitignore").write_text(f"{DATA_DIR_NAME}/\n")
    run_git(root, "add", ".gitignore")
    run_git(root, "commit", "-q", "-m", "initial")
    return root


@pytest.fixture
def repo(git_repo: Path) -> Path:
    """A git repository initialised for agentblame."""
    (git_repo / DATA_DIR_NAME).mkdir()
    return git_repo


@pytest.fixture
def git(repo: Path) -> Callable[..., str]:
    """Run git inside ``repo``."""
    def _git(*args: str, input: str | None = None) -> str:
        return run_git(repo, *args, input=input)
    return _git


@pytest.fixture
def commit(repo: Path) -> Callable[..., str]:
    """Write files (``{path: content}``, None deletes) and commit them.
    Returns the new commit SHA."""
    def _commit(files: dict[str, str | None], message: str = "change") -> str:
        for rel, content in files.items():
            path = repo / rel
            if content is None:
                path.unlink()
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        run_git(repo, "add", "-A")
        run_git(repo, "commit", "-q", "-m", message)
        return run_git(repo, "rev-parse", "HEAD")
    return _commit


@pytest.fixture
def store(tmp_path: Path):
    """A pending edit store in a scratch directory."""
    with PendingEditStore(tmp_path / "store" / "agentblame.db") as s:
        yield s


@pytest.fixture
def repo_store(repo: Path):
    with PendingEditStore.for_repo(repo) as s:
        yield s


@pytest.fixture
def make_edit() -> Callable[..., CapturedEdit]:
    """Build a CapturedEdit whose every line counts as added."""
    def _make(
        file_path: str,
        text: str,
        provider: Provider = Provider.CLAUDE_CODE,
        model: str | None = "claude-sonnet-4",
        timestamp: str | None = None,
    ) -> CapturedEdit:
        edit = build_edit(provider, file_path, model, diff_new_side(None, text, 1),
                          EditType.ADDITION, timestamp=timestamp)
        assert edit is not None
        return edit
    return _make
