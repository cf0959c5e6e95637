"""Tests for the attribution note format and git notes storage."""

import json

import pytest

from agent_blame.models import (
    NOTES_VERSION,
    GitNotesAttribution,
    MatchType,
    Provider,
    RangeAttribution,
)
from agent_blame.notes import (
    NOTES_REF,
    fetch_notes,
    has_note,
    list_noted_commits,
    push_notes,
    read_note,
    write_note,
)
from conftest import run_git


def _attr(path="src/app.py", start=1, end=3, provider=Provider.CLAUDE_CODE,
          match_type=MatchType.EXACT_HASH, confidence=1.0):
    return RangeAttribution(
        path=path,
        start_line=start,
        end_line=end,
        provider=provider,
        model="claude-sonnet-4",
        confidence=confidence,
        match_type=match_type,
        content_hash="sha256:" + "0" * 64,
    )


# ===================================================================
# wire format
# ===================================================================

def test_note_json_shape():
    note = GitNotesAttribution(timestamp="2026-01-01T00:00:00+00:00", attributions=[_attr()])
    data = json.loads(note.to_json())

    assert data["version"] == NOTES_VERSION == 2
    assert data["timestamp"] == "2026-01-01T00:00:00+00:00"
    assert data["attributions"] == [{
        "path": "src/app.py",
        "startLine": 1,
        "endLine": 3,
        "category": "ai_generated",
        "provider": "claudeCode",
        "model": "claude-sonnet-4",
        "confidence": 1.0,
        "matchType": "exact_hash",
        "contentHash": "sha256:" + "0" * 64,
    }]


def test_from_dict_round_trip():
    note = GitNotesAttribution.create([
        _attr(),
        _attr(path="b.ts", start=7, end=7, provider=Provider.CURSOR,
              match_type=MatchType.MOVE_DETECTED, confidence=0.85),
    ])
    assert GitNotesAttribution.from_dict(json.loads(note.to_json())) == note


@pytest.mark.parametrize("patch", [
    {"startLine": 0},
    {"endLine": 0},
    {"startLine": True},
    {"path": ""},
    {"provider": "copilot"},
    {"matchType": "fuzzy"},
    {"category": "human"},
    {"confidence": "high"},
    {"model": 3},
    {"contentHash": None},
])
def test_invalid_attribution_rejected(patch):
    data = _attr(start=2, end=4).to_note_dict()
    data.update(patch)
    with pytest.raises(ValueError):
        RangeAttribution.from_note_dict(data)


@pytest.mark.parametrize("data", [
    [],
    {"version": 1, "timestamp": "t", "attributions": []},
    {"version": "2", "timestamp": "t", "attributions": []},
    {"version": 2, "attributions": []},
    {"version": 2, "timestamp": "t", "attributions": {}},
])
def test_invalid_note_rejected(data):
    with pytest.raises(ValueError):
        GitNotesAttribution.from_dict(data)


def test_null_model_allowed():
    data = _attr().to_note_dict()
    data["model"] = None
    assert RangeAttribution.from_note_dict(data).model is None


# ===================================================================
# git notes
# ===================================================================

@pytest.mark.integration
def test_write_and_read(git_repo):
    sha = run_git(git_repo, "rev-parse", "HEAD")
    assert read_note(git_repo, sha) is None
    assert not has_note(git_repo, sha)

    written = write_note(git_repo, sha, [_attr()])
    assert written is not None
    assert read_note(git_repo, sha) == written
    assert has_note(git_repo, sha)
    assert list_noted_commits(git_repo) == {sha}


@pytest.mark.integration
def test_write_replaces_existing_note(git_repo):
    sha = run_git(git_repo, "rev-parse", "HEAD")
    write_note(git_repo, sha, [_attr()])
    write_note(git_repo, sha, [_attr(start=10, end=12)])

    note = read_note(git_repo, sha)
    assert [(a.start_line, a.end_line) for a in note.attributions] == [(10, 12)]


@pytest.mark.integration
def test_write_to_unknown_commit_fails(git_repo):
    assert write_note(git_repo, "f" * 40, [_attr()]) is None
    blob = run_git(git_repo, "hash-object", "-w", "--stdin", input="not a commit\n")
    assert write_note(git_repo, blob, [_attr()]) is None
    assert list_noted_commits(git_repo) == set()


@pytest.mark.integration
@pytest.mark.parametrize("body", [
    "not json",
    json.dumps({"version": 1, "timestamp": "t", "attributions": []}),
])
def test_unreadable_notes_read_as_absent(git_repo, body):
    sha = run_git(git_repo, "rev-parse", "HEAD")
    run_git(git_repo, "notes", f"--ref={NOTES_REF}", "add", "-m", body, sha)
    assert read_note(git_repo, sha) is None
    assert has_note(git_repo, sha)


@pytest.mark.integration
def test_push_and_fetch(git_repo, tmp_path):
    remote = tmp_path / "remote.git"
    run_git(tmp_path, "init", "-q", "--bare", str(remote))
    run_git(git_repo, "remote", "add", "origin", str(remote))
    run_git(git_repo, "push", "-q", "origin", "main")

    sha = run_git(git_repo, "rev-parse", "HEAD")
    write_note(git_repo, sha, [_attr()])
    assert push_notes(git_repo)
    assert run_git(remote, "rev-parse", NOTES_REF)

    clone = tmp_path / "clone"
    run_git(tmp_path, "clone", "-q", str(remote), str(clone))
    assert read_note(clone, sha) is None
    assert fetch_notes(clone)
    assert read_note(clone, sha) is not None


@pytest.mark.integration
def test_remote_failures_return_false(git_repo):
    assert not fetch_notes(git_repo, "nowhere")
    assert not push_notes(git_repo, "nowhere")
