"""Tests for the pending edit store."""

import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from agent_blame.hashing import compute_hash, compute_normalized_hash
from agent_blame.models import MatchType, Provider
from agent_blame.store import STATUS_MATCHED, PendingEditStore, StoreNotConfiguredError


def _ts(days_ago: float) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days_ago)).isoformat()


# ===================================================================
# insert / lookup
# ===================================================================

def test_insert_and_find_exact(store, make_edit):
    edit_id = store.insert_edit(make_edit("src/app.py", "import os\n\nprint(os.sep)\n"))

    match = store.find_by_exact_hash(compute_hash("print(os.sep)"), "src/app.py")
    assert match is not None
    assert match.edit.id == edit_id
    assert match.match_type == MatchType.EXACT_HASH
    assert match.confidence == 1.0
    assert match.line.line_number == 3
    assert match.line.context_before == "import os\n"
    assert store.line_count() == 2  # the blank line is not stored
    assert [line.line_number for line in store.get_edit_lines(edit_id)] == [1, 3]


def test_find_normalized(store, make_edit):
    store.insert_edit(make_edit("a.py", "x = compute(a, b)"))
    assert store.find_by_exact_hash(compute_hash("x=compute(a,b)"), "a.py") is None

    match = store.find_by_normalized_hash(compute_normalized_hash("x=compute(a,b)"), "a.py")
    assert match is not None
    assert match.match_type == MatchType.NORMALIZED_HASH
    assert match.confidence == 0.95


def test_find_line_match_prefers_exact(store, make_edit):
    store.insert_edit(make_edit("a.py", "x = 1", provider=Provider.CURSOR, timestamp=_ts(2)))
    # newer, same file, matches only modulo whitespace
    store.insert_edit(make_edit("a.py", "x  =  1", provider=Provider.OPENCODE, timestamp=_ts(1)))

    match = store.find_line_match(compute_hash("x = 1"), compute_normalized_hash("x = 1"), "a.py")
    assert match.match_type == MatchType.EXACT_HASH
    assert match.edit.provider == Provider.CURSOR


def test_same_file_preferred_over_newer_elsewhere(store, make_edit):
    same = store.insert_edit(make_edit("pkg/util.py", "return None", timestamp=_ts(3)))
    store.insert_edit(make_edit("other.py", "return None", timestamp=_ts(1)))

    match = store.find_by_exact_hash(compute_hash("return None"), "pkg/util.py")
    assert match.edit.id == same

    # basename match counts as the same file
    match = store.find_by_exact_hash(compute_hash("return None"), "elsewhere/util.py")
    assert match.edit.id == same


def test_newest_wins_within_file(store, make_edit):
    store.insert_edit(make_edit("a.py", "pass", timestamp=_ts(3)))
    newest = store.insert_edit(make_edit("a.py", "pass", timestamp=_ts(1)))
    store.insert_edit(make_edit("a.py", "pass", timestamp=_ts(2)))

    assert store.find_by_exact_hash(compute_hash("pass"), "a.py").edit.id == newest


def test_falls_back_to_any_file(store, make_edit):
    edit_id = store.insert_edit(make_edit("a.py", "value = 42"))
    match = store.find_by_exact_hash(compute_hash("value = 42"), "b.py")
    assert match.edit.id == edit_id


def test_insert_edits_is_atomic(store, make_edit):
    good = make_edit("a.py", "ok = True")
    bad = replace(make_edit("a.py", "broken = True"), content=None)
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_edits([good, bad])
    assert store.pending_count() == 0
    assert store.line_count() == 0


# ===================================================================
# mark_matched
# ===================================================================

def test_mark_matched_consumes_edit(store, make_edit):
    edit_id = store.insert_edit(make_edit("a.py", "y = 2"))
    assert store.mark_matched([edit_id, edit_id], "c0ffee") == 1

    assert store.find_by_exact_hash(compute_hash("y = 2"), "a.py") is None
    # still visible when matching the commit that consumed it
    match = store.find_by_exact_hash(compute_hash("y = 2"), "a.py", commit_sha="c0ffee")
    assert match.edit.id == edit_id
    assert store.pending_count() == 0


def test_mark_matched_is_idempotent(store, make_edit):
    edit_id = store.insert_edit(make_edit("a.py", "y = 2"))
    store.mark_matched([edit_id], "first")
    first = store.get_edit(edit_id)

    assert store.mark_matched([edit_id], "second") == 0
    again = store.get_edit(edit_id)
    assert again.matched_commit == "first"
    assert again.matched_at == first.matched_at
    assert store.mark_matched([], "third") == 0


def test_find_edits_by_file_any_status(store, make_edit):
    older = store.insert_edit(make_edit("src/old.py", "a = 1\nb = 2", timestamp=_ts(2)))
    newer = store.insert_edit(make_edit("old.py", "c = 3", timestamp=_ts(1)))
    store.insert_edit(make_edit("unrelated.py", "d = 4"))
    store.mark_matched([older], "abc")

    found = store.find_edits_by_file("src/old.py")
    assert [(edit.id, count) for edit, count in found] == [(newer, 1), (older, 2)]
    assert found[1][0].status == STATUS_MATCHED


# ===================================================================
# prune
# ===================================================================

def test_prune(store, make_edit):
    now = datetime.now(timezone.utc)
    stale = store.insert_edit(make_edit("a.py", "stale = 1", timestamp=(now - timedelta(days=40)).isoformat()))
    fresh = store.insert_edit(make_edit("a.py", "fresh = 1", timestamp=(now - timedelta(days=1)).isoformat()))
    consumed = store.insert_edit(make_edit("a.py", "used = 1", timestamp=(now - timedelta(days=1)).isoformat()))
    store.mark_matched([consumed], "abc")

    result = store.prune(matched_days=7, unmatched_days=30, now=now)
    assert (result.removed, result.kept) == (1, 2)
    assert store.get_edit(stale) is None

    result = store.prune(matched_days=7, unmatched_days=30, now=now + timedelta(days=8))
    assert (result.removed, result.kept) == (1, 1)
    assert store.get_edit(consumed) is None
    assert store.get_edit(fresh) is not None
    # lines go with their edit
    assert store.line_count() == 1


def test_recent_pending(store, make_edit):
    for i in range(7):
        store.insert_edit(make_edit(f"f{i}.py", f"v = {i}", timestamp=_ts(10 - i)))
    recent = store.recent_pending(limit=3)
    assert [edit.file_path for edit in recent] == ["f6.py", "f5.py", "f4.py"]


# ===================================================================
# configuration
# ===================================================================

def test_unconfigured_store_fails_fast(tmp_path):
    with pytest.raises(StoreNotConfiguredError):
        PendingEditStore(None)
    with pytest.raises(StoreNotConfiguredError):
        PendingEditStore.for_data_dir(None)
    with pytest.raises(StoreNotConfiguredError):
        PendingEditStore.for_repo(tmp_path)


def test_for_repo_create(tmp_path):
    with PendingEditStore.for_repo(tmp_path, create=True) as s:
        assert s.pending_count() == 0
    assert (tmp_path / ".agentblame" / "agentblame.db").exists()


def test_consumed_evidence_beats_pending_at_any_strength(store, make_edit):
    consumed = store.insert_edit(make_edit("a.py", "x = 1", timestamp=_ts(2)))
    store.mark_matched([consumed], "c1")
    # newer and an exact match for the committed text
    store.insert_edit(make_edit("a.py", "x=1", provider=Provider.CURSOR, timestamp=_ts(1)))

    line = "x=1"
    match = store.find_line_match(compute_hash(line), compute_normalized_hash(line), "a.py",
                                  commit_sha="c1")
    assert match.edit.id == consumed
    assert match.match_type == MatchType.NORMALIZED_HASH

    other = store.find_line_match(compute_hash(line), compute_normalized_hash(line), "a.py",
                                  commit_sha="c2")
    assert other.edit.provider == Provider.CURSOR
    assert other.match_type == MatchType.EXACT_HASH
