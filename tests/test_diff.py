"""Tests for unified diff parsing."""

import pytest

from agent_blame.diff import get_commit_hunks, parse_deleted_blocks, parse_diff
from agent_blame.hashing import compute_hash

TWO_FILES = """\
diff --git a/src/app.py b/src/app.py
index 1111111..2222222 100644
--- a/src/app.py
+++ b/src/app.py
@@ -1,0 +2,2 @@
+import os
+import sys
@@ -10,2 +12,3 @@
-old_a()
-old_b()
+new_a()
+
+new_b()
diff --git a/README.md b/README.md
new file mode 100644
index 0000000..3333333
--- /dev/null
+++ b/README.md
@@ -0,0 +1 @@
+# Title
"""


def test_parse_diff_hunks():
    hunks = parse_diff(TWO_FILES)
    assert [(h.path, h.start_line, h.end_line) for h in hunks] == [
        ("src/app.py", 2, 3),
        ("src/app.py", 12, 14),
        ("README.md", 1, 1),
    ]
    assert hunks[0].content == "import os\nimport sys"
    assert hunks[0].content_hash == compute_hash("import os\nimport sys")
    assert [line.line_number for line in hunks[1].lines] == [12, 13, 14]


def test_whitespace_only_added_lines_stay_in_hunk():
    hunk = parse_diff(TWO_FILES)[1]
    assert [line.content for line in hunk.lines] == ["new_a()", "", "new_b()"]


def test_context_line_splits_run():
    diff = """\
diff --git a/f.py b/f.py
--- a/f.py
+++ b/f.py
@@ -1,3 +1,5 @@
 a
+b
 c
+d
+e
"""
    hunks = parse_diff(diff)
    assert [(h.start_line, h.end_line) for h in hunks] == [(2, 2), (4, 5)]


def test_header_lookalikes_inside_hunk_body():
    diff = """\
diff --git a/notes.txt b/notes.txt
--- a/notes.txt
+++ b/notes.txt
@@ -1,3 +1,2 @@
 keep
--- divider
-++ plus
+++ added
"""
    hunks = parse_diff(diff)
    assert len(hunks) == 1
    assert hunks[0].path == "notes.txt"
    assert hunks[0].start_line == 2
    assert hunks[0].content == "++ added"

    blocks = parse_deleted_blocks(diff, min_lines=1)
    assert len(blocks) == 1
    assert blocks[0].path == "notes.txt"
    assert blocks[0].start_line == 2
    assert blocks[0].lines == ["-- divider", "++ plus"]


def test_deleted_blocks_need_three_lines():
    diff = """\
diff --git a/a.py b/a.py
--- a/a.py
+++ b/a.py
@@ -5,3 +4,0 @@
-    one()
-    two()
-    three()
@@ -20,2 +16,0 @@
-x
-y
"""
    blocks = parse_deleted_blocks(diff)
    assert len(blocks) == 1
    assert blocks[0].start_line == 5
    assert blocks[0].normalized_content == "one()\ntwo()\nthree()"


def test_deleted_file():
    diff = """\
diff --git a/gone.py b/gone.py
deleted file mode 100644
--- a/gone.py
+++ /dev/null
@@ -1,3 +0,0 @@
-a
-b
-c
"""
    assert parse_diff(diff) == []
    blocks = parse_deleted_blocks(diff)
    assert [(b.path, b.start_line) for b in blocks] == [("gone.py", 1)]


def test_no_newline_marker_is_ignored():
    diff = """\
diff --git a/f b/f
--- a/f
+++ b/f
@@ -1 +1 @@
-old
\\ No newline at end of file
+new
\\ No newline at end of file
"""
    hunks = parse_diff(diff)
    assert [(h.start_line, h.content) for h in hunks] == [(1, "new")]


def test_empty_diff():
    assert parse_diff("") == []
    assert parse_deleted_blocks("") == []


@pytest.mark.integration
def test_get_commit_hunks(repo, commit):
    sha = commit({"src/app.py": "a = 1\nb = 2\n"})
    sha2 = commit({"src/app.py": "a = 1\nx = 9\nb = 2\n"})

    hunks = get_commit_hunks(repo, sha)
    assert [(h.path, h.start_line, h.end_line) for h in hunks] == [("src/app.py", 1, 2)]

    hunks = get_commit_hunks(repo, sha2)
    assert [(h.path, h.start_line, h.content) for h in hunks] == [("src/app.py", 2, "x = 9")]


@pytest.mark.integration
def test_get_commit_hunks_root_commit(git_repo):
    from conftest import run_git

    root = run_git(git_repo, "rev-list", "--max-parents=0", "HEAD")
    hunks = get_commit_hunks(git_repo, root)
    assert [(h.path, h.content) for h in hunks] == [(".gitignore", ".agentblame/")]


def test_get_commit_hunks_unknown_commit(tmp_path):
    assert get_commit_hunks(tmp_path, "0" * 40) == []
