"""
Pending edit store: the per-repository SQLite staging area for captured AI
edits that no commit has consumed yet.

One ``PendingEditStore`` handle per repository.  Working on another
repository means opening another handle; there is no global connection.
"""

from __future__ import annotations

import logging
import os
import posixpath
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from .config import (
    DB_FILE_NAME,
    DEFAULT_MATCHED_RETENTION_DAYS,
    DEFAULT_UNMATCHED_RETENTION_DAYS,
    data_dir_for_repo,
)
from .models import CONFIDENCE, CapturedEdit, MatchType, Provider, utc_now

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_MATCHED = "matched"

SCHEMA = """
CREATE TABLE IF NOT EXISTS edits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    provider TEXT NOT NULL,
    file_path TEXT NOT NULL,
    model TEXT,
    content TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    content_hash_normalized TEXT NOT NULL,
    edit_type TEXT NOT NULL,
    old_content TEXT,
    status TEXT NOT NULL DEFAULT 'pending',
    matched_commit TEXT,
    matched_at TEXT,
    session_id TEXT,
    tool_use_id TEXT
);

CREATE TABLE IF NOT EXISTS lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    edit_id INTEGER NOT NULL,
    content TEXT NOT NULL,
    hash TEXT NOT NULL,
    hash_normalized TEXT NOT NULL,
    line_number INTEGER,
    context_before TEXT,
    context_after TEXT,
    FOREIGN KEY (edit_id) REFERENCES edits(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_lines_hash ON lines(hash);
CREATE INDEX IF NOT EXISTS idx_lines_hash_normalized ON lines(hash_normalized);
CREATE INDEX IF NOT EXISTS idx_lines_edit_id ON lines(edit_id);
CREATE INDEX IF NOT EXISTS idx_edits_status ON edits(status);
CREATE INDEX IF NOT EXISTS idx_edits_file_path ON edits(file_path);
CREATE INDEX IF NOT EXISTS idx_edits_session_id ON edits(session_id);
"""

# Same file: identical path, or identical basename.
_SAME_FILE_SQL = (
    "(e.file_path = :path OR e.file_path = :name"
    " OR substr(e.file_path, -length(:slash_name)) = :slash_name)"
)

_LINE_COLUMNS = {"hash", "hash_normalized"}


class StoreNotConfiguredError(RuntimeError):
    """The repository has no .agentblame data directory."""


# -------------------------------------------------------------------
# Row types
# -------------------------------------------------------------------

@dataclass
class PendingEdit:
    id: int
    timestamp: str
    provider: Provider
    file_path: str
    model: str | None
    content: str
    content_hash: str
    content_hash_normalized: str
    edit_type: str
    old_content: str | None
    status: str
    matched_commit: str | None
    matched_at: str | None
    session_id: str | None
    tool_use_id: str | None


@dataclass
class PendingLine:
    id: int
    edit_id: int
    content: str
    hash: str
    hash_normalized: str
    line_number: int | None
    context_before: str | None
    context_after: str | None


@dataclass
class LineMatch:
    edit: PendingEdit
    line: PendingLine
    match_type: MatchType

    @property
    def confidence(self) -> float:
        return CONFIDENCE[self.match_type]


@dataclass
class PruneResult:
    removed: int
    kept: int


# -------------------------------------------------------------------
# Store
# -------------------------------------------------------------------

class PendingEditStore:
    """Handle on one repository's ``agentblame.db``."""

    def __init__(self, db_path: str | os.PathLike | None):
        if db_path is None:
            raise StoreNotConfiguredError("agentblame database location is not set")
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), timeout=5.0)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.executescript(SCHEMA)

    @classmethod
    def for_data_dir(cls, data_dir: str | os.PathLike | None) -> PendingEditStore:
        if data_dir is None:
            raise StoreNotConfiguredError("agentblame data directory is not set")
        return cls(Path(data_dir) / DB_FILE_NAME)

    @classmethod
    def for_repo(cls, repo_root: str | os.PathLike, create: bool = False) -> PendingEditStore:
        """Open the store of a repository.

        Without ``create`` the repository must already be initialised
        (``agentblame init``); otherwise StoreNotConfiguredError.
        """
        data_dir = data_dir_for_repo(repo_root)
        if not create and not data_dir.is_dir():
            raise StoreNotConfiguredError(
                f"agentblame is not initialised in {repo_root} (run 'agentblame init')"
            )
        return cls.for_data_dir(data_dir)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> PendingEditStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---------------------------------------------------------------
    # Insert
    # ---------------------------------------------------------------

    def insert_edit(self, edit: CapturedEdit) -> int:
        """Insert an edit and all of its lines in one transaction."""
        with self._conn:
            return self._insert(edit)

    def insert_edits(self, edits: list[CapturedEdit]) -> list[int]:
        """Insert several edits atomically: all of them or none."""
        with self._conn:
            return [self._insert(edit) for edit in edits]

    def _insert(self, edit: CapturedEdit) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO edits (
                timestamp, provider, file_path, model, content,
                content_hash, content_hash_normalized, edit_type, old_content,
                session_id, tool_use_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                edit.timestamp,
                edit.provider.value,
                edit.file_path,
                edit.model,
                edit.content,
                edit.content_hash,
                edit.content_hash_normalized,
                edit.edit_type.value,
                edit.old_content,
                edit.session_id,
                edit.tool_use_id,
            ),
        )
        edit_id = cur.lastrowid
        self._conn.executemany(
            """
            INSERT INTO lines (
                edit_id, content, hash, hash_normalized,
                line_number, context_before, context_after
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    edit_id,
                    line.content,
                    line.hash,
                    line.hash_normalized,
                    line.line_number,
                    line.context_before,
                    line.context_after,
                )
                for line in edit.lines
            ],
        )
        return edit_id

    # ---------------------------------------------------------------
    # Lookup
    # ---------------------------------------------------------------

    def _find_line(self, column: str, value: str, file_path: str,
                   match_type: MatchType, commit_sha: str | None) -> LineMatch | None:
        if column not in _LINE_COLUMNS:
            raise ValueError(f"unknown line column {column!r}")
        row = self._conn.execute(
            f"""
            SELECT
                l.id AS line_id, l.edit_id, l.content AS line_content,
                l.hash, l.hash_normalized, l.line_number,
                l.context_before, l.context_after,
                e.*
            FROM lines l
            JOIN edits e ON l.edit_id = e.id
            WHERE l.{column} = :value
              AND (e.status = 'pending' OR e.matched_commit = :commit)
            ORDER BY
                CASE WHEN e.matched_commit = :commit THEN 0 ELSE 1 END,
                CASE WHEN {_SAME_FILE_SQL} THEN 0 ELSE 1 END,
                e.timestamp DESC,
                e.id DESC
            LIMIT 1
            """,
            {"value": value, "commit": commit_sha, **_path_params(file_path)},
        ).fetchone()
        if row is None:
            return None
        line = PendingLine(
            id=row["line_id"],
            edit_id=row["edit_id"],
            content=row["line_content"],
            hash=row["hash"],
            hash_normalized=row["hash_normalized"],
            line_number=row["line_number"],
            context_before=row["context_before"],
            context_after=row["context_after"],
        )
        return LineMatch(edit=_row_to_edit(row), line=line, match_type=match_type)

    def find_by_exact_hash(self, hash: str, file_path: str,
                           commit_sha: str | None = None) -> LineMatch | None:
        """Most recent pending line with this hash, same file preferred.

        Edits already consumed by ``commit_sha`` still count and win over
        pending ones, so matching the same commit again finds the same
        evidence and leaves later edits for later commits.
        """
        return self._find_line("hash", hash, file_path, MatchType.EXACT_HASH, commit_sha)

    def find_by_normalized_hash(self, hash_normalized: str, file_path: str,
                                commit_sha: str | None = None) -> LineMatch | None:
        return self._find_line("hash_normalized", hash_normalized, file_path,
                               MatchType.NORMALIZED_HASH, commit_sha)

    def find_line_match(self, hash: str, hash_normalized: str, file_path: str,
                        commit_sha: str | None = None) -> LineMatch | None:
        """Exact hash first, then the whitespace-insensitive hash.

        No fuzzy fallback: a line the developer changed is theirs.
        Evidence already consumed by ``commit_sha`` beats a pending edit
        at either strength.
        """
        exact = self.find_by_exact_hash(hash, file_path, commit_sha)
        if commit_sha is None or (exact is not None and exact.edit.matched_commit == commit_sha):
            return exact or self.find_by_normalized_hash(hash_normalized, file_path)
        normalized = self.find_by_normalized_hash(hash_normalized, file_path, commit_sha)
        if normalized is not None and normalized.edit.matched_commit == commit_sha:
            return normalized
        return exact or normalized

    def find_edits_by_file(self, file_path: str) -> list[tuple[PendingEdit, int]]:
        """Every edit ever captured for a file (any status), newest first,
        paired with its line count."""
        rows = self._conn.execute(
            f"""
            SELECT e.*, COUNT(l.id) AS line_count
            FROM edits e
            LEFT JOIN lines l ON l.edit_id = e.id
            WHERE {_SAME_FILE_SQL}
            GROUP BY e.id
            ORDER BY e.timestamp DESC, e.id DESC
            """,
            _path_params(file_path),
        ).fetchall()
        return [(_row_to_edit(row), row["line_count"]) for row in rows]

    def get_edit_lines(self, edit_id: int) -> list[PendingLine]:
        rows = self._conn.execute(
            "SELECT * FROM lines WHERE edit_id = ? ORDER BY id", (edit_id,)
        ).fetchall()
        return [
            PendingLine(
                id=row["id"],
                edit_id=row["edit_id"],
                content=row["content"],
                hash=row["hash"],
                hash_normalized=row["hash_normalized"],
                line_number=row["line_number"],
                context_before=row["context_before"],
                context_after=row["context_after"],
            )
            for row in rows
        ]

    def get_edit(self, edit_id: int) -> PendingEdit | None:
        row = self._conn.execute("SELECT * FROM edits WHERE id = ?", (edit_id,)).fetchone()
        return _row_to_edit(row) if row is not None else None

    # ---------------------------------------------------------------
    # Update
    # ---------------------------------------------------------------

    def mark_matched(self, edit_ids, commit_sha: str) -> int:
        """Mark edits as consumed by a commit.  Idempotent: edits already
        matched keep their original commit and timestamp.  Returns the
        number of edits that changed state."""
        ids = sorted(set(edit_ids))
        if not ids:
            return 0
        matched_at = utc_now()
        with self._conn:
            cur = self._conn.executemany(
                """
                UPDATE edits
                SET status = 'matched', matched_commit = ?, matched_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                [(commit_sha, matched_at, edit_id) for edit_id in ids],
            )
        return cur.rowcount

    # ---------------------------------------------------------------
    # Retention
    # ---------------------------------------------------------------

    def prune(
        self,
        matched_days: int = DEFAULT_MATCHED_RETENTION_DAYS,
        unmatched_days: int = DEFAULT_UNMATCHED_RETENTION_DAYS,
        now: datetime | None = None,
    ) -> PruneResult:
        """Delete matched edits older than ``matched_days`` (by match time)
        and pending edits older than ``unmatched_days`` (by capture time)."""
        if now is None:
            now = datetime.now(timezone.utc)
        matched_cutoff = (now - timedelta(days=matched_days)).isoformat()
        pending_cutoff = (now - timedelta(days=unmatched_days)).isoformat()

        with self._conn:
            before = self._count("SELECT COUNT(*) FROM edits")
            self._conn.execute(
                "DELETE FROM edits WHERE status = 'matched' AND matched_at < ?",
                (matched_cutoff,),
            )
            self._conn.execute(
                "DELETE FROM edits WHERE status = 'pending' AND timestamp < ?",
                (pending_cutoff,),
            )
            after = self._count("SELECT COUNT(*) FROM edits")

        logger.debug("pruned %d edit(s), kept %d", before - after, after)
        return PruneResult(removed=before - after, kept=after)

    # ---------------------------------------------------------------
    # Status
    # ---------------------------------------------------------------

    def pending_count(self) -> int:
        return self._count("SELECT COUNT(*) FROM edits WHERE status = 'pending'")

    def line_count(self) -> int:
        return self._count("SELECT COUNT(*) FROM lines")

    def recent_pending(self, limit: int = 5) -> list[PendingEdit]:
        rows = self._conn.execute(
            """
            SELECT * FROM edits
            WHERE status = 'pending'
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [_row_to_edit(row) for row in rows]

    def _count(self, sql: str) -> int:
        return self._conn.execute(sql).fetchone()[0]


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _path_params(file_path: str) -> dict[str, str]:
    path = file_path.replace("\\", "/")
    name = posixpath.basename(path)
    return {"path": path, "name": name, "slash_name": f"/{name}"}


def _row_to_edit(row: sqlite3.Row) -> PendingEdit:
    return PendingEdit(
        id=row["id"],
        timestamp=row["timestamp"],
        provider=Provider(row["provider"]),
        file_path=row["file_path"],
        model=row["model"],
        content=row["content"],
        content_hash=row["content_hash"],
        content_hash_normalized=row["content_hash_normalized"],
        edit_type=row["edit_type"],
        old_content=row["old_content"],
        status=row["status"],
        matched_commit=row["matched_commit"],
        matched_at=row["matched_at"],
        session_id=row["session_id"],
        tool_use_id=row["tool_use_id"],
    )
