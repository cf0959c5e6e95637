"""
Core types for line-level AI attribution.

Everything that crosses a module boundary is one of these dataclasses.
The git-notes wire format (camelCase JSON, version 2) is produced and
validated here and nowhere else.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

NOTES_VERSION = 2
CATEGORY_AI_GENERATED = "ai_generated"


class Provider(str, Enum):
    """AI tool that produced an edit."""

    CURSOR = "cursor"
    CLAUDE_CODE = "claudeCode"
    OPENCODE = "opencode"


class MatchType(str, Enum):
    """How a committed line was tied to a captured edit."""

    EXACT_HASH = "exact_hash"
    NORMALIZED_HASH = "normalized_hash"
    MOVE_DETECTED = "move_detected"


# Single source of truth for confidence; strongest evidence first.
CONFIDENCE: dict[MatchType, float] = {
    MatchType.EXACT_HASH: 1.0,
    MatchType.NORMALIZED_HASH: 0.95,
    MatchType.MOVE_DETECTED: 0.85,
}


class EditType(str, Enum):
    ADDITION = "addition"
    MODIFICATION = "modification"
    REPLACEMENT = "replacement"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# -------------------------------------------------------------------
# Capture
# -------------------------------------------------------------------

@dataclass
class CapturedLine:
    content: str
    hash: str
    hash_normalized: str
    line_number: int | None = None
    context_before: str | None = None
    context_after: str | None = None


@dataclass
class CapturedEdit:
    """One editor tool invocation, reduced to the lines it added."""

    timestamp: str
    provider: Provider
    file_path: str
    model: str | None
    lines: list[CapturedLine]
    content: str
    content_hash: str
    content_hash_normalized: str
    edit_type: EditType
    old_content: str | None = None
    session_id: str | None = None
    tool_use_id: str | None = None


# -------------------------------------------------------------------
# Commit diff
# -------------------------------------------------------------------

@dataclass
class DiffLine:
    line_number: int
    content: str
    hash: str
    hash_normalized: str


@dataclass
class DiffHunk:
    """A contiguous run of added lines in one file of a commit."""

    path: str
    start_line: int
    end_line: int
    content: str
    content_hash: str
    content_hash_normalized: str
    lines: list[DiffLine] = field(default_factory=list)


@dataclass
class DeletedBlock:
    path: str
    start_line: int
    lines: list[str]
    normalized_content: str


@dataclass
class MoveMapping:
    from_path: str
    from_start_line: int
    to_path: str
    to_start_line: int
    line_count: int
    normalized_content: str


@dataclass(frozen=True)
class MoveOrigin:
    from_path: str
    from_line: int


# -------------------------------------------------------------------
# Attribution
# -------------------------------------------------------------------

@dataclass
class LineAttribution:
    path: str
    line: int
    provider: Provider
    model: str | None
    confidence: float
    match_type: MatchType
    content_hash: str


@dataclass
class RangeAttribution:
    path: str
    start_line: int
    end_line: int
    provider: Provider
    model: str | None
    confidence: float
    match_type: MatchType
    content_hash: str

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    def to_note_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "category": CATEGORY_AI_GENERATED,
            "provider": self.provider.value,
            "model": self.model,
            "confidence": self.confidence,
            "matchType": self.match_type.value,
            "contentHash": self.content_hash,
        }

    @classmethod
    def from_note_dict(cls, data: Any) -> RangeAttribution:
        """Parse one attribution entry of a note.  Raises ValueError."""
        if not isinstance(data, dict):
            raise ValueError("attribution must be an object")

        path = data.get("path")
        start = data.get("startLine")
        end = data.get("endLine")
        model = data.get("model")
        confidence = data.get("confidence")
        content_hash = data.get("contentHash")

        if not isinstance(path, str) or not path:
            raise ValueError("attribution.path must be a non-empty string")
        if not _is_int(start) or not _is_int(end) or start < 1 or end < start:
            raise ValueError(f"invalid line range {start!r}-{end!r}")
        if data.get("category", CATEGORY_AI_GENERATED) != CATEGORY_AI_GENERATED:
            raise ValueError(f"unknown category {data.get('category')!r}")
        if model is not None and not isinstance(model, str):
            raise ValueError("attribution.model must be a string or null")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ValueError("attribution.confidence must be a number")
        if not isinstance(content_hash, str):
            raise ValueError("attribution.contentHash must be a string")

        return cls(
            path=path,
            start_line=start,
            end_line=end,
            provider=Provider(data.get("provider")),
            model=model,
            confidence=float(confidence),
            match_type=MatchType(data.get("matchType")),
            content_hash=content_hash,
        )


@dataclass
class GitNotesAttribution:
    """The note attached to one commit under the attribution notes ref."""

    timestamp: str
    attributions: list[RangeAttribution]
    version: int = NOTES_VERSION

    @classmethod
    def create(cls, attributions: list[RangeAttribution]) -> GitNotesAttribution:
        return cls(timestamp=utc_now(), attributions=list(attributions))

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "attributions": [a.to_note_dict() for a in self.attributions],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> GitNotesAttribution:
        """Validate a decoded note.  Raises ValueError on any malformed field."""
        if not isinstance(data, dict):
            raise ValueError("note must be an object")
        version = data.get("version")
        if not _is_int(version) or version != NOTES_VERSION:
            raise ValueError(f"unsupported note version {version!r}")
        timestamp = data.get("timestamp")
        if not isinstance(timestamp, str):
            raise ValueError("note.timestamp must be a string")
        raw = data.get("attributions")
        if not isinstance(raw, list):
            raise ValueError("note.attributions must be a list")
        return cls(
            timestamp=timestamp,
            attributions=[RangeAttribution.from_note_dict(a) for a in raw],
            version=version,
        )


@dataclass
class MatchResult:
    """Outcome of matching one commit against pending edits."""

    sha: str
    attributions: list[RangeAttribution]
    unmatched_lines: int
    total_lines: int
    matched_edit_ids: list[int] = field(default_factory=list)

    @property
    def ai_lines(self) -> int:
        return self.total_lines - self.unmatched_lines


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
