"""
Capture: turn one editor/agent hook event into hashed CapturedEdits and
stage them in the pending edit store of the repository that owns the file.

Payloads are parsed into one variant per provider at the boundary:

    cursor     afterFileEdit           old_string/new_string pairs
    claude     PostToolUse             structuredPatch hunks from the tool response
    opencode   write / edit            full before/after file content

Anything else is rejected (PayloadError) or ignored.  ``run_capture`` never
raises: a broken hook must not block the tool that invoked it.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .config import find_data_dir
from .hashing import compute_hash, compute_normalized_hash, is_blank
from .linediff import added_line_indices, determine_edit_type, split_lines
from .models import CapturedEdit, CapturedLine, EditType, Provider, utc_now
from .store import PendingEditStore

logger = logging.getLogger(__name__)

CONTEXT_LINES = 3
CLAUDE_MODEL_PLACEHOLDER = "claude"
CLAUDE_FILE_TOOLS = ("Write", "Edit", "MultiEdit")
OPENCODE_EVENTS = ("write", "edit")


class PayloadError(ValueError):
    """A hook payload does not have the shape its provider promises."""


# (line_number, text, added) for every known line on the new side of an edit
NewSide = list[tuple[int | None, str, bool]]


# -------------------------------------------------------------------
# Field helpers
# -------------------------------------------------------------------

def _require_str(data: dict, key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise PayloadError(f"missing or invalid '{key}'")
    return value


def _optional_str(data: dict, *keys: str) -> str | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _positive_int(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 1:
        return value
    return None


# -------------------------------------------------------------------
# Edit construction
# -------------------------------------------------------------------

def _context(texts: list[str], start: int, stop: int) -> str | None:
    start = max(start, 0)
    return "\n".join(texts[start:stop]) or None


def build_edit(
    provider: Provider,
    file_path: str,
    model: str | None,
    new_side: NewSide,
    edit_type: EditType,
    old_content: str | None = None,
    timestamp: str | None = None,
    session_id: str | None = None,
    tool_use_id: str | None = None,
) -> CapturedEdit | None:
    """Hash the added lines of ``new_side`` into one CapturedEdit.

    Returns None when nothing but whitespace was added.
    """
    texts = [text for _, text, _ in new_side]
    added_texts: list[str] = []
    lines: list[CapturedLine] = []

    for i, (line_number, text, added) in enumerate(new_side):
        if not added:
            continue
        added_texts.append(text)
        if is_blank(text):
            continue
        lines.append(CapturedLine(
            content=text,
            hash=compute_hash(text),
            hash_normalized=compute_normalized_hash(text),
            line_number=line_number,
            context_before=_context(texts, i - CONTEXT_LINES, i),
            context_after=_context(texts, i + 1, i + 1 + CONTEXT_LINES),
        ))

    if not lines:
        return None

    content = "\n".join(added_texts)
    return CapturedEdit(
        timestamp=timestamp or utc_now(),
        provider=provider,
        file_path=file_path,
        model=model,
        lines=lines,
        content=content,
        content_hash=compute_hash(content),
        content_hash_normalized=compute_normalized_hash(content),
        edit_type=edit_type,
        old_content=old_content or None,
        session_id=session_id,
        tool_use_id=tool_use_id,
    )


def diff_new_side(old_text: str | None, new_text: str | None,
                  first_line: int | None = 1) -> NewSide:
    """New-side view of an old/new text pair.

    ``first_line`` is the file line number of the first new line, or None
    when the position of the text in the file is unknown.
    """
    new_lines = split_lines(new_text)
    added = set(added_line_indices(split_lines(old_text), new_lines))
    return [
        (first_line + i if first_line is not None else None, text, i in added)
        for i, text in enumerate(new_lines)
    ]


# -------------------------------------------------------------------
# Cursor
# -------------------------------------------------------------------

@dataclass
class CursorEdit:
    old_string: str
    new_string: str
    start_line: int | None = None


@dataclass
class CursorPayload:
    file_path: str
    edits: list[CursorEdit]
    model: str | None = None
    conversation_id: str | None = None
    generation_id: str | None = None

    @classmethod
    def parse(cls, data: dict) -> CursorPayload:
        raw_edits = data.get("edits")
        if not isinstance(raw_edits, list):
            raise PayloadError("missing or invalid 'edits'")
        edits = []
        for raw in raw_edits:
            if not isinstance(raw, dict):
                raise PayloadError("edit must be an object")
            old = raw.get("old_string") or ""
            new = raw.get("new_string") or ""
            if not isinstance(old, str) or not isinstance(new, str):
                raise PayloadError("old_string/new_string must be strings")
            rng = raw.get("range")
            start = _positive_int(rng.get("start_line_number")) if isinstance(rng, dict) else None
            edits.append(CursorEdit(old_string=old, new_string=new, start_line=start))
        return cls(
            file_path=_require_str(data, "file_path"),
            edits=edits,
            model=_optional_str(data, "model"),
            conversation_id=_optional_str(data, "conversation_id"),
            generation_id=_optional_str(data, "generation_id"),
        )

    def to_edits(self, timestamp: str) -> list[CapturedEdit]:
        result = []
        for edit in self.edits:
            if not edit.new_string:
                continue
            captured = build_edit(
                Provider.CURSOR,
                self.file_path,
                self.model,
                diff_new_side(edit.old_string, edit.new_string, edit.start_line),
                determine_edit_type(edit.old_string, edit.new_string),
                old_content=edit.old_string,
                timestamp=timestamp,
                session_id=self.conversation_id,
            )
            if captured is not None:
                result.append(captured)
        return result


# -------------------------------------------------------------------
# Claude Code
# -------------------------------------------------------------------

@dataclass
class PatchHunk:
    new_start: int
    lines: list[str]

    @classmethod
    def parse(cls, data: Any) -> PatchHunk:
        if not isinstance(data, dict):
            raise PayloadError("patch hunk must be an object")
        new_start = data.get("newStart")
        lines = data.get("lines")
        if not isinstance(new_start, int) or isinstance(new_start, bool) or new_start < 0:
            raise PayloadError("patch hunk needs an integer 'newStart'")
        if not isinstance(lines, list) or not all(isinstance(line, str) for line in lines):
            raise PayloadError("patch hunk needs a list of 'lines'")
        return cls(new_start=new_start, lines=lines)

    def new_side(self) -> NewSide:
        # newStart is 0 only for a hunk that adds nothing to an empty file.
        cursor = max(self.new_start, 1)
        side: NewSide = []
        for raw in self.lines:
            prefix, text = raw[:1], raw[1:]
            if prefix == "+":
                side.append((cursor, text, True))
                cursor += 1
            elif prefix == " ":
                side.append((cursor, text, False))
                cursor += 1
            # "-" lines and "\ No newline" markers do not exist on the new side
        return side

    def old_text(self) -> str:
        return "\n".join(raw[1:] for raw in self.lines if raw[:1] in ("-", " "))

    def new_text(self) -> str:
        return "\n".join(raw[1:] for raw in self.lines if raw[:1] in ("+", " "))


@dataclass
class ClaudePayload:
    tool_name: str
    file_path: str
    hunks: list[PatchHunk]
    created_content: str | None = None
    transcript_path: str | None = None
    session_id: str | None = None
    tool_use_id: str | None = None

    @classmethod
    def parse(cls, data: dict) -> ClaudePayload:
        tool_input = data.get("tool_input")
        tool_response = data.get("tool_response")
        if not isinstance(tool_input, dict):
            raise PayloadError("missing 'tool_input'")
        if not isinstance(tool_response, dict):
            raise PayloadError("missing 'tool_response'")
        # Without the patch we cannot tell which lines the tool wrote.
        if "structuredPatch" not in tool_response:
            raise PayloadError("tool_response has no 'structuredPatch'")
        raw_patch = tool_response["structuredPatch"]
        if raw_patch is None:
            raw_patch = []
        if not isinstance(raw_patch, list):
            raise PayloadError("'structuredPatch' must be a list")

        created = None
        if tool_response.get("type") == "create" and not raw_patch:
            created = tool_input.get("content")
            if not isinstance(created, str):
                created = tool_response.get("content")
            if not isinstance(created, str):
                raise PayloadError("created file has no 'content'")

        return cls(
            tool_name=_require_str(data, "tool_name"),
            file_path=_require_str(tool_input, "file_path"),
            hunks=[PatchHunk.parse(h) for h in raw_patch],
            created_content=created,
            transcript_path=_optional_str(data, "transcript_path"),
            session_id=_optional_str(data, "session_id"),
            tool_use_id=_optional_str(data, "tool_use_id"),
        )

    def to_edits(self, timestamp: str) -> list[CapturedEdit]:
        model = model_from_transcript(self.transcript_path)
        common = dict(
            timestamp=timestamp,
            session_id=self.session_id,
            tool_use_id=self.tool_use_id,
        )

        if self.created_content is not None:
            side = diff_new_side(None, self.created_content, 1)
            edit = build_edit(Provider.CLAUDE_CODE, self.file_path, model, side,
                              EditType.ADDITION, **common)
            return [edit] if edit is not None else []

        result = []
        for hunk in self.hunks:
            old_text = hunk.old_text()
            edit = build_edit(
                Provider.CLAUDE_CODE,
                self.file_path,
                model,
                hunk.new_side(),
                determine_edit_type(old_text, hunk.new_text()),
                old_content=old_text,
                **common,
            )
            if edit is not None:
                result.append(edit)
        return result


def model_from_transcript(transcript_path: str | None) -> str:
    """Most recent model recorded in a Claude Code transcript (JSONL).

    Scans from the newest entry backwards.  Falls back to a generic
    placeholder when the transcript is missing or names no model.
    """
    if not transcript_path:
        return CLAUDE_MODEL_PLACEHOLDER
    try:
        text = Path(transcript_path).expanduser().read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug("transcript unreadable: %s", e)
        return CLAUDE_MODEL_PLACEHOLDER

    for raw in reversed(text.splitlines()):
        raw = raw.strip()
        if not raw:
            continue
        try:
            entry = json.loads(raw)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue
        message = entry.get("message")
        model = message.get("model") if isinstance(message, dict) else None
        if not isinstance(model, str):
            model = entry.get("model")
        # "<synthetic>" marks messages the client generated itself
        if isinstance(model, str) and model and not model.startswith("<"):
            return model
    return CLAUDE_MODEL_PLACEHOLDER


# -------------------------------------------------------------------
# OpenCode
# -------------------------------------------------------------------

@dataclass
class OpenCodePayload:
    event: str
    file_path: str
    after: str
    before: str | None = None
    model: str | None = None
    session_id: str | None = None

    @classmethod
    def parse(cls, data: dict, event: str) -> OpenCodePayload:
        file_path = _optional_str(data, "file_path", "filePath")
        if file_path is None:
            raise PayloadError("missing 'file_path'")
        after = data.get("after", data.get("content"))
        if not isinstance(after, str):
            raise PayloadError("missing 'after' content")
        before = data.get("before")
        if before is not None and not isinstance(before, str):
            raise PayloadError("'before' must be a string")
        if event == "edit" and before is None:
            raise PayloadError("edit event without 'before' content")

        model = data.get("model")
        if isinstance(model, dict):
            model = model.get("modelID") or model.get("id")
        return cls(
            event=event,
            file_path=file_path,
            after=after,
            before=before,
            model=model if isinstance(model, str) and model else None,
            session_id=_optional_str(data, "session_id", "sessionID"),
        )

    def to_edits(self, timestamp: str) -> list[CapturedEdit]:
        edit = build_edit(
            Provider.OPENCODE,
            self.file_path,
            self.model,
            diff_new_side(self.before, self.after, 1),
            determine_edit_type(self.before, self.after),
            old_content=self.before,
            timestamp=timestamp,
            session_id=self.session_id,
        )
        return [edit] if edit is not None else []


# -------------------------------------------------------------------
# Dispatch
# -------------------------------------------------------------------

Payload = CursorPayload | ClaudePayload | OpenCodePayload


def _parse_cursor(data: dict, event: str | None) -> Payload | None:
    event = event or data.get("hook_event_name") or "afterFileEdit"
    # Tab completions arrive as fragments that never line up with a commit.
    if event != "afterFileEdit":
        return None
    return CursorPayload.parse(data)


def _parse_claude(data: dict, event: str | None) -> Payload | None:
    event = event or data.get("hook_event_name") or "PostToolUse"
    if event != "PostToolUse":
        return None
    if data.get("tool_name") not in CLAUDE_FILE_TOOLS:
        return None
    return ClaudePayload.parse(data)


def _parse_opencode(data: dict, event: str | None) -> Payload | None:
    event = event or data.get("event") or data.get("hook_event_name")
    if event not in OPENCODE_EVENTS:
        return None
    return OpenCodePayload.parse(data, event)


_PARSERS = {
    "cursor": _parse_cursor,
    "claude": _parse_claude,
    "opencode": _parse_opencode,
}

PROVIDER_CHOICES = tuple(_PARSERS)


def parse_payload(data: Any, provider: str, event: str | None = None) -> Payload | None:
    """Validate a decoded hook document into its provider's variant.

    Returns None for events that are deliberately not captured.
    """
    parser = _PARSERS.get(provider)
    if parser is None:
        raise PayloadError(f"unknown provider {provider!r}")
    if not isinstance(data, dict):
        raise PayloadError("payload must be a JSON object")
    # Some hook runners wrap the event in {"payload": ...}
    inner = data.get("payload")
    if isinstance(inner, dict):
        data = inner
    return parser(data, event)


# -------------------------------------------------------------------
# Routing and storage
# -------------------------------------------------------------------

@dataclass
class CaptureResult:
    edits: list[CapturedEdit] = field(default_factory=list)
    saved: int = 0
    skipped: int = 0
    error: str | None = None


def _absolute(file_path: str, cwd: str | os.PathLike | None) -> Path:
    path = Path(file_path).expanduser()
    if not path.is_absolute():
        path = Path(cwd or os.getcwd()) / path
    return Path(os.path.normpath(path))


def _save(edits: list[CapturedEdit], result: CaptureResult,
          cwd: str | os.PathLike | None) -> None:
    # Every edit of one event touches the same file, hence the same repo.
    by_dir: dict[Path, list[CapturedEdit]] = {}
    routed: list[CapturedEdit] = []
    for edit in edits:
        absolute = _absolute(edit.file_path, cwd)
        data_dir = find_data_dir(absolute)
        if data_dir is None:
            logger.debug("no .agentblame directory above %s; skipping", absolute)
            result.skipped += 1
            routed.append(edit)
            continue
        relative = Path(os.path.relpath(absolute, data_dir.parent)).as_posix()
        edit = replace(edit, file_path=relative)
        by_dir.setdefault(data_dir, []).append(edit)
        routed.append(edit)

    result.edits = routed
    for data_dir, batch in by_dir.items():
        with PendingEditStore.for_data_dir(data_dir) as store:
            store.insert_edits(batch)
        result.saved += len(batch)


def run_capture(
    raw: str,
    provider: str,
    event: str | None = None,
    cwd: str | os.PathLike | None = None,
) -> CaptureResult:
    """Parse, normalize and stage one hook event.  Never raises."""
    result = CaptureResult()
    if not raw or not raw.strip():
        return result
    try:
        payload = parse_payload(json.loads(raw), provider, event)
        if payload is None:
            return result
        edits = payload.to_edits(utc_now())
        result.edits = edits
        if edits:
            _save(edits, result, cwd)
    except (PayloadError, json.JSONDecodeError) as e:
        result.error = f"invalid {provider} payload: {e}"
    except (sqlite3.Error, OSError) as e:
        result.error = f"could not store edits: {e}"
    except Exception as e:  # the editor must never see a failing hook
        result.error = f"capture failed: {e!r}"

    if result.error:
        result.saved = 0
        logger.debug("%s", result.error)
    else:
        logger.debug("captured %d edit(s), saved %d, skipped %d",
                     len(result.edits), result.saved, result.skipped)
    return result


def capture_from_stdin(provider: str, event: str | None = None) -> CaptureResult:
    """Entry point for editor hooks: the event arrives on stdin."""
    try:
        raw = sys.stdin.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug("could not read hook input: %s", e)
        return CaptureResult(error=str(e))
    return run_capture(raw, provider, event)
