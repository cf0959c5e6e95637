"""
Line hashing shared by capture, diff parsing, matching and reconciliation.

Both sides of every identity comparison go through these two functions, so
a line hashed at capture time and the same line read back from a commit diff
always produce the same digest.
"""

from __future__ import annotations

import hashlib
import re

_WHITESPACE = re.compile(r"\s+")


def compute_hash(content: str) -> str:
    """SHA-256 of the raw content, as ``sha256:<hex>``."""
    h = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return f"sha256:{h}"


def compute_normalized_hash(content: str) -> str:
    """SHA-256 of the content with all whitespace removed.

    Tolerates formatter changes (re-indentation, spacing around operators)
    between what the AI wrote and what was committed.
    """
    return compute_hash(_WHITESPACE.sub("", content))


def is_blank(content: str) -> bool:
    return not content.strip()
