"""
Digest export parsing.

A digest is plain text alternating a bare headword line with a link-style
reference line naming the book it came from:

    swoon
    [Book.epub](Document/Book.epub)

Parsing is a pure text transform. Malformed lines are skipped; nothing here
raises on bad input.
"""

from __future__ import annotations

import re
from typing import List, Optional

from digest_anki.models import DigestEntry

_DISPLAY_TEXT = re.compile(r"\[([^\]]+)\]\([^)]+\)")


def is_reference_line(line: str) -> bool:
    """True when `[`, `](` and `)` appear in that order."""
    open_idx = line.find("[")
    if open_idx < 0:
        return False
    mid_idx = line.find("](", open_idx + 1)
    if mid_idx < 0:
        return False
    return line.find(")", mid_idx + 2) >= 0


def extract_display_text(line: str) -> Optional[str]:
    """Return the trimmed `[display]` part of a reference line, if any."""
    match = _DISPLAY_TEXT.search(line)
    if not match:
        return None
    text = match.group(1).strip()
    return text or None


def parse_digest(text: str, source_label: str) -> List[DigestEntry]:
    """Turn digest text into ordered entries.

    A headword only counts when the very next non-blank line is a reference
    line. Duplicate words are kept; the entry store dedups.
    """
    lines = [line.strip() for line in text.splitlines()]
    lines = [line for line in lines if line]

    entries: List[DigestEntry] = []
    for idx, line in enumerate(lines):
        if is_reference_line(line):
            continue
        if idx + 1 >= len(lines):
            break
        next_line = lines[idx + 1]
        if not is_reference_line(next_line):
            continue
        book = extract_display_text(next_line)
        if book:
            entries.append(DigestEntry.create(line, book, source_label))

    return entries


__all__ = ["parse_digest", "is_reference_line", "extract_display_text"]
