# processing/markers.py
"""Detection and removal of the chapter/book completion markers."""

from __future__ import annotations

import re
from dataclasses import dataclass

CHAPTER_END_MARKER = "END OF THE CHAPTER"
BOOK_END_MARKER = "END OF THE BOOK"

# One pass over both markers, so removal order cannot matter.
_MARKER_RE = re.compile(
    "|".join(re.escape(m) for m in (CHAPTER_END_MARKER, BOOK_END_MARKER))
)


@dataclass(frozen=True)
class MarkedText:
    """Generated text split into clean prose and the markers it carried."""

    text: str
    chapter_end: bool
    book_end: bool


def strip_markers(text: str) -> str:
    """Remove every marker and the whitespace seams left behind.

    Text without markers is only stripped at its ends.
    """
    cleaned = text.strip()
    if not _MARKER_RE.search(cleaned):
        return cleaned
    # Closing a seam can splice a new marker together, so repeat until none remain.
    while True:
        cleaned = _MARKER_RE.sub(" ", cleaned)
        cleaned = re.sub(r"[ \t]+\n", "\n", cleaned)
        cleaned = re.sub(r"\n[ \t]+", "\n", cleaned)
        cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
        cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
        if not _MARKER_RE.search(cleaned):
            return cleaned


def parse_markers(text: str) -> MarkedText:
    return MarkedText(
        text=strip_markers(text),
        chapter_end=CHAPTER_END_MARKER in text,
        book_end=BOOK_END_MARKER in text,
    )
