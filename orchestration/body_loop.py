from __future__ import annotations

import structlog

from orchestration.models import ParagraphOutcome, PipelineState
from processing.markers import parse_markers

logger = structlog.get_logger(__name__)


def apply_paragraph(state: PipelineState, raw_text: str) -> ParagraphOutcome:
    """Fold one generated paragraph into ``state``.

    Pure in-memory transition of the paragraph loop: strip markers, append
    the clean paragraph, then advance exactly one of book completion, chapter
    boundary or paragraph counter.
    """
    if state.book_complete:
        raise RuntimeError("Cannot add paragraphs to a completed book.")

    marked = parse_markers(raw_text)
    chapter = state.current_chapter

    if marked.text:
        state.book_content.append(marked.text)
    else:
        logger.warning(
            "Generated paragraph was empty after removing markers. Skipping.",
            chapter=chapter,
        )

    if marked.book_end:
        state.book_complete = True
    elif marked.chapter_end:
        state.current_chapter += 1
        state.paragraph_count_in_chapter = 0
    else:
        state.paragraph_count_in_chapter += 1
    state.iterations += 1

    return ParagraphOutcome(
        paragraph=marked.text,
        chapter=chapter,
        chapter_ended=marked.chapter_end,
        book_ended=marked.book_end,
    )
