# orchestration/models.py
"""Shared dataclasses for the narrative pipeline."""

from dataclasses import dataclass, field

from config import INITIAL_SUMMARY

NO_PREVIOUS_PARAGRAPH = "No previous paragraphs."


@dataclass
class PipelineState:
    """Everything the controller accumulates over a run.

    ``book_content`` only grows and ``book_complete`` only ever flips from
    False to True. The setup fields are written once, by their own stage.
    """

    keywords: str
    chapter_count: int
    world: str = ""
    locations: str = ""
    characters: str = ""
    chapter_outline: str = ""
    book_content: list[str] = field(default_factory=list)
    summary: str = INITIAL_SUMMARY
    current_chapter: int = 1
    paragraph_count_in_chapter: int = 0
    book_complete: bool = False
    iterations: int = 0

    @property
    def book_text(self) -> str:
        return "\n\n".join(self.book_content)

    @property
    def previous_paragraph(self) -> str:
        """Last paragraph of the current chapter, or a placeholder at its start."""
        if self.paragraph_count_in_chapter == 0 or not self.book_content:
            return NO_PREVIOUS_PARAGRAPH
        return self.book_content[-1]

    @property
    def setup_complete(self) -> bool:
        return all((self.world, self.locations, self.characters, self.chapter_outline))


@dataclass(frozen=True)
class ParagraphOutcome:
    """What a single paragraph did to the state."""

    paragraph: str
    chapter: int
    chapter_ended: bool
    book_ended: bool
