# orchestration/narrative_orchestrator.py
"""Primary controller sequencing the five narrative generation stages."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog
from config import NarrativeSettings
from core.errors import BodyIterationLimitReached, RetriesExhausted
from core.llm_interface import LLMService
from processing.markers import BOOK_END_MARKER, CHAPTER_END_MARKER
from prompt_renderer import render_prompt
from ui.rich_display import RichDisplayManager
from utils.logging import bind_run_context, clear_run_context

from orchestration.body_loop import apply_paragraph
from orchestration.models import PipelineState
from orchestration.output_service import OutputService

logger = structlog.get_logger(__name__)

TOTAL_STAGES = 5


class NarrativeOrchestrator:
    """Drive world, locations, characters, outline and the paragraph loop.

    All remote calls go through ``llm`` one at a time; every prompt embeds
    the committed output of the stages before it.
    """

    def __init__(
        self,
        settings: NarrativeSettings,
        llm: LLMService,
        output_service: OutputService | None = None,
        display: RichDisplayManager | None = None,
        stop_event: asyncio.Event | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.llm = llm
        self.output_service = output_service or OutputService(None)
        self.display = display or RichDisplayManager(enabled=False)
        self.stop_event = stop_event
        self._sleep = sleep
        self.state: PipelineState | None = None

    def _update_display(self, step: str | None = None) -> None:
        state = self.state
        self.display.update(
            keywords=state.keywords if state else None,
            step=step,
            chapter=state.current_chapter if state else None,
            chapter_count=state.chapter_count if state else None,
            paragraph_in_chapter=state.paragraph_count_in_chapter if state else None,
            paragraphs_written=len(state.book_content) if state else None,
            total_tokens=self.llm.usage.total_tokens,
            request_count=self.llm.request_count,
        )

    async def run(self) -> PipelineState:
        """Run every stage and return the final state.

        Raises:
            ConfigurationError: settings are incomplete; no remote call is made.
            RetriesExhausted: a remote call failed on every attempt.
            BodyIterationLimitReached: the paragraph loop hit its ceiling.
            httpx.HTTPStatusError: a status configured as fatal was returned.
        """
        self.settings.ensure_ready_for_run()
        state = PipelineState(
            keywords=self.settings.KEYWORDS.strip(),
            chapter_count=self.settings.CHAPTER_COUNT,
        )
        self.state = state
        bind_run_context(keywords=state.keywords, model=self.llm.model_name)
        try:
            logger.info("--- Starting book writing process ---")
            logger.info("Narrative seed.", chapter_count=state.chapter_count)

            await self.run_setup_stages(state)
            await self.run_body_loop(state)

            if state.book_complete:
                logger.info(
                    "--- Book Writing Complete! ---",
                    chapters=state.current_chapter,
                    paragraphs=len(state.book_content),
                    usage=self.llm.usage.get_if_used(),
                )
        finally:
            clear_run_context()
        return state

    async def _run_setup_stage(
        self,
        stage_number: int,
        label: str,
        template: str,
        context: dict[str, Any],
    ) -> str:
        logger.info(f"[{stage_number}/{TOTAL_STAGES}] {label}...")
        self._update_display(step=label)
        prompt = render_prompt(template, context)
        return await self.llm.generate_text(
            prompt, temperature=self.settings.TEMPERATURE_SETUP
        )

    async def run_setup_stages(self, state: PipelineState) -> None:
        """Stages 1-4. Any RetriesExhausted here ends the run."""
        state.world = await self._run_setup_stage(
            1,
            "Creating the world",
            "setup/world.j2",
            {"keywords": state.keywords, "chapter_count": state.chapter_count},
        )
        logger.info("World created.", length=len(state.world))
        await self.output_service.save("world", state.world)

        state.locations = await self._run_setup_stage(
            2, "Creating locations", "setup/locations.j2", {"world": state.world}
        )
        logger.info("Locations created.", length=len(state.locations))
        await self.output_service.save("locations", state.locations)

        state.characters = await self._run_setup_stage(
            3,
            "Creating characters",
            "setup/characters.j2",
            {"world": state.world, "locations": state.locations},
        )
        logger.info("Characters created.", length=len(state.characters))
        await self.output_service.save("characters", state.characters)

        state.chapter_outline = await self._run_setup_stage(
            4,
            "Outlining chapters",
            "setup/outline.j2",
            {
                "world": state.world,
                "locations": state.locations,
                "characters": state.characters,
                "chapter_count": state.chapter_count,
            },
        )
        logger.info("Chapter outline created.", length=len(state.chapter_outline))
        await self.output_service.save("chapter_outline", state.chapter_outline)

    def build_paragraph_prompt(self, state: PipelineState) -> str:
        full_context = self.settings.BODY_CONTEXT_MODE == "full"
        return render_prompt(
            "body/paragraph.j2",
            {
                "full_context": full_context,
                "book_text": state.book_text if full_context else "",
                "summary": state.summary,
                "previous_paragraph": state.previous_paragraph,
                "world": state.world,
                "locations": state.locations,
                "characters": state.characters,
                "chapter_outline": state.chapter_outline,
                "current_chapter": state.current_chapter,
                "chapter_count": state.chapter_count,
                "paragraph_count": state.paragraph_count_in_chapter,
                "paragraph_budget": self.settings.PARAGRAPHS_PER_CHAPTER_HINT,
                "chapter_end_marker": CHAPTER_END_MARKER,
                "book_end_marker": BOOK_END_MARKER,
            },
        )

    async def _save_partial_book(self, state: PipelineState) -> None:
        if state.book_content:
            await self.output_service.save("book_partial", state.book_text)

    def _should_stop(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()

    async def run_body_loop(self, state: PipelineState) -> None:
        """Stage 5: extend the book one paragraph at a time until it ends itself."""
        if not state.setup_complete:
            raise RuntimeError(
                "The paragraph loop needs world, locations, characters and outline."
            )
        logger.info(
            f"[5/{TOTAL_STAGES}] Writing the book, paragraph by paragraph..."
        )
        limit = self.settings.MAX_BODY_ITERATIONS

        while not state.book_complete:
            if self._should_stop():
                logger.warning(
                    "Stop requested; leaving the book unfinished.",
                    chapter=state.current_chapter,
                    paragraphs=len(state.book_content),
                )
                await self._save_partial_book(state)
                return
            if limit and state.iterations >= limit:
                logger.error(
                    "Paragraph loop reached MAX_BODY_ITERATIONS without an end-of-book marker.",
                    iterations=state.iterations,
                )
                await self._save_partial_book(state)
                raise BodyIterationLimitReached(state.iterations)

            bind_run_context(chapter=state.current_chapter)
            self._update_display(step=f"Writing Chapter {state.current_chapter}")
            logger.info(
                f"- Writing Chapter {state.current_chapter}, "
                f"paragraph {state.paragraph_count_in_chapter + 1}..."
            )
            try:
                raw_paragraph = await self.llm.generate_text(
                    self.build_paragraph_prompt(state),
                    temperature=self.settings.TEMPERATURE_DRAFTING,
                )
                outcome = apply_paragraph(state, raw_paragraph)
                if outcome.book_ended:
                    logger.info(
                        f"--- Book concluded with Chapter {outcome.chapter}. ---"
                    )
                else:
                    if outcome.chapter_ended:
                        logger.info(f"--- Chapter {outcome.chapter} concluded. ---")
                    self._update_display(step="Summarizing")
                    summary_prompt = render_prompt(
                        "body/summary.j2", {"book_text": state.book_text}
                    )
                    state.summary = await self.llm.generate_text(
                        summary_prompt, temperature=self.settings.TEMPERATURE_SUMMARY
                    )
            except (RetriesExhausted, httpx.HTTPStatusError):
                logger.error(
                    "Paragraph loop aborted; saving the partial book.",
                    chapter=state.current_chapter,
                    paragraphs=len(state.book_content),
                )
                await self._save_partial_book(state)
                raise

            logger.debug(
                "Paragraph added.",
                chapter=outcome.chapter,
                length=len(outcome.paragraph),
                paragraph_in_chapter=state.paragraph_count_in_chapter,
            )
            await self.output_service.save("book", state.book_text)
            self._update_display()

            pause = self.settings.PARAGRAPH_PAUSE_SECONDS
            if not state.book_complete and pause > 0:
                await self._sleep(pause)
